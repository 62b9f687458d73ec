"""Tests for shared error helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from ta_common.errors import (
    ConfigurationError,
    DisplayPoolError,
    NodeOperationError,
    ProvisioningError,
    TAError,
    describe_error,
    error_to_payload,
    wrap_error,
)
from ta_pool.api import BootstrapError, DuplicateNodeError, MissingNodeError, TeardownError


pytestmark = pytest.mark.unit_common


def test_error_to_payload_normalizes_context() -> None:
    err = ProvisioningError(
        "boom",
        context={
            "path": Path("/tmp/test"),
            "count": 3,
            "nested": {"value": Path("nested")},
            "items": [Path("a"), "b"],
        },
    )
    payload = error_to_payload(err)
    assert payload["error_type"] == "ProvisioningError"
    assert payload["error"] == "boom"
    assert payload["error_context"]["path"].endswith("test")
    assert payload["error_context"]["count"] == 3
    assert payload["error_context"]["nested"]["value"] == "nested"
    assert payload["error_context"]["items"][0] == "a"


def test_wrap_error_sets_cause() -> None:
    cause = RuntimeError("low level")

    err = wrap_error(NodeOperationError, "high level", context={"node": "a"}, cause=cause)

    assert isinstance(err, NodeOperationError)
    assert err.__cause__ is cause
    assert err.to_dict() == {"type": "NodeOperationError", "message": "high level", "context": {"node": "a"}}


def test_describe_error_appends_scalar_context() -> None:
    err = NodeOperationError("bootstrap failed", context={"operation": "bootstrap", "node": "web", "rc": 2, "errors": {"a": "b"}})

    assert describe_error(err) == "bootstrap failed (node=web, operation=bootstrap, rc=2)"
    assert describe_error(TAError("plain")) == "plain"
    assert describe_error(ValueError("bad url")) == "bad url"


@pytest.mark.parametrize(
    "error_cls, parent",
    [
        (DuplicateNodeError, ConfigurationError),
        (MissingNodeError, NodeOperationError),
        (BootstrapError, NodeOperationError),
        (TeardownError, TAError),
        (DisplayPoolError, TAError),
    ],
)
def test_pool_errors_share_the_taxonomy(error_cls: type, parent: type) -> None:
    assert issubclass(error_cls, parent)
    assert error_cls("x").context == {}
