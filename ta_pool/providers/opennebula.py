"""Instantiate OpenNebula VMs over XML-RPC and expose them as pool nodes."""

from __future__ import annotations

import logging
import math
import time
import xml.etree.ElementTree as ET
import xmlrpc.client
from typing import Any, Mapping, Optional, Sequence

from ta_common.config import AgentConfig
from ta_common.errors import ProvisioningError

from ta_pool.providers.ansible import AnsibleBootstrapper

logger = logging.getLogger(__name__)

VM_STATE_ACTIVE = 3
LCM_STATE_RUNNING = 3
POLL_INTERVAL_SECONDS = 5.0


class OpenNebulaBackend:
    """Create nodes by instantiating OpenNebula templates."""

    def __init__(
        self,
        config: AgentConfig,
        proxy: Any | None = None,
        bootstrapper: AnsibleBootstrapper | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ):
        self.config = config
        self._proxy = proxy if proxy is not None else xmlrpc.client.ServerProxy(config.endpoint, allow_none=True)
        self.bootstrapper = bootstrapper
        self.poll_interval = poll_interval

    def call(self, method: str, *args: Any) -> Any:
        """Invoke an XML-RPC method with the session string prepended."""
        try:
            response = getattr(self._proxy, method)(self.config.credentials, *args)
        except (xmlrpc.client.Error, OSError) as exc:
            raise ProvisioningError(
                f"OpenNebula call {method} failed: {exc}",
                context={"method": method},
                cause=exc,
            ) from exc
        if not response or not response[0]:
            detail = response[1] if response and len(response) > 1 else "no response"
            raise ProvisioningError(
                f"OpenNebula call {method} failed: {detail}",
                context={"method": method},
            )
        return response[1]

    def resolve_template(self, template: str | int) -> int:
        """Return the id of a template given by id or by name."""
        if isinstance(template, int):
            return template
        if template.isdigit():
            return int(template)
        pool = ET.fromstring(self.call("one.templatepool.info", -2, -1, -1))
        for entry in pool.iter("VMTEMPLATE"):
            if entry.findtext("NAME") == template:
                return int(entry.findtext("ID", "-1"))
        raise ProvisioningError(f"OpenNebula template '{template}' not found", context={"template": template})

    def vm_info(self, vm_id: int) -> ET.Element:
        return ET.fromstring(self.call("one.vm.info", vm_id))

    def create(self, name: str, template: str | int, keep_alive: bool = False) -> "OpenNebulaNode":
        """Instantiate a template and wait for the VM to run.

        The node is returned even when it is still booting after
        ``boot_timeout``; readiness is left to the caller. When the state of
        the new VM cannot be read, the VM is terminated before the error is
        raised, since no handle for it ever reaches the caller.
        """
        template_id = self.resolve_template(template)
        vm_id = int(self.call("one.template.instantiate", template_id, name, False, "", False))
        logger.info("Instantiated template %s as VM %s (%s)", template, vm_id, name)
        node = OpenNebulaNode(self, vm_id, name, keep_alive=keep_alive)
        try:
            node.wait_until_running(self.config.boot_timeout, self.poll_interval)
        except ProvisioningError:
            try:
                node.destroy(force=True)
            except ProvisioningError as exc:
                logger.error("Could not terminate VM %s (%s) after a failed boot wait: %s", vm_id, name, exc)
            raise
        return node


class OpenNebulaNode:
    """Handle on a single OpenNebula VM."""

    def __init__(self, backend: OpenNebulaBackend, vm_id: int, name: str, keep_alive: bool = False):
        self.backend = backend
        self.id = vm_id
        self.name = name
        self.keep_alive = keep_alive
        self.session: Any = None

    def __repr__(self) -> str:
        return f"OpenNebulaNode(name={self.name!r}, id={self.id})"

    def state(self) -> tuple[int, int]:
        """Return ``(STATE, LCM_STATE)`` as reported by the front-end."""
        info = self.backend.vm_info(self.id)
        return int(info.findtext("STATE", "-1")), int(info.findtext("LCM_STATE", "-1"))

    def ready(self) -> bool:
        return self.state() == (VM_STATE_ACTIVE, LCM_STATE_RUNNING)

    def wait_until_running(self, timeout: float, interval: float) -> bool:
        attempts = max(1, math.ceil(timeout / interval)) if interval > 0 else 1
        for attempt in range(attempts):
            if self.ready():
                return True
            if attempt + 1 < attempts:
                time.sleep(interval)
        logger.warning("VM %s (%s) not running after %ss", self.id, self.name, timeout)
        return False

    @property
    def address(self) -> Optional[str]:
        """First NIC address of the VM, if one is assigned."""
        return self.backend.vm_info(self.id).findtext("TEMPLATE/NIC/IP")

    def bootstrap(self, run_list: Sequence[str], options: Optional[Mapping[str, Any]] = None) -> None:
        bootstrapper = self.backend.bootstrapper
        if bootstrapper is None:
            raise ProvisioningError(
                f"No bootstrapper configured for node {self.name}",
                context={"node": self.name, "operation": "bootstrap"},
            )
        address = self.address
        if not address:
            raise ProvisioningError(
                f"Node {self.name} has no IP address to bootstrap",
                context={"node": self.name, "operation": "bootstrap"},
            )
        bootstrapper.run(self.name, address, run_list, options or {})

    def destroy(self, force: bool = False) -> None:
        """Terminate the VM; keep-alive VMs survive unless ``force`` is set."""
        if self.keep_alive and not force:
            logger.info("Keeping VM %s (%s) alive", self.id, self.name)
            return
        self.backend.call("one.vm.action", "terminate-hard", self.id)
        logger.info("Terminated VM %s (%s)", self.id, self.name)
