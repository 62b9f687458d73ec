"""Apply run lists of Ansible playbooks to freshly created nodes."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from ta_common.config import AgentConfig

from ta_pool.models.types import BootstrapError

logger = logging.getLogger(__name__)

SSH_COMMON_ARGS = "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"


def _quote(value: Any) -> str:
    text = str(value)
    if " " in text:
        return f'"{text}"'
    return text


def render_inventory(node_name: str, address: str, user: str, password: str) -> str:
    """Render a one-host INI inventory for a node."""
    parts = [
        node_name,
        f"ansible_host={address}",
        f"ansible_user={user}",
        f"ansible_password={_quote(password)}",
        f"ansible_ssh_common_args={_quote(SSH_COMMON_ARGS)}",
        "ansible_python_interpreter=/usr/bin/python3",
    ]
    return "[nodes]\n" + " ".join(parts) + "\n"


class AnsibleBootstrapper:
    """Run each playbook of a run list against one node with ansible-runner."""

    def __init__(
        self,
        config: AgentConfig,
        private_data_dir: Optional[Path] = None,
        runner_fn: Optional[Callable[..., Any]] = None,
        user: str = "root",
    ):
        """
        Initialize the bootstrapper.

        Args:
            config: Agent configuration; supplies the default SSH password.
            private_data_dir: Directory used by ansible-runner.
            runner_fn: Optional runner callable for testing. Defaults to
                ansible_runner.run when not provided.
            user: Remote user the playbooks connect as.
        """
        self.config = config
        self.private_data_dir = private_data_dir or Path(".ansible_runner")
        self._runner_fn = runner_fn
        self.user = user

    def run(
        self,
        node_name: str,
        address: str,
        run_list: Sequence[str],
        extravars: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Apply ``run_list`` in order; the first failing playbook stops the run."""
        inventory_path = self._write_inventory(node_name, address)
        runner_fn = self._runner_fn or self._import_runner()
        variables: Dict[str, Any] = dict(extravars or {})

        for entry in run_list:
            playbook = Path(entry).expanduser()
            context = {"node": node_name, "operation": "bootstrap", "playbook": str(playbook)}
            if not playbook.exists():
                raise BootstrapError(f"Playbook not found: {playbook}", context=context)

            logger.info("Running playbook %s on %s", playbook.name, node_name)
            result = runner_fn(
                private_data_dir=str(self.private_data_dir),
                playbook=str(playbook.resolve()),
                inventory=str(inventory_path.resolve()),
                extravars=variables,
                limit=node_name,
                quiet=True,
            )
            rc = getattr(result, "rc", 1)
            status = getattr(result, "status", "failed")
            logger.info("Playbook %s finished with rc=%s status=%s", playbook.name, rc, status)
            if rc != 0 or status != "successful":
                raise BootstrapError(
                    f"Playbook {playbook.name} failed on node {node_name} (rc={rc}, status={status})",
                    context={**context, "rc": rc, "status": status},
                )

    def _write_inventory(self, node_name: str, address: str) -> Path:
        inventory_dir = self.private_data_dir / "inventory"
        inventory_dir.mkdir(parents=True, exist_ok=True)
        inventory_file = inventory_dir / f"{node_name}.ini"
        inventory_file.write_text(
            render_inventory(node_name, address, self.user, self.config.default_ssh_pass)
        )
        return inventory_file

    @staticmethod
    def _import_runner() -> Callable[..., Any]:
        """Import ansible_runner lazily to avoid the import cost for pools without run lists."""
        import ansible_runner  # type: ignore[import-untyped]

        return ansible_runner.run
