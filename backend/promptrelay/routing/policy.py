from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from promptrelay.core.logging import get_logger
from promptrelay.models.policy import RoutingPolicy, SpendingLimit, Workspace

logger = get_logger(__name__)


class WorkspaceDirectory:
    """Loads per-workspace routing policies and spending limits from YAML files."""

    def __init__(self, tenants_dir: Optional[str] = None, workspaces: Optional[List[Workspace]] = None):
        self.tenants_dir = Path(tenants_dir) if tenants_dir else None
        self._workspaces: Dict[str, Workspace] = {}
        for workspace in workspaces or []:
            self._workspaces[workspace.tenant_id] = workspace
        if self.tenants_dir is not None:
            self.load_all()

    def load_all(self) -> None:
        """Load all YAML workspace files from the tenants directory."""
        if not self.tenants_dir.exists():
            logger.warning("tenants_dir_missing", path=str(self.tenants_dir))
            return

        loaded = 0
        for yaml_file in sorted(self.tenants_dir.glob("*.yaml")):
            try:
                self._load_file(yaml_file)
                loaded += 1
            except (OSError, KeyError, ValidationError, yaml.YAMLError) as e:
                logger.error("workspace_load_error", file=str(yaml_file), error=str(e))

        logger.info("workspaces_loaded", count=loaded)

    def _load_file(self, path: Path) -> None:
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        tenant_id = str(data.get("tenant_id") or path.stem)
        policy = None
        if data.get("routing_policy"):
            policy = RoutingPolicy(**data["routing_policy"])
        limit = None
        if data.get("spending_limit"):
            limit = SpendingLimit(**data["spending_limit"])

        self._workspaces[tenant_id] = Workspace(
            tenant_id=tenant_id,
            name=data.get("name", tenant_id),
            routing_policy=policy,
            spending_limit=limit,
        )
        logger.info(
            "workspace_loaded",
            tenant_id=tenant_id,
            policy=policy.name if policy else None,
            models=policy.ordered_models if policy else [],
            spending_limit=limit is not None,
        )

    def reload(self) -> None:
        """Hot-reload all workspaces without restart."""
        self._workspaces.clear()
        if self.tenants_dir is not None:
            self.load_all()
        logger.info("workspaces_reloaded")

    def register(self, workspace: Workspace) -> None:
        self._workspaces[workspace.tenant_id] = workspace

    def get(self, tenant_id: str) -> Optional[Workspace]:
        return self._workspaces.get(tenant_id)

    def resolve(self, tenant_id: str) -> Workspace:
        """Unknown workspaces resolve to one with no policy and no limits."""
        workspace = self._workspaces.get(tenant_id)
        if workspace is None:
            logger.warning("workspace_unknown", tenant_id=tenant_id)
            return Workspace(tenant_id=tenant_id, name=tenant_id)
        return workspace

    def list_tenants(self) -> List[str]:
        return sorted(self._workspaces.keys())
