"""
Tests for loading workspace policies and limits from YAML.
"""
from promptrelay.models.policy import RoutingPolicy, Workspace
from promptrelay.routing.policy import WorkspaceDirectory

ACME = """
tenant_id: acme
name: Acme
routing_policy:
  name: acme-default
  primary_model: gpt-4o
  fallback_models: [gpt-4o-mini]
  cost_threshold_warning: 0.01
  cost_threshold_block: 0.05
  retry_delay_seconds: 1
spending_limit:
  daily_limit: 10
  rate_limit_enabled: true
  rate_limit_per_minute: 5
"""


class TestWorkspaceDirectory:
    def test_loads_yaml(self, tmp_path):
        (tmp_path / "acme.yaml").write_text(ACME)

        directory = WorkspaceDirectory(str(tmp_path))
        acme = directory.get("acme")

        assert directory.list_tenants() == ["acme"]
        assert acme.active_policy.ordered_models == ["gpt-4o", "gpt-4o-mini"]
        assert acme.active_policy.retry_delay_seconds == 1.0
        assert acme.active_spending_limit.daily_limit == 10.0
        assert acme.active_spending_limit.rate_limit_per_minute == 5

    def test_tenant_id_defaults_to_file_name(self, tmp_path):
        (tmp_path / "globex.yaml").write_text("routing_policy:\n  primary_model: gpt-4o-mini\n")
        directory = WorkspaceDirectory(str(tmp_path))
        assert directory.get("globex").active_policy.primary_model == "gpt-4o-mini"
        assert directory.get("globex").active_spending_limit is None

    def test_invalid_file_skipped(self, tmp_path):
        (tmp_path / "acme.yaml").write_text(ACME)
        (tmp_path / "bad.yaml").write_text(
            "routing_policy:\n  primary_model: m\n  cost_threshold_warning: 1\n  cost_threshold_block: 0.5\n"
        )
        directory = WorkspaceDirectory(str(tmp_path))
        assert directory.list_tenants() == ["acme"]

    def test_unknown_tenant_resolves_bare(self):
        workspace = WorkspaceDirectory().resolve("nobody")
        assert workspace.tenant_id == "nobody"
        assert workspace.active_policy is None
        assert workspace.active_spending_limit is None

    def test_disabled_policy_inactive(self):
        directory = WorkspaceDirectory(
            workspaces=[
                Workspace(tenant_id="acme", routing_policy=RoutingPolicy(primary_model="m", enabled=False))
            ]
        )
        assert directory.resolve("acme").active_policy is None

    def test_reload_picks_up_changes(self, tmp_path):
        directory = WorkspaceDirectory(str(tmp_path))
        assert directory.list_tenants() == []

        (tmp_path / "acme.yaml").write_text(ACME)
        directory.reload()

        assert directory.list_tenants() == ["acme"]
