"""Tests for the single-stack deployment engine."""

from __future__ import annotations

from pathlib import Path

import pytest

from stackwright._errors import BackendCommandError, ConfigurationError, StackNotFoundError
from stackwright._models import (
    CloudProvider,
    ConstructDefinition,
    DeploymentConfig,
    DeploymentProgress,
    DeploymentStatus,
    DeploymentTarget,
)
from stackwright.deployment_engine import DeploymentEngine
from stackwright.tests._backend_doubles import DEFINITION, FakeBackend


def _config(
    stack_name: str = "dev",
    provider: CloudProvider = CloudProvider.AWS,
    provider_config: dict[str, object] | None = None,
) -> DeploymentConfig:
    return DeploymentConfig(
        name=f"shop-{stack_name}",
        stack_name=stack_name,
        project_name="shop",
        provider=provider,
        provider_config=provider_config if provider_config is not None else {"region": "eu-west-1"},
        construct_args={"memory": 256},
        backend_config={"team": "platform"},
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def engine(backend: FakeBackend, tmp_path: Path) -> DeploymentEngine:
    return DeploymentEngine(backend, tmp_path / "workspace", env={})


def test_engine_creates_workspace_dir(engine: DeploymentEngine) -> None:
    assert engine.workspace_dir.is_dir(), "workspace directory should exist"


def test_deploy_emits_progress_in_order(backend: FakeBackend, engine: DeploymentEngine) -> None:
    events: list[DeploymentProgress] = []
    backend.outputs["dev"] = {"api_url": "https://dev.example"}

    result = engine.deploy_construct(DEFINITION, _config(), events.append)

    assert [(e.status, e.percentage) for e in events] == [
        (DeploymentStatus.PENDING, 0),
        (DeploymentStatus.VALIDATING, 10),
        (DeploymentStatus.VALIDATING, 20),
        (DeploymentStatus.PREVIEWING, 30),
        (DeploymentStatus.DEPLOYING, 50),
        (DeploymentStatus.COMPLETED, 100),
    ], "progress should follow the deployment lifecycle"
    assert events[-1].message == "Deployment completed successfully", "completion message"
    assert [e.status.is_terminal for e in events] == [False] * 5 + [True], (
        "only the last event should be terminal"
    )
    assert events[4].details == {"changes": {"create": 1}}, "deploy step should carry changes"
    assert result.status == "success", "deployment should succeed"
    assert result.outputs == {"api_url": "https://dev.example"}, "outputs should be returned"
    assert result.duration == 1.5, "duration should come from the apply"
    assert len(result.resources) == 1, "resources should be read after the apply"


def test_deploy_configures_stack(backend: FakeBackend, engine: DeploymentEngine) -> None:
    engine.deploy_construct(DEFINITION, _config())

    stack = backend.stacks[("shop", "dev")]
    assert stack.arguments == {"memory": 256}, "construct arguments should be set"
    assert stack.config == {"aws_region": "eu-west-1", "team": "platform"}, (
        "provider settings and backend config should be merged"
    )
    assert stack.work_dir == (engine.workspace_dir / "shop" / "dev").resolve(), (
        "stack should live under the workspace"
    )


def test_deploy_failure_emits_failed_and_reraises(
    backend: FakeBackend, engine: DeploymentEngine
) -> None:
    backend.failures.add(("dev", "up"))
    events: list[DeploymentProgress] = []

    with pytest.raises(BackendCommandError, match="tofu up failed for dev"):
        engine.deploy_construct(DEFINITION, _config(), events.append)

    assert events[-1].status is DeploymentStatus.FAILED, "last event should be FAILED"
    assert events[-1].percentage == 0, "failure should report 0 percent"
    assert events[-1].message == "Deployment failed: tofu up failed for dev", "failure message"
    assert DeploymentStatus.COMPLETED not in [e.status for e in events], "no completion event"
    assert events[-1].status.is_terminal, "FAILED should be terminal"
    assert not engine.is_deployed("shop", "dev"), "a failed apply is not a deployment"


def test_unsupported_provider_fails_before_backend_calls(
    backend: FakeBackend, engine: DeploymentEngine
) -> None:
    definition = ConstructDefinition(
        name="StaticWebsite",
        source=Path("modules/static-website"),
        required_providers=("aws",),
    )
    events: list[DeploymentProgress] = []

    with pytest.raises(ConfigurationError, match="Provider azure not supported. Required: aws"):
        engine.deploy_construct(definition, _config(provider=CloudProvider.AZURE), events.append)

    assert backend.created == [], "no stack should be created"
    assert events[-1].status is DeploymentStatus.FAILED, "failure should be reported"


def test_missing_environment_variables_fail_validation(
    backend: FakeBackend, tmp_path: Path
) -> None:
    definition = ConstructDefinition(
        name="ServerlessAPI",
        source=Path("modules/serverless-api"),
        required_providers=("aws",),
        environment_variables=("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"),
    )
    engine = DeploymentEngine(backend, tmp_path, env={"AWS_ACCESS_KEY_ID": "key"})

    with pytest.raises(ConfigurationError, match="Missing environment variables: AWS_SECRET_ACCESS_KEY"):
        engine.deploy_construct(definition, _config())
    assert backend.calls == [], "backend should not be called"


def test_gcp_without_project_id_is_rejected(backend: FakeBackend, engine: DeploymentEngine) -> None:
    with pytest.raises(ConfigurationError, match="projectId"):
        engine.deploy_construct(DEFINITION, _config(provider=CloudProvider.GCP, provider_config={}))
    assert backend.created == [], "no stack should be created"


def test_resource_inventory_failure_yields_partial_result(
    backend: FakeBackend, engine: DeploymentEngine
) -> None:
    backend.failures.add(("dev", "resources"))

    result = engine.deploy_construct(DEFINITION, _config())

    assert result.status == "partial", "missing inventory should downgrade the result"
    assert result.resources == [], "no resources should be reported"
    assert result.warnings and result.warnings[0].startswith("Resource inventory unavailable"), (
        "a warning should explain the partial result"
    )


def test_warning_diagnostics_are_collected(backend: FakeBackend, engine: DeploymentEngine) -> None:
    backend.events["dev"] = [
        {"type": "diagnostic", "diagnostic": {"severity": "warning", "summary": "Deprecated attribute"}},
        {"type": "diagnostic", "diagnostic": {"severity": "error", "summary": "ignored"}},
    ]

    result = engine.deploy_construct(DEFINITION, _config())

    assert result.warnings == ["Deprecated attribute"], "only warnings should be collected"


def test_handle_operations_require_a_cached_stack(engine: DeploymentEngine) -> None:
    with pytest.raises(StackNotFoundError, match="Stack not found: shop/dev"):
        engine.get_deployment_status("shop", "dev")
    with pytest.raises(StackNotFoundError):
        engine.destroy_deployment("shop", "dev")
    with pytest.raises(StackNotFoundError):
        engine.refresh_deployment("shop", "dev")
    with pytest.raises(StackNotFoundError):
        engine.export_deployment("shop", "dev")
    with pytest.raises(StackNotFoundError):
        engine.import_deployment("shop", "dev", {})


def test_status_refresh_export_and_import(backend: FakeBackend, engine: DeploymentEngine) -> None:
    backend.outputs["dev"] = {"api_url": "https://dev.example"}
    engine.deploy_construct(DEFINITION, _config())

    status = engine.get_deployment_status("shop", "dev")
    assert status.outputs == {"api_url": "https://dev.example"}, "status should report outputs"
    assert status.status == "active", "deployed stack should be active"

    assert engine.refresh_deployment("shop", "dev").change_summary == {"update": 0}, "refresh"

    exported = engine.export_deployment("shop", "dev")
    engine.import_deployment("shop", "dev", {**exported, "serial": 7})
    assert backend.stacks[("shop", "dev")].state["serial"] == 7, "imported state should be set"


def test_destroy_emits_progress_and_evicts_handle(
    backend: FakeBackend, engine: DeploymentEngine
) -> None:
    engine.deploy_construct(DEFINITION, _config())
    events: list[DeploymentProgress] = []

    engine.destroy_deployment("shop", "dev", events.append)

    assert [(e.status, e.percentage) for e in events] == [
        (DeploymentStatus.DESTROYING, 50),
        (DeploymentStatus.DESTROYED, 100),
    ], "destroy should report both steps"
    assert [e.status.is_terminal for e in events] == [False, True], "DESTROYED should be terminal"
    assert engine.list_deployments() == [], "handle should be evicted"


def test_destroy_failure_keeps_handle(backend: FakeBackend, engine: DeploymentEngine) -> None:
    engine.deploy_construct(DEFINITION, _config())
    backend.failures.add(("dev", "destroy"))
    events: list[DeploymentProgress] = []

    with pytest.raises(BackendCommandError):
        engine.destroy_deployment("shop", "dev", events.append)

    assert events[-1].status is DeploymentStatus.FAILED, "failure should be reported"
    assert events[-1].message.startswith("Destroy failed:"), "destroy failure message"
    assert [item.stack for item in engine.list_deployments()] == ["dev"], "handle should remain"


def test_list_deployments_reports_cached_stacks(engine: DeploymentEngine) -> None:
    engine.deploy_construct(DEFINITION, _config("dev"))
    engine.deploy_construct(DEFINITION, _config("prod"))

    listings = engine.list_deployments()

    assert [(item.project, item.stack) for item in listings] == [
        ("shop", "dev"),
        ("shop", "prod"),
    ], "both stacks should be listed"
    assert listings[0].url is not None and listings[0].url.startswith("file://"), "url should be set"


def test_redeploy_reuses_handle_and_refreshes_arguments(
    backend: FakeBackend, engine: DeploymentEngine
) -> None:
    engine.deploy_construct(DEFINITION, _config())
    updated = DeploymentConfig(
        name="shop-dev",
        stack_name="dev",
        project_name="shop",
        provider=CloudProvider.AWS,
        provider_config={"region": "us-west-2"},
        construct_args={"memory": 512},
    )

    engine.deploy_construct(DEFINITION, updated)

    assert backend.created == [("shop", "dev")], "handle should be created once"
    stack = backend.stacks[("shop", "dev")]
    assert stack.arguments == {"memory": 512}, "arguments should be replaced"
    assert stack.config == {"aws_region": "us-west-2"}, "config should be replaced"


def test_select_stack_attaches_without_deploying(
    backend: FakeBackend, engine: DeploymentEngine
) -> None:
    handle = engine.select_stack(DEFINITION, _config())

    assert handle is backend.stacks[("shop", "dev")], "select should return the backend handle"
    assert backend.calls == [], "select should not run any operation"
    assert engine.get_deployment_status("shop", "dev").resources, "stack should now be usable"


def test_deployed_mark_follows_apply_and_destroy(
    backend: FakeBackend, engine: DeploymentEngine
) -> None:
    engine.preview_deployment(DeploymentTarget(DEFINITION, _config()))
    assert not engine.is_deployed("shop", "dev"), "a preview alone is not a deployment"

    engine.deploy_construct(DEFINITION, _config())
    assert engine.is_deployed("shop", "dev"), "a completed apply marks the stack"

    engine.destroy_deployment("shop", "dev")
    assert not engine.is_deployed("shop", "dev"), "destroy clears the mark"
