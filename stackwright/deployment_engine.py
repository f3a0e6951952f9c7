"""Drive the lifecycle of a single stack against the automation backend.

The engine validates a deployment, creates or selects the stack handle,
previews, applies and reports progress through an optional callback. It also
exposes status, refresh, state export/import and destroy for stacks it holds
a handle for.

Handles live in the engine's :class:`StackHandleCache`; the cache is local to
the engine instance, so ``list_deployments`` and the handle-based operations
only see stacks touched through this engine in the current process.

Examples
--------
Deploy one stack with the OpenTofu backend:

>>> engine = DeploymentEngine(TofuBackend(), Path(".stackwright-workspace"))
>>> result = engine.deploy_construct(definition, config, on_progress=print)
>>> result.status
'success'
"""

from __future__ import annotations

import logging
import os
from collections import abc as cabc
from pathlib import Path
from typing import Any

from stackwright._backend import StackBackend, StackHandle
from stackwright._errors import BackendCommandError, ConfigurationError
from stackwright._handle_cache import StackHandleCache
from stackwright._models import (
    ConstructDefinition,
    ConstructDeploymentResult,
    DeploymentConfig,
    DeploymentListing,
    DeploymentProgress,
    DeploymentStatus,
    DeploymentStatusReport,
    DeploymentTarget,
    DestroyOutcome,
    PreviewOutcome,
    ProgressCallback,
    RefreshOutcome,
    UpOutcome,
)
from stackwright._providers import provider_settings_for
from stackwright._settings import DEFAULT_WORKSPACE_DIR

logger = logging.getLogger(__name__)


def _emit(
    on_progress: ProgressCallback | None,
    status: DeploymentStatus,
    message: str,
    percentage: int,
    details: cabc.Mapping[str, Any] | None = None,
) -> None:
    if on_progress is not None:
        on_progress(DeploymentProgress(status, message, percentage, details))


class DeploymentEngine:
    """Single-stack deployment lifecycle.

    Parameters
    ----------
    backend
        Automation backend that creates stack handles.
    workspace_dir
        Parent of the per-stack working directories
        (``<workspace_dir>/<project>/<stack>``).
    env
        Environment used to check required variables; defaults to
        ``os.environ`` at validation time.
    """

    def __init__(
        self,
        backend: StackBackend,
        workspace_dir: Path = DEFAULT_WORKSPACE_DIR,
        *,
        env: cabc.Mapping[str, str] | None = None,
    ) -> None:
        self._backend = backend
        self.workspace_dir = workspace_dir
        self._env = env
        self._stacks = StackHandleCache()
        self.workspace_dir.mkdir(parents=True, exist_ok=True)

    def deploy_construct(
        self,
        definition: ConstructDefinition,
        config: DeploymentConfig,
        on_progress: ProgressCallback | None = None,
    ) -> ConstructDeploymentResult:
        """Validate, preview and apply one stack.

        Parameters
        ----------
        definition
            Construct to deploy.
        config
            Deployment configuration of the stack.
        on_progress
            Receives a :class:`DeploymentProgress` per lifecycle step. The last
            event is ``COMPLETED`` at 100 or ``FAILED`` at 0.

        Returns
        -------
        ConstructDeploymentResult
            Resources, outputs and duration of the apply.

        Raises
        ------
        ConfigurationError
            If the provider is unsupported or required environment variables
            are missing; raised before any backend call.
        BackendCommandError
            If the backend fails to create, preview or apply the stack.
        """
        stack_id = f"{config.project_name}/{config.stack_name}"
        _emit(on_progress, DeploymentStatus.PENDING, "Deployment queued", 0)
        try:
            _emit(
                on_progress,
                DeploymentStatus.VALIDATING,
                "Validating deployment configuration",
                10,
            )
            self.validate_deployment(definition, config)

            _emit(on_progress, DeploymentStatus.VALIDATING, "Creating deployment stack", 20)
            stack = self._create_or_select_stack(definition, config)

            _emit(
                on_progress,
                DeploymentStatus.PREVIEWING,
                "Previewing infrastructure changes",
                30,
            )
            preview = self.preview_deployment(stack)

            _emit(
                on_progress,
                DeploymentStatus.DEPLOYING,
                "Deploying infrastructure",
                50,
                {"changes": dict(preview.change_summary)},
            )
            warnings: list[str] = []
            up_result = stack.up(
                on_output=self._handle_output,
                on_event=lambda event: self._handle_event(event, warnings),
            )
            result = self._create_deployment_result(stack, up_result, warnings)
            self._stacks.mark_deployed((config.project_name, config.stack_name))
        except Exception as exc:
            logger.error("Deployment of %s failed: %s", stack_id, exc)
            _emit(on_progress, DeploymentStatus.FAILED, f"Deployment failed: {exc}", 0)
            raise

        logger.info("Deployment of %s completed in %.1fs", stack_id, result.duration)
        _emit(
            on_progress,
            DeploymentStatus.COMPLETED,
            "Deployment completed successfully",
            100,
        )
        return result

    def preview_deployment(self, target: StackHandle | DeploymentTarget) -> PreviewOutcome:
        """Preview changes without applying them.

        ``target`` is either a stack handle or a :class:`DeploymentTarget`,
        which is resolved to a handle first.
        """
        if isinstance(target, DeploymentTarget):
            stack = self._create_or_select_stack(target.definition, target.config)
        else:
            stack = target
        return stack.preview(on_output=self._handle_output)

    def select_stack(
        self,
        definition: ConstructDefinition,
        config: DeploymentConfig,
    ) -> StackHandle:
        """Create or select the stack for ``config`` and cache its handle.

        Use it to attach to stacks deployed by an earlier process before
        calling the handle-based operations.
        """
        provider_settings_for(config.provider, config.provider_config)
        return self._create_or_select_stack(definition, config)

    def is_deployed(self, project_name: str, stack_name: str) -> bool:
        """Return whether the stack was applied through this engine and not destroyed since."""
        return self._stacks.is_deployed((project_name, stack_name))

    def get_deployment_status(self, project_name: str, stack_name: str) -> DeploymentStatusReport:
        """Return current outputs and resources of a cached stack.

        Raises
        ------
        StackNotFoundError
            If the stack has no cached handle.
        """
        stack = self._stacks.require((project_name, stack_name))
        return DeploymentStatusReport(outputs=stack.outputs(), resources=stack.resources())

    def destroy_deployment(
        self,
        project_name: str,
        stack_name: str,
        on_progress: ProgressCallback | None = None,
    ) -> DestroyOutcome:
        """Destroy a cached stack and evict its handle on success."""
        key = (project_name, stack_name)
        stack = self._stacks.require(key)

        _emit(on_progress, DeploymentStatus.DESTROYING, "Destroying infrastructure", 50)
        try:
            result = stack.destroy(on_output=self._handle_output, on_event=self._handle_event)
        except Exception as exc:
            logger.error("Destroy of %s/%s failed: %s", project_name, stack_name, exc)
            _emit(on_progress, DeploymentStatus.FAILED, f"Destroy failed: {exc}", 0)
            raise

        self._stacks.evict(key)
        logger.info("Destroyed %s/%s", project_name, stack_name)
        _emit(on_progress, DeploymentStatus.DESTROYED, "Infrastructure destroyed", 100)
        return result

    def list_deployments(self) -> list[DeploymentListing]:
        """List stacks with a cached handle in this engine."""
        listings: list[DeploymentListing] = []
        for (project, stack_name), stack in self._stacks.items():
            info = stack.info() or {}
            listings.append(DeploymentListing(project=project, stack=stack_name, url=info.get("url")))
        return listings

    def refresh_deployment(self, project_name: str, stack_name: str) -> RefreshOutcome:
        stack = self._stacks.require((project_name, stack_name))
        return stack.refresh(on_output=self._handle_output, on_event=self._handle_event)

    def export_deployment(self, project_name: str, stack_name: str) -> dict[str, Any]:
        stack = self._stacks.require((project_name, stack_name))
        return stack.export_state()

    def import_deployment(
        self,
        project_name: str,
        stack_name: str,
        state: cabc.Mapping[str, Any],
    ) -> None:
        stack = self._stacks.require((project_name, stack_name))
        stack.import_state(state)

    def validate_deployment(
        self,
        definition: ConstructDefinition,
        config: DeploymentConfig,
    ) -> None:
        """Reject configurations the backend should never see.

        Raises
        ------
        ConfigurationError
            If the provider is not supported by the construct, the provider
            settings are incomplete, or required environment variables are
            unset.
        """
        if not definition.supports(config.provider):
            msg = (
                f"Provider {config.provider} not supported. "
                f"Required: {', '.join(definition.required_providers)}"
            )
            raise ConfigurationError(msg)

        provider_settings_for(config.provider, config.provider_config)

        env = self._env if self._env is not None else os.environ
        missing = [name for name in definition.environment_variables if not env.get(name)]
        if missing:
            msg = f"Missing environment variables: {', '.join(missing)}"
            raise ConfigurationError(msg)

    def _create_or_select_stack(
        self,
        definition: ConstructDefinition,
        config: DeploymentConfig,
    ) -> StackHandle:
        key = (config.project_name, config.stack_name)
        work_dir = config.work_dir or self.workspace_dir / config.project_name / config.stack_name
        stack = self._stacks.get_or_create(
            key,
            lambda: self._backend.create_or_select_stack(
                config.project_name,
                config.stack_name,
                definition,
                work_dir,
            ),
        )
        self._configure_stack(stack, config)
        return stack

    def _configure_stack(self, stack: StackHandle, config: DeploymentConfig) -> None:
        settings = provider_settings_for(config.provider, config.provider_config)
        all_config = {**settings.to_backend_config(), **(config.backend_config or {})}
        stack.set_program_arguments(config.construct_args)
        stack.set_all_config(all_config)

    def _create_deployment_result(
        self,
        stack: StackHandle,
        up_result: UpOutcome,
        warnings: list[str],
    ) -> ConstructDeploymentResult:
        status = "success"
        try:
            resources = stack.resources()
        except BackendCommandError as exc:
            logger.warning("Could not read resources of %s/%s: %s", stack.project_name, stack.stack_name, exc)
            warnings.append(f"Resource inventory unavailable: {exc}")
            resources = []
            status = "partial"

        return ConstructDeploymentResult(
            status=status,
            resources=resources,
            outputs=dict(up_result.outputs),
            duration=up_result.duration,
            errors=[],
            warnings=warnings,
        )

    def _handle_output(self, line: str) -> None:
        logger.debug("%s", line)

    def _handle_event(
        self,
        event: cabc.Mapping[str, Any],
        warnings: list[str] | None = None,
    ) -> None:
        diagnostic = event.get("diagnostic")
        if isinstance(diagnostic, cabc.Mapping):
            summary = str(diagnostic.get("summary", ""))
            logger.warning("Diagnostic: %s", summary)
            if warnings is not None and diagnostic.get("severity") == "warning":
                warnings.append(summary)
        hook = event.get("hook")
        if event.get("type") == "apply_start" and isinstance(hook, cabc.Mapping):
            resource = hook.get("resource") or {}
            logger.debug("Resource operation: %s %s", hook.get("action"), resource.get("addr"))
