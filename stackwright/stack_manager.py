"""Orchestrate multi-stack deployments with dependency-driven ordering.

The stack manager builds a dependency graph over the stacks of a
:class:`MultiStackConfig`, orders it (a single topological order for
sequential runs, or waves of independent stacks for parallel runs) and asks
the :class:`DeploymentEngine` to deploy each stack. Outputs named by a
dependency edge are copied from the producer's results into the dependent
stack's construct arguments under ``dependencies["<producer>:<output>"]``.

Failure handling
----------------
Per-stack errors become ``failed`` results instead of exceptions. Sequential
runs stop at the first failure and parallel runs stop after the wave holding
it; stacks that never started are absent from the results. Teardown
(``destroy_multi_stack``) always attempts every stack. Graph errors raise
:class:`CircularDependencyError` before any stack is touched.

Limitations
-----------
Multi-stack previews do not propagate dependency outputs by default, since no
producer has been applied yet; dependent previews therefore cannot show
values known only after an apply. Enable ``preview_with_deployed_outputs`` to
reuse outputs of producers that were successfully applied through the same
engine and not destroyed since; stacks that were only previewed or attached
do not count.

Concurrent runs against the same ``(project, stack)`` pair are not
serialised beyond handle creation; callers must not deploy the same stack
from two runs at once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import abc as cabc
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from stackwright._errors import (
    BackendCommandError,
    CircularDependencyError,
    StackNotFoundError,
)
from stackwright._models import (
    ConstructDefinition,
    DeploymentConfig,
    DeploymentTarget,
    MultiStackConfig,
    ProgressCallback,
    StackConfig,
    StackDependency,
    StackDeploymentResult,
    StackPreviewResult,
    StackProgressCallback,
)
from stackwright.deployment_engine import DeploymentEngine

logger = logging.getLogger(__name__)

type DependencyGraph = dict[str, set[str]]

MISSING_STACK_ERROR = "Stack configuration not found"


def build_dependency_graph(config: MultiStackConfig) -> DependencyGraph:
    """Map every stack name to the names of the stacks it depends on.

    Edges pointing at an unknown stack are ignored. A dependency on an
    unknown stack adds that name as a node without dependencies, so ordering
    still places it first and deployment reports it as skipped.

    Examples
    --------
    >>> graph = build_dependency_graph(config)
    >>> graph["app"]
    {'network'}
    """
    graph: DependencyGraph = {stack.name: set() for stack in config.stacks}
    for dependency in config.dependencies:
        dependencies = graph.get(dependency.target)
        if dependencies is None:
            logger.warning(
                "Ignoring dependency of unknown stack '%s' on '%s'",
                dependency.target,
                dependency.source,
            )
            continue
        dependencies.add(dependency.source)
        if dependency.source not in graph:
            graph[dependency.source] = set()
    return graph


def _ordered(names: cabc.Iterable[str], position: cabc.Mapping[str, int]) -> list[str]:
    return sorted(names, key=lambda name: position.get(name, len(position)))


def topological_order(graph: DependencyGraph) -> list[str]:
    """Return a deployment order where every stack follows its dependencies.

    Raises
    ------
    CircularDependencyError
        If a stack is reached again while its own dependencies are being
        visited.

    Examples
    --------
    >>> topological_order({"app": {"network"}, "network": set()})
    ['network', 'app']
    """
    position = {name: index for index, name in enumerate(graph)}
    order: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(stack_name: str) -> None:
        if stack_name in visited:
            return
        if stack_name in visiting:
            raise CircularDependencyError(stack_name)
        visiting.add(stack_name)
        for dependency in _ordered(graph.get(stack_name, ()), position):
            visit(dependency)
        visiting.remove(stack_name)
        visited.add(stack_name)
        order.append(stack_name)

    for stack_name in graph:
        visit(stack_name)
    return order


def deployment_waves(graph: DependencyGraph) -> list[list[str]]:
    """Group stacks into waves whose members only depend on earlier waves.

    Raises
    ------
    CircularDependencyError
        If stacks remain but none of them is ready.

    Examples
    --------
    >>> deployment_waves({"a": set(), "b": set(), "c": {"a", "b"}})
    [['a', 'b'], ['c']]
    """
    waves: list[list[str]] = []
    deployed: set[str] = set()
    remaining = list(graph)

    while remaining:
        wave = [
            name
            for name in remaining
            if all(dependency in deployed for dependency in graph[name])
        ]
        if not wave:
            raise CircularDependencyError()
        waves.append(wave)
        deployed.update(wave)
        remaining = [name for name in remaining if name not in deployed]
    return waves


def build_deployment_config(
    project_name: str,
    definition: ConstructDefinition,
    stack: StackConfig,
    produced_outputs: cabc.Mapping[str, cabc.Mapping[str, Any]],
    dependencies: cabc.Iterable[StackDependency],
) -> DeploymentConfig:
    """Build the deployment configuration of one stack of a plan.

    Outputs of producers found in ``produced_outputs`` are namespaced as
    ``"<producer>:<output>"`` under the ``dependencies`` construct argument.
    """
    dependency_outputs: dict[str, Any] = {}
    for dependency in dependencies:
        if dependency.target != stack.name:
            continue
        outputs = produced_outputs.get(dependency.source)
        if outputs is None:
            continue
        for output_name in dependency.outputs:
            dependency_outputs[f"{dependency.source}:{output_name}"] = outputs.get(output_name)

    construct_args = {
        **definition.default_arguments(),
        "dependencies": dependency_outputs,
        "environment": str(stack.environment),
        "tags": {
            **stack.tags,
            "stackwright:environment": str(stack.environment),
            "stackwright:stack": stack.name,
        },
    }

    return DeploymentConfig(
        name=f"{project_name}-{stack.name}",
        stack_name=stack.name,
        project_name=project_name,
        provider=stack.provider,
        provider_config={"region": stack.region, **stack.config},
        construct_args=construct_args,
        backend_config=dict(stack.config),
    )


def _stack_progress(
    stack_name: str,
    on_progress: StackProgressCallback | None,
) -> ProgressCallback | None:
    if on_progress is None:
        return None
    return lambda progress: on_progress(stack_name, progress)


def _is_cancelled(cancel_event: threading.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class StackManager:
    """Deploy, preview and destroy the stacks of a multi-stack plan.

    Parameters
    ----------
    engine
        Deployment engine used for every stack.
    max_workers
        Thread pool size for parallel waves; defaults to the wave size.
    preview_with_deployed_outputs
        Default for ``preview_multi_stack``'s output propagation.
    """

    def __init__(
        self,
        engine: DeploymentEngine,
        *,
        max_workers: int | None = None,
        preview_with_deployed_outputs: bool = False,
    ) -> None:
        self.engine = engine
        self.max_workers = max_workers
        self.preview_with_deployed_outputs = preview_with_deployed_outputs

    def deploy_multi_stack(
        self,
        config: MultiStackConfig,
        on_progress: StackProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[StackDeploymentResult]:
        """Deploy stacks one at a time in topological order.

        Stops at the first failed stack. Setting ``cancel_event`` prevents
        any further stack from starting.
        """
        order = topological_order(build_dependency_graph(config))
        logger.info("Deploying %s in order: %s", config.project_name, ", ".join(order))

        produced: dict[str, dict[str, Any]] = {}
        lock = threading.Lock()
        results: list[StackDeploymentResult] = []
        for stack_name in order:
            if _is_cancelled(cancel_event):
                logger.warning("Deployment of %s cancelled before '%s'", config.project_name, stack_name)
                break
            result = self._deploy_stack(config, stack_name, produced, lock, on_progress)
            results.append(result)
            if result.status == "failed":
                logger.error("Stopping after failure of stack '%s'", stack_name)
                break
        return results

    def deploy_parallel(
        self,
        config: MultiStackConfig,
        on_progress: StackProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[StackDeploymentResult]:
        """Deploy stacks wave by wave, running each wave concurrently.

        A wave completes when all of its stacks have settled. No further wave
        starts after a wave with a failed stack, or once ``cancel_event`` is
        set.
        """
        waves = deployment_waves(build_dependency_graph(config))

        produced: dict[str, dict[str, Any]] = {}
        lock = threading.Lock()
        results: list[StackDeploymentResult] = []
        for index, wave in enumerate(waves, 1):
            if _is_cancelled(cancel_event):
                logger.warning("Deployment of %s cancelled before wave %d", config.project_name, index)
                break
            logger.info("Deploying wave %d/%d: %s", index, len(waves), ", ".join(wave))
            with ThreadPoolExecutor(max_workers=self.max_workers or len(wave)) as executor:
                futures = [
                    executor.submit(self._deploy_stack, config, name, produced, lock, on_progress)
                    for name in wave
                ]
                wave_results = [future.result() for future in futures]
            results.extend(wave_results)
            failed = [result.stack_name for result in wave_results if result.status == "failed"]
            if failed:
                logger.error("Stopping after wave %d; failed stacks: %s", index, ", ".join(failed))
                break
        return results

    def preview_multi_stack(
        self,
        config: MultiStackConfig,
        use_deployed_outputs: bool | None = None,
    ) -> list[StackPreviewResult]:
        """Preview every stack independently; errors are captured per stack.

        With ``use_deployed_outputs`` (default: the manager setting), outputs
        of producer stacks successfully applied through the engine are
        propagated. Stacks that were only previewed contribute nothing. Otherwise no dependency outputs are passed.
        """
        if use_deployed_outputs is None:
            use_deployed_outputs = self.preview_with_deployed_outputs
        produced = self._deployed_outputs(config) if use_deployed_outputs else {}
        dependencies = config.dependencies if use_deployed_outputs else ()

        previews: list[StackPreviewResult] = []
        for stack in config.stacks:
            try:
                deploy_config = build_deployment_config(
                    config.project_name,
                    config.definition,
                    stack,
                    produced,
                    dependencies,
                )
                preview = self.engine.preview_deployment(
                    DeploymentTarget(config.definition, deploy_config)
                )
            except Exception as exc:
                logger.warning("Preview of stack '%s' failed: %s", stack.name, exc)
                previews.append(StackPreviewResult(stack.name, error=str(exc)))
            else:
                previews.append(StackPreviewResult(stack.name, preview=preview))
        return previews

    def destroy_multi_stack(
        self,
        project_name: str,
        stack_names: cabc.Sequence[str],
        on_progress: StackProgressCallback | None = None,
    ) -> list[StackDeploymentResult]:
        """Destroy stacks in the reverse of the given order, best effort.

        A failure is recorded and the remaining stacks are still attempted.
        """
        results: list[StackDeploymentResult] = []
        for stack_name in reversed(stack_names):
            started = time.monotonic()
            try:
                self.engine.destroy_deployment(
                    project_name,
                    stack_name,
                    _stack_progress(stack_name, on_progress),
                )
            except Exception as exc:
                logger.error("Destroy of stack '%s' failed: %s", stack_name, exc)
                results.append(
                    StackDeploymentResult(
                        stack_name,
                        "failed",
                        error=str(exc),
                        duration=time.monotonic() - started,
                    )
                )
            else:
                results.append(
                    StackDeploymentResult(stack_name, "success", duration=time.monotonic() - started)
                )
        return results

    def _deploy_stack(
        self,
        config: MultiStackConfig,
        stack_name: str,
        produced: dict[str, dict[str, Any]],
        lock: threading.Lock,
        on_progress: StackProgressCallback | None,
    ) -> StackDeploymentResult:
        stack = config.find_stack(stack_name)
        if stack is None:
            logger.warning("Skipping stack '%s': %s", stack_name, MISSING_STACK_ERROR)
            return StackDeploymentResult(stack_name, "skipped", error=MISSING_STACK_ERROR)

        started = time.monotonic()
        try:
            with lock:
                available = dict(produced)
            deploy_config = build_deployment_config(
                config.project_name,
                config.definition,
                stack,
                available,
                config.dependencies,
            )
            result = self.engine.deploy_construct(
                config.definition,
                deploy_config,
                _stack_progress(stack_name, on_progress),
            )
        except Exception as exc:
            return StackDeploymentResult(
                stack_name,
                "failed",
                error=str(exc),
                duration=time.monotonic() - started,
            )

        with lock:
            produced[stack_name] = dict(result.outputs)
        return StackDeploymentResult(
            stack_name,
            "success",
            outputs=dict(result.outputs),
            duration=time.monotonic() - started,
        )

    def _deployed_outputs(self, config: MultiStackConfig) -> dict[str, dict[str, Any]]:
        outputs: dict[str, dict[str, Any]] = {}
        for producer in dict.fromkeys(dependency.source for dependency in config.dependencies):
            if not self.engine.is_deployed(config.project_name, producer):
                continue
            try:
                status = self.engine.get_deployment_status(config.project_name, producer)
            except StackNotFoundError:
                continue
            except BackendCommandError as exc:
                logger.warning("Could not read outputs of stack '%s': %s", producer, exc)
                continue
            outputs[producer] = dict(status.outputs)
        return outputs
