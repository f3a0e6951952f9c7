"""Command line entry point for stackwright.

Commands
--------
preview
    Preview every stack of a plan and print a report with a risk assessment.
deploy
    Deploy every stack of a plan, sequentially or wave by wave.
destroy
    Destroy every stack of a plan in reverse dependency order.
order
    Print the deployment order (or waves) of a plan.

Engine settings resolve from the CLI first, then ``STACKWRIGHT_*``
environment variables, then defaults.

Examples
--------
>>> python -m stackwright.cli deploy plan.yaml --parallel
"""

from __future__ import annotations

import logging
import sys
from collections import abc as cabc
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from stackwright._backend import StackBackend, TofuBackend
from stackwright._errors import StackwrightError
from stackwright._models import DeploymentProgress, MultiStackConfig, StackDeploymentResult
from stackwright._plan_loader import load_plan
from stackwright._settings import EngineSettings, RawEngineSettings, resolve_engine_settings
from stackwright.deployment_engine import DeploymentEngine
from stackwright.preview_engine import PreviewEngine
from stackwright.stack_manager import (
    StackManager,
    build_dependency_graph,
    build_deployment_config,
    deployment_waves,
    topological_order,
)

app = App(name="stackwright", help="Orchestrate multi-stack OpenTofu deployments.")

WORKSPACE_DIR_PARAM = Parameter(help="Parent directory of per-stack working directories.")
TOFU_BIN_PARAM = Parameter(help="OpenTofu executable.")
MAX_WORKERS_PARAM = Parameter(help="Thread pool size for parallel waves.")
PREVIEW_OUTPUTS_PARAM = Parameter(
    help="Propagate outputs of already deployed stacks into previews (true/false)."
)
LOG_LEVEL_PARAM = Parameter(help="Logging level (DEBUG, INFO, WARNING, ERROR).")
PARALLEL_PARAM = Parameter(help="Deploy independent stacks concurrently, wave by wave.")
WAVES_PARAM = Parameter(help="Print deployment waves instead of a single order.")


def _configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_backend(settings: EngineSettings) -> StackBackend:
    return TofuBackend(tofu_bin=settings.tofu_bin)


def _build_manager(settings: EngineSettings) -> StackManager:
    engine = DeploymentEngine(_build_backend(settings), settings.workspace_dir)
    return StackManager(
        engine,
        max_workers=settings.max_workers,
        preview_with_deployed_outputs=settings.preview_with_deployed_outputs,
    )


def _prepare(
    plan: Path,
    raw_settings: RawEngineSettings,
    log_level: str,
) -> tuple[MultiStackConfig, StackManager]:
    _configure_logging(log_level)
    config = load_plan(plan)
    settings = resolve_engine_settings(raw_settings)
    return config, _build_manager(settings)


def _print_progress(stack_name: str, progress: DeploymentProgress) -> None:
    print(f"[{stack_name}] {progress.percentage:3d}% {progress.status}: {progress.message}")


def _print_results(title: str, results: cabc.Sequence[StackDeploymentResult]) -> bool:
    """Print a results table and return whether no stack failed."""
    print(f"\n{title}")
    for result in results:
        line = f"  {result.stack_name}: {result.status} ({result.duration:.1f}s)"
        if result.error:
            line += f" - {result.error}"
        print(line)
    return all(result.status != "failed" for result in results)


@app.command()
def preview(
    plan: Path,
    *,
    workspace_dir: Annotated[Path | None, WORKSPACE_DIR_PARAM] = None,
    tofu_bin: Annotated[str | None, TOFU_BIN_PARAM] = None,
    preview_with_deployed_outputs: Annotated[str | None, PREVIEW_OUTPUTS_PARAM] = None,
    log_level: Annotated[str, LOG_LEVEL_PARAM] = "WARNING",
) -> int:
    """Preview every stack of PLAN and print a report per stack.

    Returns
    -------
    int
        Exit code: 0 when every preview succeeded, 1 otherwise.
    """
    raw = RawEngineSettings(
        workspace_dir=workspace_dir,
        tofu_bin=tofu_bin,
        preview_with_deployed_outputs=preview_with_deployed_outputs,
    )
    try:
        config, manager = _prepare(plan, raw, log_level)
        previews = manager.preview_multi_stack(config)
    except StackwrightError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    engine = PreviewEngine()
    success = True
    for item in previews:
        print(f"\n=== Stack: {item.stack_name} ===")
        if item.preview is None:
            print(f"error: preview of {item.stack_name} failed: {item.error}", file=sys.stderr)
            success = False
            continue
        summary = engine.analyze_preview(item.preview)
        print(engine.generate_preview_report(summary, config.definition))
        risk = engine.assess_risk(summary)
        print(f"Risk: {risk.level}")
        for reason in risk.reasons:
            print(f"  - {reason}")
        for recommendation in risk.recommendations:
            print(f"  * {recommendation}")
    return 0 if success else 1


@app.command()
def deploy(
    plan: Path,
    *,
    parallel: Annotated[bool, PARALLEL_PARAM] = False,
    workspace_dir: Annotated[Path | None, WORKSPACE_DIR_PARAM] = None,
    tofu_bin: Annotated[str | None, TOFU_BIN_PARAM] = None,
    max_workers: Annotated[str | None, MAX_WORKERS_PARAM] = None,
    log_level: Annotated[str, LOG_LEVEL_PARAM] = "WARNING",
) -> int:
    """Deploy every stack of PLAN in dependency order.

    Parameters
    ----------
    plan
        Path of the YAML plan file.
    parallel
        Deploy each wave of independent stacks concurrently.

    Returns
    -------
    int
        Exit code: 0 when no stack failed, 1 otherwise.
    """
    raw = RawEngineSettings(workspace_dir=workspace_dir, tofu_bin=tofu_bin, max_workers=max_workers)
    try:
        config, manager = _prepare(plan, raw, log_level)
        run = manager.deploy_parallel if parallel else manager.deploy_multi_stack
        results = run(config, on_progress=_print_progress)
    except StackwrightError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0 if _print_results("Deployment results:", results) else 1


@app.command()
def destroy(
    plan: Path,
    *,
    workspace_dir: Annotated[Path | None, WORKSPACE_DIR_PARAM] = None,
    tofu_bin: Annotated[str | None, TOFU_BIN_PARAM] = None,
    log_level: Annotated[str, LOG_LEVEL_PARAM] = "WARNING",
) -> int:
    """Destroy every stack of PLAN in reverse dependency order.

    Each stack is re-attached from its working directory first, so stacks
    deployed by an earlier run can be torn down.

    Returns
    -------
    int
        Exit code: 0 when every stack was destroyed, 1 otherwise.
    """
    raw = RawEngineSettings(workspace_dir=workspace_dir, tofu_bin=tofu_bin)
    try:
        config, manager = _prepare(plan, raw, log_level)
        stack_names = [
            name
            for name in topological_order(build_dependency_graph(config))
            if config.find_stack(name) is not None
        ]
        for name in stack_names:
            stack = config.find_stack(name)
            deploy_config = build_deployment_config(
                config.project_name, config.definition, stack, {}, ()
            )
            try:
                manager.engine.select_stack(config.definition, deploy_config)
            except StackwrightError as exc:
                print(f"error: cannot attach stack {name}: {exc}", file=sys.stderr)
        results = manager.destroy_multi_stack(config.project_name, stack_names, _print_progress)
    except StackwrightError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0 if _print_results("Destroy results:", results) else 1


@app.command()
def order(
    plan: Path,
    *,
    waves: Annotated[bool, WAVES_PARAM] = False,
    log_level: Annotated[str, LOG_LEVEL_PARAM] = "WARNING",
) -> int:
    """Print the deployment order of PLAN, or its waves with ``--waves``."""
    _configure_logging(log_level)
    try:
        graph = build_dependency_graph(load_plan(plan))
        if waves:
            for index, wave in enumerate(deployment_waves(graph), 1):
                print(f"wave {index}: {', '.join(wave)}")
        else:
            for name in topological_order(graph):
                print(name)
    except StackwrightError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(app())
