"""Automation backend contract and its OpenTofu implementation.

The deployment engine only talks to the :class:`StackBackend` and
:class:`StackHandle` protocols. :class:`TofuBackend` provides them on top of
the ``tofu`` CLI: every ``project/stack`` pair gets its own working directory
holding a generated root module that instantiates the construct module, a
tfvars file with the flat configuration map, and local state.

Side Effects
------------
Creating a stack writes files under its working directory; lifecycle
operations run OpenTofu and change real infrastructure.
"""

from __future__ import annotations

import json
import logging
import time
from collections import abc as cabc
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from stackwright._models import (
    ConstructDefinition,
    DestroyOutcome,
    EventCallback,
    OutputCallback,
    PreviewOutcome,
    RefreshOutcome,
    ResourceRecord,
    UpOutcome,
)
from stackwright._tofu import (
    change_summary_from_messages,
    ensure_success,
    flatten_state_resources,
    parse_json_lines,
    render_plan_changes,
    run_tofu,
    unwrap_outputs,
)

logger = logging.getLogger(__name__)

ROOT_MODULE_FILE = "main.tf.json"
TFVARS_FILE = "stackwright.auto.tfvars.json"
PLAN_FILE = "stackwright.tfplan"
IMPORT_STATE_FILE = "stackwright-import.tfstate"
CONSTRUCT_MODULE = "construct"

# Config keys that configure a root provider block instead of the module.
PROVIDER_ATTRIBUTES = {
    "aws_region": ("aws", "region"),
    "gcp_project": ("google", "project"),
    "gcp_region": ("google", "region"),
}


@runtime_checkable
class StackHandle(Protocol):
    """Live handle on one deployable unit of the automation backend."""

    project_name: str
    stack_name: str

    def set_program_arguments(self, arguments: cabc.Mapping[str, Any]) -> None: ...

    def set_all_config(self, config: cabc.Mapping[str, Any]) -> None: ...

    def preview(self, on_output: OutputCallback | None = None) -> PreviewOutcome: ...

    def up(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> UpOutcome: ...

    def destroy(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> DestroyOutcome: ...

    def refresh(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> RefreshOutcome: ...

    def export_state(self) -> dict[str, Any]: ...

    def import_state(self, state: cabc.Mapping[str, Any]) -> None: ...

    def outputs(self) -> dict[str, Any]: ...

    def resources(self) -> list[ResourceRecord]: ...

    def info(self) -> dict[str, Any]: ...


class StackBackend(Protocol):
    """Factory for stack handles."""

    def create_or_select_stack(
        self,
        project_name: str,
        stack_name: str,
        definition: ConstructDefinition,
        work_dir: Path,
    ) -> StackHandle: ...


def _emit_lines(text: str, on_output: OutputCallback | None) -> None:
    if on_output is None:
        return
    for line in text.splitlines():
        on_output(line)


def _emit_messages(
    messages: list[dict[str, Any]],
    on_output: OutputCallback | None,
    on_event: EventCallback | None,
) -> None:
    for message in messages:
        if on_event is not None:
            on_event(message)
        if on_output is not None and "@message" in message:
            on_output(str(message["@message"]))


class TofuStack:
    """Stack handle backed by an OpenTofu working directory."""

    def __init__(
        self,
        project_name: str,
        stack_name: str,
        definition: ConstructDefinition,
        work_dir: Path,
        *,
        tofu_bin: str = "tofu",
    ) -> None:
        self.project_name = project_name
        self.stack_name = stack_name
        self.definition = definition
        self.work_dir = work_dir
        self.tofu_bin = tofu_bin
        self._arguments: dict[str, Any] = {}
        self._config: dict[str, Any] = {}
        self._initialized = False

    def __repr__(self) -> str:
        return f"TofuStack({self.project_name!r}, {self.stack_name!r}, work_dir={self.work_dir!s})"

    def _run(self, operation: str, args: list[str]) -> str:
        result = run_tofu(args, self.work_dir, tofu_bin=self.tofu_bin)
        return ensure_success(result, operation, self.work_dir).stdout

    def _root_module(self) -> dict[str, Any]:
        source = self.definition.source.resolve()
        module: dict[str, Any] = {"source": str(source), **self._arguments}
        providers: dict[str, dict[str, str]] = {}
        for key in self._config:
            reference = f"${{var.{key}}}"
            if key in PROVIDER_ATTRIBUTES:
                provider, attribute = PROVIDER_ATTRIBUTES[key]
                providers.setdefault(provider, {})[attribute] = reference
            else:
                module[key] = reference
        document: dict[str, Any] = {"module": {CONSTRUCT_MODULE: module}}
        if self._config:
            document["variable"] = {key: {} for key in self._config}
        if providers:
            document["provider"] = providers
        if self.definition.outputs:
            document["output"] = {
                name: {"value": f"${{module.{CONSTRUCT_MODULE}.{name}}}"}
                for name in self.definition.outputs
            }
        return document

    def _write_json(self, filename: str, payload: object) -> None:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        path = self.work_dir / filename
        path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    def _write_files(self) -> None:
        self._write_json(ROOT_MODULE_FILE, self._root_module())
        self._write_json(TFVARS_FILE, self._config)

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        if not (self.work_dir / ROOT_MODULE_FILE).exists():
            self._write_files()
        self._run("init", ["init", "-input=false", "-no-color"])
        self._initialized = True

    def set_program_arguments(self, arguments: cabc.Mapping[str, Any]) -> None:
        self._arguments = dict(arguments)
        self._write_files()

    def set_all_config(self, config: cabc.Mapping[str, Any]) -> None:
        self._config = dict(config)
        self._write_files()

    def preview(self, on_output: OutputCallback | None = None) -> PreviewOutcome:
        self._ensure_initialized()
        plan_stdout = self._run(
            "plan", ["plan", "-input=false", "-no-color", f"-out={PLAN_FILE}"]
        )
        _emit_lines(plan_stdout, on_output)
        plan = json.loads(self._run("show", ["show", "-json", PLAN_FILE]) or "{}")
        diagnostics, tally = render_plan_changes(plan)
        return PreviewOutcome(stdout=diagnostics, change_summary=tally)

    def _apply_like(
        self,
        operation: str,
        args: list[str],
        on_output: OutputCallback | None,
        on_event: EventCallback | None,
    ) -> tuple[str, dict[str, int], float]:
        self._ensure_initialized()
        started = time.monotonic()
        stdout = self._run(operation, args)
        duration = time.monotonic() - started
        messages = parse_json_lines(stdout)
        _emit_messages(messages, on_output, on_event)
        return stdout, change_summary_from_messages(messages), duration

    def up(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> UpOutcome:
        stdout, summary, duration = self._apply_like(
            "apply",
            ["apply", "-input=false", "-auto-approve", "-json"],
            on_output,
            on_event,
        )
        return UpOutcome(
            outputs=self.outputs(),
            change_summary=summary,
            duration=duration,
            stdout=stdout,
        )

    def destroy(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> DestroyOutcome:
        stdout, summary, duration = self._apply_like(
            "destroy",
            ["destroy", "-input=false", "-auto-approve", "-json"],
            on_output,
            on_event,
        )
        return DestroyOutcome(change_summary=summary, duration=duration, stdout=stdout)

    def refresh(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> RefreshOutcome:
        stdout, summary, _ = self._apply_like(
            "refresh",
            ["apply", "-refresh-only", "-input=false", "-auto-approve", "-json"],
            on_output,
            on_event,
        )
        return RefreshOutcome(change_summary=summary, stdout=stdout)

    def export_state(self) -> dict[str, Any]:
        self._ensure_initialized()
        stdout = self._run("state pull", ["state", "pull"])
        if not stdout.strip():
            return {}
        return json.loads(stdout)

    def import_state(self, state: cabc.Mapping[str, Any]) -> None:
        self._ensure_initialized()
        self._write_json(IMPORT_STATE_FILE, dict(state))
        try:
            self._run("state push", ["state", "push", IMPORT_STATE_FILE])
        finally:
            (self.work_dir / IMPORT_STATE_FILE).unlink(missing_ok=True)

    def outputs(self) -> dict[str, Any]:
        self._ensure_initialized()
        return unwrap_outputs(json.loads(self._run("output", ["output", "-json"]) or "{}"))

    def resources(self) -> list[ResourceRecord]:
        self._ensure_initialized()
        state = json.loads(self._run("show", ["show", "-json"]) or "{}")
        return flatten_state_resources(state)

    def info(self) -> dict[str, Any]:
        return {"url": self.work_dir.resolve().as_uri()}


class TofuBackend:
    """Create OpenTofu-backed stack handles.

    Examples
    --------
    >>> backend = TofuBackend(tofu_bin="tofu")
    >>> handle = backend.create_or_select_stack(
    ...     "shop", "dev", definition, Path(".stackwright-workspace/shop/dev")
    ... )
    """

    def __init__(self, *, tofu_bin: str = "tofu") -> None:
        self.tofu_bin = tofu_bin

    def create_or_select_stack(
        self,
        project_name: str,
        stack_name: str,
        definition: ConstructDefinition,
        work_dir: Path,
    ) -> TofuStack:
        work_dir.mkdir(parents=True, exist_ok=True)
        existing = (work_dir / ROOT_MODULE_FILE).exists()
        logger.info(
            "%s stack %s/%s in %s",
            "Selecting" if existing else "Creating",
            project_name,
            stack_name,
            work_dir,
        )
        return TofuStack(
            project_name,
            stack_name,
            definition,
            work_dir,
            tofu_bin=self.tofu_bin,
        )
