"""In-memory automation backend used by engine and manager tests."""

from __future__ import annotations

import threading
from collections import abc as cabc
from pathlib import Path
from typing import Any

from stackwright._errors import BackendCommandError
from stackwright._models import (
    CloudProvider,
    ConstructDefinition,
    DestroyOutcome,
    Environment,
    EventCallback,
    MultiStackConfig,
    OutputCallback,
    PreviewOutcome,
    RefreshOutcome,
    ResourceRecord,
    StackConfig,
    StackDependency,
    UpOutcome,
)

DEFINITION = ConstructDefinition(
    name="ServerlessAPI",
    source=Path("modules/serverless-api"),
    required_providers=("aws", "gcp", "local"),
    outputs=("api_url", "vpc_id"),
)


def make_plan(
    stack_names: cabc.Sequence[str],
    edges: cabc.Sequence[tuple[str, str, tuple[str, ...]]] = (),
    *,
    definition: ConstructDefinition = DEFINITION,
) -> MultiStackConfig:
    """Build a plan of AWS development stacks with ``(source, target, outputs)`` edges."""
    return MultiStackConfig(
        project_name="shop",
        definition=definition,
        stacks=tuple(
            StackConfig(
                name=name,
                environment=Environment.DEVELOPMENT,
                provider=CloudProvider.AWS,
                region="eu-west-1",
            )
            for name in stack_names
        ),
        dependencies=tuple(
            StackDependency(source=source, target=target, outputs=outputs)
            for source, target, outputs in edges
        ),
    )


class FakeStack:
    """Stack handle recording every call on its backend."""

    def __init__(self, backend: FakeBackend, project_name: str, stack_name: str, work_dir: Path) -> None:
        self.backend = backend
        self.project_name = project_name
        self.stack_name = stack_name
        self.work_dir = work_dir
        self.arguments: dict[str, Any] = {}
        self.config: dict[str, Any] = {}
        self.state: dict[str, Any] = {"version": 4, "resources": []}

    def _call(self, operation: str) -> None:
        self.backend.record(self.stack_name, operation)
        hook = self.backend.hooks.get((self.stack_name, operation))
        if hook is not None:
            hook()
        if (self.stack_name, operation) in self.backend.failures:
            msg = f"tofu {operation} failed for {self.stack_name}"
            raise BackendCommandError(msg, return_code=1)

    def set_program_arguments(self, arguments: cabc.Mapping[str, Any]) -> None:
        self.arguments = dict(arguments)

    def set_all_config(self, config: cabc.Mapping[str, Any]) -> None:
        self.config = dict(config)

    def preview(self, on_output: OutputCallback | None = None) -> PreviewOutcome:
        self._call("preview")
        text = self.backend.preview_text.get(self.stack_name, "+ aws_s3_bucket site")
        if on_output is not None:
            on_output(text)
        return PreviewOutcome(stdout=text, change_summary={"create": 1})

    def up(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> UpOutcome:
        self._call("up")
        if on_event is not None:
            for event in self.backend.events.get(self.stack_name, ()):
                on_event(event)
        return UpOutcome(
            outputs=self.outputs(),
            change_summary={"create": 1, "update": 0, "delete": 0},
            duration=1.5,
        )

    def destroy(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> DestroyOutcome:
        self._call("destroy")
        return DestroyOutcome(change_summary={"delete": 1}, duration=0.5)

    def refresh(
        self,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
    ) -> RefreshOutcome:
        self._call("refresh")
        return RefreshOutcome(change_summary={"update": 0})

    def export_state(self) -> dict[str, Any]:
        self._call("export")
        return dict(self.state)

    def import_state(self, state: cabc.Mapping[str, Any]) -> None:
        self._call("import")
        self.state = dict(state)

    def outputs(self) -> dict[str, Any]:
        self._call("outputs")
        return dict(self.backend.outputs.get(self.stack_name, {}))

    def resources(self) -> list[ResourceRecord]:
        self._call("resources")
        return [
            ResourceRecord(
                urn=f"module.construct.aws_s3_bucket.{self.stack_name}",
                type="aws_s3_bucket",
                name=self.stack_name,
            )
        ]

    def info(self) -> dict[str, Any]:
        return {"url": self.work_dir.as_uri()}


class FakeBackend:
    """Backend double keeping one :class:`FakeStack` per ``(project, stack)``.

    Attributes
    ----------
    failures
        ``(stack, operation)`` pairs that raise :class:`BackendCommandError`.
    outputs
        Outputs reported per stack name.
    hooks
        Callables run when ``(stack, operation)`` is invoked, before failing.
    """

    def __init__(self) -> None:
        self.stacks: dict[tuple[str, str], FakeStack] = {}
        self.created: list[tuple[str, str]] = []
        self.calls: list[tuple[str, str]] = []
        self.failures: set[tuple[str, str]] = set()
        self.outputs: dict[str, dict[str, Any]] = {}
        self.preview_text: dict[str, str] = {}
        self.events: dict[str, list[dict[str, Any]]] = {}
        self.hooks: dict[tuple[str, str], cabc.Callable[[], None]] = {}
        self._lock = threading.Lock()

    def record(self, stack_name: str, operation: str) -> None:
        with self._lock:
            self.calls.append((stack_name, operation))

    def operations(self, operation: str) -> list[str]:
        """Stack names that ran ``operation``, in call order."""
        with self._lock:
            return [name for name, op in self.calls if op == operation]

    def create_or_select_stack(
        self,
        project_name: str,
        stack_name: str,
        definition: ConstructDefinition,
        work_dir: Path,
    ) -> FakeStack:
        key = (project_name, stack_name)
        with self._lock:
            self.created.append(key)
            stack = self.stacks.get(key)
            if stack is None:
                stack = FakeStack(self, project_name, stack_name, work_dir.resolve())
                self.stacks[key] = stack
            return stack
