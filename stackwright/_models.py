"""Data models for stackwright deployments.

These models provide a small, typed contract shared by the deployment engine,
the stack manager and the automation backend, keeping data flow explicit
across module boundaries.

Examples
--------
>>> progress = DeploymentProgress(DeploymentStatus.VALIDATING, "Validating", 10)
>>> progress.status.value
'validating'
"""

from __future__ import annotations

from collections import abc as cabc
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Literal


class CloudProvider(StrEnum):
    """Provider identifiers understood by the deployment engine."""

    AWS = "aws"
    FIREBASE = "firebase"
    AZURE = "azure"
    GCP = "gcp"
    LOCAL = "local"


class Environment(StrEnum):
    """Environment tag attached to each stack of a plan."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class DeploymentStatus(StrEnum):
    """Lifecycle state of a single-stack operation.

    Deployments move ``PENDING -> VALIDATING -> PREVIEWING -> DEPLOYING`` and
    end in ``COMPLETED`` or ``FAILED``. Teardown moves ``DESTROYING`` to
    ``DESTROYED`` or ``FAILED``. A failed operation is never resumed.
    """

    PENDING = "pending"
    VALIDATING = "validating"
    PREVIEWING = "previewing"
    DEPLOYING = "deploying"
    COMPLETED = "completed"
    FAILED = "failed"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {DeploymentStatus.COMPLETED, DeploymentStatus.FAILED, DeploymentStatus.DESTROYED}
)


@dataclass(frozen=True, slots=True)
class DeploymentProgress:
    """Progress event emitted while a single-stack operation runs.

    Attributes
    ----------
    status
        Current lifecycle status.
    message
        Human-readable description of the current step.
    percentage
        Completion percentage, ``0`` to ``100``.
    details
        Optional structured details for the step.
    """

    status: DeploymentStatus
    message: str
    percentage: int
    details: cabc.Mapping[str, Any] | None = None


type ProgressCallback = cabc.Callable[[DeploymentProgress], None]
type StackProgressCallback = cabc.Callable[[str, DeploymentProgress], None]
type OutputCallback = cabc.Callable[[str], None]
type EventCallback = cabc.Callable[[cabc.Mapping[str, Any]], None]


@dataclass(frozen=True, slots=True)
class ConstructInput:
    """Input parameter declared by a construct definition."""

    name: str
    default: Any = None
    required: bool = False


@dataclass(frozen=True, slots=True)
class ConstructDefinition:
    """Construct (resource bundle) deployed by the engine.

    Attributes
    ----------
    name
        Display name of the construct.
    source
        Path of the OpenTofu module implementing the construct.
    required_providers
        Provider identifiers the construct supports.
    environment_variables
        Environment variables that must be set before deploying.
    inputs
        Declared inputs; defaults seed the construct arguments.
    outputs
        Output names the construct module exposes.

    Examples
    --------
    >>> definition = ConstructDefinition(
    ...     name="StaticWebsite",
    ...     source=Path("modules/static-website"),
    ...     required_providers=("aws",),
    ... )
    >>> definition.supports("aws")
    True
    """

    name: str
    source: Path
    required_providers: tuple[str, ...]
    environment_variables: tuple[str, ...] = ()
    inputs: tuple[ConstructInput, ...] = ()
    outputs: tuple[str, ...] = ()

    def supports(self, provider: str) -> bool:
        return str(provider) in self.required_providers

    def default_arguments(self) -> dict[str, Any]:
        """Return input defaults keyed by input name, skipping unset ones."""
        return {item.name: item.default for item in self.inputs if item.default is not None}


@dataclass(frozen=True, slots=True)
class DeploymentConfig:
    """Identify one deployable unit.

    Attributes
    ----------
    name
        Logical deployment name.
    stack_name
        Stack name within the project (``dev``, ``prod``...).
    project_name
        Project the stack belongs to.
    provider
        Target provider identifier.
    provider_config
        Provider-specific settings (region, project id...).
    construct_args
        Arguments passed to the construct module.
    backend_config
        Raw flat backend configuration merged over the provider settings.
    work_dir
        Explicit working directory for the stack.
    """

    name: str
    stack_name: str
    project_name: str
    provider: CloudProvider
    provider_config: cabc.Mapping[str, Any] = field(default_factory=dict)
    construct_args: cabc.Mapping[str, Any] = field(default_factory=dict)
    backend_config: cabc.Mapping[str, Any] | None = None
    work_dir: Path | None = None


@dataclass(frozen=True, slots=True)
class DeploymentTarget:
    """A definition and configuration pair to resolve into a stack handle."""

    definition: ConstructDefinition
    config: DeploymentConfig


@dataclass(frozen=True, slots=True)
class ResourceRecord:
    """Resource reported by the backend after an apply."""

    urn: str
    type: str
    name: str
    state: cabc.Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ConstructDeploymentResult:
    """Outcome of one apply."""

    status: Literal["success", "failed", "partial"]
    resources: list[ResourceRecord] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)
    duration: float = 0.0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class StackConfig:
    """One entry in a multi-stack plan."""

    name: str
    environment: Environment
    provider: CloudProvider
    region: str
    config: cabc.Mapping[str, Any] = field(default_factory=dict)
    tags: cabc.Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class StackDependency:
    """Edge meaning ``target`` requires the named ``outputs`` of ``source``."""

    source: str
    target: str
    outputs: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MultiStackConfig:
    """A project, the construct it deploys, its stacks and their edges."""

    project_name: str
    definition: ConstructDefinition
    stacks: tuple[StackConfig, ...]
    dependencies: tuple[StackDependency, ...] = ()

    def find_stack(self, name: str) -> StackConfig | None:
        for stack in self.stacks:
            if stack.name == name:
                return stack
        return None


@dataclass(slots=True)
class StackDeploymentResult:
    """Per-stack outcome of an orchestrated run."""

    stack_name: str
    status: Literal["success", "failed", "skipped"]
    outputs: dict[str, Any] | None = None
    error: str | None = None
    duration: float = 0.0


@dataclass(frozen=True, slots=True)
class PreviewOutcome:
    """Raw preview output returned by the backend.

    Attributes
    ----------
    stdout
        Diagnostic text, one ``<marker> <type> <name>`` line per change.
    change_summary
        Tally of planned operations keyed by operation name.
    """

    stdout: str
    change_summary: cabc.Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class UpOutcome:
    """Machine-readable outcome of an apply."""

    outputs: cabc.Mapping[str, Any]
    change_summary: cabc.Mapping[str, int]
    duration: float
    stdout: str = ""


@dataclass(frozen=True, slots=True)
class DestroyOutcome:
    """Machine-readable outcome of a destroy."""

    change_summary: cabc.Mapping[str, int]
    duration: float
    stdout: str = ""


@dataclass(frozen=True, slots=True)
class RefreshOutcome:
    """Machine-readable outcome of a refresh."""

    change_summary: cabc.Mapping[str, int]
    stdout: str = ""


@dataclass(frozen=True, slots=True)
class StackPreviewResult:
    """Preview of one stack in a multi-stack preview."""

    stack_name: str
    preview: PreviewOutcome | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class DeploymentStatusReport:
    """Current outputs and resource inventory of a deployed stack."""

    outputs: cabc.Mapping[str, Any]
    resources: list[ResourceRecord]
    status: str = "active"


@dataclass(frozen=True, slots=True)
class DeploymentListing:
    """A cached stack handle as reported by ``list_deployments``."""

    project: str
    stack: str
    url: str | None = None
