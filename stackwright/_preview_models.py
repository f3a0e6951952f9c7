"""Data models describing analysed previews."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class ChangeType(StrEnum):
    """Classification of a single resource change."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"
    SAME = "same"


class RiskLevel(StrEnum):
    """Deployment risk, ordered ``low < medium < high``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANKS[self]

    def escalate(self, candidate: RiskLevel) -> RiskLevel:
        """Return the higher of ``self`` and ``candidate``.

        Examples
        --------
        >>> RiskLevel.HIGH.escalate(RiskLevel.MEDIUM)
        <RiskLevel.HIGH: 'high'>
        """
        return candidate if candidate.rank > self.rank else self


_RISK_RANKS = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


@dataclass(frozen=True, slots=True)
class ResourceChange:
    """One line item from a preview.

    Attributes
    ----------
    urn
        Resource identifier.
    type
        Resource type name.
    name
        Resource name.
    change_type
        Classification of the change.
    changes
        Names of the properties that change (updates).
    replace
        Whether the resource is replaced.
    replace_reasons
        Properties forcing the replacement.
    """

    urn: str
    type: str
    name: str
    change_type: ChangeType
    changes: tuple[str, ...] = ()
    replace: bool = False
    replace_reasons: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CostImpact:
    """Monthly cost before and after a change set."""

    current: float
    projected: float
    difference: float


@dataclass(slots=True)
class PreviewSummary:
    """Aggregate counts and line items of a preview."""

    total: int = 0
    create: int = 0
    update: int = 0
    delete: int = 0
    replace: int = 0
    same: int = 0
    changes: list[ResourceChange] = field(default_factory=list)
    cost_impact: CostImpact | None = None

    def count(self, change_type: ChangeType) -> int:
        return getattr(self, change_type.value)

    def record(self, change: ResourceChange) -> None:
        """Append ``change`` and bump its counter and the total."""
        self.total += 1
        name = change.change_type.value
        setattr(self, name, getattr(self, name) + 1)
        self.changes.append(change)

    @property
    def breaking_changes(self) -> int:
        return self.delete + self.replace


@dataclass(frozen=True, slots=True)
class RiskAssessment:
    """Risk level derived from a preview summary."""

    level: RiskLevel
    reasons: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PreviewComparison:
    """Outcome of comparing two preview summaries."""

    improved: bool
    analysis: tuple[str, ...] = ()
