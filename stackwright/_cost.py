"""Cost impact estimation strategies for previews."""

from __future__ import annotations

from collections import abc as cabc
from dataclasses import dataclass
from typing import Protocol

from stackwright._preview_models import ChangeType, CostImpact, ResourceChange


class CostEstimator(Protocol):
    """Estimate the monthly cost impact of a change set."""

    def estimate(self, changes: cabc.Sequence[ResourceChange]) -> CostImpact | None: ...


@dataclass(frozen=True, slots=True)
class HeuristicCostEstimator:
    """Coarse, provider-agnostic cost estimate.

    Starts from a flat baseline, adds a fixed increment per created resource
    according to its type, and takes 2% off the running projection per
    deleted resource. The numbers are rough orders of magnitude, not provider
    prices; plug in another :class:`CostEstimator` for real figures.

    Examples
    --------
    >>> estimator = HeuristicCostEstimator()
    >>> estimator.estimate([
    ...     ResourceChange("u", "aws:rds:Database", "db", ChangeType.CREATE)
    ... ]).difference
    50.0
    """

    baseline: float = 100.0
    database_increment: float = 50.0
    function_increment: float = 10.0
    storage_increment: float = 5.0
    default_increment: float = 2.0
    delete_factor: float = 0.98

    def _create_increment(self, resource_type: str) -> float:
        resource_type = resource_type.lower()
        if "database" in resource_type:
            return self.database_increment
        if "function" in resource_type:
            return self.function_increment
        if "storage" in resource_type:
            return self.storage_increment
        return self.default_increment

    def estimate(self, changes: cabc.Sequence[ResourceChange]) -> CostImpact | None:
        current = self.baseline
        projected = current
        for change in changes:
            if change.change_type is ChangeType.CREATE:
                projected += self._create_increment(change.type)
            elif change.change_type is ChangeType.DELETE:
                projected *= self.delete_factor
        return CostImpact(current=current, projected=projected, difference=projected - current)
