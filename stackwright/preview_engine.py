"""Turn raw preview output into structured, risk-scored information.

The preview engine parses the backend's diagnostic stream (one
``<marker> <type> <name> [details]`` line per change), counts the changes,
estimates their cost impact through a pluggable estimator, renders a Markdown
report, assesses deployment risk and compares two summaries.

Markers
-------
``+`` create, ``-`` delete, ``~`` update, ``*`` replace. Lines without a
marker are ignored. An optional bracketed tail lists changed properties
(``[diff: size, tags]``) or replacement reasons (``[replace: ami]``).

Examples
--------
>>> engine = PreviewEngine()
>>> summary = engine.analyze_preview("+ aws_s3_bucket site\\n- aws_sqs_queue jobs")
>>> (summary.create, summary.delete, summary.total)
(1, 1, 2)
>>> engine.assess_risk(summary).level
<RiskLevel.HIGH: 'high'>
"""

from __future__ import annotations

import re
from collections import abc as cabc

from stackwright._cost import CostEstimator, HeuristicCostEstimator
from stackwright._models import ConstructDefinition, PreviewOutcome
from stackwright._preview_models import (
    ChangeType,
    CostImpact,
    PreviewComparison,
    PreviewSummary,
    ResourceChange,
    RiskAssessment,
    RiskLevel,
)

RESOURCE_LINE = re.compile(r"^\s*([+\-~*])\s+(\S+)\s+(\S+)(?:\s+\[(.+?)\])?")

MARKER_CHANGE_TYPES = {
    "+": ChangeType.CREATE,
    "-": ChangeType.DELETE,
    "~": ChangeType.UPDATE,
    "*": ChangeType.REPLACE,
}

CRITICAL_RESOURCE_TYPES = ("database", "table", "bucket", "storage")
COST_INCREASE_THRESHOLD = 100.0

_REPORT_SECTIONS = (
    (ChangeType.CREATE, "Resources to Create"),
    (ChangeType.UPDATE, "Resources to Update"),
    (ChangeType.REPLACE, "Resources to Replace"),
    (ChangeType.DELETE, "Resources to Delete"),
)


def _split_details(details: str | None, label: str) -> tuple[str, ...]:
    """Return the comma-separated items of a ``label: a, b`` detail tail."""
    if not details:
        return ()
    prefix, _, items = details.partition(":")
    if prefix.strip().lower() != label or not items.strip():
        return ()
    return tuple(item.strip().lstrip("+-~") for item in items.split(",") if item.strip())


def parse_preview_output(output: str) -> list[ResourceChange]:
    """Extract resource changes from a diagnostic stream.

    Examples
    --------
    >>> parse_preview_output("~ aws_instance web [diff: tags]")[0].changes
    ('tags',)
    """
    changes: list[ResourceChange] = []
    for line in output.splitlines():
        match = RESOURCE_LINE.match(line)
        if match is None:
            continue
        marker, resource_type, name, details = match.groups()
        change_type = MARKER_CHANGE_TYPES[marker]
        changes.append(
            ResourceChange(
                urn=f"urn:stackwright:{resource_type}::{name}",
                type=resource_type,
                name=name,
                change_type=change_type,
                changes=_split_details(details, "diff"),
                replace=change_type is ChangeType.REPLACE,
                replace_reasons=_split_details(details, "replace"),
            )
        )
    return changes


def _money(value: float) -> str:
    return f"${value:.2f}"


class PreviewEngine:
    """Analyse, report on and compare deployment previews.

    Parameters
    ----------
    cost_estimator
        Strategy for the cost impact attached to summaries; defaults to
        :class:`HeuristicCostEstimator`.
    """

    def __init__(self, cost_estimator: CostEstimator | None = None) -> None:
        self.cost_estimator = cost_estimator or HeuristicCostEstimator()

    def analyze_preview(self, preview: PreviewOutcome | str) -> PreviewSummary:
        """Summarise a backend preview (or its raw diagnostic text)."""
        output = preview if isinstance(preview, str) else preview.stdout
        summary = PreviewSummary()
        for change in parse_preview_output(output):
            summary.record(change)

        cost_impact = self.estimate_cost_impact(summary.changes)
        if cost_impact is not None:
            summary.cost_impact = cost_impact
        return summary

    def estimate_cost_impact(self, changes: cabc.Sequence[ResourceChange]) -> CostImpact | None:
        return self.cost_estimator.estimate(changes)

    def generate_preview_report(
        self,
        summary: PreviewSummary,
        definition: ConstructDefinition,
    ) -> str:
        """Render a deterministic Markdown report of ``summary``."""
        lines = [
            f"# Deployment Preview: {definition.name}",
            "",
            "## Summary",
            f"- Total resources: {summary.total}",
            f"- To create: {summary.create}",
            f"- To update: {summary.update}",
            f"- To delete: {summary.delete}",
            f"- To replace: {summary.replace}",
            f"- Unchanged: {summary.same}",
            "",
        ]

        if summary.cost_impact is not None:
            impact = summary.cost_impact
            sign = "+" if impact.difference >= 0 else ""
            lines.extend(
                [
                    "## Cost Impact",
                    f"- Current: {_money(impact.current)}/month",
                    f"- Projected: {_money(impact.projected)}/month",
                    f"- Change: {sign}{_money(impact.difference)}/month",
                    "",
                ]
            )

        for change_type, heading in _REPORT_SECTIONS:
            if summary.count(change_type) == 0:
                continue
            lines.append(f"## {heading}")
            for change in summary.changes:
                if change.change_type is not change_type:
                    continue
                lines.append(f"- {change.type}: {change.name}")
                if change_type is ChangeType.UPDATE:
                    lines.extend(f"  - {prop}" for prop in change.changes)
                elif change_type is ChangeType.REPLACE and change.replace_reasons:
                    lines.append("  Reasons:")
                    lines.extend(f"  - {reason}" for reason in change.replace_reasons)
            lines.append("")

        return "\n".join(lines)

    def has_breaking_changes(self, summary: PreviewSummary) -> bool:
        """Return True when the preview deletes or replaces anything."""
        return summary.delete > 0 or summary.replace > 0

    def assess_risk(self, summary: PreviewSummary) -> RiskAssessment:
        """Score the risk of applying ``summary``.

        The level starts at ``low`` and only escalates: deletes and critical
        data resources being deleted or replaced make it ``high``; replaces
        and a cost increase above the threshold make it at least ``medium``.
        """
        level = RiskLevel.LOW
        reasons: list[str] = []
        recommendations: list[str] = []

        if summary.delete > 0:
            level = level.escalate(RiskLevel.HIGH)
            reasons.append(f"{summary.delete} resources will be deleted")
            recommendations.append("Ensure you have backups of any data that will be lost")

        if summary.replace > 0:
            level = level.escalate(RiskLevel.MEDIUM)
            reasons.append(f"{summary.replace} resources will be replaced")
            recommendations.append("Review replaced resources for potential downtime")

        critical_changes = [
            change
            for change in summary.changes
            if change.change_type in (ChangeType.DELETE, ChangeType.REPLACE)
            and any(kind in change.type.lower() for kind in CRITICAL_RESOURCE_TYPES)
        ]
        if critical_changes:
            level = level.escalate(RiskLevel.HIGH)
            reasons.append("Critical data resources will be modified")
            recommendations.append("Create backups before proceeding")
            recommendations.append("Consider a maintenance window")

        impact = summary.cost_impact
        if impact is not None and impact.difference > COST_INCREASE_THRESHOLD:
            level = level.escalate(RiskLevel.MEDIUM)
            reasons.append(f"Significant cost increase: +{_money(impact.difference)}/month")
            recommendations.append("Review cost optimization opportunities")

        return RiskAssessment(
            level=level,
            reasons=tuple(reasons),
            recommendations=tuple(recommendations),
        )

    def compare_preview(self, before: PreviewSummary, after: PreviewSummary) -> PreviewComparison:
        """Report whether ``after`` improves on ``before``.

        Checks, in order: fewer resources, lower projected cost, fewer
        breaking changes. Any one of them counts as an improvement.
        """
        analysis: list[str] = []

        if after.total < before.total:
            analysis.append(f"Resource count reduced by {before.total - after.total}")

        if before.cost_impact is not None and after.cost_impact is not None:
            cost_diff = after.cost_impact.projected - before.cost_impact.projected
            if cost_diff < 0:
                analysis.append(f"Cost reduced by {_money(abs(cost_diff))}/month")

        before_breaking = before.breaking_changes
        after_breaking = after.breaking_changes
        if after_breaking < before_breaking:
            analysis.append(
                f"Breaking changes reduced from {before_breaking} to {after_breaking}"
            )

        return PreviewComparison(improved=bool(analysis), analysis=tuple(analysis))
