"""Executive digest: the few alerts and highlights worth reading first."""

from typing import List, Sequence

from growth_engine.models import (
    AxisScore,
    CorrelationInsight,
    DigestSummary,
    Highlight,
    PRIORITY_ORDER,
    ProcessedKPIData,
    RiskAlert,
)

DEFAULT_DIGEST_SIZE = 3

_SEVERITY_TO_PRIORITY = {"critical": "critical", "warning": "high", "info": "medium"}


def rank(items: Sequence[Highlight]) -> List[Highlight]:
    """Stable sort by priority (critical, high, medium, low), dropping repeated texts."""
    seen = set()
    unique = []
    for item in items:
        if item.text not in seen:
            seen.add(item.text)
            unique.append(item)
    return sorted(unique, key=lambda h: PRIORITY_ORDER.get(h.priority, len(PRIORITY_ORDER)))


def collect_highlights(
    processed: Sequence[ProcessedKPIData],
    axis_scores: Sequence[AxisScore],
    correlation_insights: Sequence[CorrelationInsight],
    completion: float,
) -> List[Highlight]:
    highlights: List[Highlight] = []

    defined = [a for a in axis_scores if a.score is not None]
    if defined:
        best = max(defined, key=lambda a: (a.score, a.axis.value))
        highlights.append(Highlight(f"Strongest axis: {best.label} ({best.score:.1f})", "high"))

    complete = [p for p in processed if p.is_complete]
    if complete:
        top = max(complete, key=lambda p: (p.normalized_score, p.kpi.kpi_id))
        if top.normalized_score > 80:
            highlights.append(Highlight(f"Top KPI: {top.kpi.display_name} ({top.normalized_score:.0f})", "medium"))
        weak = sum(1 for p in complete if p.normalized_score < 50)
        if weak:
            highlights.append(Highlight(f"{weak} KPI(s) score below 50", "medium"))

    for insight in correlation_insights:
        if insight.priority == "low":
            highlights.append(Highlight(f"Healthy {insight.title}: {insight.description}", "medium"))

    if processed:
        highlights.append(Highlight(f"Completion rate {completion * 100:.0f}%", "low"))
    return highlights


def build_summary(
    risks: Sequence[RiskAlert],
    highlights: Sequence[Highlight],
    axis_scores: Sequence[AxisScore],
    limit: int = DEFAULT_DIGEST_SIZE,
) -> DigestSummary:
    """Digest with lists truncated to `limit`; the full ranked lists are kept alongside."""
    alerts = [Highlight(f"{r.title}: {r.description}", _SEVERITY_TO_PRIORITY.get(r.severity, "low"))
              for r in risks if r.severity in ("critical", "warning")]
    notes = list(highlights)
    for axis_score in axis_scores:
        if axis_score.score is None:
            notes.append(Highlight(f"{axis_score.label}: insufficient data", "low"))
        elif axis_score.status == "needs_attention":
            alerts.append(Highlight(f"{axis_score.label} needs attention ({axis_score.score:.1f})", "high"))

    ranked_alerts = [h.text for h in rank(alerts)]
    ranked_notes = [h.text for h in rank(notes)]
    limit = max(0, limit)
    return DigestSummary(
        critical_alerts=tuple(ranked_alerts[:limit]),
        quick_highlights=tuple(ranked_notes[:limit]),
        all_critical_alerts=tuple(ranked_alerts),
        all_highlights=tuple(ranked_notes),
    )
