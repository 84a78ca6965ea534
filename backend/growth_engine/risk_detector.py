"""
Risk detection over processed KPIs, derived metrics and axis scores.

Every alert must name at least one affected KPI and one suggested action;
anything else is not actionable and is dropped. Output order: severity
(critical, warning, info), then number of affected KPIs, largest first.
"""

import logging
from typing import Dict, List, Optional, Sequence

from growth_engine.aggregator import completion_rate
from growth_engine.config import RiskThresholds
from growth_engine.models import (
    Axis,
    AxisScore,
    CorrelationInsight,
    ProcessedKPIData,
    RiskAlert,
    SEVERITY_ORDER,
)

logger = logging.getLogger(__name__)

AXIS_ACTIONS: Dict[Axis, tuple] = {
    Axis.GO: (
        "Narrow the ideal customer profile and focus on the channels that convert",
        "Set weekly pipeline and conversion targets",
    ),
    Axis.EC: (
        "Review pricing and gross margin by customer segment",
        "Extend runway by cutting non-essential spend",
    ),
    Axis.PT: (
        "Prioritise the roadmap around the main retention driver",
        "Pay down the technical debt that blocks releases",
    ),
    Axis.PF: (
        "Define weekly operating metrics and review them with the team",
        "Pick the single growth metric that matters most this quarter",
    ),
    Axis.TO: (
        "Fill critical leadership and hiring gaps",
        "Clarify roles and ownership across the team",
    ),
}

METRIC_ACTIONS: Dict[str, tuple] = {
    "arpu": (
        "Test higher price points or a premium tier",
        "Upsell existing customers",
    ),
    "burn_multiple": (
        "Freeze non-essential hiring and spend",
        "Redirect budget to the most efficient growth channels",
    ),
    "cac_payback": (
        "Reduce acquisition spend on channels with slow payback",
        "Improve onboarding to raise early revenue per customer",
    ),
    "ltv_cac_ratio": (
        "Stop scaling paid acquisition until unit economics improve",
        "Invest in retention to lift lifetime value",
    ),
    "growth_efficiency": (
        "Cut spend that does not drive new ARR",
        "Reallocate budget to proven growth loops",
    ),
}


def _names(items: Sequence[ProcessedKPIData], limit: int = 3) -> str:
    names = [p.kpi.display_name for p in items[:limit]]
    extra = len(items) - limit
    return ", ".join(names) + (f" and {extra} more" if extra > 0 else "")


def _lowest_first(items: Sequence[ProcessedKPIData]) -> List[ProcessedKPIData]:
    return sorted((p for p in items if p.is_complete), key=lambda p: (p.normalized_score, p.kpi.kpi_id))


# ── Detectors ─────────────────────────────────────────────────────────────────

def _core_kpi_alerts(processed, thresholds: RiskThresholds) -> List[RiskAlert]:
    weak_core = _lowest_first([p for p in processed if p.weight == 3 and p.is_complete
                               and p.normalized_score < thresholds.core_kpi_floor])
    if not weak_core:
        return []
    actions = [f"Make {p.kpi.display_name} a top priority for the next quarter" for p in weak_core[:3]]
    actions.append("Assign an owner and a weekly target to each core KPI")
    return [RiskAlert(
        alert_id="core_kpi_underperformance",
        severity="critical",
        title="Core KPIs underperforming",
        description=f"{len(weak_core)} core (x3) KPI(s) score below {thresholds.core_kpi_floor:.0f}: {_names(weak_core)}.",
        affected_kpis=tuple(p.kpi.kpi_id for p in weak_core),
        suggested_actions=tuple(actions),
        detected_by="Core KPI Monitor",
    )]


def _high_risk_alerts(processed, thresholds: RiskThresholds) -> List[RiskAlert]:
    high_risk = _lowest_first([p for p in processed if p.is_complete
                               and p.normalized_score < thresholds.high_risk_score])
    if len(high_risk) < thresholds.high_risk_count:
        return []
    return [RiskAlert(
        alert_id="high_risk_concentration",
        severity="critical",
        title="Multiple high-risk KPIs",
        description=f"{len(high_risk)} KPIs score below {thresholds.high_risk_score:.0f}: {_names(high_risk)}.",
        affected_kpis=tuple(p.kpi.kpi_id for p in high_risk),
        suggested_actions=(
            "Triage the lowest-scoring KPIs and fix no more than three at a time",
            "Review resourcing against the weakest areas",
        ),
        detected_by="Universal Risk Detector",
    )]


def _metric_alerts(insights: Sequence[CorrelationInsight]) -> List[RiskAlert]:
    alerts = []
    for insight in insights:
        if insight.priority not in ("critical", "high"):
            continue
        alerts.append(RiskAlert(
            alert_id=f"metric_{insight.insight_id}",
            severity="critical" if insight.priority == "critical" else "warning",
            title=f"{insight.title} at risk",
            description=f"{insight.description}. {insight.interpretation}",
            affected_kpis=tuple(insight.kpi_ids),
            suggested_actions=METRIC_ACTIONS.get(insight.insight_id, ()),
            detected_by="Unit Economics Analyzer",
        ))
    return alerts


def _axis_alerts(processed, axis_scores: Sequence[AxisScore], thresholds: RiskThresholds) -> List[RiskAlert]:
    alerts = []
    for axis_score in axis_scores:
        if axis_score.score is None:
            continue
        axis_kpis = _lowest_first([p for p in processed if p.kpi.axis == axis_score.axis])
        affected = tuple(p.kpi.kpi_id for p in axis_kpis)
        actions = AXIS_ACTIONS.get(axis_score.axis, ())

        bench = axis_score.benchmark
        if bench is not None and bench.available and bench.gap <= thresholds.axis_gap_warning:
            severity = "critical" if bench.gap <= thresholds.axis_gap_critical else "warning"
            alerts.append(RiskAlert(
                alert_id=f"axis_gap_{axis_score.axis.value}",
                severity=severity,
                title=f"{axis_score.label} far behind peers",
                description=(f"{axis_score.label} scores {axis_score.score:.1f}, "
                             f"{abs(bench.gap):.1f} points below the peer average ({bench.percentile_label})."),
                affected_kpis=affected,
                suggested_actions=actions,
                detected_by="Benchmark Comparator",
            ))
        elif axis_score.score < thresholds.weak_axis_score:
            alerts.append(RiskAlert(
                alert_id=f"weak_axis_{axis_score.axis.value}",
                severity="warning",
                title=f"{axis_score.label} is weak",
                description=f"{axis_score.label} scores {axis_score.score:.1f}, below {thresholds.weak_axis_score:.0f}.",
                affected_kpis=affected,
                suggested_actions=actions,
                detected_by="Universal Risk Detector",
            ))
    return alerts


def _imbalance_alerts(processed, axis_scores: Sequence[AxisScore], thresholds: RiskThresholds) -> List[RiskAlert]:
    defined = [a for a in axis_scores if a.score is not None]
    if len(defined) < 2:
        return []
    weakest = min(defined, key=lambda a: (a.score, a.axis.value))
    strongest = max(defined, key=lambda a: (a.score, a.axis.value))
    spread = strongest.score - weakest.score
    if spread <= thresholds.axis_imbalance:
        return []
    weak_kpis = _lowest_first([p for p in processed if p.kpi.axis == weakest.axis])
    return [RiskAlert(
        alert_id="axis_imbalance",
        severity="info",
        title="Unbalanced growth profile",
        description=(f"{strongest.label} ({strongest.score:.1f}) and {weakest.label} ({weakest.score:.1f}) "
                     f"are {spread:.1f} points apart."),
        affected_kpis=tuple(p.kpi.kpi_id for p in weak_kpis),
        suggested_actions=(f"Rebalance effort towards {weakest.label}",) + AXIS_ACTIONS.get(weakest.axis, ())[:1],
        detected_by="Axis Balance Analyzer",
    )]


def _completion_alerts(processed, thresholds: RiskThresholds) -> List[RiskAlert]:
    rate = completion_rate(processed)
    missing = [p for p in processed if not p.is_complete]
    if not missing or rate >= thresholds.min_completion_rate:
        return []
    return [RiskAlert(
        alert_id="low_completion",
        severity="info",
        title="Diagnosis is incomplete",
        description=f"Only {rate * 100:.0f}% of applicable KPIs could be scored; results may shift once the rest are answered.",
        affected_kpis=tuple(p.kpi.kpi_id for p in missing),
        suggested_actions=(
            "Complete the remaining diagnostic questions",
            "Collect the missing data before the next review",
        ),
        detected_by="Completion Monitor",
    )]


def is_actionable(alert: RiskAlert) -> bool:
    return bool(alert.affected_kpis) and bool(alert.suggested_actions)


def sort_risks(alerts: Sequence[RiskAlert]) -> List[RiskAlert]:
    return sorted(alerts, key=lambda a: (SEVERITY_ORDER.get(a.severity, len(SEVERITY_ORDER)),
                                         -len(a.affected_kpis), a.alert_id))


def detect_risks(
    processed: Sequence[ProcessedKPIData],
    correlation_insights: Sequence[CorrelationInsight],
    axis_scores: Optional[Sequence[AxisScore]] = None,
    thresholds: Optional[RiskThresholds] = None,
) -> List[RiskAlert]:
    """Run every detector and return the actionable alerts, sorted."""
    thresholds = thresholds or RiskThresholds()
    axis_scores = axis_scores or []

    candidates: List[RiskAlert] = []
    candidates += _core_kpi_alerts(processed, thresholds)
    candidates += _high_risk_alerts(processed, thresholds)
    candidates += _metric_alerts(correlation_insights)
    candidates += _axis_alerts(processed, axis_scores, thresholds)
    candidates += _imbalance_alerts(processed, axis_scores, thresholds)
    candidates += _completion_alerts(processed, thresholds)

    alerts = []
    for alert in candidates:
        if is_actionable(alert):
            alerts.append(alert)
        else:
            logger.debug(f"Dropping non-actionable alert {alert.alert_id}")
    return sort_risks(alerts)
