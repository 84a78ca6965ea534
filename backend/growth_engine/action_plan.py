"""
Action plan generation.

Candidates come from risk alerts, weak axes and at-risk derived metrics. Each
gets a priority, a timeframe and an estimated impact; candidates aimed at the
same set of KPIs are merged, and the plan is capped at a configurable length.
"""

import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from growth_engine.config import EngineSettings
from growth_engine.models import (
    ActionItem,
    AxisScore,
    CorrelationInsight,
    IMPACT_ORDER,
    PRIORITY_ORDER,
    RiskAlert,
)
from growth_engine.risk_detector import AXIS_ACTIONS, METRIC_ACTIONS

logger = logging.getLogger(__name__)

AXIS_TARGET_SCORE = 70.0
WEAK_AXIS_SCORE = 60.0

_RISK_PRIORITY = {"critical": "critical", "warning": "high", "info": "medium"}
_RISK_IMPACT = {"critical": "high", "warning": "medium", "info": "low"}

_IMMEDIATE = re.compile(r"\b(immediately|urgent|urgently|stop|freeze|halt|now)\b", re.IGNORECASE)
_SHORT = re.compile(r"\b(this quarter|weekly|within|reduce|hire|cut)\b", re.IGNORECASE)


def classify_timeframe(priority: str, text: str) -> str:
    """immediate / short / medium from priority and urgency wording."""
    if priority == "critical" or _IMMEDIATE.search(text or ""):
        return "immediate"
    if priority == "high" or _SHORT.search(text or ""):
        return "short"
    return "medium"


def impact_from_gap(gap: float) -> str:
    shortfall = max(0.0, -gap)
    if shortfall >= 20:
        return "high"
    if shortfall >= 10:
        return "medium"
    return "low"


def _risk_category(alert: RiskAlert) -> str:
    if alert.alert_id.startswith("metric_"):
        return "unit_economics"
    if alert.alert_id.startswith(("axis_gap_", "weak_axis_")):
        return "axis"
    if alert.alert_id == "low_completion":
        return "data_quality"
    return "risk_management"


def _from_risk(alert: RiskAlert) -> ActionItem:
    priority = _RISK_PRIORITY.get(alert.severity, "medium")
    title = alert.suggested_actions[0]
    return ActionItem(
        priority=priority,
        category=_risk_category(alert),
        title=title,
        description=alert.description,
        timeframe=classify_timeframe(priority, " ".join(alert.suggested_actions)),
        estimated_impact=_RISK_IMPACT.get(alert.severity, "low"),
        related_kpis=tuple(alert.affected_kpis),
        steps=tuple(alert.suggested_actions),
        source=alert.alert_id,
    )


def _from_axis(axis_score: AxisScore) -> Optional[ActionItem]:
    if axis_score.score is None or axis_score.score >= WEAK_AXIS_SCORE or not axis_score.kpi_ids:
        return None
    bench = axis_score.benchmark
    gap = bench.gap if bench is not None and bench.available else axis_score.score - AXIS_TARGET_SCORE
    priority = "high" if axis_score.score < 40 else "medium"
    steps = AXIS_ACTIONS.get(axis_score.axis, ())
    return ActionItem(
        priority=priority,
        category="axis",
        title=f"Strengthen {axis_score.label}",
        description=f"{axis_score.label} scores {axis_score.score:.1f} ({gap:+.1f} points against the reference).",
        timeframe=classify_timeframe(priority, " ".join(steps)),
        estimated_impact=impact_from_gap(gap),
        related_kpis=tuple(axis_score.kpi_ids),
        steps=tuple(steps),
        source=f"axis_{axis_score.axis.value}",
    )


def _from_insight(insight: CorrelationInsight) -> Optional[ActionItem]:
    if insight.priority not in ("critical", "high") or not insight.kpi_ids:
        return None
    steps = METRIC_ACTIONS.get(insight.insight_id, ())
    if not steps:
        return None
    return ActionItem(
        priority=insight.priority,
        category="unit_economics",
        title=steps[0],
        description=f"{insight.description}. {insight.interpretation}",
        timeframe=classify_timeframe(insight.priority, " ".join(steps)),
        estimated_impact="high" if insight.priority == "critical" else "medium",
        related_kpis=tuple(insight.kpi_ids),
        steps=tuple(steps),
        source=f"metric_{insight.insight_id}",
    )


def _rank(item: ActionItem):
    return (
        PRIORITY_ORDER.get(item.priority, len(PRIORITY_ORDER)),
        IMPACT_ORDER.get(item.estimated_impact, len(IMPACT_ORDER)),
        -len(item.related_kpis),
        item.title,
    )


def merge_overlapping(items: Sequence[ActionItem]) -> List[ActionItem]:
    """Keep the best-ranked item per related-KPI set, folding in the others' steps."""
    merged: Dict[frozenset, ActionItem] = {}
    for item in sorted(items, key=_rank):
        key = frozenset(item.related_kpis)
        kept = merged.get(key)
        if kept is None:
            merged[key] = item
            continue
        extra = tuple(step for step in item.steps if step not in kept.steps)
        if extra:
            merged[key] = replace(kept, steps=kept.steps + extra)
        logger.debug(f"Merged action '{item.title}' into '{kept.title}'")
    return sorted(merged.values(), key=_rank)


def build_plan(
    risks: Sequence[RiskAlert],
    axis_scores: Sequence[AxisScore],
    correlation_insights: Sequence[CorrelationInsight],
    settings: Optional[EngineSettings] = None,
) -> List[ActionItem]:
    """Prioritised, de-duplicated action plan (critical > high > medium)."""
    settings = settings or EngineSettings()
    candidates: List[ActionItem] = [_from_risk(alert) for alert in risks if alert.suggested_actions]
    candidates += [item for item in (_from_axis(a) for a in axis_scores) if item is not None]
    candidates += [item for item in (_from_insight(i) for i in correlation_insights) if item is not None]
    plan = merge_overlapping(candidates)
    return plan[:settings.max_action_items]
