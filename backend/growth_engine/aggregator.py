"""
Axis aggregation.

Axis score = sum(score * weight) / sum(weight) over the axis's complete KPIs.
Incomplete KPIs are left out of the mean (never counted as 0) but stay in the
completion-rate denominator. An axis without a complete KPI has no score.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from growth_engine.models import (
    ALL_AXES,
    Axis,
    AxisScore,
    ProcessedKPIData,
    score_status,
)

logger = logging.getLogger(__name__)

DEFAULT_TREND_TOLERANCE = 2.0


def weighted_mean(processed: Sequence[ProcessedKPIData]) -> Optional[float]:
    complete = [p for p in processed if p.is_complete]
    total_weight = sum(p.weight for p in complete)
    if total_weight == 0:
        return None
    return sum(p.normalized_score * p.weight for p in complete) / total_weight


def trend(score: Optional[float], previous: Optional[float], tolerance: float = DEFAULT_TREND_TOLERANCE) -> str:
    if score is None or previous is None:
        return "unknown"
    delta = score - previous
    if delta > tolerance:
        return "up"
    if delta < -tolerance:
        return "down"
    return "stable"


def aggregate_axes(
    processed: Sequence[ProcessedKPIData],
    previous_scores: Optional[Mapping[str, float]] = None,
    trend_tolerance: float = DEFAULT_TREND_TOLERANCE,
) -> List[AxisScore]:
    """One AxisScore per axis, in fixed axis order."""
    previous = {str(getattr(k, "value", k)): v for k, v in (previous_scores or {}).items()}
    by_axis: Dict[Axis, List[ProcessedKPIData]] = {axis: [] for axis in ALL_AXES}
    for item in processed:
        by_axis[item.kpi.axis].append(item)

    scores = []
    for axis in ALL_AXES:
        items = by_axis[axis]
        score = weighted_mean(items)
        if score is None and items:
            logger.info(f"Axis {axis.value} has no complete KPI; reporting insufficient data")
        scores.append(AxisScore(
            axis=axis,
            score=score,
            status=score_status(score),
            trend=trend(score, previous.get(axis.value), trend_tolerance),
            completed_kpis=sum(1 for p in items if p.is_complete),
            applicable_kpis=len(items),
            kpi_ids=tuple(p.kpi.kpi_id for p in items if p.is_complete),
        ))
    return scores


def aggregate_overall(axis_scores: Sequence[AxisScore],
                      axis_weights: Optional[Mapping[str, float]] = None) -> Optional[float]:
    """Mean of the defined axis scores (weighted when axis weights are given).

    Raises:
        ValueError: a weight is negative or keyed by something other than an axis
    """
    weights = {str(getattr(k, "value", k)): float(v) for k, v in (axis_weights or {}).items()}
    unknown = sorted(set(weights) - {axis.value for axis in ALL_AXES})
    if unknown:
        raise ValueError(f"Axis weights reference unknown axes: {unknown}")
    negative = sorted(k for k, v in weights.items() if v < 0)
    if negative:
        raise ValueError(f"Axis weights must be >= 0, got negative weights for {negative}")
    defined = [a for a in axis_scores if a.score is not None]
    total = sum(weights.get(a.axis.value, 1.0) for a in defined)
    if not defined or total <= 0:
        return None
    return sum(a.score * weights.get(a.axis.value, 1.0) for a in defined) / total


def completion_rate(processed: Sequence[ProcessedKPIData]) -> float:
    if not processed:
        return 0.0
    return sum(1 for p in processed if p.is_complete) / len(processed)


def completion_breakdown(processed: Sequence[ProcessedKPIData]) -> Dict[str, Dict[str, int]]:
    """Completed / missing KPI counts per axis."""
    breakdown = {axis.value: {"total": 0, "completed": 0, "missing": 0} for axis in ALL_AXES}
    for item in processed:
        entry = breakdown[item.kpi.axis.value]
        entry["total"] += 1
        if item.is_complete:
            entry["completed"] += 1
        else:
            entry["missing"] += 1
    return breakdown


def top_contributors(processed: Sequence[ProcessedKPIData], axis: Axis, limit: int = 3) -> List[ProcessedKPIData]:
    """Complete KPIs of `axis` with the largest weighted contribution."""
    items = [p for p in processed if p.kpi.axis == axis and p.is_complete]
    items.sort(key=lambda p: (-(p.normalized_score * p.weight), p.kpi.kpi_id))
    return items[:limit]
