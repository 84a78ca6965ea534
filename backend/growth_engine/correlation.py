"""
Derived financial-health metrics.

Computed from raw answer values, not from normalized scores. Raw inputs come
from KPIs tagged with a `metric_key` and from calculation answers whose field
names match a metric key. Every metric is isolated: missing inputs, a zero or
invalid denominator, or a non-finite result drops that metric only.
"""

import logging
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from growth_engine.config import EngineSettings
from growth_engine.errors import NormalizationError
from growth_engine.formula import evaluate_formula
from growth_engine.models import CorrelationInsight, InputType, KPIDefinition, KPIResponse
from growth_engine.processing import index_responses

logger = logging.getLogger(__name__)

METRIC_KEYS = (
    "total_revenue",
    "total_users",
    "arpu",
    "net_burn",
    "net_new_arr",
    "cac",
    "gross_margin",
    "ltv",
)

# metric key -> (value, contributing KPI ids)
RawMetrics = Dict[str, Tuple[float, Tuple[str, ...]]]


def priority_for_score(score: float) -> str:
    if score < 35:
        return "critical"
    if score < 60:
        return "high"
    if score < 80:
        return "medium"
    return "low"


def _number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.replace(",", "").replace("%", "").strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return float(value)


def collect_raw_metrics(kpis: Sequence[KPIDefinition], responses: Sequence[KPIResponse]) -> RawMetrics:
    """Raw financial inputs keyed by metric key; the first source in KPI order wins."""
    answers = index_responses(responses)
    raw: RawMetrics = {}

    for kpi in kpis:
        response = answers.get(kpi.kpi_id)
        if kpi.metric_key not in METRIC_KEYS or response is None or response.not_applicable:
            continue
        if kpi.metric_key in raw:
            continue
        if kpi.input_type == InputType.CALCULATION and isinstance(response.value, dict):
            try:
                value = evaluate_formula(kpi.formula or "", response.value)
            except NormalizationError as e:
                logger.debug(f"Skipping metric {kpi.metric_key} from {kpi.kpi_id}: {e}")
                continue
        elif kpi.input_type in (InputType.NUMERIC, InputType.PERCENTAGE):
            value = _number(response.value)
        else:
            value = None
        if value is not None:
            raw[kpi.metric_key] = (value, (kpi.kpi_id,))

    for kpi in kpis:
        response = answers.get(kpi.kpi_id)
        if kpi.input_type != InputType.CALCULATION or response is None or response.not_applicable:
            continue
        if not isinstance(response.value, dict):
            continue
        for name, field_value in response.value.items():
            value = _number(field_value)
            if name in METRIC_KEYS and name not in raw and value is not None:
                raw[name] = (value, (kpi.kpi_id,))
    return raw


def _ids(*parts: Tuple[str, ...]) -> Tuple[str, ...]:
    out: List[str] = []
    for part in parts:
        for kpi_id in part:
            if kpi_id not in out:
                out.append(kpi_id)
    return tuple(out)


def _arpu(raw: RawMetrics) -> Optional[Tuple[float, Tuple[str, ...]]]:
    if "arpu" in raw:
        value, ids = raw["arpu"]
        return (value, ids) if value >= 0 else None
    if "total_revenue" not in raw or "total_users" not in raw:
        return None
    revenue, rev_ids = raw["total_revenue"]
    users, user_ids = raw["total_users"]
    if users <= 0 or revenue < 0:
        return None
    return revenue / users, _ids(rev_ids, user_ids)


# ── Metric builders ───────────────────────────────────────────────────────────

def _arpu_insight(raw: RawMetrics, settings: EngineSettings) -> Optional[CorrelationInsight]:
    arpu = _arpu(raw)
    if arpu is None or settings.arpu_target <= 0:
        return None
    value, ids = arpu
    score = min(100.0, value / settings.arpu_target * 100.0)
    if score >= 80:
        interpretation = "Revenue per user is at or near target."
    elif score >= 50:
        interpretation = "Revenue per user trails target; review pricing and packaging."
    else:
        interpretation = "Revenue per user is far below target; monetization needs work."
    return CorrelationInsight(
        insight_id="arpu",
        title="ARPU",
        value=value,
        description=f"ARPU {value:,.2f} against a target of {settings.arpu_target:,.2f}",
        interpretation=interpretation,
        score=score,
        priority=priority_for_score(score),
        kpi_ids=ids,
    )


def _burn_multiple_insight(raw: RawMetrics, settings: EngineSettings) -> Optional[CorrelationInsight]:
    if "net_burn" not in raw or "net_new_arr" not in raw:
        return None
    burn, burn_ids = raw["net_burn"]
    new_arr, arr_ids = raw["net_new_arr"]
    if new_arr <= 0 or burn < 0:
        return None
    multiple = burn / new_arr
    if multiple < 1.5:
        score, interpretation = 90.0, "Capital efficient growth."
    elif multiple < 3:
        score, interpretation = 70.0, "Acceptable burn for the growth delivered."
    else:
        score, interpretation = 40.0, "Burning too much cash per unit of new ARR."
    return CorrelationInsight(
        insight_id="burn_multiple",
        title="Burn Multiple",
        value=multiple,
        description=f"Burn multiple {multiple:.2f}x",
        interpretation=interpretation,
        score=score,
        priority=priority_for_score(score),
        kpi_ids=_ids(burn_ids, arr_ids),
    )


def _cac_payback_insight(raw: RawMetrics, settings: EngineSettings) -> Optional[CorrelationInsight]:
    arpu = _arpu(raw)
    if "cac" not in raw or "gross_margin" not in raw or arpu is None:
        return None
    cac, cac_ids = raw["cac"]
    margin, margin_ids = raw["gross_margin"]
    if margin > 1:
        margin = margin / 100.0
    monthly_contribution = arpu[0] * margin
    if cac <= 0 or monthly_contribution <= 0:
        return None
    months = cac / monthly_contribution
    if months <= 12:
        score, interpretation = 90.0, "CAC is recovered within a year."
    elif months <= 18:
        score, interpretation = 70.0, "CAC payback is acceptable."
    elif months <= 24:
        score, interpretation = 50.0, "CAC payback is long; watch acquisition spend."
    else:
        score, interpretation = 30.0, "CAC payback exceeds two years."
    return CorrelationInsight(
        insight_id="cac_payback",
        title="CAC Payback",
        value=months,
        description=f"CAC payback {months:.1f} months",
        interpretation=interpretation,
        score=score,
        priority=priority_for_score(score),
        kpi_ids=_ids(cac_ids, arpu[1], margin_ids),
    )


def _ltv_cac_insight(raw: RawMetrics, settings: EngineSettings) -> Optional[CorrelationInsight]:
    if "ltv" not in raw or "cac" not in raw:
        return None
    ltv, ltv_ids = raw["ltv"]
    cac, cac_ids = raw["cac"]
    if cac <= 0 or ltv < 0:
        return None
    ratio = ltv / cac
    if ratio >= 3:
        score, interpretation = 90.0, "Healthy unit economics."
    elif ratio >= 2:
        score, interpretation = 60.0, "Unit economics are workable but thin."
    elif ratio >= 1:
        score, interpretation = 40.0, "Customers barely pay back their acquisition cost."
    else:
        score, interpretation = 10.0, "Each customer is acquired at a loss."
    return CorrelationInsight(
        insight_id="ltv_cac_ratio",
        title="LTV/CAC",
        value=ratio,
        description=f"LTV/CAC {ratio:.2f}:1",
        interpretation=interpretation,
        score=score,
        priority=priority_for_score(score),
        kpi_ids=_ids(ltv_ids, cac_ids),
    )


def _growth_efficiency_insight(raw: RawMetrics, settings: EngineSettings) -> Optional[CorrelationInsight]:
    if "net_burn" not in raw or "net_new_arr" not in raw:
        return None
    burn, burn_ids = raw["net_burn"]
    new_arr, arr_ids = raw["net_new_arr"]
    if burn <= 0:
        return None
    efficiency = new_arr / burn
    if efficiency >= 1:
        score, interpretation = 90.0, "Each unit of burn returns at least as much new ARR."
    elif efficiency >= 0.5:
        score, interpretation = 70.0, "Growth efficiency is reasonable."
    elif efficiency >= 0.25:
        score, interpretation = 40.0, "Growth is expensive relative to burn."
    else:
        score, interpretation = 20.0, "Burn is not translating into growth."
    return CorrelationInsight(
        insight_id="growth_efficiency",
        title="Growth Efficiency",
        value=efficiency,
        description=f"Growth efficiency {efficiency:.2f}",
        interpretation=interpretation,
        score=score,
        priority=priority_for_score(score),
        kpi_ids=_ids(arr_ids, burn_ids),
    )


_BUILDERS: Tuple[Callable[[RawMetrics, EngineSettings], Optional[CorrelationInsight]], ...] = (
    _arpu_insight,
    _burn_multiple_insight,
    _cac_payback_insight,
    _ltv_cac_insight,
    _growth_efficiency_insight,
)


def derive_insights(
    kpis: Sequence[KPIDefinition],
    responses: Sequence[KPIResponse],
    settings: Optional[EngineSettings] = None,
) -> List[CorrelationInsight]:
    """Derived metrics that could be computed, in fixed metric order."""
    settings = settings or EngineSettings()
    raw = collect_raw_metrics(kpis, responses)
    insights = []
    for builder in _BUILDERS:
        try:
            insight = builder(raw, settings)
        except (ArithmeticError, ValueError) as e:
            logger.warning(f"Derived metric {builder.__name__} skipped: {e}")
            continue
        if insight is None:
            continue
        if not (math.isfinite(insight.value) and math.isfinite(insight.score)):
            logger.warning(f"Derived metric {insight.insight_id} is not finite; omitted")
            continue
        insights.append(insight)
    return insights
