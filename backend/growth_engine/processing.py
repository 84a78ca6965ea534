"""Per-KPI processing: applicability, normalization, weight and KPI-level insight."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from growth_engine.benchmark import PeerBenchmarkDataset
from growth_engine.models import (
    BenchmarkInfo,
    KPIDefinition,
    KPIInsight,
    KPIResponse,
    ProcessedKPIData,
    StageRule,
    STATUS_COMPLETE,
    STATUS_INCOMPLETE,
)
from growth_engine.normalizer import DEFAULT_MULTI_SELECT_MAX_POINTS, normalize

logger = logging.getLogger(__name__)


def applicable_kpis(kpis: Iterable[KPIDefinition], stage: str) -> List[KPIDefinition]:
    return [kpi for kpi in kpis if stage in kpi.applicable_stages]


def index_rules(stage_rules: Iterable[StageRule], stage: str) -> Dict[str, StageRule]:
    return {rule.kpi_id: rule for rule in stage_rules if rule.stage == stage}


def index_responses(responses: Iterable[KPIResponse]) -> Dict[str, KPIResponse]:
    """Responses by KPI id; a later answer for the same KPI replaces an earlier one."""
    indexed: Dict[str, KPIResponse] = {}
    for response in responses:
        if response.kpi_id in indexed:
            logger.debug(f"Duplicate response for KPI {response.kpi_id}; using the later one")
        indexed[response.kpi_id] = response
    return indexed


def risk_level(score: Optional[float]) -> str:
    if score is None:
        return "unknown"
    if score < 40:
        return "high"
    if score < 70:
        return "medium"
    return "low"


def _interpret(kpi: KPIDefinition, score: float, benchmark: Optional[BenchmarkInfo]) -> str:
    if score >= 80:
        text = f"{kpi.display_name} is a clear strength."
    elif score >= 60:
        text = f"{kpi.display_name} is on track."
    elif score >= 40:
        text = f"{kpi.display_name} is below where it should be for this stage."
    else:
        text = f"{kpi.display_name} needs immediate attention."
    if benchmark is not None:
        diff = score - benchmark.industry_average
        direction = "above" if diff >= 0 else "below"
        text += f" {abs(diff):.1f} points {direction} the industry average."
    return text


def build_kpi_insight(kpi: KPIDefinition, score: Optional[float], reason: Optional[str],
                      benchmark: Optional[BenchmarkInfo]) -> KPIInsight:
    if score is None:
        return KPIInsight(
            summary=f"{kpi.display_name}: insufficient data",
            interpretation=f"Not scored ({reason}).",
            risk_level=risk_level(None),
        )
    return KPIInsight(
        summary=f"{kpi.display_name}: {score:.1f}/100",
        interpretation=_interpret(kpi, score, benchmark),
        risk_level=risk_level(score),
    )


def process_kpis(
    kpis: Sequence[KPIDefinition],
    stage_rules: Sequence[StageRule],
    responses: Sequence[KPIResponse],
    stage: str,
    sector: str = "",
    benchmarks: Optional[PeerBenchmarkDataset] = None,
    multi_select_max_points: float = DEFAULT_MULTI_SELECT_MAX_POINTS,
) -> List[ProcessedKPIData]:
    """Normalize every KPI applicable to `stage`, in definition order.

    Unanswered or unscorable KPIs are kept with status 'incomplete' so they
    still count towards the completion rate.
    """
    rules = index_rules(stage_rules, stage)
    answers = index_responses(responses)
    processed: List[ProcessedKPIData] = []

    for kpi in applicable_kpis(kpis, stage):
        rule = rules.get(kpi.kpi_id)
        result = normalize(kpi, rule, answers.get(kpi.kpi_id), multi_select_max_points)

        benchmark_info = None
        if benchmarks is not None:
            bench = benchmarks.kpi_benchmark(sector, stage, kpi.kpi_id)
            if bench is not None:
                benchmark_info = BenchmarkInfo(industry_average=bench.industry_average, source=bench.source)

        processed.append(ProcessedKPIData(
            kpi=kpi,
            weight_level=rule.weight if rule else "x1",
            weight=rule.multiplier if rule else 1,
            normalized_score=result.score,
            status=STATUS_COMPLETE if result.is_complete else STATUS_INCOMPLETE,
            insights=build_kpi_insight(kpi, result.score, result.reason, benchmark_info),
            incomplete_reason=result.reason,
            raw_value=result.raw_value,
            benchmark_info=benchmark_info,
        ))

    unknown = sorted(set(answers) - {kpi.kpi_id for kpi in kpis})
    if unknown:
        logger.debug(f"Ignoring responses for unknown KPIs: {unknown}")
    return processed

