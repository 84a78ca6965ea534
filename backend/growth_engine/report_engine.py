"""
Report Engine: KPI scoring, benchmarking and insight generation.

Turns raw diagnostic answers into a single immutable `ReportData`:
per-KPI scores, axis and overall scores, peer benchmark positioning, derived
financial metrics, risk alerts, an action plan and an executive digest.
`build_report` is a pure function of its inputs; `ReportEngine` binds it to
one rule pack and memoizes results by a content hash of the inputs.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional, Sequence

from cache.cache import ReportCache, stable_hash
from growth_engine.action_plan import build_plan
from growth_engine.aggregator import (
    aggregate_axes,
    aggregate_overall,
    completion_breakdown,
    completion_rate,
    top_contributors,
)
from growth_engine.benchmark import PeerBenchmarkDataset, benchmark_axes, benchmark_overall
from growth_engine.config import EngineSettings
from growth_engine.correlation import derive_insights
from growth_engine.insight_ranker import build_summary, collect_highlights
from growth_engine.models import (
    KPIDefinition,
    KPIResponse,
    ReportData,
    ReportSummary,
    StageRule,
    freeze,
    score_status,
)
from growth_engine.processing import applicable_kpis, process_kpis
from growth_engine.risk_detector import detect_risks

logger = logging.getLogger(__name__)


def build_report(
    kpis: Sequence[KPIDefinition],
    stage_rules: Sequence[StageRule],
    responses: Sequence[KPIResponse],
    benchmarks: Optional[PeerBenchmarkDataset],
    sector: str,
    stage: str,
    settings: Optional[EngineSettings] = None,
    previous_axis_scores: Optional[Mapping[str, float]] = None,
    fingerprint: str = "",
) -> ReportData:
    """Run the full pipeline for one company at one stage.

    Args:
        kpis: KPI library; only KPIs applicable to `stage` are scored.
        stage_rules: Weights and scoring rules, all stages.
        responses: Raw answers.
        benchmarks: Peer distributions; None disables benchmarking.
        sector: Sector code used for benchmark lookups.
        stage: Stage code (e.g. 'A-3').
        settings: Engine settings; defaults when omitted.
        previous_axis_scores: Axis scores of an earlier report, for trends.
        fingerprint: Content hash recorded in the report metadata.

    Returns:
        ReportData
    """
    settings = settings or EngineSettings()

    processed = process_kpis(
        kpis, stage_rules, responses, stage,
        sector=sector,
        benchmarks=benchmarks,
        multi_select_max_points=settings.multi_select_max_points,
    )
    axis_scores = aggregate_axes(processed, previous_axis_scores, settings.trend_tolerance)
    axis_scores = benchmark_axes(axis_scores, benchmarks, sector, stage)
    overall = aggregate_overall(axis_scores, settings.axis_weights)
    completion = completion_rate(processed)

    insights = derive_insights(applicable_kpis(kpis, stage), responses, settings)
    risks = detect_risks(processed, insights, axis_scores, settings.risk)
    plan = build_plan(risks, axis_scores, insights, settings)
    highlights = collect_highlights(processed, axis_scores, insights, completion)
    digest = build_summary(risks, highlights, axis_scores, settings.digest_size)

    summary = ReportSummary(
        overall_score=overall,
        critical_kpi_count=sum(1 for p in processed if p.weight == 3),
        completion_rate=completion,
        completed_kpis=sum(1 for p in processed if p.is_complete),
        applicable_kpis=len(processed),
        status=score_status(overall),
        benchmark=benchmark_overall(overall, benchmarks, sector, stage),
    )
    metadata: Dict[str, Any] = {
        "sector": sector,
        "stage": stage,
        "fingerprint": fingerprint,
        "completion_by_axis": completion_breakdown(processed),
        "top_contributors": {
            a.axis.value: [p.kpi.kpi_id for p in top_contributors(processed, a.axis)] for a in axis_scores
        },
    }

    return ReportData(
        summary=summary,
        axis_scores=tuple(axis_scores),
        processed_kpis=tuple(processed),
        risk_alerts=tuple(risks),
        correlation_insights=tuple(insights),
        action_plan=tuple(plan),
        quick_highlights=digest.quick_highlights,
        critical_alerts=digest.critical_alerts,
        all_highlights=digest.all_highlights,
        all_critical_alerts=digest.all_critical_alerts,
        metadata=freeze(metadata),
    )


class ReportEngine:
    """Builds growth reports for one rule set, caching by input content hash."""

    def __init__(
        self,
        kpis: Sequence[KPIDefinition],
        stage_rules: Sequence[StageRule],
        benchmarks: Optional[PeerBenchmarkDataset] = None,
        settings: Optional[EngineSettings] = None,
        cache: Optional[ReportCache] = None,
        name: str = "",
    ):
        """
        Args:
            kpis: KPI library
            stage_rules: Stage rules for every stage
            benchmarks: Peer benchmark dataset (optional)
            settings: Engine settings (defaults when omitted)
            cache: Report cache owned by this engine
            name: Rule pack name, for logging
        """
        self.name = name
        self.kpis = list(kpis)
        self.stage_rules = list(stage_rules)
        self.benchmarks = benchmarks if benchmarks is not None else PeerBenchmarkDataset()
        self.settings = settings or EngineSettings()
        self.cache = cache if cache is not None else ReportCache()
        self.rules_version = stable_hash({"kpis": self.kpis, "stage_rules": self.stage_rules})
        self.benchmark_version = stable_hash(self.benchmarks.to_records())
        logger.info(f"Report engine '{name}' ready with {len(self.kpis)} KPIs and {len(self.stage_rules)} stage rules")

    @classmethod
    def from_rule_pack(cls, pack, settings: Optional[EngineSettings] = None,
                       cache: Optional[ReportCache] = None) -> "ReportEngine":
        """Engine for a loaded RulePack, with the pack's targets applied to `settings`."""
        settings = (settings or EngineSettings()).with_pack_overrides(
            arpu_target=pack.arpu_target,
            axis_weights=pack.axis_weights,
        )
        return cls(pack.kpis, pack.stage_rules, pack.benchmarks, settings=settings, cache=cache, name=pack.pack_name)

    @property
    def stages(self) -> list:
        return sorted({rule.stage for rule in self.stage_rules})

    def fingerprint(
        self,
        responses: Sequence[KPIResponse],
        sector: str,
        stage: str,
        previous_axis_scores: Optional[Mapping[str, float]] = None,
        settings: Optional[EngineSettings] = None,
    ) -> str:
        return stable_hash({
            "rules": self.rules_version,
            "benchmarks": self.benchmark_version,
            "responses": stable_hash(list(responses)),
            "sector": sector,
            "stage": stage,
            "previous": {str(getattr(k, "value", k)): v for k, v in (previous_axis_scores or {}).items()},
            "settings": settings or self.settings,
        })

    def evaluate(
        self,
        responses: Sequence[KPIResponse],
        sector: str,
        stage: str,
        previous_axis_scores: Optional[Mapping[str, float]] = None,
        digest_size: Optional[int] = None,
    ) -> ReportData:
        """Build (or fetch from cache) the report for `responses`."""
        settings = self.settings
        if digest_size is not None:
            settings = replace(settings, digest_size=digest_size)

        key = self.fingerprint(responses, sector, stage, previous_axis_scores, settings)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Report cache hit for {self.name or 'engine'} ({key[:12]})")
            return cached

        report = build_report(
            self.kpis, self.stage_rules, responses, self.benchmarks, sector, stage,
            settings=settings,
            previous_axis_scores=previous_axis_scores,
            fingerprint=key,
        )
        logger.info(
            f"Built report {key[:12]} for sector={sector} stage={stage}: "
            f"overall={report.summary.overall_score}, completion={report.summary.completion_rate:.2f}, "
            f"risks={len(report.risk_alerts)}"
        )
        self.cache.set(key, report)
        return report
