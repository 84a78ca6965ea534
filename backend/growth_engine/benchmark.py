"""
Peer benchmarks: where a score sits within its sector/stage peer group.

Distributions are keyed by (sector, stage, axis); axis None holds the overall
composite distribution. A key with no distribution is reported as
unavailable, never filled in with a substitute.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from growth_engine.models import Axis, AxisScore, BenchmarkResult

logger = logging.getLogger(__name__)

OVERALL = "overall"

BENCHMARK_UNAVAILABLE = "benchmark unavailable"
INSUFFICIENT_DATA = "insufficient data"


@dataclass(frozen=True)
class PeerDistribution:
    sector: str
    stage: str
    axis: Optional[str]  # None for the overall composite
    scores: Tuple[float, ...]
    average: Optional[float] = None
    source: str = ""


@dataclass(frozen=True)
class KPIBenchmark:
    sector: str
    stage: str
    kpi_id: str
    industry_average: float
    source: str = ""


def _axis_key(axis: Any) -> Optional[str]:
    if axis is None:
        return None
    if isinstance(axis, Axis):
        return axis.value
    if isinstance(axis, float) and math.isnan(axis):
        return None
    text = str(axis).strip()
    if not text or text.lower() == OVERALL:
        return None
    return text.upper()


class PeerBenchmarkDataset:
    """Peer score distributions plus KPI-level industry averages."""

    def __init__(self, distributions: Iterable[PeerDistribution] = (),
                 kpi_benchmarks: Iterable[KPIBenchmark] = ()):
        self._distributions: Dict[Tuple[str, str, Optional[str]], PeerDistribution] = {}
        self._kpi_benchmarks: Dict[Tuple[str, str, str], KPIBenchmark] = {}
        for dist in distributions:
            key = (dist.sector, dist.stage, _axis_key(dist.axis))
            if key in self._distributions:
                logger.warning(f"Duplicate peer distribution for {key}; keeping the last one")
            self._distributions[key] = dist
        for bench in kpi_benchmarks:
            self._kpi_benchmarks[(bench.sector, bench.stage, bench.kpi_id)] = bench

    def __len__(self) -> int:
        return len(self._distributions)

    def lookup(self, sector: str, stage: str, axis: Any = None) -> Optional[PeerDistribution]:
        return self._distributions.get((sector, stage, _axis_key(axis)))

    def kpi_benchmark(self, sector: str, stage: str, kpi_id: str) -> Optional[KPIBenchmark]:
        return self._kpi_benchmarks.get((sector, stage, kpi_id))

    @classmethod
    def from_records(cls, distributions: Sequence[Dict[str, Any]] = (),
                     kpi_benchmarks: Sequence[Dict[str, Any]] = ()) -> "PeerBenchmarkDataset":
        dists = [
            PeerDistribution(
                sector=str(rec["sector"]),
                stage=str(rec["stage"]),
                axis=_axis_key(rec.get("axis")),
                scores=tuple(float(s) for s in rec.get("scores") or ()),
                average=float(rec["average"]) if rec.get("average") is not None else None,
                source=rec.get("source", ""),
            )
            for rec in distributions
        ]
        benches = [
            KPIBenchmark(
                sector=str(rec["sector"]),
                stage=str(rec["stage"]),
                kpi_id=str(rec["kpi_id"]),
                industry_average=float(rec["industry_average"]),
                source=rec.get("source", ""),
            )
            for rec in kpi_benchmarks
        ]
        return cls(dists, benches)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, source: str = "") -> "PeerBenchmarkDataset":
        """Build from long-format peer scores: one row per (sector, stage, axis, score).

        An empty or 'overall' axis cell marks the overall composite score.
        """
        required = {"sector", "stage", "score"}
        missing = required - set(frame.columns)
        if missing:
            raise ValueError(f"Peer score frame is missing columns: {sorted(missing)}")

        data = frame.copy()
        if "axis" not in data.columns:
            data["axis"] = OVERALL
        data["axis"] = data["axis"].fillna(OVERALL).astype(str)
        data["score"] = pd.to_numeric(data["score"], errors="coerce")
        data = data.dropna(subset=["score"])

        dists = []
        for (sector, stage, axis), group in data.groupby(["sector", "stage", "axis"], sort=True):
            dists.append(PeerDistribution(
                sector=str(sector),
                stage=str(stage),
                axis=_axis_key(axis),
                scores=tuple(float(s) for s in group["score"]),
                source=source,
            ))
        return cls(dists)

    def merged_with(self, other: "PeerBenchmarkDataset") -> "PeerBenchmarkDataset":
        """New dataset with `other`'s entries taking precedence."""
        return PeerBenchmarkDataset(
            list(self._distributions.values()) + list(other._distributions.values()),
            list(self._kpi_benchmarks.values()) + list(other._kpi_benchmarks.values()),
        )

    def to_records(self) -> Dict[str, List[Dict[str, Any]]]:
        """Canonical, order-independent form used for content hashing."""
        dists = sorted(self._distributions.items(), key=lambda kv: (kv[0][0], kv[0][1], kv[0][2] or ""))
        benches = sorted(self._kpi_benchmarks.items())
        return {
            "distributions": [
                {"sector": d.sector, "stage": d.stage, "axis": key[2], "scores": list(d.scores),
                 "average": d.average, "source": d.source}
                for key, d in dists
            ],
            "kpi_benchmarks": [
                {"sector": b.sector, "stage": b.stage, "kpi_id": b.kpi_id,
                 "industry_average": b.industry_average, "source": b.source}
                for _, b in benches
            ],
        }


def validate_distribution(dist: PeerDistribution) -> List[str]:
    """Data-quality issues for one distribution (empty result means usable)."""
    issues = []
    if not dist.scores:
        issues.append("no peer scores")
    if any(not math.isfinite(s) or s < 0 or s > 100 for s in dist.scores):
        issues.append("peer scores must be finite and within 0-100")
    if dist.average is not None and not 0 <= dist.average <= 100:
        issues.append("average must be within 0-100")
    if not dist.source:
        issues.append("source is required")
    return issues


def percentile_status(percentile: float) -> str:
    if percentile >= 75:
        return "excellent"
    if percentile >= 50:
        return "good"
    if percentile >= 25:
        return "fair"
    return "needs_attention"


def percentile_label(percentile: float) -> str:
    if percentile >= 90:
        return "Top 10%"
    if percentile >= 75:
        return "Top 25%"
    if percentile >= 50:
        return "Above Average"
    if percentile >= 25:
        return "Below Average"
    return "Bottom 25%"


def compare(score: Optional[float], distribution: Optional[PeerDistribution]) -> BenchmarkResult:
    """Percentile, status and gap of `score` within a peer distribution."""
    if distribution is None:
        return BenchmarkResult(available=False, reason=BENCHMARK_UNAVAILABLE)
    if score is None:
        return BenchmarkResult(available=False, reason=INSUFFICIENT_DATA, source=distribution.source)

    peers = np.asarray(distribution.scores, dtype=float)
    peers = peers[np.isfinite(peers)]
    if peers.size == 0:
        return BenchmarkResult(available=False, reason=BENCHMARK_UNAVAILABLE, source=distribution.source)

    percentile = float(np.count_nonzero(peers <= score)) / peers.size * 100.0
    average = distribution.average if distribution.average is not None else float(peers.mean())
    return BenchmarkResult(
        available=True,
        percentile=percentile,
        percentile_label=percentile_label(percentile),
        status=percentile_status(percentile),
        gap=score - average,
        peer_average=average,
        peer_median=float(np.median(peers)),
        sample_size=int(peers.size),
        source=distribution.source,
    )


def benchmark_axes(axis_scores: Sequence[AxisScore], dataset: Optional[PeerBenchmarkDataset],
                   sector: str, stage: str) -> List[AxisScore]:
    """Copies of `axis_scores` with their benchmark comparison attached."""
    out = []
    for axis_score in axis_scores:
        dist = dataset.lookup(sector, stage, axis_score.axis) if dataset is not None else None
        out.append(replace(axis_score, benchmark=compare(axis_score.score, dist)))
    return out


def benchmark_overall(score: Optional[float], dataset: Optional[PeerBenchmarkDataset],
                      sector: str, stage: str) -> BenchmarkResult:
    dist = dataset.lookup(sector, stage) if dataset is not None else None
    return compare(score, dist)
