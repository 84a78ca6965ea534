"""
Report models (dataclasses) shared by the scoring pipeline.
Keeps business structures separate from transport / persistence concerns.
"""

from collections.abc import Mapping as AbcMapping
from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from types import MappingProxyType
from typing import Dict, Any, Mapping, Optional, Tuple


class Axis(str, Enum):
    """The five diagnostic axes, in report order."""
    GO = "GO"
    EC = "EC"
    PT = "PT"
    PF = "PF"
    TO = "TO"

    @property
    def label(self) -> str:
        return AXIS_LABELS[self]


AXIS_LABELS: Dict[Axis, str] = {
    Axis.GO: "Go-to-Market",
    Axis.EC: "Economics",
    Axis.PT: "Product & Tech",
    Axis.PF: "Performance",
    Axis.TO: "Team & Org",
}

ALL_AXES: Tuple[Axis, ...] = (Axis.GO, Axis.EC, Axis.PT, Axis.PF, Axis.TO)


class InputType(str, Enum):
    NUMERIC = "numeric"
    PERCENTAGE = "percentage"
    RUBRIC = "rubric"
    MULTI_SELECT = "multi_select"
    SINGLE_SELECT = "single_select"
    CALCULATION = "calculation"


WEIGHT_MULTIPLIERS: Dict[str, int] = {"x1": 1, "x2": 2, "x3": 3}

SEVERITY_ORDER: Dict[str, int] = {"critical": 0, "warning": 1, "info": 2}
PRIORITY_ORDER: Dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}
IMPACT_ORDER: Dict[str, int] = {"high": 0, "medium": 1, "low": 2}

STATUS_COMPLETE = "complete"
STATUS_INCOMPLETE = "incomplete"
INSUFFICIENT_DATA = "insufficient_data"


# ── Inputs ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KPIDefinition:
    """A diagnostic question scored into one axis."""
    kpi_id: str
    axis: Axis
    input_type: InputType
    name: str = ""
    question: str = ""
    formula: Optional[str] = None  # calculation only, {field} placeholders
    applicable_stages: frozenset = frozenset()
    metric_key: Optional[str] = None  # financial input fed to the correlation metrics

    @property
    def display_name(self) -> str:
        return self.name or self.kpi_id


@dataclass(frozen=True)
class ThresholdRuleset:
    """Linear scoring band: `low` scores 0 points, `high` scores 100."""
    low: float
    high: float


@dataclass(frozen=True)
class Choice:
    label: str
    points: float


@dataclass(frozen=True)
class ChoiceRuleset:
    """Ordered levels/options with explicit points."""
    choices: Tuple[Choice, ...]
    max_points: Optional[float] = None


@dataclass(frozen=True)
class StageRule:
    """Stage-specific weight and scoring rule for one KPI."""
    kpi_id: str
    stage: str
    weight: str = "x1"
    ruleset_text: str = ""
    ruleset: Optional[Any] = None  # pre-parsed ThresholdRuleset / ChoiceRuleset

    def __post_init__(self):
        if self.weight not in WEIGHT_MULTIPLIERS:
            raise ValueError(f"Invalid weight '{self.weight}' for KPI {self.kpi_id}; expected x1, x2 or x3")

    @property
    def multiplier(self) -> int:
        return WEIGHT_MULTIPLIERS[self.weight]


@dataclass(frozen=True)
class KPIResponse:
    """A raw answer. `value` takes the shape of the KPI's input type."""
    kpi_id: str
    value: Any = None
    not_applicable: bool = False


# ── Pipeline records ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NormalizedResult:
    score: Optional[float]
    reason: Optional[str] = None
    raw_value: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        return self.score is not None

    @classmethod
    def complete(cls, score: float, raw_value: Optional[float] = None) -> "NormalizedResult":
        return cls(score=score, raw_value=raw_value)

    @classmethod
    def incomplete(cls, reason: str) -> "NormalizedResult":
        return cls(score=None, reason=reason)


@dataclass(frozen=True)
class KPIInsight:
    summary: str
    interpretation: str
    risk_level: str  # "low", "medium", "high", "unknown"


@dataclass(frozen=True)
class BenchmarkInfo:
    industry_average: float
    source: str = ""


@dataclass(frozen=True)
class ProcessedKPIData:
    kpi: KPIDefinition
    weight_level: str
    weight: int
    normalized_score: Optional[float]
    status: str
    insights: KPIInsight
    incomplete_reason: Optional[str] = None
    raw_value: Optional[float] = None
    benchmark_info: Optional[BenchmarkInfo] = None

    @property
    def is_complete(self) -> bool:
        return self.status == STATUS_COMPLETE


@dataclass(frozen=True)
class BenchmarkResult:
    available: bool
    percentile: Optional[float] = None
    percentile_label: Optional[str] = None
    status: Optional[str] = None
    gap: Optional[float] = None
    peer_average: Optional[float] = None
    peer_median: Optional[float] = None
    sample_size: int = 0
    source: str = ""
    reason: Optional[str] = None  # set when unavailable


@dataclass(frozen=True)
class AxisScore:
    axis: Axis
    score: Optional[float]
    status: str
    trend: str = "unknown"
    completed_kpis: int = 0
    applicable_kpis: int = 0
    kpi_ids: Tuple[str, ...] = ()  # complete KPIs behind the score
    benchmark: Optional[BenchmarkResult] = None

    @property
    def label(self) -> str:
        return self.axis.label


@dataclass(frozen=True)
class CorrelationInsight:
    insight_id: str
    title: str
    value: float
    description: str
    interpretation: str
    score: float
    priority: str  # "critical", "high", "medium", "low"
    kpi_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RiskAlert:
    alert_id: str
    severity: str  # "critical", "warning", "info"
    title: str
    description: str
    affected_kpis: Tuple[str, ...] = ()
    suggested_actions: Tuple[str, ...] = ()
    detected_by: str = ""


@dataclass(frozen=True)
class ActionItem:
    priority: str  # "critical", "high", "medium"
    category: str
    title: str
    description: str
    timeframe: str  # "immediate", "short", "medium"
    estimated_impact: str  # "high", "medium", "low"
    related_kpis: Tuple[str, ...] = ()
    steps: Tuple[str, ...] = ()
    source: str = ""


@dataclass(frozen=True)
class Highlight:
    text: str
    priority: str


@dataclass(frozen=True)
class DigestSummary:
    critical_alerts: Tuple[str, ...]
    quick_highlights: Tuple[str, ...]
    all_critical_alerts: Tuple[str, ...]
    all_highlights: Tuple[str, ...]


@dataclass(frozen=True)
class ReportSummary:
    overall_score: Optional[float]
    critical_kpi_count: int
    completion_rate: float
    completed_kpis: int
    applicable_kpis: int
    status: str
    benchmark: Optional[BenchmarkResult] = None


@dataclass(frozen=True)
class ReportData:
    """Everything a renderer needs; no presentation fields.

    Reports are shared between cache hits, so every collection is a tuple and
    `metadata` is a read-only mapping (see `freeze`).
    """
    summary: ReportSummary
    axis_scores: Tuple[AxisScore, ...]
    processed_kpis: Tuple[ProcessedKPIData, ...]
    risk_alerts: Tuple[RiskAlert, ...]
    correlation_insights: Tuple[CorrelationInsight, ...]
    action_plan: Tuple[ActionItem, ...]
    quick_highlights: Tuple[str, ...]
    critical_alerts: Tuple[str, ...]
    all_highlights: Tuple[str, ...] = ()
    all_critical_alerts: Tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def axis(self, axis: Axis) -> Optional[AxisScore]:
        for axis_score in self.axis_scores:
            if axis_score.axis == axis:
                return axis_score
        return None


def score_status(score: Optional[float]) -> str:
    """Absolute status bucket used for axes and the overall score."""
    if score is None:
        return INSUFFICIENT_DATA
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "needs_attention"


def freeze(value: Any) -> Any:
    """Read-only copy of nested dicts / lists (mapping proxies and tuples)."""
    if isinstance(value, AbcMapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, AbcMapping):
        return {str(_jsonable(k)): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def report_to_dict(report: ReportData) -> Dict[str, Any]:
    """JSON-ready form of a report (enums as values, sets as sorted lists)."""
    # asdict cannot deep-copy mapping proxies
    data = asdict(replace(report, metadata={}))
    data["metadata"] = report.metadata
    return _jsonable(data)
