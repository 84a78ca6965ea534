"""
Engine settings.

Every tunable used by the scoring pipeline lives here and is passed into the
engine explicitly. `EngineSettings.from_env()` reads overrides from the
process environment (a `.env` file is loaded by the service at startup).
"""

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional


@dataclass(frozen=True)
class RiskThresholds:
    core_kpi_floor: float = 50.0  # x3 KPIs below this are critical
    high_risk_score: float = 40.0
    high_risk_count: int = 3
    weak_axis_score: float = 40.0
    axis_gap_warning: float = -20.0
    axis_gap_critical: float = -35.0
    axis_imbalance: float = 40.0
    min_completion_rate: float = 0.7


@dataclass(frozen=True)
class EngineSettings:
    digest_size: int = 3
    multi_select_max_points: float = 15.0
    max_action_items: int = 8
    trend_tolerance: float = 2.0
    arpu_target: float = 50000.0
    axis_weights: Optional[Dict[str, float]] = None
    risk: RiskThresholds = field(default_factory=RiskThresholds)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            digest_size=int(os.getenv("DIGEST_SIZE", "3")),
            multi_select_max_points=float(os.getenv("MULTI_SELECT_MAX_POINTS", "15")),
            max_action_items=int(os.getenv("MAX_ACTION_ITEMS", "8")),
            trend_tolerance=float(os.getenv("TREND_TOLERANCE", "2")),
            arpu_target=float(os.getenv("ARPU_TARGET", "50000")),
        )

    def with_pack_overrides(self, arpu_target: Optional[float] = None,
                            axis_weights: Optional[Dict[str, float]] = None) -> "EngineSettings":
        """Settings copy carrying a rule pack's own targets."""
        changes = {}
        if arpu_target is not None:
            changes["arpu_target"] = float(arpu_target)
        if axis_weights:
            changes["axis_weights"] = {str(k): float(v) for k, v in axis_weights.items()}
        return replace(self, **changes) if changes else self


RULE_PACKS_DIR = os.getenv("RULE_PACKS_DIR", "rule_packs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
