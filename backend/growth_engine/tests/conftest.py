import pytest
import yaml

from growth_engine.models import (
    Axis,
    InputType,
    KPIDefinition,
    ProcessedKPIData,
    STATUS_COMPLETE,
    STATUS_INCOMPLETE,
)
from growth_engine.processing import build_kpi_insight


def _write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))


@pytest.fixture
def make_processed():
    """Factory for ProcessedKPIData records; score None means incomplete."""

    def _make(kpi_id, axis="GO", score=None, weight=1, name=None):
        kpi = KPIDefinition(
            kpi_id=kpi_id,
            axis=Axis(axis),
            input_type=InputType.NUMERIC,
            name=name or kpi_id,
            applicable_stages=frozenset({"A-1"}),
        )
        reason = None if score is not None else "missing response"
        return ProcessedKPIData(
            kpi=kpi,
            weight_level=f"x{weight}",
            weight=weight,
            normalized_score=score,
            status=STATUS_COMPLETE if score is not None else STATUS_INCOMPLETE,
            insights=build_kpi_insight(kpi, score, reason, None),
            incomplete_reason=reason,
        )

    return _make


@pytest.fixture
def rule_pack_dir(tmp_path):
    """A packs directory holding one small, valid 'saas' pack."""
    pack_dir = tmp_path / "saas"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "pack.yaml", {"name": "SaaS", "sector": "S-1", "arpu_target": 500})
    _write_yaml(
        pack_dir / "kpis.yaml",
        {
            "kpis": {
                "GO-1": {"axis": "GO", "input_type": "numeric", "name": "Customers",
                         "stages": ["A-1"], "metric_key": "total_users"},
                "GO-2": {"axis": "GO", "input_type": "rubric", "name": "ICP", "stages": ["A-1"]},
                "EC-1": {"axis": "EC", "input_type": "numeric", "name": "MRR",
                         "stages": ["A-1"], "metric_key": "total_revenue"},
            }
        },
    )
    _write_yaml(
        pack_dir / "stage_rules.yaml",
        {
            "stage_rules": {
                "GO-1": {"A-1": {"weight": "x2", "ruleset": "0: 0\n100: 100"}},
                "GO-2": {"A-1": {"weight": "x3", "ruleset": "1. None (0)\n2. Draft (50)\n3. Validated (100)"}},
                "EC-1": {"A-1": {"weight": "x1", "ruleset": "0: 0\n100: 20,000"}},
            }
        },
    )
    _write_yaml(
        pack_dir / "benchmarks.yaml",
        {
            "distributions": [
                {"stage": "A-1", "axis": "GO", "scores": [20, 40, 60, 80], "source": "test cohort"},
                {"stage": "A-1", "axis": "overall", "scores": [30, 50, 70], "source": "test cohort"},
            ],
            "kpi_benchmarks": [
                {"stage": "A-1", "kpi_id": "GO-1", "industry_average": 50, "source": "test cohort"},
            ],
        },
    )
    return tmp_path
