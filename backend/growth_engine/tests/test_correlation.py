import pytest

from growth_engine.config import EngineSettings
from growth_engine.correlation import collect_raw_metrics, derive_insights, priority_for_score
from growth_engine.models import Axis, InputType, KPIDefinition, KPIResponse


def _kpi(kpi_id, metric_key, input_type=InputType.NUMERIC, formula=None):
    return KPIDefinition(kpi_id=kpi_id, axis=Axis.EC, input_type=input_type, name=kpi_id,
                         formula=formula, applicable_stages=frozenset({"A-1"}), metric_key=metric_key)


KPIS = [
    _kpi("REV", "total_revenue"),
    _kpi("USERS", "total_users"),
    _kpi("CAC", "cac"),
    _kpi("LTV", "ltv"),
    _kpi("GM", "gross_margin", InputType.PERCENTAGE),
    _kpi("BURN", None, InputType.CALCULATION, formula="{net_new_arr} / {net_burn}"),
]


def _responses(**overrides):
    values = {
        "REV": 20000,
        "USERS": 40,
        "CAC": 3000,
        "LTV": 9000,
        "GM": 75,
        "BURN": {"net_burn": 300, "net_new_arr": 100},
    }
    values.update(overrides)
    return [KPIResponse(kpi_id=k, value=v) for k, v in values.items()]


def _by_id(insights):
    return {i.insight_id: i for i in insights}


def test_all_metrics_computed_from_raw_values():
    insights = _by_id(derive_insights(KPIS, _responses(), EngineSettings(arpu_target=500)))
    assert list(insights) == ["arpu", "burn_multiple", "cac_payback", "ltv_cac_ratio", "growth_efficiency"]

    assert insights["arpu"].value == pytest.approx(500.0)
    assert insights["arpu"].score == pytest.approx(100.0)
    assert insights["arpu"].kpi_ids == ("REV", "USERS")

    assert insights["burn_multiple"].value == pytest.approx(3.0)
    assert insights["burn_multiple"].score == 40.0
    assert insights["burn_multiple"].priority == "high"
    assert insights["burn_multiple"].kpi_ids == ("BURN",)

    # 3000 / (500 * 0.75) = 8 months
    assert insights["cac_payback"].value == pytest.approx(8.0)
    assert insights["cac_payback"].priority == "low"

    assert insights["ltv_cac_ratio"].value == pytest.approx(3.0)
    assert insights["ltv_cac_ratio"].score == 90.0

    assert insights["growth_efficiency"].value == pytest.approx(1 / 3)
    assert insights["growth_efficiency"].score == 40.0


def test_zero_cac_omits_only_cac_metrics():
    insights = _by_id(derive_insights(KPIS, _responses(CAC=0), EngineSettings(arpu_target=500)))
    assert "ltv_cac_ratio" not in insights
    assert "cac_payback" not in insights
    assert {"arpu", "burn_multiple", "growth_efficiency"} <= set(insights)


def test_zero_users_omits_arpu_and_payback():
    insights = _by_id(derive_insights(KPIS, _responses(USERS=0)))
    assert "arpu" not in insights
    assert "cac_payback" not in insights
    assert "ltv_cac_ratio" in insights


def test_missing_inputs_produce_no_insights():
    assert derive_insights(KPIS, []) == []


def test_negative_burn_is_invalid():
    insights = _by_id(derive_insights(KPIS, _responses(BURN={"net_burn": -50, "net_new_arr": 100})))
    assert "burn_multiple" not in insights
    assert "growth_efficiency" not in insights


def test_ltv_cac_below_one_is_critical():
    insights = _by_id(derive_insights(KPIS, _responses(LTV=1500)))
    assert insights["ltv_cac_ratio"].score == 10.0
    assert insights["ltv_cac_ratio"].priority == "critical"


def test_not_applicable_response_is_skipped():
    responses = _responses() + [KPIResponse(kpi_id="REV", value=None, not_applicable=True)]
    raw = collect_raw_metrics(KPIS, responses)
    assert "total_revenue" not in raw
    assert raw["net_burn"] == (300.0, ("BURN",))


def test_not_applicable_calculation_fields_are_not_collected():
    responses = [r for r in _responses() if r.kpi_id != "BURN"]
    responses.append(KPIResponse(kpi_id="BURN", value={"net_burn": 300, "net_new_arr": 100}, not_applicable=True))
    raw = collect_raw_metrics(KPIS, responses)
    assert "net_burn" not in raw
    assert "net_new_arr" not in raw
    insights = _by_id(derive_insights(KPIS, responses, EngineSettings()))
    assert "burn_multiple" not in insights
    assert "growth_efficiency" not in insights


@pytest.mark.parametrize("score,priority", [(10, "critical"), (40, "high"), (60, "medium"), (79.9, "medium"), (80, "low")])
def test_priority_buckets(score, priority):
    assert priority_for_score(score) == priority
