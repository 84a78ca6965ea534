import pytest

from growth_engine.action_plan import build_plan, classify_timeframe, impact_from_gap, merge_overlapping
from growth_engine.config import EngineSettings
from growth_engine.models import ActionItem, Axis, AxisScore, BenchmarkResult, CorrelationInsight, RiskAlert


def _risk(alert_id, severity, kpis, actions=("Review the numbers",)):
    return RiskAlert(alert_id=alert_id, severity=severity, title=alert_id, description=f"{alert_id} description",
                     affected_kpis=tuple(kpis), suggested_actions=tuple(actions))


def test_risk_becomes_prioritised_action():
    plan = build_plan([_risk("core_kpi_underperformance", "critical", ["GO-1"], ["Fix GO-1", "Assign an owner"])], [], [])
    assert len(plan) == 1
    item = plan[0]
    assert item.priority == "critical"
    assert item.timeframe == "immediate"
    assert item.estimated_impact == "high"
    assert item.title == "Fix GO-1"
    assert item.steps == ("Fix GO-1", "Assign an owner")
    assert item.related_kpis == ("GO-1",)


def test_weak_axis_action_uses_benchmark_gap_for_impact():
    bench = BenchmarkResult(available=True, percentile=10.0, gap=-25.0)
    axis = AxisScore(axis=Axis.GO, score=35.0, status="needs_attention", kpi_ids=("GO-1",), benchmark=bench)
    plan = build_plan([], [axis], [])
    assert plan[0].priority == "high"
    assert plan[0].estimated_impact == "high"
    assert plan[0].category == "axis"
    assert plan[0].title == "Strengthen Go-to-Market"


def test_axis_without_benchmark_uses_target_distance():
    axis = AxisScore(axis=Axis.EC, score=55.0, status="fair", kpi_ids=("EC-1",))
    plan = build_plan([], [axis], [])
    assert plan[0].priority == "medium"
    assert plan[0].estimated_impact == "medium"  # 15 points short of 70


def test_healthy_axes_and_low_priority_metrics_add_nothing():
    axis = AxisScore(axis=Axis.EC, score=75.0, status="good", kpi_ids=("EC-1",))
    insight = CorrelationInsight(insight_id="arpu", title="ARPU", value=1.0, description="d", interpretation="i",
                                 score=90.0, priority="low", kpi_ids=("EC-1",))
    assert build_plan([], [axis], [insight]) == []


def test_overlapping_kpi_sets_are_merged_keeping_highest_priority():
    risk = _risk("weak_axis_GO", "warning", ["GO-1", "GO-2"], ["Set weekly pipeline targets"])
    axis = AxisScore(axis=Axis.GO, score=35.0, status="needs_attention", kpi_ids=("GO-2", "GO-1"))
    plan = build_plan([risk], [axis], [])
    assert len(plan) == 1
    assert plan[0].priority == "high"
    assert "Set weekly pipeline targets" in plan[0].steps


def test_plan_sorted_and_capped():
    risks = [_risk(f"r{i}", sev, [f"K{i}"]) for i, sev in enumerate(["info", "critical", "warning"] * 4)]
    plan = build_plan(risks, [], [], EngineSettings(max_action_items=5))
    assert len(plan) == 5
    order = {"critical": 0, "high": 1, "medium": 2}
    assert [order[p.priority] for p in plan] == sorted(order[p.priority] for p in plan)
    assert plan[0].priority == "critical"


def test_metric_insight_action_when_not_covered_by_risk():
    insight = CorrelationInsight(insight_id="burn_multiple", title="Burn Multiple", value=4.0, description="4.00x",
                                 interpretation="i", score=40.0, priority="high", kpi_ids=("EC-5",))
    plan = build_plan([], [], [insight])
    assert plan[0].category == "unit_economics"
    assert plan[0].timeframe == "immediate"  # "Freeze ..." is urgent wording


@pytest.mark.parametrize("priority,text,expected", [
    ("critical", "Review pricing", "immediate"),
    ("medium", "Stop paid campaigns now", "immediate"),
    ("high", "Review pricing", "short"),
    ("medium", "Hire a head of sales", "short"),
    ("medium", "Review pricing", "medium"),
    ("medium", "Know your customers", "medium"),
])
def test_classify_timeframe(priority, text, expected):
    assert classify_timeframe(priority, text) == expected


@pytest.mark.parametrize("gap,impact", [(-30, "high"), (-20, "high"), (-12, "medium"), (-5, "low"), (10, "low")])
def test_impact_from_gap(gap, impact):
    assert impact_from_gap(gap) == impact


def test_merge_overlapping_is_order_independent():
    a = ActionItem(priority="medium", category="x", title="A", description="", timeframe="medium",
                   estimated_impact="low", related_kpis=("K1",), steps=("a",))
    b = ActionItem(priority="critical", category="x", title="B", description="", timeframe="immediate",
                   estimated_impact="high", related_kpis=("K1",), steps=("b",))
    assert merge_overlapping([a, b]) == merge_overlapping([b, a])
    assert merge_overlapping([a, b])[0].steps == ("b", "a")
