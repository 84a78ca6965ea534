from growth_engine.config import RiskThresholds
from growth_engine.models import (
    Axis,
    AxisScore,
    BenchmarkResult,
    CorrelationInsight,
    RiskAlert,
)
from growth_engine.risk_detector import detect_risks, sort_risks


def _insight(insight_id, priority, kpi_ids=("EC-1",)):
    return CorrelationInsight(insight_id=insight_id, title=insight_id, value=1.0, description="d",
                              interpretation="i", score=30.0, priority=priority, kpi_ids=tuple(kpi_ids))


def test_core_kpi_underperformance_is_critical(make_processed):
    processed = [
        make_processed("GO-1", "GO", 45, weight=3),
        make_processed("GO-2", "GO", 30, weight=3),
        make_processed("GO-3", "GO", 90, weight=3),
    ]
    alerts = detect_risks(processed, [])
    core = next(a for a in alerts if a.alert_id == "core_kpi_underperformance")
    assert core.severity == "critical"
    assert core.affected_kpis == ("GO-2", "GO-1")
    assert core.suggested_actions


def test_many_high_risk_kpis(make_processed):
    processed = [make_processed(f"PF-{i}", "PF", 20 + i) for i in range(3)]
    alerts = detect_risks(processed, [])
    assert any(a.alert_id == "high_risk_concentration" and a.severity == "critical" for a in alerts)
    assert not any(a.alert_id == "high_risk_concentration" for a in detect_risks(processed[:2], []))


def test_metric_priorities_map_to_severity(make_processed):
    alerts = detect_risks([], [_insight("ltv_cac_ratio", "critical"), _insight("burn_multiple", "high"),
                               _insight("arpu", "medium")])
    by_id = {a.alert_id: a for a in alerts}
    assert by_id["metric_ltv_cac_ratio"].severity == "critical"
    assert by_id["metric_burn_multiple"].severity == "warning"
    assert "metric_arpu" not in by_id


def test_non_actionable_alerts_are_dropped():
    # no contributing KPI / no known remediation
    alerts = detect_risks([], [_insight("ltv_cac_ratio", "critical", kpi_ids=()),
                               _insight("unknown_metric", "critical")])
    assert alerts == []


def test_axis_gap_against_benchmark(make_processed):
    processed = [make_processed("GO-1", "GO", 30), make_processed("GO-2", "GO", 35)]
    bench = BenchmarkResult(available=True, percentile=5.0, percentile_label="Bottom 25%",
                            status="needs_attention", gap=-40.0, peer_average=72.5)
    axis_scores = [AxisScore(axis=Axis.GO, score=32.5, status="needs_attention", benchmark=bench)]
    alerts = detect_risks(processed, [], axis_scores)
    gap = next(a for a in alerts if a.alert_id == "axis_gap_GO")
    assert gap.severity == "critical"
    assert set(gap.affected_kpis) == {"GO-1", "GO-2"}
    assert not any(a.alert_id == "weak_axis_GO" for a in alerts)


def test_weak_axis_without_benchmark(make_processed):
    processed = [make_processed("TO-1", "TO", 30)]
    axis_scores = [AxisScore(axis=Axis.TO, score=30.0, status="needs_attention")]
    alerts = detect_risks(processed, [], axis_scores)
    weak = next(a for a in alerts if a.alert_id == "weak_axis_TO")
    assert weak.severity == "warning"
    assert weak.affected_kpis == ("TO-1",)


def test_imbalance_and_low_completion_are_info(make_processed):
    processed = [
        make_processed("GO-1", "GO", 95),
        make_processed("EC-1", "EC", 45),
        make_processed("EC-2", "EC", None),
        make_processed("PT-1", "PT", None),
        make_processed("PF-1", "PF", None),
    ]
    axis_scores = [AxisScore(axis=Axis.GO, score=95.0, status="excellent"),
                   AxisScore(axis=Axis.EC, score=45.0, status="fair")]
    alerts = {a.alert_id: a for a in detect_risks(processed, [], axis_scores)}
    assert alerts["axis_imbalance"].severity == "info"
    assert alerts["axis_imbalance"].affected_kpis == ("EC-1",)
    assert alerts["low_completion"].severity == "info"
    assert alerts["low_completion"].affected_kpis == ("EC-2", "PT-1", "PF-1")


def test_output_sorted_by_severity_then_affected_count(make_processed):
    processed = [
        make_processed("GO-1", "GO", 30, weight=3),
        make_processed("EC-1", "EC", 20),
        make_processed("EC-2", "EC", 25),
        make_processed("PT-1", "PT", None),
        make_processed("PT-2", "PT", None),
    ]
    insights = [_insight("burn_multiple", "high")]
    alerts = detect_risks(processed, insights, thresholds=RiskThresholds(min_completion_rate=0.9))
    severities = [a.severity for a in alerts]
    assert severities == sorted(severities, key=["critical", "warning", "info"].index)
    assert [a.alert_id for a in alerts] == [
        "high_risk_concentration",
        "core_kpi_underperformance",
        "metric_burn_multiple",
        "low_completion",
    ]


def test_sort_risks_tie_breaks_on_affected_count():
    a = RiskAlert(alert_id="a", severity="warning", title="a", description="", affected_kpis=("x",),
                  suggested_actions=("do",))
    b = RiskAlert(alert_id="b", severity="warning", title="b", description="", affected_kpis=("x", "y"),
                  suggested_actions=("do",))
    c = RiskAlert(alert_id="c", severity="critical", title="c", description="", affected_kpis=("x",),
                  suggested_actions=("do",))
    assert [r.alert_id for r in sort_risks([a, b, c])] == ["c", "b", "a"]
