import yaml

from growth_engine.models import Axis, InputType, KPIResponse
from growth_engine.report_engine import ReportEngine
from growth_engine.rule_loader import RulePack, RulePackManager


def _write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))


def test_rule_pack_loader_valid_pack(rule_pack_dir):
    manager = RulePackManager(str(rule_pack_dir))
    assert "saas" in manager.packs
    pack = manager.packs["saas"]
    assert pack.validated is True
    assert pack.sector == "S-1"
    assert pack.arpu_target == 500.0
    kpis = {k.kpi_id: k for k in pack.kpis}
    assert set(kpis) == {"GO-1", "GO-2", "EC-1"}
    assert kpis["GO-1"].axis == Axis.GO
    assert kpis["GO-1"].metric_key == "total_users"
    assert kpis["GO-2"].input_type == InputType.RUBRIC
    assert pack.stages == ["A-1"]
    rules = {r.kpi_id: r for r in pack.stage_rules}
    assert rules["GO-2"].multiplier == 3
    assert rules["GO-2"].ruleset is not None
    assert pack.benchmarks.lookup("S-1", "A-1", "GO").source == "test cohort"
    assert pack.benchmarks.kpi_benchmark("S-1", "A-1", "GO-1").industry_average == 50.0


def test_rule_pack_summary(rule_pack_dir):
    summary = RulePackManager(str(rule_pack_dir)).list_summaries()[0]
    assert summary["id"] == "saas"
    assert summary["kpi_count"] == 3
    assert summary["axes"]["GO"] == 2
    assert len(summary["version"]) == 64


def test_unknown_axis_invalidates_pack(rule_pack_dir):
    pack_dir = rule_pack_dir / "bad"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": {"X-1": {"axis": "ZZ", "input_type": "numeric", "stages": ["A-1"]}}})
    _write_yaml(pack_dir / "stage_rules.yaml", {"stage_rules": {}})

    manager = RulePackManager(str(rule_pack_dir))
    assert "bad" not in manager.packs  # skipped due to validation errors
    assert "saas" in manager.packs


def test_missing_required_file_skips_pack(rule_pack_dir):
    pack_dir = rule_pack_dir / "empty"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": {}})

    manager = RulePackManager(str(rule_pack_dir))
    assert "empty" not in manager.packs


def test_invalid_weight_and_unknown_kpi_are_errors(tmp_path):
    pack_dir = tmp_path / "weights"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": {"GO-1": {"axis": "GO", "input_type": "numeric", "stages": ["A-1"]}}})
    _write_yaml(pack_dir / "stage_rules.yaml", {"stage_rules": {
        "GO-1": {"A-1": {"weight": "x9", "ruleset": "0: 0\n100: 1"}},
        "NOPE": {"A-1": {"weight": "x1", "ruleset": "0: 0\n100: 1"}},
    }})
    pack = RulePack("weights", str(tmp_path))
    assert pack.validated is False
    assert any("x9" in e for e in pack.validation_errors)
    assert any("NOPE" in e for e in pack.validation_errors)


def test_calculation_without_formula_is_an_error(tmp_path):
    pack_dir = tmp_path / "calc"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": {"EC-1": {"axis": "EC", "input_type": "calculation", "stages": ["A-1"]}}})
    _write_yaml(pack_dir / "stage_rules.yaml", {"stage_rules": {"EC-1": {"A-1": {"weight": "x1"}}}})
    pack = RulePack("calc", str(tmp_path))
    assert pack.validated is False


def test_bad_ruleset_text_is_a_warning_and_scores_incomplete(tmp_path):
    pack_dir = tmp_path / "warn"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": {
        "GO-1": {"axis": "GO", "input_type": "numeric", "stages": ["A-1"]},
        "GO-2": {"axis": "GO", "input_type": "numeric", "stages": ["A-1"]},
    }})
    _write_yaml(pack_dir / "stage_rules.yaml", {"stage_rules": {
        "GO-1": {"A-1": {"weight": "x1", "ruleset": "garbage"}},
        "GO-2": {"A-1": {"weight": "x1", "ruleset": "0: 0\n100: 10"}},
    }})
    pack = RulePack("warn", str(tmp_path))
    assert pack.validated is True
    assert any("GO-1" in w for w in pack.warnings)

    report = ReportEngine.from_rule_pack(pack).evaluate(
        [KPIResponse("GO-1", 5), KPIResponse("GO-2", 5)], sector="", stage="A-1"
    )
    statuses = {p.kpi.kpi_id: p.status for p in report.processed_kpis}
    assert statuses == {"GO-1": "incomplete", "GO-2": "complete"}
    assert report.summary.overall_score == 50.0


def test_peer_scores_csv_is_loaded(rule_pack_dir):
    (rule_pack_dir / "saas" / "peer_scores.csv").write_text(
        "stage,axis,score\nA-2,EC,40\nA-2,EC,60\nA-2,overall,55\n"
    )
    pack = RulePack("saas", str(rule_pack_dir))
    assert pack.benchmarks.lookup("S-1", "A-2", "EC").scores == (40.0, 60.0)
    assert pack.benchmarks.lookup("S-1", "A-2").source == "saas/peer_scores.csv"
    # yaml distributions are kept alongside
    assert pack.benchmarks.lookup("S-1", "A-1", "GO") is not None


def test_missing_packs_dir_is_empty(tmp_path):
    assert RulePackManager(str(tmp_path / "nope")).packs == {}


def test_scalar_entries_invalidate_only_their_pack(rule_pack_dir):
    pack_dir = rule_pack_dir / "broken"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": {"GO-1": "oops"}})
    _write_yaml(pack_dir / "stage_rules.yaml", {"stage_rules": {}})

    manager = RulePackManager(str(rule_pack_dir))
    assert "broken" not in manager.packs
    assert "saas" in manager.packs

    pack = RulePack("broken", str(rule_pack_dir))
    assert pack.validated is False
    assert any("GO-1" in e and "mapping" in e for e in pack.validation_errors)


def test_scalar_stage_rule_is_a_validation_error(tmp_path):
    pack_dir = tmp_path / "rules"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": {"GO-1": {"axis": "GO", "input_type": "numeric", "stages": ["A-1"]}}})
    _write_yaml(pack_dir / "stage_rules.yaml", {"stage_rules": {"GO-1": {"A-1": "x2"}}})
    pack = RulePack("rules", str(tmp_path))
    assert pack.validated is False
    assert any("A-1" in e for e in pack.validation_errors)


def test_unparseable_pack_does_not_break_discovery(rule_pack_dir):
    pack_dir = rule_pack_dir / "listy"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": ["GO-1", "GO-2"]})
    _write_yaml(pack_dir / "stage_rules.yaml", {"stage_rules": {}})

    manager = RulePackManager(str(rule_pack_dir))
    assert list(manager.packs) == ["saas"]


def test_bad_axis_weights_are_validation_errors(tmp_path):
    pack_dir = tmp_path / "weighted"
    pack_dir.mkdir()
    _write_yaml(pack_dir / "pack.yaml", {"sector": "S-1", "axis_weights": {"GO": -1, "EC": 3, "XX": 1}})
    _write_yaml(pack_dir / "kpis.yaml", {"kpis": {"GO-1": {"axis": "GO", "input_type": "numeric", "stages": ["A-1"]}}})
    _write_yaml(pack_dir / "stage_rules.yaml", {"stage_rules": {"GO-1": {"A-1": {"weight": "x1", "ruleset": "0: 0\n100: 1"}}}})
    pack = RulePack("weighted", str(tmp_path))
    assert pack.validated is False
    assert any("GO" in e and ">= 0" in e for e in pack.validation_errors)
    assert any("XX" in e for e in pack.validation_errors)
