"""
Rule Pack Loader: manages sector-specific KPI libraries.

A rule pack is a directory holding the KPI definitions, stage rules and peer
benchmarks for one sector, so a new sector can be served without code
changes:

    <pack>/pack.yaml         name, sector, description, arpu_target, axis_weights
    <pack>/kpis.yaml         KPI library
    <pack>/stage_rules.yaml  weight and scoring rule per KPI and stage
    <pack>/benchmarks.yaml   peer distributions and KPI industry averages (optional)
    <pack>/peer_scores.csv   long-format peer scores (optional)
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import yaml

from cache.cache import stable_hash
from growth_engine.benchmark import PeerBenchmarkDataset, validate_distribution
from growth_engine.correlation import METRIC_KEYS
from growth_engine.errors import RulePackValidationError, RulesetParseError
from growth_engine.formula import formula_fields
from growth_engine.models import Axis, InputType, KPIDefinition, StageRule
from growth_engine.ruleset_parser import parse_ruleset

logger = logging.getLogger(__name__)


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise RulePackValidationError(f"{path.name} must contain a mapping")
    return data


class RulePack:
    """Encapsulates all configuration for a sector rule pack."""

    def __init__(self, pack_name: str, packs_dir: str):
        """
        Args:
            pack_name: Directory name of the pack (e.g., 'b2b_saas')
            packs_dir: Base directory containing rule packs
        """
        self.pack_name = pack_name
        self.config_dir = Path(packs_dir) / pack_name

        self.name: str = pack_name
        self.sector: str = ""
        self.description: str = ""
        self.arpu_target: Optional[float] = None
        self.axis_weights: Optional[Dict[str, float]] = None
        self.kpis: List[KPIDefinition] = []
        self.stage_rules: List[StageRule] = []
        self.benchmarks = PeerBenchmarkDataset()
        self.validated: bool = False
        self.validation_errors: List[str] = []
        self.warnings: List[str] = []

        self._load_all_configs()
        self._validate()

    def _load_all_configs(self):
        """Loads all configuration files for the pack."""
        if not self.config_dir.exists():
            raise ValueError(f"Rule pack directory not found: {self.config_dir}")

        logger.info(f"Loading rule pack from {self.config_dir}")

        pack_file = self.config_dir / "pack.yaml"
        if pack_file.exists():
            self._load_pack_meta(pack_file)

        kpis_file = self.config_dir / "kpis.yaml"
        if not kpis_file.exists():
            raise ValueError(f"kpis.yaml not found in {self.config_dir}")
        self._load_kpis(kpis_file)

        rules_file = self.config_dir / "stage_rules.yaml"
        if not rules_file.exists():
            raise ValueError(f"stage_rules.yaml not found in {self.config_dir}")
        self._load_stage_rules(rules_file)

        benchmarks_file = self.config_dir / "benchmarks.yaml"
        if benchmarks_file.exists():
            self._load_benchmarks(benchmarks_file)

        peer_scores_file = self.config_dir / "peer_scores.csv"
        if peer_scores_file.exists():
            self._load_peer_scores(peer_scores_file)

    def _load_pack_meta(self, path: Path):
        data = _read_yaml(path)
        self.name = data.get("name", self.pack_name)
        self.sector = str(data.get("sector", ""))
        self.description = data.get("description", "")
        if data.get("arpu_target") is not None:
            self.arpu_target = float(data["arpu_target"])
        weights = data.get("axis_weights")
        if weights:
            if not isinstance(weights, dict):
                self.validation_errors.append("pack.yaml: axis_weights must be a mapping of axis to weight")
                return
            self.axis_weights = {str(k).upper(): float(v) for k, v in weights.items()}

    def _load_kpis(self, path: Path):
        data = _read_yaml(path)
        for kpi_id, kpi_data in (data.get("kpis") or {}).items():
            kpi_data = kpi_data or {}
            if not isinstance(kpi_data, dict):
                self.validation_errors.append(f"KPI '{kpi_id}': definition must be a mapping, got {kpi_data!r}")
                continue
            try:
                axis = Axis(str(kpi_data.get("axis", "")).upper())
            except ValueError:
                self.validation_errors.append(f"KPI '{kpi_id}': unknown axis '{kpi_data.get('axis')}'")
                continue
            try:
                input_type = InputType(kpi_data.get("input_type", ""))
            except ValueError:
                self.validation_errors.append(f"KPI '{kpi_id}': unknown input type '{kpi_data.get('input_type')}'")
                continue
            self.kpis.append(KPIDefinition(
                kpi_id=str(kpi_id),
                axis=axis,
                input_type=input_type,
                name=kpi_data.get("name", ""),
                question=kpi_data.get("question", ""),
                formula=kpi_data.get("formula"),
                applicable_stages=frozenset(str(s) for s in kpi_data.get("stages") or []),
                metric_key=kpi_data.get("metric_key"),
            ))
        logger.info(f"Loaded {len(self.kpis)} KPIs for rule pack '{self.pack_name}'")

    def _load_stage_rules(self, path: Path):
        data = _read_yaml(path)
        input_types = {kpi.kpi_id: kpi.input_type for kpi in self.kpis}
        for kpi_id, stages in (data.get("stage_rules") or {}).items():
            kpi_id = str(kpi_id)
            if kpi_id not in input_types:
                self.validation_errors.append(f"Stage rule references unknown KPI '{kpi_id}'")
                continue
            if not isinstance(stages or {}, dict):
                self.validation_errors.append(f"Stage rules for KPI '{kpi_id}' must map stage to rule, got {stages!r}")
                continue
            for stage, rule_data in (stages or {}).items():
                rule_data = rule_data or {}
                if not isinstance(rule_data, dict):
                    self.validation_errors.append(f"KPI '{kpi_id}' stage {stage}: rule must be a mapping, got {rule_data!r}")
                    continue
                text = rule_data.get("ruleset", "") or ""
                parsed = None
                try:
                    parsed = parse_ruleset(input_types[kpi_id], text)
                except RulesetParseError as e:
                    # KPI is scored as incomplete at evaluation time
                    self.warnings.append(f"KPI '{kpi_id}' stage {stage}: {e}")
                try:
                    self.stage_rules.append(StageRule(
                        kpi_id=kpi_id,
                        stage=str(stage),
                        weight=str(rule_data.get("weight", "x1")),
                        ruleset_text=text,
                        ruleset=parsed,
                    ))
                except ValueError as e:
                    self.validation_errors.append(str(e))
        logger.info(f"Loaded {len(self.stage_rules)} stage rules for rule pack '{self.pack_name}'")

    def _load_benchmarks(self, path: Path):
        data = _read_yaml(path)
        distributions = [dict(rec, sector=rec.get("sector", self.sector)) for rec in data.get("distributions") or []]
        kpi_benchmarks = [dict(rec, sector=rec.get("sector", self.sector)) for rec in data.get("kpi_benchmarks") or []]
        self.benchmarks = self.benchmarks.merged_with(
            PeerBenchmarkDataset.from_records(distributions, kpi_benchmarks)
        )

    def _load_peer_scores(self, path: Path):
        frame = pd.read_csv(path)
        if "sector" not in frame.columns:
            frame["sector"] = self.sector
        source = f"{self.pack_name}/{path.name}"
        self.benchmarks = self.benchmarks.merged_with(PeerBenchmarkDataset.from_frame(frame, source=source))
        logger.info(f"Loaded {len(frame)} peer scores from {path.name}")

    def _validate(self):
        """Validates the pack; blocking problems go to validation_errors, the rest to warnings."""
        if not self.kpis:
            self.validation_errors.append("Rule pack defines no KPIs")

        rule_keys = {(rule.kpi_id, rule.stage) for rule in self.stage_rules}
        for kpi in self.kpis:
            if kpi.input_type == InputType.CALCULATION:
                if not kpi.formula:
                    self.validation_errors.append(f"Calculation KPI '{kpi.kpi_id}' has no formula")
                elif not formula_fields(kpi.formula):
                    self.warnings.append(f"Calculation KPI '{kpi.kpi_id}' formula has no {{field}} placeholders")
            if kpi.metric_key and kpi.metric_key not in METRIC_KEYS:
                self.warnings.append(f"KPI '{kpi.kpi_id}': unknown metric_key '{kpi.metric_key}'")
            for stage in sorted(kpi.applicable_stages):
                if (kpi.kpi_id, stage) not in rule_keys:
                    self.warnings.append(f"KPI '{kpi.kpi_id}' applies to {stage} but has no stage rule")

        for record in self.benchmarks.to_records()["distributions"]:
            axis = record["axis"] or "overall"
            if axis != "overall" and axis not in {a.value for a in Axis}:
                self.validation_errors.append(f"Benchmark references unknown axis '{axis}'")
                continue
            dist = self.benchmarks.lookup(record["sector"], record["stage"], record["axis"])
            for issue in validate_distribution(dist):
                self.warnings.append(f"Benchmark {record['sector']}/{record['stage']}/{axis}: {issue}")

        for axis, weight in (self.axis_weights or {}).items():
            if axis not in {a.value for a in Axis}:
                self.validation_errors.append(f"axis_weights references unknown axis '{axis}'")
            elif weight < 0:
                self.validation_errors.append(f"axis_weights[{axis}] must be >= 0, got {weight}")

        self.validated = not self.validation_errors
        if self.warnings:
            logger.warning(f"Rule pack '{self.pack_name}' loaded with warnings: {self.warnings}")

    @property
    def stages(self) -> List[str]:
        return sorted({rule.stage for rule in self.stage_rules})

    @property
    def version(self) -> str:
        return stable_hash({
            "kpis": self.kpis,
            "stage_rules": self.stage_rules,
            "benchmarks": self.benchmarks.to_records(),
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.pack_name,
            "name": self.name,
            "sector": self.sector,
            "description": self.description,
            "stages": self.stages,
            "kpi_count": len(self.kpis),
            "axes": {axis.value: sum(1 for k in self.kpis if k.axis == axis) for axis in Axis},
            "benchmark_count": len(self.benchmarks),
            "validated": self.validated,
            "warnings": list(self.warnings),
            "version": self.version,
        }


class RulePackManager:
    """Discovers and holds every valid rule pack in a directory."""

    def __init__(self, packs_dir: str = "rule_packs"):
        self.packs_dir = Path(packs_dir)
        self.packs: Dict[str, RulePack] = {}
        self._discover_packs()

    def _discover_packs(self):
        if not self.packs_dir.exists():
            logger.warning(f"Rule packs directory not found: {self.packs_dir}")
            return

        for pack_dir in sorted(self.packs_dir.iterdir()):
            if pack_dir.is_dir() and not pack_dir.name.startswith(("_", ".")):
                try:
                    pack = RulePack(pack_dir.name, str(self.packs_dir))
                except Exception as e:
                    logger.error(f"Failed to load rule pack {pack_dir.name}: {e}")
                    continue
                if pack.validated:
                    self.packs[pack_dir.name] = pack
                    logger.info(f"Discovered rule pack: {pack_dir.name}")
                else:
                    logger.error(f"Skipping rule pack '{pack_dir.name}' due to validation errors: {pack.validation_errors}")

    def get_pack(self, pack_name: str) -> Optional[RulePack]:
        return self.packs.get(pack_name)

    def list_summaries(self) -> List[Dict[str, Any]]:
        return [pack.to_dict() for pack in self.packs.values()]
