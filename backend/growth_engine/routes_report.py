"""
Report API routes: rule pack discovery and report generation.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from cache.cache import ReportCache
from growth_engine.config import EngineSettings, RULE_PACKS_DIR
from growth_engine.models import KPIResponse, report_to_dict
from growth_engine.report_engine import ReportEngine
from growth_engine.rule_loader import RulePack, RulePackManager

logger = logging.getLogger(__name__)

router = APIRouter()

RULE_PACK_MANAGER: Optional[RulePackManager] = None

# Report engine cache keyed by rule pack id
REPORT_ENGINES: dict[str, ReportEngine] = {}


def configure_rule_packs(packs_dir: str = RULE_PACKS_DIR) -> RulePackManager:
    """(Re)load rule packs from `packs_dir` and drop engines built from the old ones."""
    global RULE_PACK_MANAGER
    RULE_PACK_MANAGER = RulePackManager(packs_dir)
    REPORT_ENGINES.clear()
    logger.info(f"Rule packs loaded from {packs_dir}: {sorted(RULE_PACK_MANAGER.packs)}")
    return RULE_PACK_MANAGER


def get_rule_pack_manager() -> RulePackManager:
    if RULE_PACK_MANAGER is None:
        return configure_rule_packs()
    return RULE_PACK_MANAGER


def get_rule_pack_or_404(pack_id: str) -> RulePack:
    pack = get_rule_pack_manager().get_pack(pack_id)
    if pack is None:
        raise HTTPException(status_code=404, detail=f"Rule pack not found: {pack_id}")
    return pack


def get_report_engine(pack: RulePack) -> ReportEngine:
    if pack.pack_name not in REPORT_ENGINES:
        logger.info(f"Creating report engine for rule pack '{pack.pack_name}'")
        REPORT_ENGINES[pack.pack_name] = ReportEngine.from_rule_pack(
            pack, settings=EngineSettings.from_env(), cache=ReportCache()
        )
    return REPORT_ENGINES[pack.pack_name]


# ── Pydantic models ────────────────────────────────────────────────────

class ResponseIn(BaseModel):
    kpi_id: str
    value: Any = None
    not_applicable: bool = False


class ReportRequest(BaseModel):
    rule_pack: str
    stage: str
    sector: Optional[str] = None
    responses: List[ResponseIn] = Field(default_factory=list)
    previous_axis_scores: Optional[Dict[str, float]] = None
    digest_size: Optional[int] = Field(default=None, ge=0, le=20)


# ── Rule packs ─────────────────────────────────────────────────────────

@router.get("/rule-packs")
def list_rule_packs():
    return {"rule_packs": get_rule_pack_manager().list_summaries()}


@router.get("/rule-packs/{pack_id}")
def get_rule_pack(pack_id: str):
    pack = get_rule_pack_or_404(pack_id)
    info = pack.to_dict()
    info["kpis"] = [
        {
            "kpi_id": kpi.kpi_id,
            "axis": kpi.axis.value,
            "input_type": kpi.input_type.value,
            "name": kpi.name,
            "question": kpi.question,
            "stages": sorted(kpi.applicable_stages),
        }
        for kpi in pack.kpis
    ]
    return info


# ── Reports ────────────────────────────────────────────────────────────

@router.post("/report")
def create_report(request: ReportRequest):
    t0 = time.time()
    try:
        pack = get_rule_pack_or_404(request.rule_pack)
        if request.stage not in pack.stages:
            raise HTTPException(
                status_code=400,
                detail=f"Stage '{request.stage}' is not defined in rule pack '{pack.pack_name}'. Available: {pack.stages}",
            )
        engine = get_report_engine(pack)
        responses = [
            KPIResponse(kpi_id=r.kpi_id, value=r.value, not_applicable=r.not_applicable)
            for r in request.responses
        ]
        report = engine.evaluate(
            responses,
            sector=request.sector or pack.sector,
            stage=request.stage,
            previous_axis_scores=request.previous_axis_scores,
            digest_size=request.digest_size,
        )
        logger.info(f"Report for pack '{pack.pack_name}' served in {int((time.time() - t0) * 1000)} ms")
        return report_to_dict(report)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error building report: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/health")
def health_check():
    manager = get_rule_pack_manager()
    return {"status": "ok", "rule_packs_loaded": len(manager.packs)}
