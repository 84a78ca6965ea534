"""
Normalizer: turns one raw KPI response into a 0-100 score.

Each input type has its own scoring function, registered in `_NORMALIZERS`.
The table is checked at import time so a new `InputType` member cannot be
added without a matching scorer. Failures never propagate: they come back as
an incomplete `NormalizedResult` carrying the reason.
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional

from growth_engine.errors import FormulaError, NormalizationError, UnmatchedChoiceError
from growth_engine.formula import evaluate_formula
from growth_engine.models import (
    ChoiceRuleset,
    InputType,
    KPIDefinition,
    KPIResponse,
    NormalizedResult,
    StageRule,
    ThresholdRuleset,
)
from growth_engine.ruleset_parser import parse_ruleset

logger = logging.getLogger(__name__)

DEFAULT_MULTI_SELECT_MAX_POINTS = 15.0


def clamp_score(value: float) -> float:
    return max(0.0, min(100.0, value))


def interpolate(value: float, ruleset: ThresholdRuleset) -> float:
    """Linear position of `value` between the 0- and 100-point bounds, clamped."""
    span = ruleset.high - ruleset.low
    return clamp_score((value - ruleset.low) / span * 100.0)


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        raise NormalizationError("Response is not a number")
    if isinstance(value, str):
        text = value.replace(",", "").replace("%", "").strip()
        try:
            value = float(text)
        except ValueError:
            raise NormalizationError(f"Response is not a number: {value!r}")
    if not isinstance(value, (int, float)):
        raise NormalizationError(f"Response is not a number: {value!r}")
    if not math.isfinite(value):
        raise NormalizationError("Response is not a finite number")
    return float(value)


def _choice_index(ruleset: ChoiceRuleset, selection: Any) -> int:
    """Position of the selected option; labels match case-insensitively, first match wins."""
    if isinstance(selection, int) and not isinstance(selection, bool):
        if 0 <= selection < len(ruleset.choices):
            return selection
        raise UnmatchedChoiceError(f"Option index out of range: {selection}")
    if isinstance(selection, str):
        wanted = selection.strip().lower()
        for index, choice in enumerate(ruleset.choices):
            if choice.label.lower() == wanted:
                return index
        raise UnmatchedChoiceError(f"No option matches {selection!r}")
    raise UnmatchedChoiceError(f"Unsupported selection value: {selection!r}")


def _find_choice(ruleset: ChoiceRuleset, selection: Any):
    return ruleset.choices[_choice_index(ruleset, selection)]


def _require_threshold(ruleset) -> ThresholdRuleset:
    if not isinstance(ruleset, ThresholdRuleset):
        raise NormalizationError("Threshold rule expected")
    return ruleset


def _require_choices(ruleset) -> ChoiceRuleset:
    if not isinstance(ruleset, ChoiceRuleset):
        raise NormalizationError("Choice rule expected")
    return ruleset


# ── Scorers ───────────────────────────────────────────────────────────────────

def _score_threshold(kpi: KPIDefinition, ruleset, value: Any, settings_max: float) -> NormalizedResult:
    number = _as_number(value)
    return NormalizedResult.complete(interpolate(number, _require_threshold(ruleset)), raw_value=number)


def _score_rubric(kpi: KPIDefinition, ruleset, value: Any, settings_max: float) -> NormalizedResult:
    if isinstance(value, (list, tuple)):
        if len(value) != 1:
            raise NormalizationError("Rubric answers select exactly one level")
        value = value[0]
    choice = _find_choice(_require_choices(ruleset), value)
    return NormalizedResult.complete(clamp_score(choice.points))


def _score_single_select(kpi: KPIDefinition, ruleset, value: Any, settings_max: float) -> NormalizedResult:
    choices = _require_choices(ruleset)
    if isinstance(value, (list, tuple)):
        if len(value) != 1:
            raise NormalizationError("Single-select answers select exactly one option")
        value = value[0]
    choice = _find_choice(choices, value)
    if choices.max_points:
        return NormalizedResult.complete(clamp_score(choice.points / choices.max_points * 100.0))
    return NormalizedResult.complete(clamp_score(choice.points))


def _score_multi_select(kpi: KPIDefinition, ruleset, value: Any, settings_max: float) -> NormalizedResult:
    choices = _require_choices(ruleset)
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise NormalizationError(f"Multi-select answer must be a list: {value!r}")

    picked: List[int] = []
    for selection in value:
        index = _choice_index(choices, selection)
        if index not in picked:
            picked.append(index)
    total = sum(choices.choices[index].points for index in picked)
    max_points = choices.max_points or settings_max
    if max_points <= 0:
        raise NormalizationError("Multi-select rule has no positive point total")
    return NormalizedResult.complete(clamp_score(total / max_points * 100.0), raw_value=total)


def _score_calculation(kpi: KPIDefinition, ruleset, value: Any, settings_max: float) -> NormalizedResult:
    if not isinstance(value, dict):
        raise NormalizationError("Calculation answers must provide a mapping of named fields")
    if not kpi.formula:
        raise FormulaError(f"KPI {kpi.kpi_id} has no formula")
    result = evaluate_formula(kpi.formula, value)
    if ruleset is None:
        return NormalizedResult.complete(clamp_score(result * 100.0), raw_value=result)
    return NormalizedResult.complete(interpolate(result, _require_threshold(ruleset)), raw_value=result)


Scorer = Callable[[KPIDefinition, Any, Any, float], NormalizedResult]

_NORMALIZERS: Dict[InputType, Scorer] = {
    InputType.NUMERIC: _score_threshold,
    InputType.PERCENTAGE: _score_threshold,
    InputType.RUBRIC: _score_rubric,
    InputType.MULTI_SELECT: _score_multi_select,
    InputType.SINGLE_SELECT: _score_single_select,
    InputType.CALCULATION: _score_calculation,
}

_missing = set(InputType) - set(_NORMALIZERS)
if _missing:
    raise RuntimeError(f"No normalizer registered for input types: {sorted(t.value for t in _missing)}")


def normalize(
    kpi: KPIDefinition,
    rule: Optional[StageRule],
    response: Optional[KPIResponse],
    multi_select_max_points: float = DEFAULT_MULTI_SELECT_MAX_POINTS,
) -> NormalizedResult:
    """Score one response against its stage rule.

    Args:
        kpi: KPI definition (input type, formula).
        rule: Stage rule for the report stage; None when the stage defines none.
        response: Raw answer; None or `not_applicable` means unanswered.
        multi_select_max_points: Fallback point total for multi-select rules
            without a `max:` line.

    Returns:
        NormalizedResult with a score in [0, 100], or incomplete with a reason.
    """
    if rule is None:
        return NormalizedResult.incomplete("no stage rule")
    if response is None or response.not_applicable or response.value is None:
        return NormalizedResult.incomplete("missing response")

    try:
        ruleset = rule.ruleset
        if ruleset is None:
            ruleset = parse_ruleset(kpi.input_type, rule.ruleset_text)
        result = _NORMALIZERS[kpi.input_type](kpi, ruleset, response.value, multi_select_max_points)
    except NormalizationError as e:
        logger.warning(f"KPI {kpi.kpi_id} could not be normalized: {e}")
        return NormalizedResult.incomplete(str(e))

    if result.score is None or not math.isfinite(result.score):
        return NormalizedResult.incomplete("non-finite score")
    return result
