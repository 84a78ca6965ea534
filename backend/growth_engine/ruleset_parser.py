"""
Parser for stage-rule text.

Two grammars are accepted, one per family of input types:

Threshold rules (numeric, percentage, calculation)::

    0: below 100 users
    100: 1,000 users or more

The first number after each colon is the value that earns 0 and 100 points.
When the 0-point value is larger, lower values are better.

Choice rules (rubric, single_select, multi_select)::

    1. No paying customers (0)
    2. Pilot customers (50)
    3. Repeat revenue (100)
    max: 15

Lines may also be separated with ';'. The optional `max:` line sets the point
total a multi-select answer is scaled against.
"""

import re
from typing import List, Optional, Union

from growth_engine.errors import RulesetParseError
from growth_engine.models import Choice, ChoiceRuleset, InputType, ThresholdRuleset

_THRESHOLD_LINE = re.compile(
    r"^\s*(0|100)\s*(?:pts?|points?)?\s*:\s*[^\d\-]*(-?\d[\d,]*(?:\.\d+)?)",
    re.IGNORECASE,
)
_CHOICE_LINE = re.compile(
    r"^\s*\d+\s*[.)]\s*(.+?)\s*\(\s*(-?\d+(?:\.\d+)?)\s*(?:pts?|points?)?\s*\)\s*$",
    re.IGNORECASE,
)
_MAX_LINE = re.compile(r"^\s*max\s*:\s*(\d+(?:\.\d+)?)\s*$", re.IGNORECASE)

THRESHOLD_TYPES = {InputType.NUMERIC, InputType.PERCENTAGE, InputType.CALCULATION}
CHOICE_TYPES = {InputType.RUBRIC, InputType.SINGLE_SELECT, InputType.MULTI_SELECT}

Ruleset = Union[ThresholdRuleset, ChoiceRuleset]


def _lines(text: str) -> List[str]:
    return [ln.strip() for ln in re.split(r"[\n;]", text or "") if ln.strip()]


def _to_float(token: str) -> float:
    return float(token.replace(",", ""))


def parse_threshold(text: str) -> ThresholdRuleset:
    bounds = {}
    for line in _lines(text):
        match = _THRESHOLD_LINE.match(line)
        if match:
            bounds[match.group(1)] = _to_float(match.group(2))
    if "0" not in bounds or "100" not in bounds:
        raise RulesetParseError(f"Threshold rule needs '0:' and '100:' lines: {text!r}")
    if bounds["0"] == bounds["100"]:
        raise RulesetParseError(f"Threshold rule has identical 0 and 100 point values: {text!r}")
    return ThresholdRuleset(low=bounds["0"], high=bounds["100"])


def parse_choices(text: str, input_type: InputType) -> ChoiceRuleset:
    choices: List[Choice] = []
    max_points: Optional[float] = None
    for line in _lines(text):
        max_match = _MAX_LINE.match(line)
        if max_match:
            max_points = float(max_match.group(1))
            continue
        match = _CHOICE_LINE.match(line)
        if not match:
            raise RulesetParseError(f"Unrecognised choice line: {line!r}")
        choices.append(Choice(label=match.group(1), points=float(match.group(2))))

    if not choices:
        raise RulesetParseError(f"Choice rule defines no options: {text!r}")
    if max_points is not None and max_points <= 0:
        raise RulesetParseError("Choice rule 'max' must be positive")
    if input_type == InputType.RUBRIC:
        out_of_range = [c.label for c in choices if not 0 <= c.points <= 100]
        if out_of_range:
            raise RulesetParseError(f"Rubric level scores must be within 0-100: {out_of_range}")
    return ChoiceRuleset(choices=tuple(choices), max_points=max_points)


def parse_ruleset(input_type: InputType, text: str) -> Optional[Ruleset]:
    """Parse rule text for an input type.

    Returns None only for a calculation rule with empty text (the formula
    result is then read as a ratio).
    """
    if input_type in CHOICE_TYPES:
        return parse_choices(text, input_type)
    if input_type == InputType.CALCULATION and not _lines(text):
        return None
    if input_type in THRESHOLD_TYPES:
        return parse_threshold(text)
    raise RulesetParseError(f"No ruleset grammar for input type {input_type}")
