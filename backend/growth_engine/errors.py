class NormalizationError(Exception):
    """A single KPI response could not be scored."""


class RulesetParseError(NormalizationError):
    """Stage rule text does not follow the threshold or choice grammar."""


class FormulaError(NormalizationError):
    """Calculation formula is invalid, references an unknown field, or divides by zero."""


class UnmatchedChoiceError(NormalizationError):
    """Response selects a level or option the ruleset does not define."""


class RulePackValidationError(Exception):
    """Raised when a rule pack cannot be used at all."""
