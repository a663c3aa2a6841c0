from __future__ import annotations

from collections.abc import Mapping, Sequence

from pydantic import ValidationError

from scorebook.schemas import RawResult, RuleConfig

RULE_RECORD_FIELDS = ("return_score", "start_score", "uma_first", "uma_second", "uma_third", "uma_fourth", "has_oka")


class RuleValidationError(ValueError):
    """Rule configuration is missing a field or holds a non-numeric value."""

    code = "invalid_rules"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class MatchValidationError(ValueError):
    """Result set cannot be normalized as one match."""

    code = "invalid_match"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class RosterValidationError(ValueError):
    """Player or member list is inconsistent (duplicates, unknown seats)."""

    code = "invalid_roster"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


def validate_rule_config(rules: RuleConfig | Mapping) -> RuleConfig:
    """Return a checked RuleConfig for either a model or a raw mapping.

    Mappings may use the nested shape (``uma`` list) or the flat storage
    shape (``uma_first`` .. ``uma_fourth``). Values are never coerced:
    ``"30000"`` or ``30000.0`` for a score is rejected.
    """
    if isinstance(rules, RuleConfig):
        return rules
    if not isinstance(rules, Mapping):
        raise RuleValidationError(f"Rules must be a mapping, got {type(rules).__name__}")

    if "uma" not in rules:
        missing = [name for name in RULE_RECORD_FIELDS if name not in rules]
        if missing:
            raise RuleValidationError(f"Missing rule fields: {', '.join(missing)}", {"missing": missing})
    try:
        if "uma" in rules:
            return RuleConfig.model_validate(dict(rules))
        return RuleConfig.from_record(dict(rules))
    except ValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise RuleValidationError(f"Invalid rule fields: {', '.join(fields)}", {"fields": fields}) from exc


def validate_results(results: Sequence[RawResult], rules: RuleConfig) -> None:
    if len(results) < 2:
        raise MatchValidationError(f"A match needs at least 2 results, got {len(results)}")
    if len(results) > len(rules.uma):
        raise MatchValidationError(
            f"A match supports at most {len(rules.uma)} results (one uma per place), got {len(results)}"
        )

    seen: set[str] = set()
    for result in results:
        if result.participant_id in seen:
            raise MatchValidationError(
                f"Participant appears twice in one match: {result.participant_id}",
                {"participant_id": result.participant_id},
            )
        seen.add(result.participant_id)


def validate_complete(results: Sequence[RawResult]) -> None:
    missing = [r.participant_id for r in results if not r.has_score]
    if missing:
        raise MatchValidationError("Raw score is not entered for every participant", {"missing": missing})
