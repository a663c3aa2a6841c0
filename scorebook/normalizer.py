from __future__ import annotations

import logging
from collections.abc import Sequence
from fractions import Fraction

from scorebook.schemas import NormalizedResult, RawResult, RuleConfig
from scorebook.validators import MatchValidationError, validate_complete, validate_results

logger = logging.getLogger(__name__)

POINT_UNIT = 1000


def round_half_down_toward_zero(value: Fraction | int) -> int:
    """五捨六入: a fraction of exactly .5 or less is cut toward zero, above .5 goes away from zero."""
    value = Fraction(value)
    truncated = int(value)
    remainder = abs(value - truncated)
    if remainder <= Fraction(1, 2):
        return truncated
    return truncated + (1 if value > 0 else -1)


def to_points(raw_score: int, rules: RuleConfig) -> int:
    return round_half_down_toward_zero(Fraction(raw_score - rules.return_score, POINT_UNIT))


def oka_bonus(rules: RuleConfig, seats: int = 4) -> int:
    if not rules.has_oka:
        return 0
    # start/return scores are whole thousands in practice; keep the same rounding for odd values
    return round_half_down_toward_zero(Fraction(rules.return_score - rules.start_score, POINT_UNIT) * seats)


def assign_ranks(results: Sequence[RawResult]) -> list[int]:
    """Ranks in input order; equal raw scores rank the earlier entry higher."""
    order = sorted(range(len(results)), key=lambda i: -(results[i].raw_score or 0))
    ranks = [0] * len(results)
    for position, index in enumerate(order, start=1):
        ranks[index] = position
    return ranks


def is_complete(results: Sequence[RawResult], seats: int | None = None) -> bool:
    if not results:
        return False
    if seats is not None and len(results) != seats:
        return False
    return all(r.has_score for r in results)


def score_entry(raw_score: int, rank: int, rules: RuleConfig, seats: int = 4) -> int:
    """Score one entry on its own, oka included for the top.

    Used for previews of a partially entered match. Deltas computed this
    way are not guaranteed to sum to zero across a match.
    """
    if not 1 <= rank <= len(rules.uma):
        raise MatchValidationError(f"Rank must be between 1 and {len(rules.uma)}, got {rank}")
    score = to_points(raw_score, rules) + rules.uma[rank - 1]
    if rank == 1:
        score += oka_bonus(rules, seats)
    return score


def normalize_match(results: Sequence[RawResult], rules: RuleConfig) -> list[NormalizedResult]:
    """Normalize a complete match so that the deltas sum to exactly zero.

    Places 2..N are scored from their raw score and uma; the top is set to
    the negative of their sum, which absorbs every rounding residue and
    also the oka.
    """
    validate_results(results, rules)
    validate_complete(results)

    ranks = assign_ranks(results)
    deltas: list[int] = [0] * len(results)
    others_total = 0
    top_index = ranks.index(1)
    for index, (result, rank) in enumerate(zip(results, ranks)):
        if rank == 1:
            continue
        delta = to_points(result.raw_score, rules) + rules.uma[rank - 1]
        deltas[index] = delta
        others_total += delta
    deltas[top_index] = -others_total

    logger.debug("normalized match ranks=%s deltas=%s", ranks, deltas)
    return [
        NormalizedResult(participant_id=result.participant_id, rank=rank, delta=delta)
        for result, rank, delta in zip(results, ranks, deltas)
    ]


def preview_match(results: Sequence[RawResult], rules: RuleConfig) -> list[NormalizedResult | None]:
    """Per-entry scores for whatever has been entered so far.

    Entries without a raw score yield ``None``; the others are ranked among
    themselves and scored independently with ``score_entry``.
    """
    entered = [r for r in results if r.has_score]
    if not entered:
        return [None] * len(results)
    ranks = dict(zip((r.participant_id for r in entered), assign_ranks(entered)))
    seats = len(results)
    preview: list[NormalizedResult | None] = []
    for result in results:
        if not result.has_score:
            preview.append(None)
            continue
        rank = ranks[result.participant_id]
        preview.append(
            NormalizedResult(
                participant_id=result.participant_id,
                rank=rank,
                delta=score_entry(result.raw_score, rank, rules, seats),
            )
        )
    return preview


def apply_normalization(
    results: Sequence[RawResult], rules: RuleConfig
) -> tuple[list[RawResult], list[NormalizedResult]]:
    """Recompute a match from scratch after any raw score changed.

    Returns fresh result records with ranks filled in and the normalized
    deltas when the match is complete; otherwise ranks are cleared and no
    deltas are produced.
    """
    if not is_complete(results):
        cleared = [r.model_copy(update={"rank": None}) for r in results]
        return cleared, []

    normalized = normalize_match(results, rules)
    ranked = [r.model_copy(update={"rank": n.rank}) for r, n in zip(results, normalized)]
    return ranked, normalized
