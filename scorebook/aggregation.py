from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable, Mapping, Sequence

from scorebook.schemas import (
    AggregationRow,
    Group,
    Match,
    Participant,
    RegisteredParticipant,
    Session,
    SessionPlayer,
    SessionSummaryRow,
)
from scorebook.validators import MatchValidationError

logger = logging.getLogger(__name__)


def _empty_row(participant: Participant, seats: int) -> AggregationRow:
    return AggregationRow(
        participant_id=participant.identity_key(),
        display_name=participant.display_name,
        is_guest=participant.is_guest,
        rank_histogram=[0] * seats,
    )


def _roster_rows(roster: Iterable[Participant], seats: int) -> dict[str, AggregationRow]:
    rows: dict[str, AggregationRow] = {}
    for participant in roster:
        rows.setdefault(participant.identity_key(), _empty_row(participant, seats))
    return rows


def _fold_matches(
    rows: dict[str, AggregationRow],
    matches: Iterable[Match],
    players: Mapping[str, Participant],
    seats: int,
) -> None:
    for match in matches:
        for event in match.yakuman:
            participant = _lookup(players, event.player_id, match)
            row = rows.setdefault(participant.identity_key(), _empty_row(participant, seats))
            row.yakuman_count += 1

        # incomplete matches carry no normalized results and add nothing else
        for result in match.normalized:
            if not 1 <= result.rank <= seats:
                raise MatchValidationError(
                    f"Rank {result.rank} is outside 1..{seats} in match {match.match_id}",
                    {"match_id": match.match_id, "participant_id": result.participant_id},
                )
            participant = _lookup(players, result.participant_id, match)
            row = rows.setdefault(participant.identity_key(), _empty_row(participant, seats))
            row.total += result.delta
            row.match_count += 1
            row.rank_histogram[result.rank - 1] += 1


def _lookup(players: Mapping[str, Participant], player_id: str, match: Match) -> Participant:
    try:
        return players[player_id]
    except KeyError:
        raise MatchValidationError(
            f"Match {match.match_id} references unknown player {player_id}",
            {"match_id": match.match_id, "player_id": player_id},
        ) from None


def _session_players(session: Session) -> dict[str, Participant]:
    return {p.player_id: p.participant for p in session.players}


def aggregate_matches(
    matches: Iterable[Match],
    players: Mapping[str, Participant],
    roster: Iterable[Participant] = (),
    seats: int = 4,
) -> list[AggregationRow]:
    """Fold normalized deltas of ``matches`` into one row per identity.

    ``players`` maps the player ids used inside the matches to participants.
    Every roster member gets a row even without a single match; identities
    found only in the matches follow in encounter order.
    """
    rows = _roster_rows(roster, seats)
    _fold_matches(rows, matches, players, seats)
    return list(rows.values())


def aggregate_sessions(
    sessions: Iterable[Session],
    roster: Iterable[Participant] = (),
    seats: int = 4,
) -> list[AggregationRow]:
    rows = _roster_rows(roster, seats)
    for session in sessions:
        _fold_matches(rows, session.matches, _session_players(session), seats)
    return list(rows.values())


def leaderboard(rows: Iterable[AggregationRow]) -> list[AggregationRow]:
    """Rows by total, highest first. Equal totals keep their incoming order."""
    return sorted(rows, key=lambda row: row.total, reverse=True)


def session_totals(session: Session, seats: int = 4) -> list[AggregationRow]:
    """Per-player statistics of one session, in seat order."""
    players = sorted(session.players, key=lambda p: p.player_index)
    return aggregate_matches(
        session.matches,
        _session_players(session),
        roster=[p.participant for p in players],
        seats=seats,
    )


def session_player_total(session: Session, player_id: str) -> int:
    total = 0
    for match in session.matches:
        total += sum(r.delta for r in match.normalized if r.participant_id == player_id)
    return total


def group_ranking(
    sessions: Iterable[Session],
    group: Group,
    seats: int = 4,
    since: dt.date | None = None,
    until: dt.date | None = None,
) -> list[AggregationRow]:
    """Leaderboard of a group.

    Only sessions played under the group count. ``since`` and ``until`` bound
    the session date as a half-open window: ``since <= date < until``. Either
    bound may be omitted; with neither the ranking covers the group's whole
    history. Every current member is listed, including members who have not
    played inside the window.
    """
    group_sessions = [
        s
        for s in sessions
        if s.group_id == group.group_id
        and (since is None or s.date >= since)
        and (until is None or s.date < until)
    ]
    logger.debug(
        "ranking group %s over %d sessions (since=%s, until=%s)", group.group_id, len(group_sessions), since, until
    )
    rows = aggregate_sessions(group_sessions, roster=[m.participant for m in group.members], seats=seats)
    return leaderboard(rows)


def resolve_player(session: Session, participant: Participant) -> SessionPlayer | None:
    """Find the seat of ``participant`` in a session.

    Registered participants match by user id, guests by exact name.
    """
    key = participant.identity_key()
    return next((p for p in session.players if p.participant.identity_key() == key), None)


def user_history(sessions: Sequence[Session], user_id: str) -> list[SessionSummaryRow]:
    """One summary row per session the user sat in, newest first."""
    # display name is irrelevant to the identity key
    me = RegisteredParticipant(user_id=user_id, display_name="")
    history: list[SessionSummaryRow] = []
    for session in sessions:
        seat = resolve_player(session, me)
        if seat is None:
            continue
        played = [m for m in session.matches if any(r.participant_id == seat.player_id for r in m.normalized)]
        history.append(
            SessionSummaryRow(
                session_id=session.session_id,
                date=session.date,
                group_id=session.group_id,
                total=session_player_total(session, seat.player_id),
                match_count=len(played),
            )
        )
    return sorted(history, key=lambda row: row.date, reverse=True)
