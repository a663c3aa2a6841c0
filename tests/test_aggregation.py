from datetime import date

import pytest

from scorebook.aggregation import (
    aggregate_matches,
    aggregate_sessions,
    group_ranking,
    leaderboard,
    resolve_player,
    session_player_total,
    session_totals,
    user_history,
)
from scorebook.normalizer import apply_normalization
from scorebook.schemas import (
    AggregationRow,
    GuestParticipant,
    Group,
    GroupMember,
    Match,
    RawResult,
    RegisteredParticipant,
    RuleConfig,
    Session,
    SessionPlayer,
    YakumanEvent,
    YakumanType,
)
from scorebook.validators import MatchValidationError

ALICE = RegisteredParticipant(user_id="u1", display_name="Alice")
BOB = RegisteredParticipant(user_id="u2", display_name="Bob")
TARO = GuestParticipant(name="Taro")
HANAKO = GuestParticipant(name="Hanako")


def played_match(number: int, scores: dict[str, int], rules: RuleConfig | None = None) -> Match:
    raw = [RawResult(participant_id=pid, raw_score=score) for pid, score in scores.items()]
    ranked, normalized = apply_normalization(raw, rules or RuleConfig())
    return Match(match_id=f"m{number}", game_number=number, results=ranked, normalized=normalized)


def make_session(session_id: str, day: date, participants, matches=(), group_id=None) -> Session:
    players = [
        SessionPlayer(player_id=f"{session_id}-p{index}", participant=participant, player_index=index)
        for index, participant in enumerate(participants)
    ]
    return Session(
        session_id=session_id,
        date=day,
        group_id=group_id,
        created_by="u1",
        players=players,
        matches=list(matches),
    )


def standard_session(session_id: str = "s1", day: date = date(2026, 10, 1), group_id: str | None = "g1") -> Session:
    p = [f"{session_id}-p{i}" for i in range(4)]
    matches = [
        played_match(1, {p[0]: 42000, p[1]: 32000, p[2]: 18000, p[3]: 8000}),
        played_match(2, {p[0]: 8000, p[1]: 18000, p[2]: 32000, p[3]: 42000}),
    ]
    return make_session(session_id, day, [ALICE, TARO, BOB, HANAKO], matches, group_id=group_id)


def test_session_totals_in_seat_order():
    rows = session_totals(standard_session())
    assert [r.display_name for r in rows] == ["Alice", "Taro", "Bob", "Hanako"]
    assert [r.total for r in rows] == [10, -10, -10, 10]
    assert [r.rank_histogram for r in rows] == [[1, 0, 0, 1], [0, 1, 1, 0], [0, 1, 1, 0], [1, 0, 0, 1]]
    assert [r.match_count for r in rows] == [2, 2, 2, 2]
    assert [r.is_guest for r in rows] == [False, True, False, True]
    assert rows[0].participant_id == "user:u1"
    assert rows[1].participant_id == "guest:Taro"


def test_leaderboard_keeps_encounter_order_for_ties():
    board = leaderboard(session_totals(standard_session()))
    assert [r.display_name for r in board] == ["Alice", "Hanako", "Taro", "Bob"]


def test_session_player_total():
    session = standard_session()
    assert session_player_total(session, "s1-p0") == 10
    assert session_player_total(session, "s1-p2") == -10
    assert session_player_total(session, "nobody") == 0


def test_incomplete_match_contributes_nothing():
    session = standard_session()
    pending = Match(
        match_id="m3",
        game_number=3,
        results=[RawResult(participant_id=f"s1-p{i}", raw_score=0) for i in range(4)],
    )
    session.matches.append(pending)
    rows = session_totals(session)
    assert [r.match_count for r in rows] == [2, 2, 2, 2]
    assert [r.total for r in rows] == [10, -10, -10, 10]


def test_guest_with_same_name_is_one_identity():
    first = make_session("s1", date(2026, 9, 1), [TARO, ALICE], [played_match(1, {"s1-p0": 40000, "s1-p1": 20000})])
    second = make_session(
        "s2", date(2026, 9, 8), [GuestParticipant(name="Taro"), BOB], [played_match(1, {"s2-p0": 35000, "s2-p1": 25000})]
    )
    rows = aggregate_sessions([first, second])
    taro = [r for r in rows if r.display_name == "Taro"]
    assert len(taro) == 1
    assert taro[0].match_count == 2
    assert taro[0].rank_histogram == [2, 0, 0, 0]


def test_guest_name_spelled_differently_is_another_identity():
    first = make_session("s1", date(2026, 9, 1), [TARO, ALICE], [played_match(1, {"s1-p0": 40000, "s1-p1": 20000})])
    second = make_session(
        "s2", date(2026, 9, 8), [GuestParticipant(name="taro"), BOB], [played_match(1, {"s2-p0": 35000, "s2-p1": 25000})]
    )
    rows = aggregate_sessions([first, second])
    assert sorted(r.participant_id for r in rows if r.is_guest) == ["guest:Taro", "guest:taro"]


def test_group_ranking_lists_members_without_matches():
    group = Group(
        group_id="g1",
        name="Friday table",
        created_by="u1",
        members=[GroupMember(participant=p) for p in (ALICE, BOB, RegisteredParticipant(user_id="u3", display_name="Carol"))],
    )
    rows = group_ranking([], group)
    assert [r.display_name for r in rows] == ["Alice", "Bob", "Carol"]
    assert all(r.total == 0 and r.match_count == 0 and r.rank_histogram == [0, 0, 0, 0] for r in rows)


def test_group_ranking_only_counts_group_sessions():
    group = Group(
        group_id="g1",
        name="Friday table",
        created_by="u1",
        members=[GroupMember(participant=p) for p in (BOB, ALICE, RegisteredParticipant(user_id="u3", display_name="Carol"))],
    )
    sessions = [standard_session("s1", group_id="g1"), standard_session("s2", group_id="other"), standard_session("s3", group_id=None)]
    rows = group_ranking(sessions, group)
    by_name = {r.display_name: r for r in rows}
    assert by_name["Alice"].total == 10
    assert by_name["Alice"].match_count == 2
    assert by_name["Carol"].match_count == 0
    # guests who played in the group's sessions are ranked too
    assert by_name["Hanako"].total == 10
    assert [r.display_name for r in rows] == ["Alice", "Hanako", "Carol", "Bob", "Taro"]


def test_aggregate_matches_with_empty_input_returns_roster_rows():
    rows = aggregate_matches([], {}, roster=[ALICE, TARO])
    assert rows == [
        AggregationRow(participant_id="user:u1", display_name="Alice", is_guest=False),
        AggregationRow(participant_id="guest:Taro", display_name="Taro", is_guest=True),
    ]


def test_aggregation_does_not_mutate_sessions():
    session = standard_session()
    snapshot = session.model_dump()
    session_totals(session)
    aggregate_sessions([session], roster=[ALICE])
    assert session.model_dump() == snapshot


def test_yakuman_events_are_counted_per_identity():
    session = standard_session()
    session.matches[0].yakuman.append(YakumanEvent(event_id="y1", player_id="s1-p1", type=YakumanType.daisangen))
    session.matches[1].yakuman.append(YakumanEvent(event_id="y2", player_id="s1-p1", type=YakumanType.kokushi_musou))
    rows = session_totals(session)
    assert [r.yakuman_count for r in rows] == [0, 2, 0, 0]
    assert [r.total for r in rows] == [10, -10, -10, 10]


def test_unknown_player_in_match_is_rejected():
    session = standard_session()
    session.players.pop()
    with pytest.raises(MatchValidationError, match="unknown player"):
        session_totals(session)


def test_resolve_player_matches_registered_by_id_and_guests_by_name():
    session = standard_session()
    assert resolve_player(session, RegisteredParticipant(user_id="u2", display_name="renamed")).player_id == "s1-p2"
    assert resolve_player(session, GuestParticipant(name="Hanako")).player_id == "s1-p3"
    assert resolve_player(session, GuestParticipant(name="Alice")) is None


def test_user_history_one_row_per_session_newest_first():
    sessions = [
        standard_session("s1", date(2026, 9, 1)),
        make_session("s2", date(2026, 9, 20), [BOB, TARO], [played_match(1, {"s2-p0": 40000, "s2-p1": 10000})]),
        standard_session("s3", date(2026, 10, 5)),
    ]
    history = user_history(sessions, "u1")
    assert [row.session_id for row in history] == ["s3", "s1"]
    assert [row.total for row in history] == [10, 10]
    assert [row.match_count for row in history] == [2, 2]

    bob = user_history(sessions, "u2")
    assert [row.session_id for row in bob] == ["s3", "s2", "s1"]
    assert bob[1].total == 10
    assert bob[1].match_count == 1


def test_user_history_for_unknown_user_is_empty():
    assert user_history([standard_session()], "u404") == []


@pytest.mark.parametrize(
    "since, until, expected",
    [
        (None, None, ["s1", "s2", "s3"]),
        (date(2026, 9, 8), None, ["s2", "s3"]),
        (None, date(2026, 9, 8), ["s1"]),
        (date(2026, 9, 8), date(2026, 9, 15), ["s2"]),
        (date(2026, 9, 9), date(2026, 9, 15), []),
        (date(2026, 9, 15), date(2026, 9, 8), []),
    ],
)
def test_group_ranking_window_is_since_inclusive_until_exclusive(since, until, expected):
    group = Group(group_id="g1", name="Friday table", created_by="u1", members=[GroupMember(participant=ALICE)])
    sessions = [
        standard_session("s1", date(2026, 9, 1)),
        standard_session("s2", date(2026, 9, 8)),
        standard_session("s3", date(2026, 9, 15)),
    ]
    rows = group_ranking(sessions, group, since=since, until=until)
    alice = next(r for r in rows if r.display_name == "Alice")
    assert alice.match_count == 2 * len(expected)
    assert alice.total == 10 * len(expected)
    if not expected:
        assert [r.display_name for r in rows] == ["Alice"]
