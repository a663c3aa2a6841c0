from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Mapping, Sequence
from threading import Lock

from scorebook import aggregation
from scorebook.normalizer import apply_normalization
from scorebook.repository import InMemoryRepository
from scorebook.schemas import (
    AggregationRow,
    GuestParticipant,
    Group,
    GroupMember,
    Match,
    MemberRole,
    Participant,
    RawResult,
    RegisteredParticipant,
    RuleConfig,
    Session,
    SessionPlayer,
    SessionSummaryRow,
    YakumanEvent,
    YakumanType,
)
from scorebook.validators import RosterValidationError, validate_results, validate_rule_config

logger = logging.getLogger(__name__)


class NotFoundError(LookupError):
    code = "not_found"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class PermissionDeniedError(Exception):
    code = "forbidden"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ScoreBook:
    """Groups, sessions and matches on top of a record store.

    Every score edit re-runs normalization for the whole match, and every
    read model is aggregated from the stored sessions on demand.
    """

    def __init__(self, repo: InMemoryRepository, seats: int = 4) -> None:
        self.repo = repo
        self.seats = seats
        # held across every read-modify-write of a stored record
        self._lock = Lock()

    # --- groups ---

    def create_group(
        self, name: str, creator: RegisteredParticipant, rules: RuleConfig | Mapping | None = None
    ) -> Group:
        checked = validate_rule_config(rules) if rules is not None else RuleConfig()
        with self._lock:
            group_id = self.repo.new_id()
            group = Group(
                group_id=group_id,
                name=name,
                created_by=creator.user_id,
                members=[GroupMember(participant=creator, role=MemberRole.admin)],
                rules=checked,
            )
            self.repo.create("group", group.model_dump(mode="json"), record_id=group_id)
        logger.info("created group %s (%s)", group_id, name)
        return group

    def get_group(self, group_id: str) -> Group:
        record = self.repo.get("group", group_id)
        if record is None:
            raise NotFoundError(f"Group not found: {group_id}")
        return Group.model_validate(record.data)

    def add_member(self, group_id: str, participant: Participant, role: MemberRole = MemberRole.member) -> Group:
        key = participant.identity_key()
        with self._lock:
            group = self.get_group(group_id)
            if any(m.participant.identity_key() == key for m in group.members):
                raise RosterValidationError(f"Already a member of the group: {participant.display_name}")
            group.members.append(GroupMember(participant=participant, role=role))
            self._save_group(group)
        logger.info("added %s to group %s", key, group_id)
        return group

    def update_rules(self, group_id: str, actor_user_id: str, rules: RuleConfig | Mapping) -> Group:
        with self._lock:
            group = self.get_group(group_id)
            actor_key = f"user:{actor_user_id}"
            if not any(
                m.role == MemberRole.admin and m.participant.identity_key() == actor_key for m in group.members
            ):
                raise PermissionDeniedError("Only a group admin can change the rules", {"user_id": actor_user_id})
            group.rules = validate_rule_config(rules)
            self._save_group(group)
        logger.info("updated rules of group %s: %s", group_id, group.rules.to_record())
        return group

    def _save_group(self, group: Group) -> None:
        self.repo.update("group", group.group_id, group.model_dump(mode="json"))

    # --- sessions ---

    def create_session(
        self,
        date: dt.date,
        created_by: str,
        players: Sequence[Participant] = (),
        group_id: str | None = None,
        rules: RuleConfig | Mapping | None = None,
    ) -> Session:
        if group_id is not None:
            group = self.get_group(group_id)
            session_rules = group.rules
            if not players:
                players = [m.participant for m in group.members]
        else:
            session_rules = validate_rule_config(rules) if rules is not None else RuleConfig()

        seats: list[SessionPlayer] = []
        seen: set[str] = set()
        for participant in players:
            key = participant.identity_key()
            if key in seen:
                raise RosterValidationError(f"Player listed twice: {participant.display_name}")
            seen.add(key)
            seats.append(SessionPlayer(player_id=self.repo.new_id(), participant=participant, player_index=len(seats)))

        session_id = self.repo.new_id()
        session = Session(
            session_id=session_id,
            date=date,
            group_id=group_id,
            created_by=created_by,
            players=seats,
            rules=session_rules,
        )
        with self._lock:
            self.repo.create("session", session.model_dump(mode="json"), record_id=session_id)
        logger.info("created session %s (group=%s, players=%d)", session_id, group_id, len(seats))
        return session

    def get_session(self, session_id: str) -> Session:
        record = self.repo.get("session", session_id)
        if record is None:
            raise NotFoundError(f"Session not found: {session_id}")
        session = Session.model_validate(record.data)
        if session.group_id is not None:
            # group sessions always score with the group's current rules
            group_record = self.repo.get("group", session.group_id)
            if group_record is not None:
                session.rules = Group.model_validate(group_record.data).rules
        return session

    def list_sessions(self, group_id: str | None = None, limit: int | None = None) -> list[Session]:
        """Sessions newest first by date; same-day sessions newest created first."""
        if group_id is not None:
            self.get_group(group_id)
        sessions = [s for s in reversed(self._all_sessions()) if group_id is None or s.group_id == group_id]
        sessions.sort(key=lambda s: s.date, reverse=True)
        if limit is not None:
            sessions = sessions[:limit]
        return sessions

    def _all_sessions(self) -> list[Session]:
        return [self.get_session(record.id) for record in self.repo.list_records("session")]

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            if not self.repo.delete("session", session_id):
                raise NotFoundError(f"Session not found: {session_id}")
        logger.info("deleted session %s", session_id)

    def _save_session(self, session: Session) -> None:
        self.repo.update("session", session.session_id, session.model_dump(mode="json"))

    def rename_player(self, session_id: str, player_id: str, name: str) -> SessionPlayer:
        with self._lock:
            session = self.get_session(session_id)
            player = self._player(session, player_id)
            if not player.participant.is_guest:
                raise PermissionDeniedError("Registered players cannot be renamed", {"player_id": player_id})
            self._check_guest_name_free(session, name, keep=player_id)
            player.participant = GuestParticipant(name=name)
            self._save_session(session)
        logger.info("renamed guest %s in session %s", player_id, session_id)
        return player

    # --- matches ---

    def add_match(
        self,
        session_id: str,
        player_ids: Sequence[str] | None = None,
        player_names: Sequence[str] | None = None,
    ) -> Match:
        """Append a match with placeholder results.

        The seats are, in order of precedence: players looked up (or added as
        guests) by display name, the listed player ids, or every session player.
        """
        with self._lock:
            session = self.get_session(session_id)
            if player_names is not None:
                targets = [self._player_by_name(session, name) for name in player_names]
            elif player_ids is not None:
                targets = [self._player(session, player_id) for player_id in player_ids]
            else:
                targets = list(session.players)

            results = [RawResult(participant_id=p.player_id, raw_score=0) for p in targets]
            validate_results(results, session.rules)

            game_number = max((m.game_number for m in session.matches), default=0) + 1
            match = Match(match_id=self.repo.new_id(), game_number=game_number, results=results)
            session.matches.append(match)
            self._save_session(session)
        logger.info("added match #%d to session %s", game_number, session_id)
        return match

    def delete_match(self, session_id: str, match_id: str) -> None:
        with self._lock:
            session = self.get_session(session_id)
            match = self._match(session, match_id)
            session.matches.remove(match)
            self._save_session(session)
        logger.info("deleted match %s from session %s", match_id, session_id)

    def update_raw_score(self, session_id: str, match_id: str, player_id: str, raw_score: int) -> Match:
        with self._lock:
            session = self.get_session(session_id)
            match = self._match(session, match_id)
            if not any(r.participant_id == player_id for r in match.results):
                raise NotFoundError(f"Player {player_id} has no seat in match {match_id}")

            updated = [
                r.model_copy(update={"raw_score": raw_score}) if r.participant_id == player_id else r
                for r in match.results
            ]
            match.results, match.normalized = apply_normalization(updated, session.rules)
            self._save_session(session)
        logger.debug(
            "recomputed match %s (complete=%s): %s",
            match_id,
            bool(match.normalized),
            [(n.participant_id, n.rank, n.delta) for n in match.normalized],
        )
        return match

    def add_yakuman(self, session_id: str, match_id: str, player_id: str, yakuman_type: YakumanType) -> YakumanEvent:
        with self._lock:
            session = self.get_session(session_id)
            match = self._match(session, match_id)
            if not any(r.participant_id == player_id for r in match.results):
                raise NotFoundError(f"Player {player_id} has no seat in match {match_id}")
            event = YakumanEvent(event_id=self.repo.new_id(), player_id=player_id, type=yakuman_type)
            match.yakuman.append(event)
            self._save_session(session)
        logger.info("recorded %s for %s in match %s", yakuman_type.value, player_id, match_id)
        return event

    def remove_yakuman(self, session_id: str, match_id: str, event_id: str) -> None:
        with self._lock:
            session = self.get_session(session_id)
            match = self._match(session, match_id)
            event = next((y for y in match.yakuman if y.event_id == event_id), None)
            if event is None:
                raise NotFoundError(f"Yakuman record not found: {event_id}")
            match.yakuman.remove(event)
            self._save_session(session)

    def _player(self, session: Session, player_id: str) -> SessionPlayer:
        player = session.player(player_id)
        if player is None:
            raise NotFoundError(f"Player not found in session: {player_id}")
        return player

    def _player_by_name(self, session: Session, name: str) -> SessionPlayer:
        existing = next((p for p in session.players if p.participant.display_name == name), None)
        if existing is not None:
            return existing
        self._check_guest_name_free(session, name)
        player = SessionPlayer(
            player_id=self.repo.new_id(),
            participant=GuestParticipant(name=name),
            player_index=len(session.players),
        )
        session.players.append(player)
        return player

    def _check_guest_name_free(self, session: Session, name: str, keep: str | None = None) -> None:
        # guests are identified by name, so two seats with one name would merge
        key = GuestParticipant(name=name).identity_key()
        if any(p.player_id != keep and p.participant.identity_key() == key for p in session.players):
            raise RosterValidationError(f"Another player in the session is already named {name}", {"name": name})

    def _match(self, session: Session, match_id: str) -> Match:
        match = next((m for m in session.matches if m.match_id == match_id), None)
        if match is None:
            raise NotFoundError(f"Match not found: {match_id}")
        return match

    # --- read models ---

    def session_totals(self, session_id: str) -> list[AggregationRow]:
        return aggregation.session_totals(self.get_session(session_id), seats=self.seats)

    def group_ranking(
        self, group_id: str, since: dt.date | None = None, until: dt.date | None = None
    ) -> list[AggregationRow]:
        group = self.get_group(group_id)
        return aggregation.group_ranking(self._all_sessions(), group, seats=self.seats, since=since, until=until)

    def user_history(self, user_id: str) -> list[SessionSummaryRow]:
        return aggregation.user_history(self._all_sessions(), user_id)
