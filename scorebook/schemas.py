from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, conint


class GameType(str, Enum):
    tonpuu = "東風"
    hanchan = "東南"


class MemberRole(str, Enum):
    admin = "admin"
    member = "member"


class YakumanType(str, Enum):
    kokushi_musou = "国士無双"
    suuankou = "四暗刻"
    daisangen = "大三元"
    tsuuiisou = "字一色"
    shousuushii = "小四喜"
    daisuushii = "大四喜"
    ryuuiisou = "緑一色"
    chinroutou = "清老頭"
    chuuren_poutou = "九蓮宝燈"
    suukantsu = "四槓子"
    tenhou = "天和"
    chiihou = "地和"


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody


class RuleConfig(BaseModel):
    """Ranking rules of a group or a free session.

    Scores are in table points; uma is in the same thousand-point units as the
    normalized deltas, ordered 1st to 4th place.
    """

    return_score: StrictInt = 30000
    start_score: StrictInt = 25000
    uma: list[StrictInt] = Field(default_factory=lambda: [20, 10, -10, -20], min_length=4, max_length=4)
    has_oka: StrictBool = True
    game_type: GameType = GameType.hanchan

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_record(cls, record: dict) -> RuleConfig:
        return cls.model_validate(
            {
                "return_score": record["return_score"],
                "start_score": record["start_score"],
                "uma": [record["uma_first"], record["uma_second"], record["uma_third"], record["uma_fourth"]],
                "has_oka": record["has_oka"],
                "game_type": record.get("game_type", GameType.hanchan),
            }
        )

    def to_record(self) -> dict:
        return {
            "return_score": self.return_score,
            "start_score": self.start_score,
            "uma_first": self.uma[0],
            "uma_second": self.uma[1],
            "uma_third": self.uma[2],
            "uma_fourth": self.uma[3],
            "has_oka": self.has_oka,
            "game_type": self.game_type.value,
        }


class RawResult(BaseModel):
    participant_id: str
    raw_score: StrictInt | None = None
    rank: conint(ge=1) | None = None

    @property
    def has_score(self) -> bool:
        # 0 is the placeholder written when a match is created
        return self.raw_score is not None and self.raw_score != 0


class NormalizedResult(BaseModel):
    participant_id: str
    rank: int
    delta: int


class RegisteredParticipant(BaseModel):
    kind: Literal["registered"] = "registered"
    user_id: str
    display_name: str

    model_config = ConfigDict(frozen=True)

    @property
    def is_guest(self) -> bool:
        return False

    def identity_key(self) -> str:
        return f"user:{self.user_id}"


class GuestParticipant(BaseModel):
    """Ad hoc player known only by the name typed in.

    Two guests with the same name are the same identity wherever they are
    compared, and a differently spelled name is a different identity.
    """

    kind: Literal["guest"] = "guest"
    name: str

    model_config = ConfigDict(frozen=True)

    @property
    def is_guest(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self.name

    def identity_key(self) -> str:
        return f"guest:{self.name}"


Participant = Annotated[Union[RegisteredParticipant, GuestParticipant], Field(discriminator="kind")]


class SessionPlayer(BaseModel):
    player_id: str
    participant: Participant
    player_index: conint(ge=0)


class YakumanEvent(BaseModel):
    event_id: str
    player_id: str
    type: YakumanType


class Match(BaseModel):
    match_id: str
    game_number: conint(ge=1)
    results: list[RawResult] = Field(default_factory=list)
    normalized: list[NormalizedResult] = Field(default_factory=list)
    yakuman: list[YakumanEvent] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return bool(self.results) and all(r.has_score for r in self.results)


class Session(BaseModel):
    session_id: str
    date: dt.date
    group_id: str | None = None
    created_by: str
    players: list[SessionPlayer] = Field(default_factory=list)
    matches: list[Match] = Field(default_factory=list)
    rules: RuleConfig = Field(default_factory=RuleConfig)

    def player(self, player_id: str) -> SessionPlayer | None:
        return next((p for p in self.players if p.player_id == player_id), None)


class GroupMember(BaseModel):
    participant: Participant
    role: MemberRole = MemberRole.member


class Group(BaseModel):
    group_id: str
    name: str
    created_by: str
    members: list[GroupMember] = Field(default_factory=list)
    rules: RuleConfig = Field(default_factory=RuleConfig)


class AggregationRow(BaseModel):
    participant_id: str
    display_name: str
    is_guest: bool
    total: int = 0
    rank_histogram: list[int] = Field(default_factory=lambda: [0, 0, 0, 0])
    match_count: int = 0
    yakuman_count: int = 0


class SessionSummaryRow(BaseModel):
    session_id: str
    date: dt.date
    group_id: str | None
    total: int
    match_count: int


# --- request / response bodies ---


class NormalizeRequest(BaseModel):
    rules: RuleConfig = Field(default_factory=RuleConfig)
    results: list[RawResult]

    model_config = ConfigDict(extra="forbid")


class NormalizeResponse(BaseModel):
    status: Literal["ok"]
    complete: bool
    results: list[NormalizedResult]
    warnings: list[str] = Field(default_factory=list)


class CreateGroupRequest(BaseModel):
    name: str = Field(min_length=1)
    creator: RegisteredParticipant
    rules: RuleConfig | None = None


class AddMemberRequest(BaseModel):
    participant: Participant
    role: MemberRole = MemberRole.member


class UpdateRulesRequest(BaseModel):
    actor_user_id: str
    rules: RuleConfig


class CreateSessionRequest(BaseModel):
    date: dt.date
    created_by: str
    group_id: str | None = None
    players: list[Participant] = Field(default_factory=list)
    rules: RuleConfig | None = None


class AddMatchRequest(BaseModel):
    player_ids: list[str] | None = None
    player_names: list[str] | None = None

    model_config = ConfigDict(extra="forbid")


class ScoreEntryRequest(BaseModel):
    player_id: str
    raw_score: StrictInt


class AddYakumanRequest(BaseModel):
    player_id: str
    type: YakumanType


class RenamePlayerRequest(BaseModel):
    name: str = Field(min_length=1)


class SessionTotalsResponse(BaseModel):
    session_id: str
    rows: list[AggregationRow]


class RankingResponse(BaseModel):
    group_id: str
    since: dt.date | None = None
    until: dt.date | None = None
    rows: list[AggregationRow]


class SessionListResponse(BaseModel):
    group_id: str | None = None
    sessions: list[Session]


class HistoryResponse(BaseModel):
    user_id: str
    total: int
    sessions: list[SessionSummaryRow]
