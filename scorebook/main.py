from __future__ import annotations

import datetime as dt
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse

from scorebook.aggregation import leaderboard
from scorebook.config import settings
from scorebook.log import setup_logging
from scorebook.normalizer import is_complete, normalize_match, preview_match
from scorebook.repository import InMemoryRepository
from scorebook.schemas import (
    AddMatchRequest,
    AddMemberRequest,
    AddYakumanRequest,
    CreateGroupRequest,
    CreateSessionRequest,
    ErrorBody,
    ErrorResponse,
    Group,
    HistoryResponse,
    Match,
    NormalizeRequest,
    NormalizeResponse,
    RankingResponse,
    RenamePlayerRequest,
    ScoreEntryRequest,
    Session,
    SessionListResponse,
    SessionPlayer,
    SessionTotalsResponse,
    UpdateRulesRequest,
    YakumanEvent,
)
from scorebook.service import NotFoundError, PermissionDeniedError, ScoreBook
from scorebook.validators import MatchValidationError, RosterValidationError, RuleValidationError, validate_results

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_file)
    logger.info("%s starting", settings.app_name)
    yield


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
repo = InMemoryRepository()
book = ScoreBook(repo, seats=settings.default_seats)


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(code=exc.code, message=exc.message, details=exc.details))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(RuleValidationError)
@app.exception_handler(MatchValidationError)
@app.exception_handler(RosterValidationError)
async def validation_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    logger.info("rejected %s %s: %s", request.method, request.url.path, exc)
    return _error_response(422, exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, exc)


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError) -> JSONResponse:
    logger.warning("denied %s %s: %s", request.method, request.url.path, exc)
    return _error_response(403, exc)


@app.get("/")
def root() -> dict[str, str]:
    return {
        "message": "Mahjong Score Book API",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/v1/normalize", response_model=NormalizeResponse)
def normalize(req: NormalizeRequest) -> NormalizeResponse:
    validate_results(req.results, req.rules)
    if is_complete(req.results):
        return NormalizeResponse(status="ok", complete=True, results=normalize_match(req.results, req.rules))

    preview = [item for item in preview_match(req.results, req.rules) if item is not None]
    return NormalizeResponse(
        status="ok",
        complete=False,
        results=preview,
        warnings=["Not every raw score is entered; preview scores include oka and are not zero-sum."],
    )


@app.post("/api/v1/groups", response_model=Group, status_code=201)
def create_group(req: CreateGroupRequest) -> Group:
    return book.create_group(req.name, req.creator, req.rules)


@app.get("/api/v1/groups/{group_id}", response_model=Group)
def get_group(group_id: str) -> Group:
    return book.get_group(group_id)


@app.post("/api/v1/groups/{group_id}/members", response_model=Group)
def add_member(group_id: str, req: AddMemberRequest) -> Group:
    return book.add_member(group_id, req.participant, req.role)


@app.put("/api/v1/groups/{group_id}/rules", response_model=Group)
def update_rules(group_id: str, req: UpdateRulesRequest) -> Group:
    return book.update_rules(group_id, req.actor_user_id, req.rules)


@app.get("/api/v1/groups/{group_id}/ranking", response_model=RankingResponse)
def group_ranking(group_id: str, since: dt.date | None = None, until: dt.date | None = None) -> RankingResponse:
    rows = book.group_ranking(group_id, since=since, until=until)
    return RankingResponse(group_id=group_id, since=since, until=until, rows=rows)


@app.get("/api/v1/groups/{group_id}/sessions", response_model=SessionListResponse)
def list_group_sessions(group_id: str, limit: int | None = Query(default=None, ge=1)) -> SessionListResponse:
    return SessionListResponse(group_id=group_id, sessions=book.list_sessions(group_id=group_id, limit=limit))


@app.post("/api/v1/sessions", response_model=Session, status_code=201)
def create_session(req: CreateSessionRequest) -> Session:
    return book.create_session(
        req.date,
        req.created_by,
        players=req.players,
        group_id=req.group_id,
        rules=req.rules,
    )


@app.get("/api/v1/sessions", response_model=SessionListResponse)
def list_sessions(
    group_id: str | None = None, limit: int | None = Query(default=None, ge=1)
) -> SessionListResponse:
    return SessionListResponse(group_id=group_id, sessions=book.list_sessions(group_id=group_id, limit=limit))


@app.get("/api/v1/sessions/{session_id}", response_model=Session)
def get_session(session_id: str) -> Session:
    return book.get_session(session_id)


@app.delete("/api/v1/sessions/{session_id}", status_code=204)
def delete_session(session_id: str) -> Response:
    book.delete_session(session_id)
    return Response(status_code=204)


@app.patch("/api/v1/sessions/{session_id}/players/{player_id}", response_model=SessionPlayer)
def rename_player(session_id: str, player_id: str, req: RenamePlayerRequest) -> SessionPlayer:
    return book.rename_player(session_id, player_id, req.name.strip())


@app.get("/api/v1/sessions/{session_id}/totals", response_model=SessionTotalsResponse)
def session_totals(session_id: str) -> SessionTotalsResponse:
    return SessionTotalsResponse(session_id=session_id, rows=leaderboard(book.session_totals(session_id)))


@app.post("/api/v1/sessions/{session_id}/matches", response_model=Match, status_code=201)
def add_match(session_id: str, req: AddMatchRequest | None = None) -> Match:
    req = req or AddMatchRequest()
    return book.add_match(session_id, player_ids=req.player_ids, player_names=req.player_names)


@app.delete("/api/v1/sessions/{session_id}/matches/{match_id}", status_code=204)
def delete_match(session_id: str, match_id: str) -> Response:
    book.delete_match(session_id, match_id)
    return Response(status_code=204)


@app.put("/api/v1/sessions/{session_id}/matches/{match_id}/scores", response_model=Match)
def update_raw_score(session_id: str, match_id: str, req: ScoreEntryRequest) -> Match:
    return book.update_raw_score(session_id, match_id, req.player_id, req.raw_score)


@app.post("/api/v1/sessions/{session_id}/matches/{match_id}/yakuman", response_model=YakumanEvent, status_code=201)
def add_yakuman(session_id: str, match_id: str, req: AddYakumanRequest) -> YakumanEvent:
    return book.add_yakuman(session_id, match_id, req.player_id, req.type)


@app.delete("/api/v1/sessions/{session_id}/matches/{match_id}/yakuman/{event_id}", status_code=204)
def remove_yakuman(session_id: str, match_id: str, event_id: str) -> Response:
    book.remove_yakuman(session_id, match_id, event_id)
    return Response(status_code=204)


@app.get("/api/v1/users/{user_id}/history", response_model=HistoryResponse)
def user_history(user_id: str) -> HistoryResponse:
    sessions = book.user_history(user_id)
    return HistoryResponse(user_id=user_id, total=sum(row.total for row in sessions), sessions=sessions)
