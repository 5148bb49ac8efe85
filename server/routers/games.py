"""
Games API router.

HTTP endpoints for the lobby and turn operations, plus a websocket that
pushes the viewer's state after every change to the game.

Rejected plays and passes are returned as errors with the same body shape
as GameError: ``{"code", "category", "message"}``. A stale turn is 409, any
other rejection 422.
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from constants import MAX_PLAYERS, MIN_PLAYERS
from errors import ErrorCategory, GameError, GameNotFoundError, LobbyErrorCode, RejectReason, category_for
from game import ActionResult
from models.game_state import CardRow, GameDetails
from services.game_service import GameService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/games", tags=["games"])
ws_router = APIRouter(tags=["games"])


# =============================================================================
# Request Models
# =============================================================================


class CreateGameRequest(BaseModel):
    """Create a game; the host takes seat 0."""
    host_name: str
    name: Optional[str] = None
    max_players: Optional[int] = Field(default=None, ge=MIN_PLAYERS, le=MAX_PLAYERS)
    preset: Optional[str] = None
    options: Optional[dict] = None


class JoinRequest(BaseModel):
    player_name: str
    as_spectator: bool = False


class HostRequest(BaseModel):
    """Host-only lifecycle request (start, end, new game)."""
    requested_by: str
    seed: Optional[int] = None


class PlayRequest(BaseModel):
    seat: int
    cards: list[CardRow]
    expected_turn_count: int = Field(ge=0)


class PassRequest(BaseModel):
    seat: int
    expected_turn_count: int = Field(ge=0)


# =============================================================================
# Helpers
# =============================================================================


def get_game_service(request: Request) -> GameService:
    return request.app.state.game_service


_CATEGORY_STATUS = {
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.CONCURRENCY: 409,
    ErrorCategory.CONNECTIVITY: 503,
    ErrorCategory.INTEGRITY: 500,
    ErrorCategory.DECODE: 500,
}


def http_status_for(error: GameError) -> int:
    """HTTP status for a GameError."""
    if isinstance(error, GameNotFoundError):
        return 404
    if error.code == LobbyErrorCode.NOT_HOST.value:
        return 403
    return _CATEGORY_STATUS.get(error.category, 400)


def error_response(error: GameError) -> JSONResponse:
    return JSONResponse(status_code=http_status_for(error), content=error.to_dict())


def _action_response(result: ActionResult) -> Union[dict, JSONResponse]:
    if result.accepted:
        return result.to_dict()
    code = result.reason.value
    return JSONResponse(
        status_code=409 if result.reason == RejectReason.STALE_TURN else 422,
        content={
            "code": code,
            "category": category_for(code).value,
            "message": result.message,
        },
    )


# =============================================================================
# Lobby Endpoints
# =============================================================================


@router.post("", status_code=201)
async def create_game(body: CreateGameRequest, service: GameService = Depends(get_game_service)):
    game = await service.create_game(
        body.name,
        body.host_name,
        max_players=body.max_players,
        preset=body.preset,
        options=body.options,
    )
    return game.get_state(game.host_name)


@router.get("/{game_id}")
async def get_game(
    game_id: str,
    viewer: Optional[str] = Query(default=None),
    service: GameService = Depends(get_game_service),
):
    """Game state as ``viewer`` sees it; other hands are card counts only."""
    return await service.get_state(game_id, viewer)


@router.post("/{game_id}/players", status_code=201)
async def join_game(game_id: str, body: JoinRequest, service: GameService = Depends(get_game_service)):
    player = await service.join_game(game_id, body.player_name, as_spectator=body.as_spectator)
    return {
        "player": {
            "id": player.id,
            "name": player.name,
            "position": player.position,
            "is_spectator": player.is_spectator,
        },
        "state": await service.get_state(game_id, player.name),
    }


@router.delete("/{game_id}/players/{player_name}")
async def leave_game(game_id: str, player_name: str, service: GameService = Depends(get_game_service)):
    game = await service.leave_game(game_id, player_name)
    if game is None:
        return {"deleted": True, "state": None}
    return {"deleted": False, "state": game.get_state()}


@router.post("/{game_id}/start")
async def start_game(game_id: str, body: HostRequest, service: GameService = Depends(get_game_service)):
    game = await service.start_game(game_id, body.requested_by, seed=body.seed)
    return game.get_state(body.requested_by)


@router.post("/{game_id}/end")
async def end_game(game_id: str, body: HostRequest, service: GameService = Depends(get_game_service)):
    game = await service.end_game(game_id, body.requested_by)
    return {"state": game.get_state(body.requested_by), "scores": game.final_scores()}


@router.post("/{game_id}/new")
async def new_game(game_id: str, body: HostRequest, service: GameService = Depends(get_game_service)):
    game = await service.new_game(game_id, body.requested_by, seed=body.seed)
    return game.get_state(body.requested_by)


# =============================================================================
# Turn Endpoints
# =============================================================================


@router.post("/{game_id}/play")
async def submit_play(game_id: str, body: PlayRequest, service: GameService = Depends(get_game_service)):
    cards = [row.to_card() for row in body.cards]
    result = await service.submit_play(game_id, body.seat, cards, body.expected_turn_count)
    return _action_response(result)


@router.post("/{game_id}/pass")
async def submit_pass(game_id: str, body: PassRequest, service: GameService = Depends(get_game_service)):
    result = await service.submit_pass(game_id, body.seat, body.expected_turn_count)
    return _action_response(result)


@router.get("/{game_id}/hint")
async def request_hint(
    game_id: str,
    seat: int = Query(...),
    service: GameService = Depends(get_game_service),
):
    hints = await service.request_hint(game_id, seat)
    return {"hints": [hint.to_dict() for hint in hints]}


# =============================================================================
# WebSocket
# =============================================================================


@ws_router.websocket("/ws/games/{game_id}")
async def game_websocket(websocket: WebSocket, game_id: str, viewer: Optional[str] = None):
    """
    Push the viewer's state on connect and after every change.

    Incoming messages are ignored apart from ``{"type": "ping"}``.
    """
    service: GameService = websocket.app.state.game_service
    await websocket.accept()

    try:
        state = await service.get_state(game_id, viewer)
    except GameError as e:
        await websocket.send_json({"type": "error", **e.to_dict()})
        await websocket.close(code=4004, reason=e.code)
        return

    async def push(details: GameDetails) -> None:
        await websocket.send_json({"type": "state", "state": details.to_game().get_state(viewer)})

    unsubscribe = await service.subscribe_to_game(game_id, push)
    logger.debug(f"WebSocket subscribed to game {game_id} as {viewer or 'anonymous'}")
    try:
        await websocket.send_json({"type": "state", "state": state})
        while True:
            data = await websocket.receive_json()
            if data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.debug(f"WebSocket for game {game_id} disconnected")
    finally:
        await unsubscribe()
