from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from wordrooms.api.deps import get_policy, get_settings, get_store, get_words
from wordrooms.api.models import (
    CreateRoomRequest,
    CreateRoomResponse,
    EvaluateRequest,
    EvaluateResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    PlayerView,
    RandomWordResponse,
    RoomListResponse,
    RoomStateResponse,
    RoomUpdateRequest,
    RoomUpdateResponse,
    WordValidityResponse,
    now_ms,
)
from wordrooms.assets.registry import WordList
from wordrooms.config import Settings
from wordrooms.errors import InvalidGuess, RoomError
from wordrooms.evaluator import evaluate, is_solved, normalize_word
from wordrooms.presence import PresencePolicy
from wordrooms.session import create_room, get_room_state, join_room, list_rooms, update_room_state
from wordrooms.store.base import RoomStore, normalize_code
from wordrooms.websocket_hub import hub, room_updated


router = APIRouter()


def _http_error(e: RoomError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.as_detail())


@router.websocket("/ws/rooms/{code}")
async def room_updates_ws(websocket: WebSocket, code: str) -> None:
    room_code = normalize_code(code)
    await hub.connect(room_code, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(room_code, websocket)
    except Exception:
        await hub.disconnect(room_code, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


# --- rooms ---


@router.post("/rooms/create", response_model=CreateRoomResponse)
async def create_room_route(
    payload: CreateRoomRequest,
    store: RoomStore = Depends(get_store),
    words: WordList = Depends(get_words),
    settings: Settings = Depends(get_settings),
) -> CreateRoomResponse:
    try:
        room = create_room(
            store=store,
            words=words,
            player_id=payload.player_id,
            nickname=payload.nickname,
            now_ms=now_ms(),
            max_attempts=settings.max_code_attempts,
        )
    except RoomError as e:
        raise _http_error(e) from e

    return CreateRoomResponse(room_code=room.code, target_word=room.target_word)


@router.post("/rooms/join", response_model=JoinRoomResponse)
async def join_room_route(payload: JoinRoomRequest, store: RoomStore = Depends(get_store)) -> JoinRoomResponse:
    try:
        room = join_room(
            store=store,
            room_code=payload.room_code,
            player_id=payload.player_id,
            nickname=payload.nickname,
            now_ms=now_ms(),
        )
    except RoomError as e:
        raise _http_error(e) from e

    await hub.broadcast(room.code, room_updated(room.code))
    return JoinRoomResponse.from_room(room)


@router.get("/rooms", response_model=RoomListResponse)
async def list_rooms_route(store: RoomStore = Depends(get_store)) -> RoomListResponse:
    try:
        rooms = list_rooms(store=store)
    except RoomError as e:
        raise _http_error(e) from e
    return RoomListResponse(rooms=rooms, total=len(rooms))


@router.get("/rooms/{code}", response_model=RoomStateResponse)
async def get_room_route(
    code: str,
    store: RoomStore = Depends(get_store),
    policy: PresencePolicy = Depends(get_policy),
) -> RoomStateResponse:
    try:
        room = get_room_state(store=store, room_code=code, policy=policy, now_ms=now_ms())
    except RoomError as e:
        raise _http_error(e) from e
    return RoomStateResponse.from_room(room)


@router.post("/rooms/{code}", response_model=RoomUpdateResponse, response_model_exclude_none=True)
async def update_room_route(
    code: str,
    payload: RoomUpdateRequest,
    store: RoomStore = Depends(get_store),
    words: WordList = Depends(get_words),
) -> RoomUpdateResponse:
    try:
        outcome = update_room_state(
            store=store,
            words=words,
            room_code=code,
            request=payload,
            now_ms=now_ms(),
        )
    except RoomError as e:
        raise _http_error(e) from e

    room = outcome.room
    await hub.broadcast(room.code, room_updated(room.code))
    return RoomUpdateResponse(
        success=True,
        game_state=room.game_state,
        players=[PlayerView.from_player(p) for p in room.players],
        ready_players=sorted(room.ready_players),
        all_players_ready=outcome.all_players_ready,
        round_no=room.round_no,
        target_word=outcome.target_word,
    )


# --- single-player words ---


@router.get("/words/random", response_model=RandomWordResponse)
async def random_word_route(words: WordList = Depends(get_words)) -> RandomWordResponse:
    return RandomWordResponse(word=words.pick())


@router.post("/words/evaluate", response_model=EvaluateResponse)
async def evaluate_route(payload: EvaluateRequest, words: WordList = Depends(get_words)) -> EvaluateResponse:
    try:
        guess = normalize_word(payload.guess)
        if guess not in words:
            raise InvalidGuess(f"{guess} is not in the word list")
        states = evaluate(guess, payload.target)
    except RoomError as e:
        raise _http_error(e) from e
    return EvaluateResponse(guess=guess, states=states, solved=is_solved(states))


@router.get("/words/{word}/valid", response_model=WordValidityResponse)
async def word_valid_route(word: str, words: WordList = Depends(get_words)) -> WordValidityResponse:
    return WordValidityResponse(word=word.strip().upper(), valid=word in words)
