"""FastAPI endpoints for rooms, probes, oracle callbacks and websocket sync."""

from __future__ import annotations

from collections import defaultdict
from typing import Annotated, Any, Callable

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import load_settings
from .errors import UnknownSealedValue, VaultWarsError
from .models import Probe, Room
from .sealed import EncryptedInput, InMemoryConfidentialCompute, SealedHandle
from .service import VaultWarsService, create_service


class SealedCodePayload(BaseModel):
    ciphertexts: list[str] = Field(min_length=1, max_length=16)
    proof: str = Field(min_length=1)

    def to_input(self) -> EncryptedInput:
        return EncryptedInput(ciphertexts=tuple(self.ciphertexts), proof=self.proof)


class TokenEnvelope(BaseModel):
    token: str = Field(min_length=1)


class CreateRoomRequest(TokenEnvelope):
    code: SealedCodePayload
    wager: int = Field(ge=0)


class JoinRoomRequest(TokenEnvelope):
    code: SealedCodePayload
    wager: int = Field(ge=0)


class ProbeRequest(TokenEnvelope):
    guess: SealedCodePayload


class EncryptInputRequest(TokenEnvelope):
    values: list[Annotated[int, Field(ge=0, le=255)]] = Field(min_length=1, max_length=16)


class DisclosureCallbackRequest(BaseModel):
    request_id: str = Field(min_length=1)
    winner: str | None = None
    proof: str = Field(min_length=1)


class CreatePlayerResponse(BaseModel):
    player_id: str
    token: str


class RoomStateResponse(BaseModel):
    room: dict[str, Any]


class ProbeResponse(BaseModel):
    probe: dict[str, Any]


class ProbeLogResponse(BaseModel):
    probes: list[dict[str, Any]]


class LastResultResponse(BaseModel):
    breaches: str
    signals: str


class SealedValueResponse(BaseModel):
    handle: str
    value: bool | int | str


class DisclosureResponse(BaseModel):
    settled: bool


class TurnResponse(BaseModel):
    room_id: int
    player_id: str
    is_player_turn: bool


class WinsResponse(BaseModel):
    player_id: str
    wins: int


class RoomCountResponse(BaseModel):
    total_rooms: int


class RoomExistsResponse(BaseModel):
    room_id: int
    exists: bool


def room_view(room: Room) -> dict[str, Any]:
    return {
        "id": room.room_id,
        "creator": room.creator,
        "opponent": room.opponent,
        "wager": room.wager,
        "phase": room.phase.name,
        "phaseCode": int(room.phase),
        "turnCount": room.turn_count,
        "pendingWinner": None if room.pending_winner is None else str(room.pending_winner),
        "winner": room.winner,
        "vaultsSealed": {
            "creator": len(room.creator_vault),
            "opponent": len(room.opponent_vault),
        },
        "meta": {
            "createdAt": room.created_at.isoformat(),
            "lastActivityAt": room.last_activity_at.isoformat(),
        },
    }


def probe_view(probe: Probe) -> dict[str, Any]:
    return {
        "roomId": probe.room_id,
        "turnIndex": probe.turn_index,
        "submitter": probe.submitter,
        "guess": [str(handle) for handle in probe.guess],
        "breaches": str(probe.breaches),
        "signals": str(probe.signals),
        "isWin": str(probe.is_win),
        "resultComputed": probe.result_computed,
        "submittedAt": probe.submitted_at.isoformat(),
    }


class RoomWebSocketHub:
    def __init__(self) -> None:
        self._connections: dict[int, set[WebSocket]] = defaultdict(set)
        self._pending: dict[int, list[dict[str, Any]]] = defaultdict(list)

    async def connect(self, room_id: int, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[room_id].add(websocket)

    def disconnect(self, room_id: int, websocket: WebSocket) -> None:
        connections = self._connections.get(room_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(room_id, None)

    def queue(self, event: dict[str, Any]) -> None:
        room_id = event["roomId"]
        if room_id in self._connections:
            self._pending[room_id].append(event)

    async def send_room(self, websocket: WebSocket, room: Room) -> None:
        await websocket.send_json({"type": "room.state", "room": room_view(room)})

    async def flush_all(self) -> None:
        for room_id in list(self._pending):
            await self.flush(room_id)

    async def flush(self, room_id: int) -> None:
        events = self._pending.pop(room_id, [])
        stale_connections: list[WebSocket] = []
        for event in events:
            for websocket in self._connections.get(room_id, set()):
                try:
                    await websocket.send_json({"type": "room.event", "event": event})
                except RuntimeError:
                    stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(room_id=room_id, websocket=websocket)


def create_app(
    service: VaultWarsService | None = None,
    resolve_disclosures: Callable[[], int] | None = None,
) -> FastAPI:
    app = FastAPI(title="VaultWars API", version="0.1.0")
    game = service if service is not None else create_service(load_settings())
    if resolve_disclosures is None and isinstance(game.compute, InMemoryConfidentialCompute):
        resolve_disclosures = game.compute.resolve_pending

    websocket_hub = RoomWebSocketHub()
    game.events.subscribe(websocket_hub.queue)
    app.state.websocket_hub = websocket_hub
    app.state.service = game

    @app.exception_handler(VaultWarsError)
    async def vaultwars_error_handler(request: Request, exc: VaultWarsError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})

    async def run_oracle() -> None:
        if resolve_disclosures is not None:
            game.run_oracle(resolve_disclosures)
        await websocket_hub.flush_all()

    def get_service() -> VaultWarsService:
        return game

    @app.post("/api/players", response_model=CreatePlayerResponse)
    def create_player(local_service: VaultWarsService = Depends(get_service)) -> CreatePlayerResponse:
        registered = local_service.register_player()
        return CreatePlayerResponse(player_id=registered.player_id, token=registered.token)

    @app.get("/api/players/{player_id}/wins", response_model=WinsResponse)
    def get_wins(player_id: str, local_service: VaultWarsService = Depends(get_service)) -> WinsResponse:
        return WinsResponse(player_id=player_id, wins=local_service.wins_of(player_id))

    @app.get("/api/rooms", response_model=RoomCountResponse)
    def count_rooms(local_service: VaultWarsService = Depends(get_service)) -> RoomCountResponse:
        return RoomCountResponse(total_rooms=local_service.total_rooms())

    @app.post("/api/rooms", response_model=RoomStateResponse)
    async def create_room(
        payload: CreateRoomRequest,
        local_service: VaultWarsService = Depends(get_service),
    ) -> RoomStateResponse:
        sender = local_service.authenticate(payload.token)
        room_id = local_service.create_room(sender, payload.code.to_input(), payload.wager)
        return RoomStateResponse(room=room_view(local_service.get_room(room_id)))

    @app.get("/api/rooms/{room_id}", response_model=RoomStateResponse)
    def get_room(room_id: int, local_service: VaultWarsService = Depends(get_service)) -> RoomStateResponse:
        return RoomStateResponse(room=room_view(local_service.get_room(room_id)))

    @app.get("/api/rooms/{room_id}/exists", response_model=RoomExistsResponse)
    def room_exists(room_id: int, local_service: VaultWarsService = Depends(get_service)) -> RoomExistsResponse:
        return RoomExistsResponse(room_id=room_id, exists=local_service.room_exists(room_id))

    @app.post("/api/rooms/{room_id}/join", response_model=RoomStateResponse)
    async def join_room(
        room_id: int,
        payload: JoinRoomRequest,
        local_service: VaultWarsService = Depends(get_service),
    ) -> RoomStateResponse:
        sender = local_service.authenticate(payload.token)
        room = local_service.join_room(sender, room_id, payload.code.to_input(), payload.wager)
        await websocket_hub.flush(room_id)
        return RoomStateResponse(room=room_view(room))

    @app.post("/api/rooms/{room_id}/cancel", response_model=RoomStateResponse)
    async def cancel_room(
        room_id: int,
        payload: TokenEnvelope,
        local_service: VaultWarsService = Depends(get_service),
    ) -> RoomStateResponse:
        sender = local_service.authenticate(payload.token)
        room = local_service.cancel_room(sender, room_id)
        await websocket_hub.flush(room_id)
        return RoomStateResponse(room=room_view(room))

    @app.post("/api/rooms/{room_id}/timeout", response_model=RoomStateResponse)
    async def claim_timeout(
        room_id: int,
        payload: TokenEnvelope,
        local_service: VaultWarsService = Depends(get_service),
    ) -> RoomStateResponse:
        sender = local_service.authenticate(payload.token)
        room = local_service.claim_timeout(sender, room_id)
        await websocket_hub.flush(room_id)
        return RoomStateResponse(room=room_view(room))

    @app.post("/api/rooms/{room_id}/probes", response_model=ProbeResponse)
    async def submit_probe(
        room_id: int,
        payload: ProbeRequest,
        background_tasks: BackgroundTasks,
        local_service: VaultWarsService = Depends(get_service),
    ) -> ProbeResponse:
        sender = local_service.authenticate(payload.token)
        probe = local_service.submit_probe(sender, room_id, payload.guess.to_input())
        await websocket_hub.flush(room_id)
        background_tasks.add_task(run_oracle)
        return ProbeResponse(probe=probe_view(probe))

    @app.get("/api/rooms/{room_id}/probes", response_model=ProbeLogResponse)
    def list_probes(room_id: int, local_service: VaultWarsService = Depends(get_service)) -> ProbeLogResponse:
        return ProbeLogResponse(probes=[probe_view(probe) for probe in local_service.list_probes(room_id)])

    @app.get("/api/rooms/{room_id}/probes/last", response_model=LastResultResponse)
    def last_result(room_id: int, local_service: VaultWarsService = Depends(get_service)) -> LastResultResponse:
        breaches, signals = local_service.last_result(room_id)
        return LastResultResponse(breaches=str(breaches), signals=str(signals))

    @app.get("/api/rooms/{room_id}/probes/{turn_index}", response_model=ProbeResponse)
    def get_probe(
        room_id: int,
        turn_index: int,
        local_service: VaultWarsService = Depends(get_service),
    ) -> ProbeResponse:
        return ProbeResponse(probe=probe_view(local_service.get_probe(room_id, turn_index)))

    @app.get("/api/rooms/{room_id}/turn", response_model=TurnResponse)
    def get_turn(
        room_id: int,
        player_id: str = Query(min_length=1),
        local_service: VaultWarsService = Depends(get_service),
    ) -> TurnResponse:
        return TurnResponse(
            room_id=room_id,
            player_id=player_id,
            is_player_turn=local_service.is_player_turn(room_id, player_id),
        )

    @app.post("/api/rooms/{room_id}/disclosures", response_model=DisclosureResponse)
    async def fulfill_disclosure(
        room_id: int,
        payload: DisclosureCallbackRequest,
        local_service: VaultWarsService = Depends(get_service),
    ) -> DisclosureResponse:
        settled = local_service.fulfill_disclosure(room_id, payload.winner, payload.proof, payload.request_id)
        await websocket_hub.flush(room_id)
        return DisclosureResponse(settled=settled)

    if isinstance(game.compute, InMemoryConfidentialCompute):
        compute = game.compute

        @app.post("/api/inputs", response_model=SealedCodePayload)
        def encrypt_input(
            payload: EncryptInputRequest,
            local_service: VaultWarsService = Depends(get_service),
        ) -> SealedCodePayload:
            sender = local_service.authenticate(payload.token)
            encrypted = compute.encrypt_input(payload.values, sender)
            return SealedCodePayload(ciphertexts=list(encrypted.ciphertexts), proof=encrypted.proof)

        @app.get("/api/sealed/{handle}", response_model=SealedValueResponse)
        def decrypt_sealed(
            handle: str,
            token: str | None = Query(default=None),
            local_service: VaultWarsService = Depends(get_service),
        ) -> SealedValueResponse:
            try:
                sealed = SealedHandle.parse(handle)
            except ValueError:
                raise UnknownSealedValue() from None
            if token:
                value = compute.user_decrypt(sealed, local_service.authenticate(token))
            else:
                value = compute.public_decrypt(sealed)
            return SealedValueResponse(handle=str(sealed), value=value)

    @app.websocket("/ws/rooms/{room_id}")
    async def room_ws(
        websocket: WebSocket,
        room_id: int,
        local_service: VaultWarsService = Depends(get_service),
    ) -> None:
        token = websocket.query_params.get("token")
        if token is None or token == "":
            await websocket.close(code=1008)
            return
        try:
            local_service.authenticate(token)
            room = local_service.get_room(room_id)
        except VaultWarsError:
            await websocket.close(code=1008)
            return

        await websocket_hub.connect(room_id=room_id, websocket=websocket)
        await websocket_hub.send_room(websocket=websocket, room=room)

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(room_id=room_id, websocket=websocket)

    return app


app = create_app()
