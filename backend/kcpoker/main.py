"""FastAPI application: REST + WebSocket endpoints for the table engine.

REST calls only acknowledge; clients learn the outcome from the table
subscription on ``/ws/{table_id}/{uid}``.
"""

import hmac
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Optional

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from kcpoker import game_manager, store
from kcpoker.cleanup import cleanup_stale_tables, table_cleaner
from kcpoker.errors import PokerError
from kcpoker.models import (
    AckResponse,
    ActionRequest,
    AddBotRequest,
    BuyInRequest,
    ChatRequest,
    CreateTableRequest,
    CreateTableResponse,
    DrawRequest,
    JoinTableRequest,
    KickBotRequest,
    PlayerRequest,
    TableConfig,
    WalletResponse,
)
from kcpoker.timer import timeout_scheduler
from kcpoker.ws_manager import manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    timeout_scheduler.start()
    table_cleaner.start()
    yield
    table_cleaner.stop()
    timeout_scheduler.stop()
    await manager.close_all()
    await store.close()


app = FastAPI(title="Kansas City Poker Table API", lifespan=lifespan)

# ---------- Rate Limiting ----------

_rate_limit_enabled = os.getenv("RATE_LIMIT_ENABLED", "1") != "0"

limiter = Limiter(
    key_func=get_remote_address,
    enabled=_rate_limit_enabled,
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please slow down."},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Admin Auth ----------

ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")


async def verify_admin(authorization: str | None = Header(None)):
    """Validate the admin password from the Authorization header."""
    if not ADMIN_PASSWORD:
        raise HTTPException(
            status_code=503,
            detail="Admin not configured. Set ADMIN_PASSWORD env var.",
        )
    expected = f"Bearer {ADMIN_PASSWORD}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Invalid admin password")


# ---------- Helpers ----------


async def _call(op: Awaitable[Any]) -> Any:
    """Await a game_manager operation, turning engine errors into HTTP errors."""
    try:
        return await op
    except PokerError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def _play_bots(table_id: str) -> None:
    try:
        await game_manager.run_bot_turns(table_id)
    except Exception:
        logger.exception("Bot turns failed for table %s", table_id)


# ---------- Lobby ----------


@app.post("/api/tables", response_model=CreateTableResponse)
@limiter.limit("5/minute")
async def create_table(request: Request, req: CreateTableRequest):
    config = TableConfig(
        game_type=req.game_type,
        betting_type=req.betting_type,
        max_players=req.max_players,
        min_bet=req.min_bet,
        turn_time_limit=req.turn_time_limit,
        fixed_limit_raise_cap=req.fixed_limit_raise_cap,
        table_mode=req.table_mode,
        tournament=req.tournament,
    )
    table_id = await _call(
        game_manager.create_table(req.uid, req.display_name, config, req.password)
    )
    return CreateTableResponse(table_id=table_id)


@app.get("/api/tables/{table_id}")
@limiter.limit("30/minute")
async def get_table(request: Request, table_id: str, uid: Optional[str] = None):
    """The table as *uid* may see it (railbird view when uid is omitted)."""
    return await _call(game_manager.get_table_view(table_id.upper(), uid))


@app.post("/api/tables/{table_id}/join", response_model=AckResponse)
@limiter.limit("10/minute")
async def join_table(request: Request, table_id: str, req: JoinTableRequest):
    await _call(
        game_manager.join_table(table_id.upper(), req.uid, req.display_name, req.password)
    )
    return AckResponse()


@app.post("/api/tables/{table_id}/sit", response_model=AckResponse)
@limiter.limit("10/minute")
async def join_as_player(request: Request, table_id: str, req: PlayerRequest):
    """Move from the rail to a seat."""
    await _call(game_manager.join_as_player(table_id.upper(), req.uid))
    return AckResponse()


@app.post("/api/tables/{table_id}/buy_in", response_model=AckResponse)
@limiter.limit("10/minute")
async def buy_in(request: Request, table_id: str, req: BuyInRequest):
    await _call(game_manager.buy_in(table_id.upper(), req.uid, req.amount))
    return AckResponse()


@app.post("/api/tables/{table_id}/leave", response_model=AckResponse)
@limiter.limit("10/minute")
async def leave_table(request: Request, table_id: str, req: PlayerRequest):
    await _call(game_manager.leave_table(table_id.upper(), req.uid))
    return AckResponse()


@app.post("/api/tables/{table_id}/sit_out", response_model=AckResponse)
@limiter.limit("10/minute")
async def request_sit_out(request: Request, table_id: str, req: PlayerRequest):
    await _call(game_manager.request_sit_out(table_id.upper(), req.uid))
    return AckResponse()


@app.post("/api/tables/{table_id}/sit_out/cancel", response_model=AckResponse)
@limiter.limit("10/minute")
async def cancel_sit_out(request: Request, table_id: str, req: PlayerRequest):
    await _call(game_manager.cancel_sit_out(table_id.upper(), req.uid))
    return AckResponse()


@app.post("/api/tables/{table_id}/bots", response_model=AckResponse)
@limiter.limit("10/minute")
async def add_bot(request: Request, table_id: str, req: AddBotRequest):
    """Seat a bot (table creator only)."""
    await _call(game_manager.add_bot(table_id.upper(), req.uid, req.difficulty))
    return AckResponse()


@app.post("/api/tables/{table_id}/bots/kick", response_model=AckResponse)
@limiter.limit("10/minute")
async def kick_bot(request: Request, table_id: str, req: KickBotRequest):
    await _call(game_manager.kick_bot(table_id.upper(), req.uid, req.bot_uid))
    return AckResponse()


# ---------- Gameplay ----------


@app.post("/api/tables/{table_id}/deal", response_model=AckResponse)
@limiter.limit("30/minute")
async def deal(request: Request, table_id: str, req: PlayerRequest, background: BackgroundTasks):
    table_id = table_id.upper()
    await _call(game_manager.deal(table_id, req.uid))
    background.add_task(_play_bots, table_id)
    return AckResponse()


@app.post("/api/tables/{table_id}/next_hand", response_model=AckResponse)
@limiter.limit("30/minute")
async def start_next_hand(
    request: Request, table_id: str, req: PlayerRequest, background: BackgroundTasks
):
    """Clear a finished hand, or deal when the table is idle."""
    table_id = table_id.upper()
    await _call(game_manager.start_next_hand(table_id, req.uid))
    background.add_task(_play_bots, table_id)
    return AckResponse()


@app.post("/api/tables/{table_id}/action", response_model=AckResponse)
@limiter.limit("60/minute")
async def perform_action(
    request: Request, table_id: str, req: ActionRequest, background: BackgroundTasks
):
    """FOLD, CHECK, CALL, BET, RAISE or ALL_IN.  BET/RAISE amounts are street totals."""
    table_id = table_id.upper()
    await _call(game_manager.perform_action(table_id, req.uid, req.action, req.amount))
    background.add_task(_play_bots, table_id)
    return AckResponse()


@app.post("/api/tables/{table_id}/draw", response_model=AckResponse)
@limiter.limit("60/minute")
async def submit_draw(
    request: Request, table_id: str, req: DrawRequest, background: BackgroundTasks
):
    table_id = table_id.upper()
    await _call(game_manager.submit_draw(table_id, req.uid, req.discard_indices))
    background.add_task(_play_bots, table_id)
    return AckResponse()


@app.post("/api/tables/{table_id}/reveal", response_model=AckResponse)
@limiter.limit("10/minute")
async def reveal_hand(request: Request, table_id: str, req: PlayerRequest):
    await _call(game_manager.reveal_hand(table_id.upper(), req.uid))
    return AckResponse()


@app.post("/api/tables/{table_id}/chat", response_model=AckResponse)
@limiter.limit("20/minute")
async def send_chat(request: Request, table_id: str, req: ChatRequest):
    await _call(game_manager.send_chat(table_id.upper(), req.uid, req.text))
    return AckResponse()


@app.post("/api/tables/{table_id}/timeout", response_model=AckResponse)
@limiter.limit("30/minute")
async def request_timeout(request: Request, table_id: str, background: BackgroundTasks):
    """Ask the server to act for an expired turn.  A no-op if the turn is still running."""
    table_id = table_id.upper()
    if await _call(game_manager.request_timeout(table_id)):
        background.add_task(_play_bots, table_id)
    return AckResponse()


# ---------- Wallets ----------


@app.get("/api/wallets/{uid}", response_model=WalletResponse)
@limiter.limit("30/minute")
async def get_wallet(request: Request, uid: str):
    balance = await _call(game_manager.get_wallet(uid))
    return WalletResponse(uid=uid, balance=balance)


# ---------- Admin ----------


@app.post("/api/admin/cleanup")
@limiter.limit("10/minute")
async def admin_cleanup(request: Request, _=Depends(verify_admin)):
    """Manually trigger stale-table cleanup.  Returns deleted and failed table ids."""
    return await cleanup_stale_tables()


@app.delete("/api/admin/tables/{table_id}", response_model=AckResponse)
@limiter.limit("10/minute")
async def admin_teardown(request: Request, table_id: str, _=Depends(verify_admin)):
    """Tear down one table now, refunding stacks."""
    removed = await _call(game_manager.teardown_table(table_id.upper()))
    if not removed:
        raise HTTPException(status_code=404, detail="Table not found")
    return AckResponse()


# ---------- WebSocket ----------


@app.websocket("/ws/{table_id}/{uid}")
async def websocket_endpoint(ws: WebSocket, table_id: str, uid: str):
    table_id = table_id.upper()

    try:
        view = await game_manager.get_table_view(table_id, uid)
    except PokerError:
        await ws.close(code=4004, reason="Table not found")
        return

    conn = await manager.connect(table_id, uid, ws)

    # Send current state immediately on connect (reconnect support)
    await conn.send(json.dumps({"type": "table_state", "data": view}))

    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
                if msg.get("type") in ("ping", "pong"):
                    manager.record_pong(table_id, uid)
                if msg.get("type") == "ping":
                    await conn.send(json.dumps({"type": "pong", "ts": msg.get("ts")}))
            except (json.JSONDecodeError, AttributeError):
                logger.debug("Ignoring malformed message from %s", uid)
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(table_id, uid, conn)
