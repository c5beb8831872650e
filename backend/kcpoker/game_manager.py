"""Game manager: every table operation, each run as one store transaction.

Operations load the table document, mutate a ``TableEngine``, move wallet
chips when they cross the table boundary, check invariants and stage the
writes.  Callers get an acknowledgement only; results reach clients
through the table subscription.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional

from kcpoker import activity, bot_strategy, history, seats, wallet
from kcpoker.activity import EntryKind
from kcpoker.engine import DRAW_PHASES, Phase, PlayerStatus, TableEngine
from kcpoker.errors import ConflictRetry, PlayerNotFound, PokerError, TableNotFound
from kcpoker.invariants import check_invariants
from kcpoker.models import BotDifficulty, TableConfig, TableMode
from kcpoker.store import (
    Transaction,
    get_store,
    hand_history_doc,
    table_doc,
    user_hand_log_doc,
)
from kcpoker.tournament import TournamentState

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
RETRY_BASE_DELAY = 0.05
MAX_BOT_TURNS = 200

TurnKey = tuple[str, Optional[int], Optional[float]]
Mutation = Callable[[Transaction, TableEngine], Awaitable[Any]]


# ------------------------------------------------------------------
# Transaction plumbing
# ------------------------------------------------------------------


async def _run(fn: Callable[[Transaction], Awaitable[Any]]) -> Any:
    """Run *fn* in a transaction, retrying lost races with exponential backoff."""
    store = get_store()
    for attempt in range(MAX_RETRIES):
        try:
            return await store.run_transaction(fn)
        except ConflictRetry:
            if attempt == MAX_RETRIES - 1:
                logger.warning("Giving up after %d conflicting attempts", MAX_RETRIES)
                raise
            await asyncio.sleep(RETRY_BASE_DELAY * 2 ** attempt)


async def _save(txn: Transaction, engine: TableEngine) -> None:
    """Apply queued wallet credits, verify the table and stage every write."""
    for uid, amount in engine.wallet_credits:
        await wallet.credit(txn, uid, amount)

    check_invariants(engine)
    txn.set(table_doc(engine.table_id), engine.to_dict())

    for record in engine.completed_records:
        txn.set(hand_history_doc(record["hand_id"]), record)
        for uid, entry in history.build_user_logs(record, engine).items():
            txn.set(user_hand_log_doc(uid, record["hand_id"]), entry)

    engine.wallet_credits = []
    engine.completed_records = []


async def _load(txn: Transaction, table_id: str) -> TableEngine:
    doc = await txn.get(table_doc(table_id))
    if doc is None:
        raise TableNotFound(f"Table {table_id} not found")
    return TableEngine.from_dict(doc)


async def _update_table(table_id: str, mutate: Mutation) -> Any:
    """Load, mutate and save one table atomically.  Returns what *mutate* returns."""

    async def _txn(txn: Transaction) -> Any:
        engine = await _load(txn, table_id)
        result = await mutate(txn, engine)
        await _save(txn, engine)
        return result

    return await _run(_txn)


def turn_key(engine: TableEngine) -> TurnKey:
    """The (phase, active seat, deadline) triple that identifies one turn."""
    return (engine.phase.value, engine.active_seat, engine.turn_deadline)


# ------------------------------------------------------------------
# Lobby
# ------------------------------------------------------------------


async def create_table(
    uid: str,
    display_name: str,
    config: TableConfig,
    password: Optional[str] = None,
) -> str:
    """Create a table and seat (or register) its creator.  Returns the table id."""
    if password:
        config = config.model_copy(update={"password_hash": seats.hash_password(password)})

    async def _txn(txn: Transaction) -> str:
        table_id = seats.generate_table_id()
        while await txn.get(table_doc(table_id)) is not None:
            table_id = seats.generate_table_id()

        engine = TableEngine(table_id, config, created_by=uid)
        engine.log(EntryKind.EVENT, "table_created", f"{display_name} opened the table")
        await seats.join(txn, engine, uid, display_name, password)
        await _save(txn, engine)
        return table_id

    table_id = await _run(_txn)
    logger.info(
        "Created table %s (%s, %s, %s) for %s",
        table_id,
        config.game_type.value,
        config.betting_type.value,
        config.table_mode.value,
        uid,
    )
    return table_id


async def join_table(
    table_id: str, uid: str, display_name: str, password: Optional[str] = None
) -> str:
    """Seat *uid* or put them on the rail.  Returns "player" or "railbird"."""

    async def mutate(txn: Transaction, engine: TableEngine) -> str:
        return await seats.join(txn, engine, uid, display_name, password)

    return await _update_table(table_id, mutate)


async def join_as_player(table_id: str, uid: str) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        await seats.join_as_player(txn, engine, uid)

    await _update_table(table_id, mutate)


async def buy_in(table_id: str, uid: str, amount: int) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        await seats.buy_in(txn, engine, uid, amount)

    await _update_table(table_id, mutate)


async def leave_table(table_id: str, uid: str) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        await seats.leave(txn, engine, uid)

    await _update_table(table_id, mutate)


async def add_bot(table_id: str, uid: str, difficulty: BotDifficulty) -> str:
    """Seat a new bot (creator only).  Returns the bot's uid."""

    async def mutate(txn: Transaction, engine: TableEngine) -> str:
        return await seats.add_bot(txn, engine, uid, difficulty)

    return await _update_table(table_id, mutate)


async def kick_bot(table_id: str, uid: str, bot_uid: str) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        await seats.kick_bot(txn, engine, uid, bot_uid)

    await _update_table(table_id, mutate)


async def request_sit_out(table_id: str, uid: str) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        seats.request_sit_out(engine, uid)

    await _update_table(table_id, mutate)


async def cancel_sit_out(table_id: str, uid: str) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        seats.cancel_sit_out(engine, uid)

    await _update_table(table_id, mutate)


# ------------------------------------------------------------------
# Gameplay
# ------------------------------------------------------------------


async def deal(table_id: str, uid: str) -> None:
    """Deal a new hand from IDLE.  Any seated player may deal."""

    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        engine.get_player(uid)
        engine.deal()
        logger.info("Table %s: dealt hand #%d", table_id, engine.hand_number)

    await _update_table(table_id, mutate)


async def start_next_hand(table_id: str, uid: str) -> None:
    """Clear a finished hand back to IDLE; from IDLE, deal."""

    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        engine.get_player(uid)
        if engine.phase == Phase.SHOWDOWN:
            engine.start_next_hand()
        else:
            engine.deal()
            logger.info("Table %s: dealt hand #%d", table_id, engine.hand_number)

    await _update_table(table_id, mutate)


async def perform_action(table_id: str, uid: str, action: str, amount: int = 0) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        engine.apply_action(uid, action, amount)

    await _update_table(table_id, mutate)


async def submit_draw(table_id: str, uid: str, discard_indices: list[int]) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        engine.submit_draw(uid, discard_indices)

    await _update_table(table_id, mutate)


async def reveal_hand(table_id: str, uid: str) -> None:
    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        engine.reveal_hand(uid)

    await _update_table(table_id, mutate)


async def send_chat(table_id: str, uid: str, text: str) -> None:
    """Post a chat line.  Players and railbirds may chat."""
    text = activity.clean_chat_text(text)

    async def mutate(txn: Transaction, engine: TableEngine) -> None:
        idx = engine.find_seat(uid)
        if idx is not None:
            name = engine.seats[idx].display_name
        else:
            rail_idx = engine.find_railbird(uid)
            if rail_idx is None:
                raise PlayerNotFound(f"{uid} is not at this table")
            name = engine.railbirds[rail_idx]["display_name"]
        activity.append(
            engine.chat_log, EntryKind.CHAT, "chat", text, player_uid=uid, player_name=name
        )
        engine.touch()

    await _update_table(table_id, mutate)


# ------------------------------------------------------------------
# Timeouts and bots
# ------------------------------------------------------------------


async def process_timeout(table_id: str, expected: TurnKey) -> bool:
    """Act for an expired turn, but only if that turn is still the current one.

    Returns False when the table has moved on or the deadline has not
    passed, so repeated calls for the same turn are harmless.
    """

    async def mutate(txn: Transaction, engine: TableEngine) -> bool:
        if turn_key(engine) != tuple(expected):
            return False
        if engine.turn_deadline is None or engine.turn_deadline > time.time():
            return False
        action = engine.timeout_action()
        logger.info("Table %s: timeout applied (%s)", table_id, action)
        return True

    return await _update_table(table_id, mutate)


async def request_timeout(table_id: str) -> bool:
    """Process the current turn if its deadline has passed."""
    doc = await get_store().get(table_doc(table_id))
    if doc is None:
        raise TableNotFound(f"Table {table_id} not found")
    deadline = doc.get("turn_deadline")
    if deadline is None or deadline > time.time():
        return False
    return await process_timeout(table_id, (doc["phase"], doc.get("active_seat"), deadline))


def _decide(engine: TableEngine, idx: int, rng: Optional[random.Random]) -> Optional[tuple[str, Any]]:
    """A bot's move as ("DRAW", indices) or (action, amount); None if it failed."""
    bot = engine.seats[idx]
    difficulty = bot.bot_difficulty or BotDifficulty.MEDIUM.value
    view = engine.bot_view(idx)
    try:
        if engine.phase in DRAW_PHASES:
            return ("DRAW", bot_strategy.decide_discard(view, difficulty, rng))
        return bot_strategy.decide_action(view, difficulty, rng)
    except Exception:
        logger.exception("Table %s: bot %s failed to decide", engine.table_id, bot.uid)
        return None


async def _apply_bot_move(
    table_id: str, bot_uid: str, expected: TurnKey, move: Optional[tuple[str, Any]]
) -> bool:
    async def mutate(txn: Transaction, engine: TableEngine) -> bool:
        if turn_key(engine) != expected:
            return False
        try:
            if move is None:
                engine.timeout_action()
            elif move[0] == "DRAW":
                engine.submit_draw(bot_uid, move[1])
            else:
                engine.apply_action(bot_uid, move[0], move[1])
        except PokerError as e:
            logger.warning("Table %s: bot %s move %s rejected: %s", table_id, bot_uid, move, e)
            engine.timeout_action()
        return True

    return await _update_table(table_id, mutate)


async def run_bot_turns(table_id: str, rng: Optional[random.Random] = None) -> int:
    """Play every consecutive bot turn.  Returns the number of moves made.

    Decisions are computed outside the transaction and applied only if the
    turn they were computed for is still current.
    """
    moves = 0
    store = get_store()
    for _ in range(MAX_BOT_TURNS):
        doc = await store.get(table_doc(table_id))
        if doc is None:
            break
        engine = TableEngine.from_dict(doc)
        idx = engine.active_seat
        if not engine.is_hand_live or idx is None or not engine.seats[idx].is_bot:
            break

        move = _decide(engine, idx, rng)
        if not await _apply_bot_move(table_id, engine.seats[idx].uid, turn_key(engine), move):
            break
        moves += 1
    return moves


# ------------------------------------------------------------------
# Teardown
# ------------------------------------------------------------------


async def teardown_table(table_id: str) -> bool:
    """Delete a table, returning every stack to its owner's wallet.

    A hand in progress is void: contributions go back with the stacks.
    Bot wallets are deleted.  Returns False if the table was already gone.
    """

    async def _txn(txn: Transaction) -> bool:
        doc = await txn.get(table_doc(table_id))
        if doc is None:
            return False
        engine = TableEngine.from_dict(doc)
        live = engine.is_hand_live
        stacks = {
            p.uid: p.chips + (p.total_contribution if live else 0)
            for p in engine.seats
            if p.status != PlayerStatus.ELIMINATED
        }

        credits: list[tuple[str, int]] = []
        tournament = engine.tournament
        if engine.config.table_mode == TableMode.SIT_AND_GO and tournament is not None:
            if tournament.state == TournamentState.REGISTERING:
                credits = [(uid, tournament.unregister(uid)) for uid in list(tournament.registered)]
            elif tournament.state == TournamentState.RUNNING:
                credits = tournament.settle_by_chips(stacks)
        else:
            credits = list(stacks.items())

        bots = {p.uid for p in engine.seats if p.is_bot}
        for uid, amount in credits:
            if uid not in bots:
                await wallet.credit(txn, uid, amount)
        for uid in bots:
            wallet.delete(txn, uid)
        txn.delete(table_doc(table_id))
        return True

    removed = await _run(_txn)
    if removed:
        logger.info("Table %s torn down", table_id)
    return removed


# ------------------------------------------------------------------
# Reads
# ------------------------------------------------------------------


async def get_table_view(table_id: str, uid: Optional[str] = None) -> dict[str, Any]:
    """Table state as *uid* may see it."""
    doc = await get_store().get(table_doc(table_id))
    if doc is None:
        raise TableNotFound(f"Table {table_id} not found")
    return TableEngine.from_dict(doc).get_player_view(uid)


async def get_wallet(uid: str) -> int:
    """Current balance, opening the wallet on first use."""

    async def _txn(txn: Transaction) -> int:
        return await wallet.balance(txn, uid)

    return await _run(_txn)
