"""Seat manager: players, railbirds, bots and sit-outs.

Functions here mutate a loaded ``TableEngine`` and, where chips cross the
table boundary, the wallets in the same transaction.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import string
import time
from typing import Optional

from kcpoker import wallet
from kcpoker.activity import EntryKind
from kcpoker.engine import Phase, PlayerState, PlayerStatus, TableEngine
from kcpoker.errors import (
    IllegalAction,
    InvalidPassword,
    PhaseMismatch,
    PlayerNotFound,
    RailbirdNotFound,
    TableFull,
)
from kcpoker.models import BotDifficulty, TableMode
from kcpoker.store import Transaction
from kcpoker.tournament import TournamentState

logger = logging.getLogger(__name__)

TABLE_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TABLE_ID_LENGTH = 6
BOT_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

BOT_NAMES = ["Ace", "Deuce", "Snowman", "Wheelie", "Lowrider", "Nitro", "Brick", "Sevens"]


def generate_table_id() -> str:
    return "".join(secrets.choice(TABLE_ID_ALPHABET) for _ in range(TABLE_ID_LENGTH))


def generate_bot_uid(now: Optional[float] = None) -> str:
    """``bot_<ms timestamp>_<9 random chars>``."""
    ms = int((now if now is not None else time.time()) * 1000)
    suffix = "".join(secrets.choice(BOT_SUFFIX_ALPHABET) for _ in range(9))
    return f"bot_{ms}_{suffix}"


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def check_password(engine: TableEngine, password: Optional[str]) -> None:
    expected = engine.config.password_hash
    if expected is None:
        return
    if not password or not hmac.compare_digest(hash_password(password), expected):
        raise InvalidPassword("Wrong table password")


def _seats_free(engine: TableEngine) -> bool:
    return len(engine.seats) < engine.config.max_players


def _is_sit_and_go(engine: TableEngine) -> bool:
    return engine.config.table_mode == TableMode.SIT_AND_GO and engine.tournament is not None


async def _seat_player(
    txn: Transaction,
    engine: TableEngine,
    uid: str,
    display_name: str,
    is_bot: bool = False,
    bot_difficulty: Optional[str] = None,
) -> PlayerState:
    """Put *uid* in a seat.  Sit-and-Go seats pay the buy-in and get the starting stack."""
    player = PlayerState(uid, display_name, 0, is_bot=is_bot, bot_difficulty=bot_difficulty)
    if _is_sit_and_go(engine):
        tournament = engine.tournament
        await wallet.debit(txn, uid, tournament.buy_in)
        player.chips = tournament.starting_stack
        player.starting_chips = player.chips
        engine.add_seat(player)
        if tournament.register(uid):
            engine.small_blind, engine.min_bet = tournament.current_blinds()
            engine.log(EntryKind.EVENT, "tournament_start", "The tournament has started")
    else:
        engine.add_seat(player)
    engine.log(EntryKind.EVENT, "seated", f"{display_name} takes a seat", player)
    return player


async def join(
    txn: Transaction,
    engine: TableEngine,
    uid: str,
    display_name: str,
    password: Optional[str] = None,
) -> str:
    """Seat *uid* if possible, otherwise add them to the rail.  Returns "player" or "railbird"."""
    if engine.find_seat(uid) is not None:
        return "player"
    if engine.find_railbird(uid) is not None:
        return "railbird"
    check_password(engine, password)

    can_sit = engine.phase == Phase.IDLE and _seats_free(engine)
    if _is_sit_and_go(engine):
        can_sit = can_sit and engine.tournament.state == TournamentState.REGISTERING

    if can_sit:
        await _seat_player(txn, engine, uid, display_name)
        engine.touch()
        return "player"

    engine.railbirds.append({"uid": uid, "display_name": display_name})
    engine.log(EntryKind.EVENT, "railbird", f"{display_name} is watching")
    engine.touch()
    return "railbird"


async def join_as_player(txn: Transaction, engine: TableEngine, uid: str) -> None:
    """Promote a railbird to a seat (IDLE only)."""
    idx = engine.find_railbird(uid)
    if idx is None:
        raise RailbirdNotFound(f"{uid} is not watching this table")
    if engine.phase != Phase.IDLE:
        raise PhaseMismatch("Seats open up only between hands")
    if not _seats_free(engine):
        raise TableFull("No free seats")
    if _is_sit_and_go(engine) and engine.tournament.state != TournamentState.REGISTERING:
        raise PhaseMismatch("Registration is closed")

    railbird = engine.railbirds.pop(idx)
    await _seat_player(txn, engine, uid, railbird["display_name"])
    engine.touch()


async def buy_in(txn: Transaction, engine: TableEngine, uid: str, amount: int) -> None:
    """Move *amount* from the wallet to the seat's stack."""
    if _is_sit_and_go(engine):
        raise IllegalAction("Sit-and-Go stacks come from the tournament buy-in")
    if amount <= 0:
        raise IllegalAction("Buy-in must be positive")
    player = engine.get_player(uid)
    if player.in_hand and engine.phase != Phase.IDLE:
        raise PhaseMismatch("Cannot buy in while playing a hand")

    await wallet.debit(txn, uid, amount)
    player.chips += amount
    engine.log(EntryKind.EVENT, "buy_in", f"{player.display_name} buys in for {amount}", player)
    engine.touch()


async def leave(txn: Transaction, engine: TableEngine, uid: str) -> None:
    """Leave the table.  A seated cash player's stack goes back to the wallet."""
    rail_idx = engine.find_railbird(uid)
    if rail_idx is not None:
        engine.railbirds.pop(rail_idx)
        engine.touch()
        return

    idx = engine.find_seat(uid)
    if idx is None:
        raise PlayerNotFound(f"{uid} is not at this table")
    if engine.phase not in (Phase.IDLE, Phase.SHOWDOWN):
        raise PhaseMismatch("Cannot leave during a hand; request a sit-out instead")

    player = engine.seats[idx]
    if _is_sit_and_go(engine):
        tournament = engine.tournament
        if tournament.state == TournamentState.REGISTERING:
            refund = tournament.unregister(uid)
            engine.remove_seat(idx)
            await wallet.credit(txn, uid, refund)
        elif tournament.state == TournamentState.RUNNING and player.status != PlayerStatus.ELIMINATED:
            raise PhaseMismatch("Cannot leave a running tournament")
        else:
            engine.remove_seat(idx)
    else:
        engine.remove_seat(idx)
        await wallet.credit(txn, uid, player.chips)

    engine.log(EntryKind.EVENT, "left", f"{player.display_name} leaves the table", player)
    engine.touch()


async def add_bot(
    txn: Transaction,
    engine: TableEngine,
    uid: str,
    difficulty: BotDifficulty,
    now: Optional[float] = None,
) -> str:
    """Creator-only: seat a bot funded from a fresh bot wallet.  Returns the bot uid."""
    if uid != engine.created_by:
        raise IllegalAction("Only the table creator can add bots")
    if engine.phase != Phase.IDLE:
        raise PhaseMismatch("Bots can only join between hands")
    if not _seats_free(engine):
        raise TableFull("No free seats")
    if _is_sit_and_go(engine) and engine.tournament.state != TournamentState.REGISTERING:
        raise PhaseMismatch("Registration is closed")

    bot_uid = generate_bot_uid(now)
    taken = {p.display_name for p in engine.seats}
    name = next((n for n in BOT_NAMES if f"{n} (bot)" not in taken), "Bot")
    bankroll = engine.config.bot_bankroll
    if _is_sit_and_go(engine):
        bankroll = max(bankroll, engine.tournament.buy_in)
    wallet.open_bot_wallet(txn, bot_uid, bankroll)

    player = await _seat_player(
        txn, engine, bot_uid, f"{name} (bot)", is_bot=True, bot_difficulty=difficulty.value
    )
    if not _is_sit_and_go(engine) and bankroll > 0:
        await wallet.debit(txn, bot_uid, bankroll)
        player.chips = bankroll
    logger.info("Table %s: added %s bot %s", engine.table_id, difficulty.value, bot_uid)
    engine.touch()
    return bot_uid


async def kick_bot(txn: Transaction, engine: TableEngine, uid: str, bot_uid: str) -> None:
    """Creator-only, IDLE only: remove a bot and delete its wallet."""
    if uid != engine.created_by:
        raise IllegalAction("Only the table creator can kick bots")
    if engine.phase != Phase.IDLE:
        raise PhaseMismatch("Bots can only be kicked between hands")
    idx = engine.find_seat(bot_uid)
    if idx is None or not engine.seats[idx].is_bot:
        raise PlayerNotFound(f"{bot_uid} is not a bot at this table")
    if _is_sit_and_go(engine) and engine.tournament.state == TournamentState.RUNNING:
        raise PhaseMismatch("Cannot kick a bot from a running tournament")

    bot = engine.remove_seat(idx)
    if _is_sit_and_go(engine) and engine.tournament.state == TournamentState.REGISTERING:
        engine.tournament.unregister(bot_uid)
    wallet.delete(txn, bot_uid)
    engine.log(EntryKind.EVENT, "bot_kicked", f"{bot.display_name} was removed", bot)
    engine.touch()


def request_sit_out(engine: TableEngine, uid: str) -> None:
    """Queue a move to the rail at the end of the hand (immediately when IDLE)."""
    if _is_sit_and_go(engine) and engine.tournament.state == TournamentState.RUNNING:
        raise IllegalAction("Cannot sit out of a running tournament")
    player = engine.get_player(uid)
    player.pending_sit_out = True
    engine.log(EntryKind.EVENT, "sit_out_requested", f"{player.display_name} will sit out", player)
    if engine.phase == Phase.IDLE:
        engine.demote_pending_sit_outs()
    engine.touch()


def cancel_sit_out(engine: TableEngine, uid: str) -> None:
    player = engine.get_player(uid)
    if not player.pending_sit_out:
        raise IllegalAction("No sit-out pending")
    player.pending_sit_out = False
    engine.log(EntryKind.EVENT, "sit_out_cancelled", f"{player.display_name} stays in", player)
    engine.touch()
