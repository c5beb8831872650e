"""Pydantic models for table configuration and API requests."""

from __future__ import annotations

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

MAX_PLAYERS = 6
DEFAULT_MIN_BET = 50
TURN_TIME_SECONDS = int(os.getenv("TURN_TIME_SECONDS", "45"))


class GameType(str, Enum):
    LOWBALL_27 = "lowball_27"
    SINGLE_DRAW_27 = "single_draw_27"
    HOLDEM = "holdem"


class BettingType(str, Enum):
    NO_LIMIT = "no_limit"
    POT_LIMIT = "pot_limit"
    FIXED_LIMIT = "fixed_limit"


class TableMode(str, Enum):
    CASH_GAME = "cash_game"
    SIT_AND_GO = "sit_and_go"


class BotDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


def _clean_name(value: str) -> str:
    value = value.strip()
    if not 2 <= len(value) <= 20:
        raise ValueError("Display name must be 2-20 characters")
    return value


# --- Configuration ---


class TournamentSettings(BaseModel):
    total_seats: int = Field(default=6, ge=2, le=MAX_PLAYERS)
    buy_in: int = Field(default=1000, ge=1)
    starting_stack: int = Field(default=1500, ge=2)
    level_duration_minutes: int = Field(default=10, ge=1, le=120)
    blind_schedule: Optional[list[tuple[int, int]]] = None


class TableConfig(BaseModel):
    game_type: GameType = GameType.LOWBALL_27
    betting_type: BettingType = BettingType.NO_LIMIT
    max_players: int = Field(default=MAX_PLAYERS, ge=2, le=MAX_PLAYERS)
    min_bet: int = Field(default=DEFAULT_MIN_BET, ge=2)
    turn_time_limit: int = Field(default=TURN_TIME_SECONDS, ge=5, le=600)
    password_hash: Optional[str] = None
    fixed_limit_raise_cap: Optional[int] = Field(default=None, ge=1)
    table_mode: TableMode = TableMode.CASH_GAME
    bot_bankroll: int = Field(default=2000, ge=0)
    tournament: Optional[TournamentSettings] = None

    @property
    def small_blind(self) -> int:
        return max(1, self.min_bet // 2)


# --- Request models ---


class CreateTableRequest(BaseModel):
    uid: str = Field(..., min_length=1, max_length=128)
    display_name: str
    password: Optional[str] = Field(default=None, max_length=64)
    game_type: GameType = GameType.LOWBALL_27
    betting_type: BettingType = BettingType.NO_LIMIT
    max_players: int = Field(default=MAX_PLAYERS, ge=2, le=MAX_PLAYERS)
    min_bet: int = Field(default=DEFAULT_MIN_BET, ge=2, le=100000)
    turn_time_limit: int = Field(default=TURN_TIME_SECONDS, ge=5, le=600)
    fixed_limit_raise_cap: Optional[int] = Field(default=None, ge=1)
    table_mode: TableMode = TableMode.CASH_GAME
    tournament: Optional[TournamentSettings] = None

    @field_validator("display_name")
    @classmethod
    def check_display_name(cls, value: str) -> str:
        return _clean_name(value)


class JoinTableRequest(BaseModel):
    uid: str = Field(..., min_length=1, max_length=128)
    display_name: str
    password: Optional[str] = Field(default=None, max_length=64)

    @field_validator("display_name")
    @classmethod
    def check_display_name(cls, value: str) -> str:
        return _clean_name(value)


class PlayerRequest(BaseModel):
    """Any request that only identifies the caller."""

    uid: str = Field(..., min_length=1, max_length=128)


class BuyInRequest(PlayerRequest):
    amount: int = Field(..., ge=1)


class ActionRequest(PlayerRequest):
    action: str  # FOLD, CHECK, CALL, BET, RAISE, ALL_IN
    amount: int = Field(default=0, ge=0)


class DrawRequest(PlayerRequest):
    discard_indices: list[int] = Field(default_factory=list, max_length=5)


class ChatRequest(PlayerRequest):
    text: str = Field(..., min_length=1, max_length=200)


class AddBotRequest(PlayerRequest):
    difficulty: BotDifficulty = BotDifficulty.MEDIUM


class KickBotRequest(PlayerRequest):
    bot_uid: str


# --- Response models ---


class CreateTableResponse(BaseModel):
    table_id: str


class AckResponse(BaseModel):
    ok: bool = True


class WalletResponse(BaseModel):
    uid: str
    balance: int


class ErrorResponse(BaseModel):
    detail: str
