"""Wallet balances stored at ``wallets/{uid}``.

All functions take the open transaction so wallet moves commit atomically
with the table change that caused them.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any

from kcpoker.errors import InsufficientBalance, IllegalAction
from kcpoker.store import Transaction, wallet_doc

logger = logging.getLogger(__name__)

DEFAULT_STARTING_BALANCE = int(os.getenv("DEFAULT_STARTING_BALANCE", "10000"))


def _new_wallet(uid: str, balance: int, is_bot: bool = False) -> dict[str, Any]:
    return {"uid": uid, "balance": balance, "is_bot": is_bot, "updated_at": time.time()}


async def load(txn: Transaction, uid: str) -> dict[str, Any]:
    """Fetch a wallet, opening it with the default balance on first use."""
    doc = await txn.get(wallet_doc(uid))
    if doc is None:
        doc = _new_wallet(uid, DEFAULT_STARTING_BALANCE)
        txn.set(wallet_doc(uid), doc)
        logger.info("Opened wallet for %s with %d", uid, DEFAULT_STARTING_BALANCE)
    return doc


async def balance(txn: Transaction, uid: str) -> int:
    return (await load(txn, uid))["balance"]


async def debit(txn: Transaction, uid: str, amount: int) -> int:
    """Take *amount* from the wallet.  Returns the new balance."""
    if amount <= 0:
        raise IllegalAction("Amount must be positive")
    doc = await load(txn, uid)
    if doc["balance"] < amount:
        raise InsufficientBalance(f"Balance {doc['balance']} is less than {amount}")
    doc["balance"] -= amount
    doc["updated_at"] = time.time()
    txn.set(wallet_doc(uid), doc)
    return doc["balance"]


async def credit(txn: Transaction, uid: str, amount: int) -> int:
    """Add *amount* to the wallet.  Returns the new balance."""
    doc = await load(txn, uid)
    if amount > 0:
        doc["balance"] += amount
        doc["updated_at"] = time.time()
        txn.set(wallet_doc(uid), doc)
    return doc["balance"]


def open_bot_wallet(txn: Transaction, uid: str, bankroll: int) -> None:
    txn.set(wallet_doc(uid), _new_wallet(uid, bankroll, is_bot=True))


def delete(txn: Transaction, uid: str) -> None:
    txn.delete(wallet_doc(uid))
