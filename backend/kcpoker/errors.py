"""Error kinds surfaced by the table engine.

All of them subclass ``ValueError`` so callers that only care about
"the request was rejected" can keep catching that.  ``status_code`` is the
HTTP status the API layer answers with.
"""

from __future__ import annotations


class PokerError(ValueError):
    status_code = 400


class NotYourTurn(PokerError):
    status_code = 403


class IllegalAction(PokerError):
    status_code = 400


class PhaseMismatch(PokerError):
    status_code = 409


class InsufficientBalance(PokerError):
    status_code = 400


class InsufficientChips(PokerError):
    status_code = 400


class TableFull(PokerError):
    status_code = 409


class TableNotFound(PokerError):
    status_code = 404


class PlayerNotFound(PokerError):
    status_code = 404


class RailbirdNotFound(PokerError):
    status_code = 404


class InvalidPassword(PokerError):
    status_code = 403


class DeckExhausted(PokerError):
    status_code = 500


class ConflictRetry(PokerError):
    """A transaction lost its compare-and-swap race."""

    status_code = 409


class InternalStateError(PokerError):
    """A post-transition invariant check failed; nothing was written."""

    status_code = 500
