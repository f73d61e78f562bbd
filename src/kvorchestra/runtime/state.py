"""
Transaction state and its transition rules.
"""

from __future__ import annotations

from enum import Enum


class TransactionState(Enum):
    """
    Lifecycle of a request context.

    A root client stays NOT_TRANSACTION forever. A transaction starts
    NOT_STARTED, becomes IN_PROGRESS once the server hands back a transaction
    handle, and ends EXPIRED. Nothing leaves EXPIRED.
    """
    NOT_TRANSACTION = "not_transaction"
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    EXPIRED = "expired"


class RequestRole(Enum):
    """What kind of context a request is issued from."""
    PLAIN_CLIENT = "plain_client"
    TRANSACTION = "transaction"


def initial_state(role: RequestRole) -> TransactionState:
    if role is RequestRole.TRANSACTION:
        return TransactionState.NOT_STARTED
    return TransactionState.NOT_TRANSACTION


def can_begin(state: TransactionState) -> bool:
    """Only a not-yet-started transaction may take a server handle."""
    return state is TransactionState.NOT_STARTED


def can_expire(state: TransactionState) -> bool:
    return state in (TransactionState.NOT_STARTED, TransactionState.IN_PROGRESS)
