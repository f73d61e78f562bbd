"""
Request context for the orchestration layer.

Carries the role tag, transaction state, transaction handle and the buffered
mutations of one client or transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..core.errors import TransactionExpiredError
from .state import RequestRole, TransactionState, can_begin, can_expire, initial_state

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """
    Per-client (or per-transaction) request state.

    Contains:
    - role: plain client or transaction
    - state: TransactionState, see state.py for transitions
    - id: transaction handle received from the server (None until begun)
    - mutations: buffered wire mutations, in call order, sent on commit
    - read_only: transaction should be begun read-only
    """
    role: RequestRole = RequestRole.PLAIN_CLIENT
    state: Optional[TransactionState] = None
    id: Optional[str] = None
    mutations: list[dict[str, Any]] = field(default_factory=list)
    read_only: bool = False

    def __post_init__(self):
        """Derive the starting state from the role if not provided."""
        if self.state is None:
            self.state = initial_state(self.role)

    @property
    def is_transaction(self) -> bool:
        return self.role is RequestRole.TRANSACTION

    @property
    def has_handle(self) -> bool:
        return bool(self.id)

    def check_expired(self) -> None:
        """Fail fast when the transaction is expired."""
        if self.state is TransactionState.EXPIRED:
            raise TransactionExpiredError()

    def begin(self, handle: Optional[str]) -> bool:
        """
        Record a transaction handle from a server response.

        Returns:
            True if the context moved NOT_STARTED -> IN_PROGRESS
        """
        if not self.is_transaction or not handle or not can_begin(self.state):
            return False
        self.id = handle
        self.state = TransactionState.IN_PROGRESS
        logger.info(f"Transaction {handle} started")
        return True

    def expire(self) -> None:
        if can_expire(self.state):
            self.state = TransactionState.EXPIRED
            logger.debug(f"Transaction {self.id} expired")
