"""
Transactions for kvorchestra.

A Transaction is a request context with the transaction role:
- begins server-side on run(), or atomically with its first read
- buffers mutations once begun, sends them all on commit()
- rollback() on failure; rollback errors never mask the original error
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from ..core.request_types import (
    BeginTransactionRequest,
    CommitRequest,
    RollbackRequest,
    RunOptions,
)
from .callbacks import with_callback
from .context import RequestContext
from .options import get_transaction_request
from .request import RequestOrchestrator, rollback_quietly
from .state import RequestRole, TransactionState

logger = logging.getLogger(__name__)


class Transaction(RequestOrchestrator):
    """
    A unit of work against the store.

    Usage:
        transaction = datastore.transaction()
        await transaction.run()
        entity = await transaction.get(key)
        await transaction.save({"key": key, "data": {...}})
        await transaction.commit()

    Or as an async context manager, committing on success and rolling back on
    error:
        async with datastore.transaction() as transaction:
            await transaction.delete(key)
    """

    def __init__(self, datastore: Any, *, read_only: bool = False, transaction_id: Optional[str] = None):
        """
        Initialize transaction.

        Args:
            datastore: Root client providing transport, codec and config
            read_only: Begin a read-only transaction
            transaction_id: Previous transaction to retry
        """
        super().__init__(
            datastore.rpc,
            datastore.codec,
            RequestContext(role=RequestRole.TRANSACTION, read_only=read_only),
            datastore.config,
            datastore=datastore,
        )
        self.previous_transaction_id = transaction_id

    @property
    def mutations(self) -> list[dict[str, Any]]:
        return self.context.mutations

    def expire(self) -> None:
        """Mark the transaction expired; every later call fails fast."""
        self.context.expire()

    async def _ensure_begun(self) -> None:
        await self.run()

    @with_callback
    async def run(self, options: Union[RunOptions, dict[str, Any], None] = None) -> tuple[Transaction, dict[str, Any]]:
        """
        Begin the transaction on the server.

        Returns:
            (transaction, response)
        """
        self.check_expired()
        if self.context.has_handle:
            return self, {}

        if options is None:
            options = RunOptions(transaction_id=self.previous_transaction_id)
        elif isinstance(options, dict):
            options = RunOptions.model_validate(options)

        request = BeginTransactionRequest(
            transaction_options=get_transaction_request(self.context, options) or None,
        )
        response = await self.request_("beginTransaction", request, options.call_options)
        self.parse_transaction_response(response)
        return self, response

    @with_callback
    async def commit(self, call_options: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Send every buffered mutation in one transactional commit.

        A transaction that was never begun is begun first. The transaction
        expires once the commit succeeds.
        """
        self.check_expired()
        if not self.context.has_handle:
            await self.run()

        request = CommitRequest(mutations=list(self.context.mutations))
        response = await self.request_("commit", request, call_options)
        logger.info(f"Transaction {self.id} committed {len(request.mutations)} mutation(s)")
        self.context.mutations.clear()
        self.expire()
        return response

    @with_callback
    async def rollback(self, call_options: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Abandon the transaction.

        The transaction expires whether or not the server call succeeds.
        """
        self.check_expired()
        if not self.context.has_handle:
            self.expire()
            return {}
        try:
            response = await self.request_("rollback", RollbackRequest(), call_options)
            logger.info(f"Transaction {self.id} rolled back")
            return response
        finally:
            self.context.mutations.clear()
            self.expire()

    async def __aenter__(self) -> Transaction:
        await self.run()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.state is TransactionState.EXPIRED:
            return
        if exc_type is not None:
            await rollback_quietly(self)
            return
        try:
            await self.commit()
        except Exception:
            await rollback_quietly(self)
            raise
