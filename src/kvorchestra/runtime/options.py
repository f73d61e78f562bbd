"""
Option composer - builds the shared request envelope from caller options.

Enforces the mutual exclusions between read consistency, read time and
transactions before anything is sent.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from ..core.errors import InvalidArgumentError
from ..core.query import QuerySpec
from ..core.request_types import (
    PartitionId,
    ReadOptions,
    RequestOptions,
    RunOptions,
    RunQueryOptions,
    SharedQueryOptions,
    Timestamp,
)
from .context import RequestContext
from .state import TransactionState


READ_TIME_AND_CONSISTENCY_ERROR = "Read time and read consistency cannot both be specified."
CONSISTENCY_IN_TRANSACTION_ERROR = "Read consistency cannot be specified in a transaction."
READ_TIME_IN_TRANSACTION_ERROR = "Read time cannot be specified in a transaction."

# Read consistency names to wire codes.
CONSISTENCY_PROTO_CODE = {
    "eventual": 2,
    "strong": 1,
}


def throw_on_read_time_and_consistency(options: RunQueryOptions) -> None:
    if options.read_time and options.consistency:
        raise InvalidArgumentError(READ_TIME_AND_CONSISTENCY_ERROR)


def throw_on_transaction_errors(context: RequestContext, request: RequestOptions) -> None:
    """
    Reject read consistency and read time in a transactional request.

    A request is transactional if the context already holds a handle or if
    the request itself begins a new transaction.
    """
    read_options: Optional[ReadOptions] = getattr(request, "read_options", None)
    begins_transaction = bool(read_options and read_options.new_transaction is not None)
    if not (context.has_handle or begins_transaction):
        return
    if read_options and read_options.read_consistency:
        raise InvalidArgumentError(CONSISTENCY_IN_TRANSACTION_ERROR)
    if read_options and read_options.read_time:
        raise InvalidArgumentError(READ_TIME_IN_TRANSACTION_ERROR)


def get_transaction_request(
    context: RequestContext,
    options: Optional[RunOptions] = None,
) -> dict[str, Any]:
    """
    Wire transaction options for beginning a transaction.

    Explicit transaction_options win; otherwise the read_only flags of the
    call or the transaction, then a previous transaction id to retry.
    """
    options = options or RunOptions()
    if options.transaction_options is not None:
        if options.transaction_options.read_only:
            return {"readOnly": {}}
        if options.transaction_options.id:
            return {"readWrite": {"previousTransaction": options.transaction_options.id}}
        return {}
    if options.read_only or context.read_only:
        return {"readOnly": {}}
    previous = options.transaction_id or context.id
    if previous:
        return {"readWrite": {"previousTransaction": previous}}
    return {}


class OptionComposer:
    """
    Builds SharedQueryOptions for lookup, runQuery and runAggregationQuery.

    Usage:
        composer = OptionComposer()
        shared = composer.get_query_options(context, query, options)
    """

    def get_request_options(
        self,
        context: RequestContext,
        options: RunQueryOptions,
    ) -> SharedQueryOptions:
        """
        Read options only (no query-specific fields).

        Args:
            context: Client or transaction context issuing the call
            options: Caller options

        Returns:
            Fresh envelope; never shared between calls
        """
        shared = SharedQueryOptions()

        if context.is_transaction and context.state is TransactionState.NOT_STARTED:
            shared.read_options = ReadOptions(
                new_transaction=get_transaction_request(context),
                consistency_type="newTransaction",
            )

        if options.consistency:
            code = CONSISTENCY_PROTO_CODE.get(options.consistency.lower())
            if shared.read_options is None:
                shared.read_options = ReadOptions()
            shared.read_options.read_consistency = code

        if options.read_time:
            if shared.read_options is None:
                shared.read_options = ReadOptions()
            # Whole seconds only; sub-second precision of the caller's
            # millisecond timestamp is dropped here.
            shared.read_options.read_time = Timestamp(seconds=math.floor(options.read_time / 1000))

        return shared

    def get_query_options(
        self,
        context: RequestContext,
        query: QuerySpec,
        options: RunQueryOptions,
    ) -> SharedQueryOptions:
        """Read options plus explain options and the query's namespace."""
        shared = self.get_request_options(context, options)
        if options.explain_options is not None:
            shared.explain_options = options.explain_options.model_copy()
        if query.namespace:
            shared.partition_id = PartitionId(namespace_id=query.namespace)
        return shared

    def compose(
        self,
        context: RequestContext,
        options: RunQueryOptions,
        query: Optional[QuerySpec] = None,
    ) -> SharedQueryOptions:
        """
        Validate caller options and build the envelope in one step.

        Raises:
            InvalidArgumentError: If the options conflict with each other or
                with the transaction context
        """
        throw_on_read_time_and_consistency(options)
        if query is None:
            shared = self.get_request_options(context, options)
        else:
            shared = self.get_query_options(context, query, options)
        throw_on_transaction_errors(context, shared)
        return shared
