"""
Runtime module - request orchestration pipeline.
"""

from __future__ import annotations

from .callbacks import with_callback
from .client import Datastore
from .context import RequestContext
from .metrics import decode_explain_metrics, decode_struct, get_info_from_stats
from .options import OptionComposer, get_transaction_request
from .pagination import LookupPager, PaginationEngine, QueryPager, ResultStream
from .request import RequestOrchestrator
from .rpc_client import CancellableCall, HttpRpcClient, RpcClient
from .state import RequestRole, TransactionState
from .transaction import Transaction

__all__ = [
    "TransactionState",
    "RequestRole",
    "RequestContext",
    "OptionComposer",
    "get_transaction_request",
    "decode_struct",
    "decode_explain_metrics",
    "get_info_from_stats",
    "PaginationEngine",
    "LookupPager",
    "QueryPager",
    "ResultStream",
    "RpcClient",
    "HttpRpcClient",
    "CancellableCall",
    "RequestOrchestrator",
    "Transaction",
    "Datastore",
    "with_callback",
]
