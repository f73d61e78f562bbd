"""
Datastore - the root client.

Usage:
    from kvorchestra import ClientConfig, Datastore

    datastore = Datastore(ClientConfig(project_id="my-project"))
    key = datastore.key(["Company", "acme"])
    await datastore.save({"key": key, "data": {"employees": 12}})
    company = await datastore.get(key)
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..core.codec import EntityCodec, JsonEntityCodec
from ..core.config import ClientConfig
from ..core.entity import Key
from ..core.query import AggregateQuery, QuerySpec
from .context import RequestContext
from .request import RequestOrchestrator
from .rpc_client import HttpRpcClient, RpcClient
from .transaction import Transaction

logger = logging.getLogger(__name__)


class Datastore(RequestOrchestrator):
    """
    Non-transactional entry point and transaction factory.

    Features:
    - get / save / delete / merge / allocate_ids against the store
    - run_query / run_query_stream / run_aggregation_query
    - transaction() for atomic units of work
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        rpc_client: Optional[RpcClient] = None,
        codec: Optional[EntityCodec] = None,
    ):
        """
        Initialize client.

        Args:
            config: Connection settings (default: read from the environment)
            rpc_client: Transport (default: HttpRpcClient over config)
            codec: Wire codec (default: JsonEntityCodec)
        """
        config = config or ClientConfig.from_env()
        self._owns_rpc = rpc_client is None
        super().__init__(
            rpc_client or HttpRpcClient(config),
            codec or JsonEntityCodec(),
            RequestContext(),
            config,
        )
        logger.debug(f"Datastore client for project {config.project_id} ({config.api_endpoint})")

    def transaction(self, *, read_only: bool = False, transaction_id: Optional[str] = None) -> Transaction:
        return Transaction(self, read_only=read_only, transaction_id=transaction_id)

    def key(self, path: list[Any] | str, namespace: Optional[str] = None) -> Key:
        """Build a key, defaulting to the configured namespace."""
        if isinstance(path, str):
            path = [path]
        return Key.from_path(path, namespace=namespace or self.config.namespace)

    def create_query(self, kind: Optional[str] = None, namespace: Optional[str] = None) -> QuerySpec:
        return QuerySpec(
            namespace=namespace or self.config.namespace,
            kinds=[kind] if kind else [],
        )

    def create_aggregation_query(self, query: QuerySpec) -> AggregateQuery:
        return AggregateQuery(query=query)

    async def close(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_rpc and hasattr(self.rpc, "close"):
            await self.rpc.close()

    async def __aenter__(self) -> Datastore:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
