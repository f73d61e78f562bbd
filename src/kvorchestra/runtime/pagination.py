"""
Pagination engine - turns multi-round lookups and queries into one stream.

Handles:
- Lookup rounds, continued with the keys the server deferred
- Query rounds, continued from the end cursor with offset/limit adjusted
- Lazy, single-consumption delivery with abort of the in-flight call
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Generic,
    Optional,
    Protocol,
    TypeVar,
)

from ..core.codec import EntityCodec, WrapNumbers
from ..core.entity import Entity
from ..core.query import QuerySpec
from ..core.request_types import MORE_RESULTS_NOT_FINISHED, RunQueryInfo
from .metrics import get_info_from_stats
from .rpc_client import CancellableCall

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT")

InfoListener = Callable[[RunQueryInfo], None]


@dataclass
class RoundOutcome(Generic[RequestT]):
    """
    Decision taken after one round.

    entities are emitted first; then either next_request is issued, or (when
    it is None) the stream ends and info, if any, is published.
    """
    entities: list[Entity] = field(default_factory=list)
    next_request: Optional[RequestT] = None
    info: Optional[RunQueryInfo] = None


class Pager(Protocol[RequestT]):
    """One pagination protocol: how to issue a round and what to do next."""

    def issue(self, request: RequestT) -> CancellableCall: ...

    def decide(self, request: RequestT, response: dict[str, Any]) -> RoundOutcome[RequestT]: ...


class ResultStream:
    """
    Lazy, single-consumption async stream of entities.

    Nothing is requested until the first item is pulled, and the next round
    is only requested once every entity of the current round was pulled.
    abort() cancels the in-flight call and ends the stream. Errors terminate
    the stream and are raised to the consumer.

    Usage:
        stream = datastore.run_query_stream(query)
        stream.on_info(lambda info: print(info.end_cursor))
        async for entity in stream:
            ...
    """

    def __init__(self, rounds: Callable[[ResultStream], AsyncIterator[Entity]]):
        self._rounds = rounds
        self._source: Optional[AsyncIterator[Entity]] = None
        self._inflight: Optional[CancellableCall] = None
        self._listeners: list[InfoListener] = []
        self._aborted = False
        self._finished = False
        self.info: Optional[RunQueryInfo] = None

    def on_info(self, listener: InfoListener) -> ResultStream:
        self._listeners.append(listener)
        return self

    @property
    def closed(self) -> bool:
        return self._aborted or self._finished

    def __aiter__(self) -> ResultStream:
        return self

    async def __anext__(self) -> Entity:
        if self.closed:
            raise StopAsyncIteration
        if self._source is None:
            self._source = self._rounds(self)
        try:
            return await self._source.__anext__()
        except BaseException:
            self._finished = True
            raise

    async def call(self, start: Callable[[], CancellableCall]) -> Optional[dict[str, Any]]:
        """
        Run one round's RPC as a cancellable call.

        Returns:
            The response, or None if the stream was aborted
        """
        if self._aborted:
            return None
        self._inflight = start()
        try:
            return await self._inflight
        except asyncio.CancelledError:
            if self._aborted:
                return None
            raise
        finally:
            self._inflight = None

    def abort(self) -> None:
        """Cancel the in-flight call; no further round is issued."""
        self._aborted = True
        if self._inflight is not None:
            self._inflight.cancel()

    async def aclose(self) -> None:
        """
        Abort the stream and close its round generator.

        If another task is suspended in a pull, abort() alone ends the
        generator from inside that pull.
        """
        self.abort()
        source = self._source
        if source is None or getattr(source, "ag_running", False):
            return
        if hasattr(source, "aclose"):
            await source.aclose()

    def publish_info(self, info: RunQueryInfo) -> None:
        self.info = info
        for listener in self._listeners:
            listener(info)

    async def collect(self) -> list[Entity]:
        """Drain the stream into a list."""
        return [entity async for entity in self]


class PaginationEngine:
    """
    Drives a Pager round by round.

    The control flow is a plain loop: issue, emit, decide, repeat.
    """

    def stream(self, start: Callable[[], tuple[Pager[RequestT], RequestT]]) -> ResultStream:
        """
        Build a lazy stream over all rounds.

        Args:
            start: Called on first pull, before any RPC; validates the call
                and returns the pager and the first round's request. Errors
                it raises are delivered through the stream.
        """

        async def rounds(stream: ResultStream) -> AsyncIterator[Entity]:
            pager, first_request = start()
            request: Optional[RequestT] = first_request
            round_number = 0
            while request is not None:
                round_number += 1
                current = request
                response = await stream.call(lambda: pager.issue(current))
                if response is None:
                    logger.debug(f"Stream aborted before round {round_number} completed")
                    return
                outcome = pager.decide(current, response)
                logger.debug(
                    f"Round {round_number}: {len(outcome.entities)} entities, "
                    f"{'continuing' if outcome.next_request is not None else 'done'}"
                )
                for entity in outcome.entities:
                    yield entity
                if outcome.next_request is None and outcome.info is not None:
                    stream.publish_info(outcome.info)
                request = outcome.next_request

        return ResultStream(rounds)


class LookupPager:
    """
    Lookup by keys.

    The request of each round is the list of key protos still to resolve; the
    server's deferred keys are the continuation.
    """

    def __init__(
        self,
        send: Callable[[list[dict[str, Any]]], CancellableCall],
        codec: EntityCodec,
        wrap_numbers: WrapNumbers = False,
        on_response: Optional[Callable[[Optional[dict[str, Any]]], None]] = None,
    ):
        self.send = send
        self.codec = codec
        self.wrap_numbers = wrap_numbers
        self.on_response = on_response

    def issue(self, request: list[dict[str, Any]]) -> CancellableCall:
        return self.send(request)

    def decide(
        self,
        request: list[dict[str, Any]],
        response: dict[str, Any],
    ) -> RoundOutcome[list[dict[str, Any]]]:
        if self.on_response is not None:
            self.on_response(response)
        entities = self.codec.format_array(response.get("found") or [], self.wrap_numbers)
        deferred = [
            self.codec.key_to_proto(self.codec.key_from_proto(key))
            for key in response.get("deferred") or []
        ]
        return RoundOutcome(entities=entities, next_request=deferred or None)


class QueryPager:
    """
    Query execution.

    The request of each round is a QuerySpec copy whose start cursor, offset
    and limit reflect what earlier rounds already returned.
    """

    def __init__(
        self,
        send: Callable[[QuerySpec], CancellableCall],
        codec: EntityCodec,
        wrap_numbers: WrapNumbers = False,
        on_response: Optional[Callable[[Optional[dict[str, Any]]], None]] = None,
    ):
        self.send = send
        self.codec = codec
        self.wrap_numbers = wrap_numbers
        self.on_response = on_response

    def issue(self, request: QuerySpec) -> CancellableCall:
        return self.send(request)

    def decide(self, request: QuerySpec, response: dict[str, Any]) -> RoundOutcome[QuerySpec]:
        if self.on_response is not None:
            self.on_response(response)

        batch = response.get("batch")
        if not batch:
            return RoundOutcome(info=get_info_from_stats(response))

        info = get_info_from_stats(response)
        info.more_results = batch.get("moreResults")
        if batch.get("endCursor"):
            info.end_cursor = encode_cursor(batch["endCursor"])

        entity_results = batch.get("entityResults") or []
        entities = self.codec.format_array(entity_results, self.wrap_numbers)

        if batch.get("moreResults") != MORE_RESULTS_NOT_FINISHED:
            return RoundOutcome(entities=entities, info=info)

        return RoundOutcome(
            entities=entities,
            next_request=next_query(
                request,
                end_cursor=info.end_cursor,
                skipped_results=int(batch.get("skippedResults") or 0),
                returned=len(entity_results),
            ),
        )


def next_query(query: QuerySpec, end_cursor: Optional[str], skipped_results: int, returned: int) -> QuerySpec:
    """
    Query for the round after one that ended NOT_FINISHED.

    An offset of -1 (none configured) counts as 0; a limit of -1 (unbounded)
    is never decremented.
    """
    following = query.model_copy(deep=True)
    offset = max(0, query.offset_val)
    following.start(end_cursor).offset(offset - skipped_results)
    if query.limit_val > 0:
        following.limit(query.limit_val - returned)
    return following


def encode_cursor(cursor: Any) -> str:
    """Cursors travel as base64 text."""
    if isinstance(cursor, (bytes, bytearray)):
        return base64.b64encode(bytes(cursor)).decode("ascii")
    return str(cursor)
