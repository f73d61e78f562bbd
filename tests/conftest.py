"""Shared fixtures: a scripted RPC transport and clients wired to it."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from kvorchestra import ClientConfig, Datastore, Key
from kvorchestra.runtime.rpc_client import CancellableCall, encode_request


class FakeRpcClient:
    """
    Transport returning scripted responses per method.

    Each entry in a method's script is either a response dict or an exception
    instance to raise. Every call is recorded as (method, wire payload).
    """

    def __init__(self):
        self.scripts: dict[str, list[Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def script(self, method: str, *responses: Any) -> None:
        self.scripts.setdefault(method, []).extend(responses)

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.calls if name == method]

    async def invoke(
        self,
        method: str,
        request: Any,
        call_options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        self.calls.append((method, encode_request(request)))
        queue = self.scripts.get(method) or []
        if not queue:
            return {}
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def stream(
        self,
        method: str,
        request: Any,
        call_options: Optional[dict[str, Any]] = None,
    ) -> CancellableCall:
        return CancellableCall(self.invoke(method, request, call_options))


def entity_result(kind: str, key_name: str, **properties: Any) -> dict[str, Any]:
    """Wire EntityResult with string/integer properties."""
    encoded = {}
    for prop, value in properties.items():
        if isinstance(value, int):
            encoded[prop] = {"integerValue": str(value)}
        else:
            encoded[prop] = {"stringValue": value}
    return {
        "entity": {
            "key": {"path": [{"kind": kind, "name": key_name}]},
            "properties": encoded,
        }
    }


@pytest.fixture
def rpc() -> FakeRpcClient:
    return FakeRpcClient()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(project_id="test-project")


@pytest.fixture
def datastore(rpc, config) -> Datastore:
    return Datastore(config, rpc_client=rpc)


@pytest.fixture
def key() -> Key:
    return Key.from_path(["Company", "acme"])
