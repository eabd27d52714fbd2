"""Shared fixtures: an in-memory Metabase behind httpx.MockTransport."""

import asyncio
import copy
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from metabase_mcp.client import MetabaseClient
from metabase_mcp.config import ApiKeyCredentials, Credentials, PasswordCredentials
from metabase_mcp.dispatcher import Dispatcher
from metabase_mcp.tools import registry

BASE_URL = "https://metabase.example.com"
API_KEY = ApiKeyCredentials(api_key="mb_test_key")
PASSWORD = PasswordCredentials(username="analyst@example.com", password="hunter2")


class FakeMetabase:
    """Just enough of the Metabase API to exercise the tools."""

    def __init__(self):
        self.requests: List[Tuple[str, str, Any]] = []
        self.headers: List[httpx.Headers] = []
        self.session_calls = 0
        self.session_status = 200
        self.valid_tokens = set()
        self.next_dashcard_id = 100
        self.dashboards: Dict[int, Dict[str, Any]] = {
            10: {
                "id": 10,
                "name": "Sales",
                "parameters": [],
                "dashcards": [
                    {"id": 1, "card_id": 5, "row": 0, "col": 0, "size_x": 4, "size_y": 3,
                     "parameter_mappings": []},
                    {"id": 2, "card_id": 6, "row": 0, "col": 4, "size_x": 4, "size_y": 3,
                     "parameter_mappings": [{"parameter_id": "p1", "card_id": 6,
                                             "target": ["variable", ["template-tag", "region"]]}]},
                ],
            },
        }
        self.graph: Dict[str, Any] = {
            "revision": 4,
            "groups": {
                "1": {"root": "write", "7": "write"},
                "2": {"root": "read", "7": "none", "8": "read"},
                "3": {"root": "none", "7": "read"},
            },
        }
        self.overrides: Dict[Tuple[str, str], httpx.Response] = {}

    # ─── Helpers ─────────────────────────────────────────────────────────

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> List[Tuple[str, str, Any]]:
        return [
            r for r in self.requests
            if (method is None or r[0] == method) and (path is None or r[1] == path)
        ]

    def api_calls(self) -> List[Tuple[str, str, Any]]:
        return [r for r in self.requests if r[1] != "/api/session"]

    def expire_sessions(self) -> None:
        self.valid_tokens.clear()

    def client(self, credentials: Credentials = API_KEY, timeout: float = 30.0) -> MetabaseClient:
        return MetabaseClient(
            BASE_URL,
            credentials,
            timeout=timeout,
            transport=httpx.MockTransport(self.handle),
        )

    # ─── Routing ─────────────────────────────────────────────────────────

    async def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, path, body))
        self.headers.append(request.headers)

        if path == "/api/session":
            return await self._session(body)

        token = request.headers.get("X-Metabase-Session")
        if token is not None and token not in self.valid_tokens:
            return httpx.Response(401, text="Unauthenticated")

        if (method, path) in self.overrides:
            return self.overrides[(method, path)]

        if method == "DELETE":
            return httpx.Response(204)

        match = re.fullmatch(r"/api/dashboard/(\d+)", path)
        if match:
            return self._dashboard(method, int(match.group(1)), body)

        if path == "/api/collection/graph":
            if method == "GET":
                return httpx.Response(200, json=self.graph)
            self.graph = copy.deepcopy(body)
            self.graph["revision"] = body["revision"] + 1
            return httpx.Response(200, json=self.graph)

        match = re.fullmatch(r"/api/card/(\d+)/query", path)
        if match:
            return httpx.Response(202, json={"card_id": int(match.group(1)), "parameters": body["parameters"]})

        return httpx.Response(200, json={"method": method, "path": path, "body": body,
                                         "params": dict(request.url.params)})

    async def _session(self, body: Dict[str, Any]) -> httpx.Response:
        self.session_calls += 1
        # Give concurrent callers a chance to pile up behind the login.
        await asyncio.sleep(0.01)
        if self.session_status != 200:
            return httpx.Response(self.session_status, json={"errors": {"password": "did not match"}})
        token = f"session-{self.session_calls}"
        self.valid_tokens.add(token)
        return httpx.Response(200, json={"id": token})

    def _dashboard(self, method: str, dashboard_id: int, body: Any) -> httpx.Response:
        dashboard = self.dashboards.get(dashboard_id)
        if dashboard is None:
            return httpx.Response(404, json={"message": "Not found."})
        if method == "GET":
            return httpx.Response(200, json=dashboard)
        if method == "PUT":
            if "dashcards" in body:
                saved = []
                for dc in body["dashcards"]:
                    dc = dict(dc)
                    if dc.get("id", -1) < 0:
                        dc["id"] = self.next_dashcard_id
                        self.next_dashcard_id += 1
                    saved.append(dc)
                dashboard["dashcards"] = saved
            for key, value in body.items():
                if key != "dashcards":
                    dashboard[key] = value
            return httpx.Response(200, json=dashboard)
        return httpx.Response(405)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def fake() -> FakeMetabase:
    return FakeMetabase()


@pytest.fixture
def call_tool(fake):
    """Run one tool call against ``fake`` with API key auth."""

    def _call(name: str, arguments: Optional[Dict[str, Any]] = None, credentials: Credentials = API_KEY):
        async def scenario():
            async with fake.client(credentials) as client:
                return await Dispatcher(client, registry).call(name, arguments)

        return run(scenario())

    return _call
