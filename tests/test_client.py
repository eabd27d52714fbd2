import asyncio

import httpx
import pytest

from conftest import API_KEY, PASSWORD, run
from metabase_mcp.client import API_KEY_SESSION, MetabaseClient
from metabase_mcp.errors import AuthenticationError, BackendCommunicationError


class TestSession:
    def test_api_key_never_logs_in(self, fake):
        async def scenario():
            async with fake.client(API_KEY) as client:
                tokens = [await client.ensure_session() for _ in range(5)]
                await client.get("/api/user")
            return tokens

        tokens = run(scenario())

        assert tokens == [API_KEY_SESSION] * 5
        assert fake.session_calls == 0
        assert fake.requests == [("GET", "/api/user", None)]
        assert fake.headers[0]["X-API-Key"] == "mb_test_key"
        assert "X-Metabase-Session" not in fake.headers[0]

    def test_password_logs_in_once_for_concurrent_callers(self, fake):
        async def scenario():
            async with fake.client(PASSWORD) as client:
                tokens = await asyncio.gather(*(client.ensure_session() for _ in range(10)))
                tokens.append(await client.ensure_session())
                await client.get("/api/user")
            return tokens

        tokens = run(scenario())

        assert fake.session_calls == 1
        assert set(tokens) == {"session-1"}
        assert fake.calls("POST", "/api/session") == [
            ("POST", "/api/session", {"username": "analyst@example.com", "password": "hunter2"})
        ]
        assert fake.headers[-1]["X-Metabase-Session"] == "session-1"

    def test_failed_login_is_not_cached(self, fake):
        fake.session_status = 401

        async def scenario():
            async with fake.client(PASSWORD) as client:
                with pytest.raises(AuthenticationError):
                    await client.ensure_session()
                assert client.session_token is None

                fake.session_status = 200
                return await client.ensure_session()

        assert run(scenario()) == "session-2"
        assert fake.session_calls == 2

    def test_login_response_without_token_fails(self):
        async def scenario():
            async with MetabaseClient(
                "https://metabase.example.com",
                PASSWORD,
                transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"no": "id"})),
            ) as client:
                with pytest.raises(AuthenticationError):
                    await client.ensure_session()
                assert client.session_token is None

        run(scenario())

    def test_expired_session_is_renewed_once(self, fake):
        async def scenario():
            async with fake.client(PASSWORD) as client:
                await client.ensure_session()
                fake.expire_sessions()
                data = await client.get("/api/user")
                return data, client.session_token

        data, token = run(scenario())

        assert data["path"] == "/api/user"
        assert token == "session-2"
        assert fake.session_calls == 2
        assert [r[1] for r in fake.calls("GET")] == ["/api/user", "/api/user"]

    def test_api_key_401_is_not_retried(self, fake):
        fake.overrides[("GET", "/api/user")] = httpx.Response(401, json={"message": "Invalid API key"})

        async def scenario():
            async with fake.client(API_KEY) as client:
                with pytest.raises(BackendCommunicationError) as exc:
                    await client.get("/api/user")
            return exc.value

        err = run(scenario())

        assert err.status_code == 401
        assert err.message == "Invalid API key"
        assert len(fake.calls("GET", "/api/user")) == 1

    def test_api_key_client_refuses_session_login(self, fake):
        async def scenario():
            async with fake.client(API_KEY) as client:
                with pytest.raises(AuthenticationError, match="username and password"):
                    await client._exchange_session()

        run(scenario())
        assert fake.session_calls == 0


class TestRequests:
    def test_json_body_and_query_params(self, fake):
        async def scenario():
            async with fake.client() as client:
                return await client.request("POST", "/api/card", {"name": "Revenue"}, params={"f": "all"})

        data = run(scenario())

        assert data["body"] == {"name": "Revenue"}
        assert data["params"] == {"f": "all"}

    def test_empty_response_returns_none(self, fake):
        async def scenario():
            async with fake.client() as client:
                return await client.delete("/api/user/4")

        assert run(scenario()) is None

    @pytest.mark.parametrize(
        "response, expected",
        [
            (httpx.Response(404, json={"message": "Not found."}), "Not found."),
            (httpx.Response(400, json="Card is archived"), "Card is archived"),
            (httpx.Response(403), "Permission denied. The Metabase user lacks access to this resource."),
            (httpx.Response(500, text="<html>boom</html>"), "Request failed with status code 500"),
        ],
    )
    def test_backend_message_is_surfaced(self, fake, response, expected):
        fake.overrides[("GET", "/api/card/1")] = response

        async def scenario():
            async with fake.client() as client:
                with pytest.raises(BackendCommunicationError) as exc:
                    await client.get("/api/card/1")
            return exc.value

        err = run(scenario())
        assert err.message == expected
        assert err.status_code == response.status_code

    def test_timeout_becomes_backend_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async def scenario():
            async with MetabaseClient(
                "https://metabase.example.com", API_KEY, timeout=5.0, transport=httpx.MockTransport(handler)
            ) as client:
                with pytest.raises(BackendCommunicationError) as exc:
                    await client.get("/api/dashboard")
            return exc.value

        err = run(scenario())
        assert err.message == "Request timed out after 5s"
        assert err.status_code is None

    def test_connection_failure_becomes_backend_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            async with MetabaseClient(
                "https://metabase.example.com", API_KEY, transport=httpx.MockTransport(handler)
            ) as client:
                with pytest.raises(BackendCommunicationError, match="Connection error: ConnectError"):
                    await client.get("/api/dashboard")

        run(scenario())
