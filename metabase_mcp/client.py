"""Authenticated HTTP client for the Metabase REST API."""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from metabase_mcp.config import (
    REQUEST_TIMEOUT,
    ApiKeyCredentials,
    Credentials,
    PasswordCredentials,
)
from metabase_mcp.errors import AuthenticationError, BackendCommunicationError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
SESSION_HEADER = "X-Metabase-Session"
API_KEY_SESSION = "api_key_used"


# ─── Error Formatting ────────────────────────────────────────────────────────


def _backend_message(response: httpx.Response) -> str:
    """Pull Metabase's own error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    if isinstance(body, str) and body:
        return body

    status = response.status_code
    if status == 401:
        return "Authentication failed. Check your Metabase credentials."
    elif status == 403:
        return "Permission denied. The Metabase user lacks access to this resource."
    elif status == 404:
        return "Resource not found. Check the ID is correct."
    elif status == 429:
        return "Rate limit exceeded. Wait a moment and retry."
    return f"Request failed with status code {status}"


def _transport_message(e: httpx.HTTPError, timeout: float) -> str:
    if isinstance(e, httpx.TimeoutException):
        return f"Request timed out after {timeout:g}s"
    return f"Connection error: {type(e).__name__}: {e}"


# ─── Client ──────────────────────────────────────────────────────────────────


class MetabaseClient:
    """Long-lived client bound to one Metabase instance.

    With API key credentials the key header is attached at construction and
    no login ever happens. With password credentials the first call to
    :meth:`ensure_session` exchanges them for a session token, which is then
    reused for the life of the process.
    """

    def __init__(
        self,
        base_url: str,
        credentials: Credentials,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self._session_token: Optional[str] = None
        self._session_lock = asyncio.Lock()

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if isinstance(credentials, ApiKeyCredentials):
            logger.info("Using Metabase API key for authentication")
            headers[API_KEY_HEADER] = credentials.api_key
            self._session_token = API_KEY_SESSION
        else:
            logger.info("Using Metabase username/password for authentication")

        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def uses_password(self) -> bool:
        return isinstance(self.credentials, PasswordCredentials)

    @property
    def session_token(self) -> Optional[str]:
        return self._session_token

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "MetabaseClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ─── Session ─────────────────────────────────────────────────────────

    async def ensure_session(self) -> str:
        """Return the active session, logging in at most once.

        Raises:
            AuthenticationError: if the session exchange fails. The cache is
                left empty so the next call tries again.
        """
        if self._session_token is not None:
            return self._session_token

        async with self._session_lock:
            # Another caller may have logged in while we waited.
            if self._session_token is not None:
                return self._session_token
            self._session_token = await self._exchange_session()
            return self._session_token

    async def _exchange_session(self) -> str:
        creds = self.credentials
        if not isinstance(creds, PasswordCredentials):
            raise AuthenticationError("Session login needs username and password credentials")
        logger.info("Authenticating with Metabase using username/password...")
        try:
            response = await self._http.post(
                "/api/session",
                json={"username": creds.username, "password": creds.password},
            )
            response.raise_for_status()
            token = response.json().get("id")
        except httpx.HTTPStatusError as e:
            logger.error("Authentication failed: %s", _backend_message(e.response))
            raise AuthenticationError() from e
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error("Authentication failed: %s", e)
            raise AuthenticationError() from e

        if not token or not isinstance(token, str):
            logger.error("Authentication failed: session response has no token")
            raise AuthenticationError()

        self._http.headers[SESSION_HEADER] = token
        logger.info("Successfully authenticated with Metabase")
        return token

    async def _invalidate_session(self, stale_token: str) -> None:
        async with self._session_lock:
            if self._session_token == stale_token:
                self._session_token = None
                self._http.headers.pop(SESSION_HEADER, None)

    # ─── Requests ────────────────────────────────────────────────────────

    async def _send(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            return await self._http.request(
                method,
                path,
                json=body,
                params=params,
            )
        except httpx.HTTPError as e:
            message = _transport_message(e, self.timeout)
            logger.warning("%s %s failed: %s", method, path, message)
            raise BackendCommunicationError(message) from e

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make an authenticated request and return the decoded JSON body.

        Returns None when the response has no body (e.g. DELETE -> 204).

        Raises:
            BackendCommunicationError: on a non-2xx status, timeout or
                network failure.
            AuthenticationError: if a re-login after a 401 fails.
        """
        used_token = self._session_token
        response = await self._send(method, path, body, params)

        if response.status_code == 401 and self.uses_password and used_token:
            logger.info("Metabase session rejected, re-authenticating once")
            await self._invalidate_session(used_token)
            await self.ensure_session()
            response = await self._send(method, path, body, params)

        if response.is_error:
            message = _backend_message(response)
            logger.warning("%s %s returned %s: %s", method, path, response.status_code, message)
            raise BackendCommunicationError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, body=body)

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request("PUT", path, body=body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)
