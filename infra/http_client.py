"""
Async REST client for the roadside backend.

Purpose:
- One httpx.AsyncClient per session, base URL from settings
- Bearer token attached to every outgoing request from the SessionContext
- The single place where HTTP failures are classified (core/errors.py)

Failure policy:
- 401 anywhere -> session teardown (synchronous, before the error is raised)
- 401/403      -> AuthenticationError
- other non-2xx -> ServerRejectedError with the server-provided message
- no response  -> TransportError
Successful bodies are unwrapped from the {success, message, data} envelope.
"""
import logging
from typing import Any, Optional

import httpx

from config.settings import settings
from core.auth import SessionContext
from core.errors import AuthenticationError, ServerRejectedError, TransportError
from core.logging import log_request, log_response
from core.response import error_message, unwrap

logger = logging.getLogger(__name__)


class ApiClient:
    def __init__(self, session: SessionContext, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.session = session
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT_SEC,
            transport=transport,
            event_hooks={
                "request": [self._attach_auth, log_request],
                "response": [log_response],
            },
        )

    async def _attach_auth(self, request: httpx.Request):
        # read at send time: the token may have been replaced or torn down
        for key, value in self.session.auth_headers().items():
            request.headers[key] = value

    async def request(self, method: str, path: str, *, params: Optional[dict] = None,
                      json: Any = None) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.RequestError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"Network error: {e.__class__.__name__}") from e

        body = _body(response)
        status = response.status_code
        if status == 401:
            logger.info("401 from %s %s; tearing down session", method, path)
            self.session.teardown("unauthorized")
            raise AuthenticationError(error_message(body, "Session expired"), status_code=401)
        if status == 403:
            raise AuthenticationError(error_message(body, "Not allowed"), status_code=403)
        if status >= 400:
            raise ServerRejectedError(error_message(body), status_code=status)
        return unwrap(body, status)

    async def get(self, path: str, params: Optional[dict] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None, params: Optional[dict] = None) -> Any:
        return await self.request("POST", path, json=json, params=params)

    async def put(self, path: str, json: Any = None) -> Any:
        return await self.request("PUT", path, json=json)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()


def _body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
