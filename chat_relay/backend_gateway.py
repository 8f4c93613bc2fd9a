"""Backend gateway for the booking chat relay.

The relay does not store anything durable. Bookings, messages and read state
belong to the backend REST service; this module is the single place the relay
talks to it. Every call is made with the connection's own bearer token.

Failures are reduced to two kinds:
- AuthExpired: the backend answered 401, the token is invalid or expired
- Unavailable: anything else (other status codes, connection errors, timeouts)

Nothing is retried here.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base class for backend call failures."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AuthExpired(GatewayError):
    """The backend rejected the bearer token (HTTP 401)."""


class Unavailable(GatewayError):
    """The backend could not be reached or returned a non-auth error."""


class BackendGateway:
    def __init__(self, api_url: str, timeout: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Open the HTTP session (idempotent)."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            logger.info(f"Backend gateway session opened for {self.api_url}")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("Backend gateway session closed")
        self._session = None

    async def fetch_bookings(self, user_id: str, token: str) -> List[Dict[str, Any]]:
        """Bookings where ``user_id`` is the guest or the property owner."""
        bookings = await self._request("GET", f"/bookings/findByUserGuestOrHost/{user_id}", token)
        if not isinstance(bookings, list):
            raise Unavailable(f"Unexpected bookings payload for user {user_id}: {type(bookings).__name__}")
        return bookings

    async def post_message(self, message: Dict[str, Any], token: str) -> None:
        await self._request("POST", "/users/chat/message", token, json=message)

    async def mark_read(self, conversation_id: str, token: str) -> None:
        await self._request("PUT", f"/bookings/conversation/{conversation_id}/read", token, json={})

    async def _request(self, method: str, path: str, token: str, json: Any = None) -> Any:
        await self.start()
        url = f"{self.api_url}{path}"
        headers = {"Authorization": f"Bearer {token}"}

        try:
            async with self._session.request(method, url, json=json, headers=headers) as response:
                if response.status == 401:
                    raise AuthExpired(f"{method} {path} rejected the token", status=401)
                if response.status >= 400:
                    raise Unavailable(f"{method} {path} returned {response.status}", status=response.status)
                if response.content_type == "application/json":
                    return await response.json()
                return None
        except GatewayError:
            raise
        except asyncio.TimeoutError as e:
            raise Unavailable(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise Unavailable(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise Unavailable(f"{method} {path} returned malformed JSON") from e
