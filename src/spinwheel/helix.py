"""Twitch Helix API client for user lookups and VIP grants."""

import asyncio
from typing import Any

import aiohttp

from .events import GrantResult
from .exceptions import IdentityNotFound, UpstreamError
from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_HELIX_URL = "https://api.twitch.tv/helix"


class HelixClient:
    """HTTP client for the Helix endpoints the wheel needs.

    Use as an async context manager, or hand in an existing session (tests
    point it at a local aiohttp test server). Calls carry no per-request
    timeout beyond the session default; a hung call stalls only the
    redemption waiting on it.
    """

    def __init__(
        self,
        client_id: str,
        access_token: str,
        base_url: str = DEFAULT_HELIX_URL,
        session: aiohttp.ClientSession | None = None,
    ):
        self.client_id = client_id
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        if self.session is None:
            self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Client-ID": self.client_id,
            "Authorization": f"Bearer {self.access_token}",
        }

    def _require_session(self) -> aiohttp.ClientSession:
        if not self.session:
            raise RuntimeError("HelixClient must be used as async context manager")
        return self.session

    async def resolve_user_id(self, login: str) -> str:
        """
        Resolve a login name to its platform user id.

        Args:
            login: Lowercase Twitch login name

        Returns:
            str: The user id

        Raises:
            IdentityNotFound: The platform returned no matching account
            UpstreamError: The request failed or the response was malformed
        """
        session = self._require_session()

        try:
            async with session.get(
                f"{self.base_url}/users", params={"login": login}, headers=self.headers
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise UpstreamError(
                        f"User lookup for {login} failed: HTTP {response.status} - {error_text}",
                        status=response.status,
                        context={"login": login},
                    )
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise UpstreamError(f"HTTP client error looking up {login}: {e}", context={"login": login}) from e
        except asyncio.TimeoutError as e:
            # aiohttp request timeouts are not ClientErrors
            raise UpstreamError(f"User lookup for {login} timed out", context={"login": login}) from e
        except ValueError as e:
            # Body was not JSON
            raise UpstreamError(f"Malformed user lookup response for {login}: {e}", context={"login": login}) from e

        users = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(users, list):
            raise UpstreamError(f"Malformed user lookup response for {login}: missing data", context={"login": login})
        if not users:
            raise IdentityNotFound(login)

        user_id = users[0].get("id") if isinstance(users[0], dict) else None
        if not user_id:
            raise UpstreamError(f"Malformed user lookup response for {login}: missing id", context={"login": login})

        logger.info("Retrieved user ID", login=login, user_id=user_id)
        return str(user_id)

    async def grant_vip(self, broadcaster_id: str, user_id: str) -> GrantResult:
        """
        Grant the VIP role to a user.

        Never raises for HTTP or transport failures; the result says what
        happened.

        Args:
            broadcaster_id: Channel owner's user id
            user_id: Recipient's user id

        Returns:
            GrantResult: success on 204; already_granted on 409 or an
            error message mentioning "already"
        """
        session = self._require_session()

        try:
            async with session.post(
                f"{self.base_url}/channels/vips",
                params={"broadcaster_id": broadcaster_id, "user_id": user_id},
                headers=self.headers,
            ) as response:
                if response.status == 204:
                    logger.info("Successfully assigned VIP", user_id=user_id)
                    return GrantResult(success=True)

                if response.status < 400:
                    logger.warning("Unexpected VIP grant status", user_id=user_id, status=response.status)
                    return GrantResult(success=False)

                body = await self._read_error_body(response)
                logger.error("Failed to assign VIP", user_id=user_id, status=response.status, response=body)

                message = str(body.get("message", "")) if isinstance(body, dict) else ""
                if response.status == 409 or "already" in message.lower():
                    logger.info("User is already a VIP", user_id=user_id)
                    return GrantResult(success=False, already_granted=True)

                return GrantResult(success=False, already_granted=False)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to assign VIP", user_id=user_id, error=str(e))
            return GrantResult(success=False, already_granted=False)

    @staticmethod
    async def _read_error_body(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except ValueError:
            return {"message": await response.text()}
