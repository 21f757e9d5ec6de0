import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from duopow import __version__
from .errors import RemoteNotFound, RemoteTransportError
from .models import Identity

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://www.duolingo.com/2017-06-30"
USER_AGENT = f"duopow-bot/{__version__}"


class ProfileClient:
    """Stateless access to the learning platform's user endpoints."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        subject: str,
        params: Optional[Dict[str, str]] = None,
        credential: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {"User-Agent": USER_AGENT}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with session.request(
                method,
                url,
                params=params,
                headers=headers,
                json=json_body,
                timeout=self._timeout,
            ) as resp:
                if resp.status == 404:
                    raise RemoteNotFound(subject)
                if resp.status >= 400:
                    body = await resp.text()
                    raise RemoteTransportError(
                        f"{method} {path} failed with HTTP {resp.status}: {body[:200]}"
                    )
                if resp.status == 204:
                    return {}
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            log.warning("platform request %s %s failed: %s", method, path, exc)
            raise RemoteTransportError(f"{method} {path} failed: {exc}") from exc
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise RemoteTransportError(f"{method} {path} returned unexpected payload")
        return payload

    async def fetch_by_handle(self, handle: str) -> Identity:
        payload = await self._request(
            "GET", "/users", subject=handle, params={"username": handle}
        )
        users = payload.get("users") or []
        if not users:
            raise RemoteNotFound(handle)
        try:
            return Identity.from_payload(users[0])
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteTransportError(f"malformed user record for {handle}") from exc

    async def fetch_xp(self, external_id: int) -> int:
        payload = await self._request(
            "GET",
            f"/users/{external_id}",
            subject=str(external_id),
            params={"fields": "totalXp"},
        )
        try:
            return int(payload["totalXp"])
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteTransportError(f"no totalXp for user {external_id}") from exc

    async def fetch_by_id_authenticated(self, external_id: int, credential: str) -> Identity:
        payload = await self._request(
            "GET",
            f"/users/{external_id}",
            subject=str(external_id),
            credential=credential,
        )
        payload.setdefault("id", external_id)
        try:
            return Identity.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteTransportError(f"malformed user record for {external_id}") from exc

    async def write_bio(self, external_id: int, credential: str, new_bio: str) -> None:
        await self._request(
            "PATCH",
            f"/users/{external_id}",
            subject=str(external_id),
            params={"fields": "bio"},
            credential=credential,
            json_body={"bio": new_bio},
        )
        log.info("bio updated for user %s", external_id)
