"""
Async HTTP client for the console's read/write API.
"""

import logging
from typing import Any, Optional

import httpx

from oa_console.config import ClientSettings
from oa_console.errors import ConsoleError
from oa_console.schemas import Message, MessagePage, MessageType, UserProfile

logger = logging.getLogger(__name__)


class ConsoleApiError(ConsoleError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConsoleApiClient:
    """
    Talks to GET/POST /messages and GET /users/{id}.

    Use as an async context manager, or call aclose() when done.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "ConsoleApiClient":
        return cls(settings.CONSOLE_API_URL, timeout=settings.CONSOLE_API_TIMEOUT)

    async def __aenter__(self) -> "ConsoleApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"{method} {url} returned {e.response.status_code}")
            raise ConsoleApiError(
                f"{method} {url} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling {url}: {e}")
            raise ConsoleApiError(f"{method} {url} failed: {e}") from e

    async def get_messages(
        self,
        odna: Optional[str] = None,
        limit: Optional[int] = None,
        before: Optional[int] = None,
        before_id: Optional[str] = None,
    ) -> MessagePage:
        params = {}
        if odna:
            params["odna"] = odna
        if limit is not None:
            params["limit"] = limit
        if before is not None:
            params["before"] = before
            if before_id is not None:
                params["beforeId"] = before_id
        return MessagePage.model_validate(await self._request("GET", "/messages", params=params))

    async def get_recent(self, limit: Optional[int] = None) -> MessagePage:
        return await self.get_messages(limit=limit)

    async def send_message(
        self,
        odna: str,
        text: str = "",
        type: str = MessageType.TEXT.value,
        image_url: Optional[str] = None,
    ) -> Message:
        body = {"odna": odna, "text": text, "type": type}
        if image_url:
            body["imageUrl"] = image_url
        return Message.model_validate(await self._request("POST", "/messages", json=body))

    async def get_profile(self, odna: str) -> UserProfile:
        return UserProfile.model_validate(await self._request("GET", f"/users/{odna}"))
