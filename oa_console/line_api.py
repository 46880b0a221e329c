"""
Thin async client for the LINE Messaging API.

Only the calls the console needs: push a message, download message content,
look up a user profile and the account's own bot info.
"""

import logging
from typing import NamedTuple, Optional

import httpx

from oa_console.config import Settings, get_settings
from oa_console.errors import LineApiError

logger = logging.getLogger(__name__)


class ContentDownload(NamedTuple):
    data: bytes
    content_type: Optional[str]


class LineMessagingClient:
    """Client for the LINE Messaging API."""

    def __init__(
        self,
        channel_access_token: str,
        api_base_url: str = "https://api.line.me",
        data_api_base_url: str = "https://api-data.line.me",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.data_api_base_url = data_api_base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {"Authorization": f"Bearer {channel_access_token}"}
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "LineMessagingClient":
        return cls(
            channel_access_token=settings.CHANNEL_ACCESS_TOKEN,
            api_base_url=settings.LINE_API_BASE_URL,
            data_api_base_url=settings.LINE_DATA_API_BASE_URL,
            timeout=settings.LINE_API_TIMEOUT,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            logger.error(f"LINE API {method} {url} returned {e.response.status_code}")
            raise LineApiError(
                f"LINE API returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling {url}: {e}")
            raise LineApiError(f"LINE API request failed: {e}") from e

    async def push_message(self, to: str, messages: list[dict]) -> dict:
        """Push one or more message objects to a user."""
        return await self._request(
            "POST",
            f"{self.api_base_url}/v2/bot/message/push",
            json={"to": to, "messages": messages},
        )

    async def push_text(self, to: str, text: str) -> dict:
        return await self.push_message(to, [{"type": "text", "text": text}])

    async def push_image(self, to: str, image_url: str) -> dict:
        return await self.push_message(to, [{
            "type": "image",
            "originalContentUrl": image_url,
            "previewImageUrl": image_url,
        }])

    async def get_message_content(self, message_id: str) -> ContentDownload:
        """
        Download the binary content of a user-sent message (image, video...).

        The body is streamed and concatenated into one buffer; the content
        type is whatever LINE reports, if anything.
        """
        url = f"{self.data_api_base_url}/v2/bot/message/{message_id}/content"
        try:
            async with self._client() as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    chunks = [chunk async for chunk in response.aiter_bytes()]
                    content_type = response.headers.get("content-type")
        except httpx.HTTPStatusError as e:
            logger.error(f"Content download for {message_id} returned {e.response.status_code}")
            raise LineApiError(
                f"content download returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Content download for {message_id} failed: {e}")
            raise LineApiError(f"content download failed: {e}") from e
        return ContentDownload(b"".join(chunks), content_type)

    async def get_profile(self, user_id: str) -> dict:
        return await self._request("GET", f"{self.api_base_url}/v2/bot/profile/{user_id}")

    async def get_bot_info(self) -> dict:
        return await self._request("GET", f"{self.api_base_url}/v2/bot/info")


def get_line_client() -> LineMessagingClient:
    """FastAPI dependency."""
    return LineMessagingClient.from_settings(get_settings())
