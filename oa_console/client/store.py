import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from oa_console.client import state as transitions
from oa_console.client.api import ConsoleApiClient, ConsoleApiError
from oa_console.client.state import ChatState, Conversation
from oa_console.config import ClientSettings
from oa_console.schemas import Message, MessageType, UserProfile

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[str, Exception], None]


class ChatStore:
    """
    Operator-side conversation cache.

    Holds a ChatState and replaces it through the pure transitions in
    oa_console.client.state. Network work goes through the injected
    ConsoleApiClient. Failed requests are passed to on_error (the UI's
    transient notification) and never leave partial state behind.
    """

    def __init__(
        self,
        api: ConsoleApiClient,
        settings: Optional[ClientSettings] = None,
        on_error: Optional[ErrorHandler] = None,
        initial_state: Optional[ChatState] = None,
    ):
        self.api = api
        self.settings = settings or ClientSettings()
        self.on_error = on_error
        self._state = initial_state or ChatState()
        self._profile_requests: dict[str, asyncio.Task] = {}
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ChatState:
        return self._state

    def _report(self, action: str, error: Exception) -> None:
        logger.error(f"[ChatStore] {action} failed: {error}")
        if self.on_error is not None:
            self.on_error(action, error)

    # =========================================================================
    # Threads
    # =========================================================================

    async def load_initial(self, odna: str) -> None:
        """Load the most recent page of a counterpart's thread, once."""
        if self._state.is_loaded(odna) or self._state.is_loading(odna):
            return

        self._state = transitions.loading_started(self._state, odna)
        try:
            page = await self.api.get_messages(odna, limit=self.settings.MESSAGES_PER_PAGE)
        except ConsoleApiError as e:
            self._state = transitions.loading_failed(self._state, odna)
            self._report(f"loading messages for {odna}", e)
            return
        self._state = transitions.page_loaded(self._state, odna, page)

    async def load_older(self, odna: str) -> None:
        """Prepend the page before the oldest loaded message."""
        if not self._state.has_more(odna) or self._state.is_loading(odna):
            return

        thread = self._state.thread(odna)
        oldest = thread[0] if thread else None

        self._state = transitions.loading_started(self._state, odna)
        try:
            page = await self.api.get_messages(
                odna,
                limit=self.settings.MESSAGES_PER_PAGE,
                before=oldest.timestamp if oldest else None,
                before_id=oldest.id if oldest else None,
            )
        except ConsoleApiError as e:
            self._state = transitions.loading_failed(self._state, odna)
            self._report(f"loading older messages for {odna}", e)
            return
        self._state = transitions.page_loaded(self._state, odna, page)

    # =========================================================================
    # Sending
    # =========================================================================

    def record_send(self, message: Message) -> None:
        self._state = transitions.message_recorded(self._state, message, self.settings.RECENT_CAP)

    async def send_message(
        self,
        odna: str,
        text: str = "",
        type: str = MessageType.TEXT.value,
        image_url: Optional[str] = None,
    ) -> Message:
        """
        Send through the API and record the confirmed message locally.

        Raises:
            ConsoleApiError: the send failed; state is unchanged
        """
        try:
            message = await self.api.send_message(odna, text=text, type=type, image_url=image_url)
        except ConsoleApiError as e:
            self._report(f"sending message to {odna}", e)
            raise
        self.record_send(message)
        return message

    # =========================================================================
    # Recent feed and polling
    # =========================================================================

    async def poll_recent(self) -> None:
        try:
            page = await self.api.get_recent(limit=self.settings.RECENT_LIMIT)
        except ConsoleApiError as e:
            self._report("polling recent messages", e)
            return
        self._state = transitions.recent_polled(self._state, page, self.settings.RECENT_CAP)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_recent()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[ChatStore] poll loop error: {e}")
            await asyncio.sleep(self.settings.POLLING_INTERVAL)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def start_polling(self) -> None:
        """Poll now, then every POLLING_INTERVAL seconds until stop_polling()."""
        if self.is_polling:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("[ChatStore] polling started")

    async def stop_polling(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None
        logger.info("[ChatStore] polling stopped")

    @asynccontextmanager
    async def polling(self) -> AsyncIterator["ChatStore"]:
        """
        Keep the recent feed fresh for the lifetime of the block. Polling
        that was already running when the block was entered keeps running.
        """
        started_here = not self.is_polling
        self.start_polling()
        try:
            yield self
        finally:
            if started_here:
                await self.stop_polling()

    # =========================================================================
    # Profiles
    # =========================================================================

    async def _load_profile(self, odna: str) -> Optional[UserProfile]:
        try:
            profile = await self.api.get_profile(odna)
        except ConsoleApiError as e:
            self._report(f"fetching profile for {odna}", e)
            return None
        self._state = transitions.profile_loaded(self._state, odna, profile)
        return profile

    async def fetch_profile(self, odna: str) -> Optional[UserProfile]:
        """
        Cached profile lookup. Concurrent callers for the same counterpart
        share a single request.
        """
        cached = self._state.profiles.get(odna)
        if cached is not None:
            return cached

        task = self._profile_requests.get(odna)
        if task is None:
            task = asyncio.create_task(self._load_profile(odna))
            self._profile_requests[odna] = task
            task.add_done_callback(lambda _: self._profile_requests.pop(odna, None))
        return await asyncio.shield(task)

    # =========================================================================
    # Selection and views
    # =========================================================================

    def select(self, odna: Optional[str]) -> None:
        self._state = transitions.counterpart_selected(self._state, odna)

    def conversation_list(self) -> list[Conversation]:
        return transitions.conversation_list(self._state)

    def selected_conversation(self) -> Optional[Conversation]:
        return transitions.selected_conversation(self._state)
