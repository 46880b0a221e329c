"""
Conversation state held by the operator client, and the pure transitions
that produce new states from it.

Every transition takes a ChatState and returns a new one; nothing here
performs I/O. Merges are keyed by message id, so applying the same server
data twice, or in a different order, gives the same result.
"""

from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping, Optional

from oa_console.schemas import Message, MessagePage, UserProfile


@dataclass(frozen=True)
class Conversation:
    counterpart_id: str
    last_message: Message
    messages: tuple[Message, ...]


@dataclass(frozen=True)
class ChatState:
    # ascending (timestamp, id)
    messages_by_counterpart: Mapping[str, tuple[Message, ...]] = field(default_factory=dict)
    # a counterpart is "loaded" once its first page arrived
    has_more_by_counterpart: Mapping[str, bool] = field(default_factory=dict)
    loading_by_counterpart: Mapping[str, bool] = field(default_factory=dict)
    # most recent first
    recent_messages: tuple[Message, ...] = ()
    # optimistic sends no poll has returned yet
    pending_ids: frozenset = frozenset()
    profiles: Mapping[str, UserProfile] = field(default_factory=dict)
    selected_counterpart: Optional[str] = None

    def is_loaded(self, odna: str) -> bool:
        return odna in self.has_more_by_counterpart

    def is_loading(self, odna: str) -> bool:
        return self.loading_by_counterpart.get(odna, False)

    def has_more(self, odna: str) -> bool:
        return self.has_more_by_counterpart.get(odna, False)

    def thread(self, odna: str) -> tuple[Message, ...]:
        return self.messages_by_counterpart.get(odna, ())


def merge_messages(existing: Iterable[Message], incoming: Iterable[Message]) -> tuple[Message, ...]:
    """
    Union by id in ascending (timestamp, id) order. An id already present
    keeps its existing entry.
    """
    by_id = {}
    for message in incoming:
        by_id.setdefault(message.id, message)
    for message in existing:
        by_id[message.id] = message
    return tuple(sorted(by_id.values(), key=lambda m: m.sort_key))


def _most_recent_first(messages: Iterable[Message], cap: int) -> tuple[Message, ...]:
    return tuple(sorted(messages, key=lambda m: m.sort_key, reverse=True)[:cap])


# =============================================================================
# Transitions
# =============================================================================

def loading_started(state: ChatState, odna: str) -> ChatState:
    return replace(state, loading_by_counterpart={**state.loading_by_counterpart, odna: True})


def loading_failed(state: ChatState, odna: str) -> ChatState:
    """Clear the loading flag and nothing else, so the load can be retried."""
    return replace(state, loading_by_counterpart={**state.loading_by_counterpart, odna: False})


def page_loaded(state: ChatState, odna: str, page: MessagePage) -> ChatState:
    """
    Merge a fetched page (first or older) into a counterpart's thread.

    Messages recorded locally while the request was in flight are kept.
    """
    return replace(
        state,
        messages_by_counterpart={
            **state.messages_by_counterpart,
            odna: merge_messages(state.thread(odna), page.messages),
        },
        has_more_by_counterpart={**state.has_more_by_counterpart, odna: page.has_more},
        loading_by_counterpart={**state.loading_by_counterpart, odna: False},
    )


def message_recorded(state: ChatState, message: Message, recent_cap: int) -> ChatState:
    """
    Optimistically add a message the operator just sent.

    A message whose id is already in the thread (a poll got there first)
    leaves the state unchanged.
    """
    odna = message.counterpart_id
    if any(m.id == message.id for m in state.thread(odna)):
        return state

    recent = (message,) + tuple(m for m in state.recent_messages if m.id != message.id)
    return replace(
        state,
        messages_by_counterpart={
            **state.messages_by_counterpart,
            odna: merge_messages(state.thread(odna), [message]),
        },
        recent_messages=_most_recent_first(recent, recent_cap),
        pending_ids=state.pending_ids | {message.id},
    )


def recent_polled(state: ChatState, page: MessagePage, recent_cap: int) -> ChatState:
    """
    Apply a poll of the cross-counterpart recent feed.

    The server page becomes the recent list, plus any optimistic send the
    server has not returned yet (replica lag), so a just-sent message never
    disappears between send and the next poll. A pending send older than
    the whole server window is dropped: it would not be in the feed anyway.
    Polled messages are also merged into threads that are already loaded.
    """
    server = list(page.messages)
    server_ids = {m.id for m in server}
    oldest = min((m.sort_key for m in server), default=None)

    still_pending = set()
    local = []
    for message in state.recent_messages:
        if message.id not in state.pending_ids or message.id in server_ids:
            continue
        if oldest is not None and message.sort_key < oldest:
            continue
        still_pending.add(message.id)
        local.append(message)

    by_counterpart: dict[str, list[Message]] = {}
    for message in server:
        if state.is_loaded(message.counterpart_id):
            by_counterpart.setdefault(message.counterpart_id, []).append(message)

    threads = dict(state.messages_by_counterpart)
    for odna, messages in by_counterpart.items():
        threads[odna] = merge_messages(threads.get(odna, ()), messages)

    return replace(
        state,
        recent_messages=_most_recent_first(server + local, recent_cap),
        pending_ids=frozenset(still_pending),
        messages_by_counterpart=threads,
    )


def profile_loaded(state: ChatState, odna: str, profile: UserProfile) -> ChatState:
    return replace(state, profiles={**state.profiles, odna: profile})


def counterpart_selected(state: ChatState, odna: Optional[str]) -> ChatState:
    return replace(state, selected_counterpart=odna)


# =============================================================================
# Derived views
# =============================================================================

def conversation_list(state: ChatState) -> list[Conversation]:
    """
    One conversation per counterpart in the recent feed, most recently
    active first. Recomputed from recent_messages on every call.
    """
    grouped: dict[str, list[Message]] = {}
    for message in state.recent_messages:
        grouped.setdefault(message.counterpart_id, []).append(message)

    conversations = []
    for odna, messages in grouped.items():
        ordered = tuple(sorted(messages, key=lambda m: m.sort_key))
        conversations.append(Conversation(odna, ordered[-1], ordered))

    conversations.sort(key=lambda c: c.last_message.sort_key, reverse=True)
    return conversations


def selected_conversation(state: ChatState) -> Optional[Conversation]:
    """The selected counterpart's loaded thread, topped up from the recent feed."""
    odna = state.selected_counterpart
    if odna is None:
        return None
    recent = [m for m in state.recent_messages if m.counterpart_id == odna]
    messages = merge_messages(state.thread(odna), recent)
    if not messages:
        return None
    return Conversation(odna, messages[-1], messages)
