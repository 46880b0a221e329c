"""
Tests for the pure conversation state transitions.
"""

from oa_console.client import state as transitions
from oa_console.client.state import ChatState
from oa_console.schemas import Message, MessageDirection, MessagePage, TextContent


def msg(message_id: str, timestamp: int, odna: str = "U1", direction=MessageDirection.INCOMING) -> Message:
    return Message(
        id=message_id,
        counterpart_id=odna,
        direction=direction,
        content=TextContent(text=message_id),
        timestamp=timestamp,
    )


def page(*messages, has_more: bool = False) -> MessagePage:
    return MessagePage(messages=list(messages), has_more=has_more)


def all_ids(state: ChatState) -> list:
    ids = [m.id for m in state.recent_messages]
    for thread in state.messages_by_counterpart.values():
        ids.extend(m.id for m in thread)
    return ids


class TestMerge:
    def test_merge_dedupes_and_sorts(self):
        merged = transitions.merge_messages([msg("b", 20), msg("a", 10)], [msg("b", 20), msg("c", 30)])

        assert [m.id for m in merged] == ["a", "b", "c"]

    def test_existing_entry_wins(self):
        existing = msg("a", 10)
        incoming = Message(
            id="a", counterpart_id="U1", direction=MessageDirection.INCOMING,
            content=TextContent(text="changed"), timestamp=10,
        )

        merged = transitions.merge_messages([existing], [incoming])

        assert merged == (existing,)

    def test_merge_is_order_independent(self):
        left = [msg("a", 10), msg("c", 30)]
        right = [msg("b", 20), msg("c", 30)]

        assert transitions.merge_messages(left, right) == transitions.merge_messages(right, left)


class TestPages:
    def test_page_loaded_sets_thread_and_flags(self):
        state = transitions.loading_started(ChatState(), "U1")
        state = transitions.page_loaded(state, "U1", page(msg("a", 10), msg("b", 20), has_more=True))

        assert [m.id for m in state.thread("U1")] == ["a", "b"]
        assert state.has_more("U1") is True
        assert state.is_loading("U1") is False
        assert state.is_loaded("U1")

    def test_older_page_prepends(self):
        state = transitions.page_loaded(ChatState(), "U1", page(msg("c", 30), msg("d", 40), has_more=True))
        state = transitions.page_loaded(state, "U1", page(msg("a", 10), msg("b", 20)))

        assert [m.id for m in state.thread("U1")] == ["a", "b", "c", "d"]
        assert state.has_more("U1") is False

    def test_loading_failed_keeps_page_and_has_more(self):
        state = transitions.page_loaded(ChatState(), "U1", page(msg("c", 30), has_more=True))
        state = transitions.loading_started(state, "U1")

        state = transitions.loading_failed(state, "U1")

        assert [m.id for m in state.thread("U1")] == ["c"]
        assert state.has_more("U1") is True
        assert state.is_loading("U1") is False

    def test_transitions_do_not_mutate_input(self):
        before = ChatState()
        transitions.page_loaded(before, "U1", page(msg("a", 10)))

        assert before == ChatState()


class TestRecordSend:
    def test_record_adds_to_thread_and_recent(self):
        sent = msg("s1", 100, direction=MessageDirection.OUTGOING)

        state = transitions.message_recorded(ChatState(), sent, recent_cap=200)

        assert state.thread("U1") == (sent,)
        assert state.recent_messages == (sent,)
        assert "s1" in state.pending_ids

    def test_record_after_poll_is_noop(self):
        sent = msg("s1", 100, direction=MessageDirection.OUTGOING)
        state = transitions.page_loaded(ChatState(), "U1", page(msg("a", 10)))
        state = transitions.recent_polled(state, page(msg("a", 10), sent), recent_cap=200)

        after = transitions.message_recorded(state, sent, recent_cap=200)

        assert after is state
        assert all_ids(after).count("s1") == 2  # once in the thread, once in recent

    def test_record_then_poll_has_single_entry(self):
        sent = msg("s1", 100, direction=MessageDirection.OUTGOING)
        state = transitions.page_loaded(ChatState(), "U1", page(msg("a", 10)))
        state = transitions.message_recorded(state, sent, recent_cap=200)

        state = transitions.recent_polled(state, page(msg("a", 10), sent), recent_cap=200)

        assert [m.id for m in state.thread("U1")] == ["a", "s1"]
        assert [m.id for m in state.recent_messages] == ["s1", "a"]
        assert state.pending_ids == frozenset()

    def test_recent_is_capped(self):
        state = ChatState()
        for i in range(10):
            state = transitions.message_recorded(state, msg(f"s{i}", i, odna=f"U{i}"), recent_cap=3)

        assert [m.id for m in state.recent_messages] == ["s9", "s8", "s7"]


class TestRecentPolled:
    def test_pending_send_survives_lagging_poll(self):
        sent = msg("s1", 100, direction=MessageDirection.OUTGOING)
        state = transitions.message_recorded(ChatState(), sent, recent_cap=200)

        state = transitions.recent_polled(state, page(msg("a", 10), msg("b", 50, odna="U2")), recent_cap=200)

        assert [m.id for m in state.recent_messages] == ["s1", "b", "a"]
        assert state.pending_ids == frozenset({"s1"})

    def test_pending_older_than_window_dropped(self):
        sent = msg("s1", 5, direction=MessageDirection.OUTGOING)
        state = transitions.message_recorded(ChatState(), sent, recent_cap=200)

        state = transitions.recent_polled(state, page(msg("a", 10), msg("b", 20)), recent_cap=200)

        assert [m.id for m in state.recent_messages] == ["b", "a"]
        assert state.pending_ids == frozenset()

    def test_unpending_messages_are_replaced(self):
        state = transitions.recent_polled(ChatState(), page(msg("a", 10)), recent_cap=200)

        state = transitions.recent_polled(state, page(msg("b", 20)), recent_cap=200)

        assert [m.id for m in state.recent_messages] == ["b"]

    def test_poll_feeds_loaded_threads_only(self):
        state = transitions.page_loaded(ChatState(), "U1", page(msg("a", 10)))

        state = transitions.recent_polled(
            state, page(msg("a", 10), msg("x", 15, odna="U2"), msg("b", 20)), recent_cap=200,
        )

        assert [m.id for m in state.thread("U1")] == ["a", "b"]
        assert not state.is_loaded("U2")
        assert state.thread("U2") == ()

    def test_repeated_poll_is_idempotent(self):
        polled = page(msg("a", 10), msg("b", 20))
        state = transitions.page_loaded(ChatState(), "U1", page(msg("a", 10)))

        once = transitions.recent_polled(state, polled, recent_cap=200)
        twice = transitions.recent_polled(once, polled, recent_cap=200)

        assert once == twice


class TestConversationList:
    def test_grouped_and_sorted_by_last_message(self):
        state = transitions.recent_polled(ChatState(), page(
            msg("a1", 10, odna="A"),
            msg("b1", 20, odna="B"),
            msg("a2", 30, odna="A"),
            msg("c1", 25, odna="C"),
        ), recent_cap=200)

        conversations = transitions.conversation_list(state)

        assert [c.counterpart_id for c in conversations] == ["A", "C", "B"]
        assert conversations[0].last_message.id == "a2"
        assert [m.id for m in conversations[0].messages] == ["a1", "a2"]

    def test_recomputed_after_record(self):
        state = transitions.recent_polled(ChatState(), page(
            msg("a1", 10, odna="A"), msg("b1", 20, odna="B"),
        ), recent_cap=200)
        assert transitions.conversation_list(state)[0].counterpart_id == "B"

        state = transitions.message_recorded(state, msg("a2", 30, odna="A"), recent_cap=200)

        assert [c.counterpart_id for c in transitions.conversation_list(state)] == ["A", "B"]

    def test_selected_conversation_merges_thread_and_recent(self):
        state = transitions.page_loaded(ChatState(), "A", page(msg("a1", 10, odna="A")))
        state = transitions.recent_polled(state, page(msg("a2", 30, odna="A")), recent_cap=200)
        state = transitions.counterpart_selected(state, "A")

        conversation = transitions.selected_conversation(state)

        assert [m.id for m in conversation.messages] == ["a1", "a2"]
        assert conversation.last_message.id == "a2"

    def test_no_selection(self):
        assert transitions.selected_conversation(ChatState()) is None
