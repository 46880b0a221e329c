"""
Operator-side client: conversation state kept in sync with the console API.
"""

from oa_console.client.api import ConsoleApiClient, ConsoleApiError
from oa_console.client.state import ChatState, Conversation
from oa_console.client.store import ChatStore

__all__ = [
    "ChatState",
    "ChatStore",
    "ConsoleApiClient",
    "ConsoleApiError",
    "Conversation",
]
