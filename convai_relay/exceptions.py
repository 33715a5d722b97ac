"""Domain errors raised by services.

API routers translate these to HTTP responses; the session relay recovers
from the protocol, upstream and persistence kinds locally.
"""


class ProtocolError(Exception):
    """Malformed or unexpected relay event."""


class UpstreamError(Exception):
    """The conversational AI provider could not be reached or rejected a call."""


class UpstreamAuthError(UpstreamError):
    """The provider rejected the API key."""


class PersistenceError(Exception):
    """A ledger write or read failed."""


class ConversationOwnershipError(PersistenceError):
    """A write was attempted with an owner token that does not hold the conversation."""

    def __init__(self, conversation_id: int) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} is not owned by this session")


class NotFoundError(Exception):
    """A requested record does not exist."""
