# Server -> client frame types
FRAME_PONG = "pong"
EVENT_TYPING = "messages.typing"
EVENT_NEW = "messages.new"
EVENT_UPDATE = "messages.update"
EVENT_DELETE = "messages.delete"
EVENT_REACTION_ADDED = "messages.reaction.added"
EVENT_REACTION_REMOVED = "messages.reaction.removed"

# Event kinds the broadcast trigger may relay (typing is socket-only).
BROADCAST_EVENTS = frozenset(
    {
        EVENT_NEW,
        EVENT_UPDATE,
        EVENT_DELETE,
        EVENT_REACTION_ADDED,
        EVENT_REACTION_REMOVED,
    }
)

# Close code used when the server cannot send an HTTP denial response.
WS_CLOSE_UNAUTHENTICATED = 4401

ROOM_TYPES = {"direct", "group"}

MESSAGES_PAGE_DEFAULT = 50
MESSAGES_PAGE_MAX = 100

__all__ = [
    "FRAME_PONG",
    "EVENT_TYPING",
    "EVENT_NEW",
    "EVENT_UPDATE",
    "EVENT_DELETE",
    "EVENT_REACTION_ADDED",
    "EVENT_REACTION_REMOVED",
    "BROADCAST_EVENTS",
    "WS_CLOSE_UNAUTHENTICATED",
    "ROOM_TYPES",
    "MESSAGES_PAGE_DEFAULT",
    "MESSAGES_PAGE_MAX",
]
