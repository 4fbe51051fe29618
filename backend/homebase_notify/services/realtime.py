"""
Realtime fan-out for conversations.

ConversationHub is one in-process multiplexer keyed by conversation id: each
subscriber registers typed handlers (on_message, on_typing) and gets a
Subscription back. Publishing snapshots the subscriber list under a lock and
calls handlers outside it; a handler that raises is logged and skipped.

ConversationView is the per-member client mirror of a conversation: the
unread state machine (no-unread / has-unread(n)) and optimistic sending with
rollback.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], None]


@dataclass
class ConversationHandlers:
    on_message: EventHandler | None = None
    on_typing: EventHandler | None = None


class Subscription:
    def __init__(self, hub: "ConversationHub", conversation_id: int, handlers: ConversationHandlers):
        self.conversation_id = conversation_id
        self.handlers = handlers
        self._hub = hub
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._hub._remove(self)
            self.active = False


class ConversationHub:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: dict[int, list[Subscription]] = {}

    def subscribe(self, conversation_id: int, handlers: ConversationHandlers) -> Subscription:
        sub = Subscription(self, conversation_id, handlers)
        with self._lock:
            self._subs.setdefault(conversation_id, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.conversation_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subs.pop(sub.conversation_id, None)

    def subscriber_count(self, conversation_id: int) -> int:
        with self._lock:
            return len(self._subs.get(conversation_id, []))

    def _publish(self, conversation_id: int, kind: str, event: dict[str, Any]) -> int:
        with self._lock:
            subs = list(self._subs.get(conversation_id, []))
        delivered = 0
        for sub in subs:
            handler = sub.handlers.on_message if kind == "message" else sub.handlers.on_typing
            if handler is None:
                continue
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.warning("Realtime %s handler failed for conversation %s: %s", kind, conversation_id, e, exc_info=True)
        return delivered

    def publish_message(self, conversation_id: int, message: dict[str, Any]) -> int:
        return self._publish(conversation_id, "message", message)

    def publish_typing(self, conversation_id: int, typing: dict[str, Any]) -> int:
        return self._publish(conversation_id, "typing", typing)


# Process-wide hub used by conversation_service and the WebSocket route
hub = ConversationHub()


@dataclass
class ConversationView:
    conversation_id: int
    profile_id: int
    messages: list[dict[str, Any]] = field(default_factory=list)
    unread: int = 0
    draft: str = ""
    typing: set[int] = field(default_factory=set)
    _seen_ids: set[Any] = field(default_factory=set)

    @property
    def state(self) -> str:
        return "has-unread" if self.unread else "no-unread"

    def receive(self, message: dict[str, Any]) -> bool:
        """Apply a realtime insert. Returns False for duplicates (e.g. the echo of our own send)."""
        if message.get("id") in self._seen_ids:
            return False
        self._seen_ids.add(message.get("id"))
        self.messages.append(message)
        self.messages.sort(key=lambda m: (m.get("seq") is None, m.get("seq") or 0))
        sender = message.get("sender_profile_id")
        if sender != self.profile_id:
            self.unread += 1
            self.typing.discard(sender)
        return True

    def mark_read(self) -> None:
        self.unread = 0

    def apply_typing(self, event: dict[str, Any]) -> None:
        profile_id = event.get("profile_id")
        if profile_id == self.profile_id:
            return
        if event.get("is_typing"):
            self.typing.add(profile_id)
        else:
            self.typing.discard(profile_id)

    def send(self, content: str, submit: Callable[[str], dict[str, Any]]) -> dict[str, Any]:
        """
        Optimistic send: show the message immediately, then store it via submit().
        On failure the optimistic entry is removed, the input text is restored
        and the error is re-raised for the caller to surface.
        """
        optimistic = {
            "id": f"optimistic-{uuid.uuid4()}",
            "conversation_id": self.conversation_id,
            "sender_profile_id": self.profile_id,
            "content": content,
            "seq": None,
            "pending": True,
        }
        self.messages.append(optimistic)
        self.draft = ""
        try:
            stored = submit(content)
        except Exception:
            self.messages.remove(optimistic)
            self.draft = content
            raise
        idx = self.messages.index(optimistic)
        if stored.get("id") in self._seen_ids:
            # Realtime echo arrived before the insert returned
            del self.messages[idx]
        else:
            self._seen_ids.add(stored.get("id"))
            self.messages[idx] = stored
            self.messages.sort(key=lambda m: (m.get("seq") is None, m.get("seq") or 0))
        return stored
