"""Registry of channel senders. Add new transports here."""
import logging
from typing import Any

from homebase_notify.core.types import Channel

logger = logging.getLogger(__name__)

_senders: dict[Channel, Any] = {}


def register(channel: Channel | str, sender: Any) -> None:
    """Register (or replace) the sender for a channel."""
    _senders[Channel(channel)] = sender
    logger.info("Registered channel sender: %s", Channel(channel).value)


def get_sender(channel: Channel | str) -> Any:
    """Get sender by channel. Raises KeyError if unknown."""
    ch = Channel(channel)
    if ch not in _senders:
        raise KeyError(f"Unknown channel: {ch.value}. Available: {[c.value for c in _senders]}")
    return _senders[ch]


def list_channels() -> list[str]:
    """List registered channel ids."""
    return [c.value for c in _senders]


def _init_registry() -> None:
    from homebase_notify.services.channels.email import EmailSender
    from homebase_notify.services.channels.inapp import InAppSender
    from homebase_notify.services.channels.push import PushSender

    register(Channel.INAPP, InAppSender())
    register(Channel.PUSH, PushSender())
    register(Channel.EMAIL, EmailSender())


# Register built-in senders on first import
_init_registry()
