"""
Channel senders: in-app, Web Push, email.
Each sender delivers one outbox row its own way but shares the same contract
(return SendResult or raise DeliveryError) so dispatch and retry stay channel-agnostic.
"""
from homebase_notify.services.channels.base import ChannelSender, SendResult
from homebase_notify.services.channels.registry import get_sender, list_channels, register

__all__ = [
    "ChannelSender",
    "SendResult",
    "get_sender",
    "list_channels",
    "register",
]
