"""IRC protocol layer.

Framing, message codec, inbound classification, membership tracking and
keepalive. ``connection`` ties them together per server and is imported
directly, since it depends on the UI event types.
"""

from .codec import Prefix, ProtocolMessage, decode, encode, split_prefix  # noqa: F401
from .framer import LineFramer  # noqa: F401
from .membership import MembershipTracker  # noqa: F401
from .models import Channel, CloseReason, RegistrationState  # noqa: F401

__all__ = [
    "Channel",
    "CloseReason",
    "LineFramer",
    "MembershipTracker",
    "Prefix",
    "ProtocolMessage",
    "RegistrationState",
    "decode",
    "encode",
    "split_prefix",
]
