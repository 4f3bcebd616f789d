# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Core components: transcript, message feed, broadcast hub and session reducer."""

from agent_relay.core.broadcast import BroadcastHub, SseChannel
from agent_relay.core.config import DEFAULT_CONFIG, Config, RuntimeConfig, ServerConfig
from agent_relay.core.message_feed import MessageFeed
from agent_relay.core.partial_json import parse_partial_json
from agent_relay.core.relay_error import EmptyMessageError, RelayError
from agent_relay.core.session import Session, SessionReducer
from agent_relay.core.transcript import Message, Transcript

__all__ = [
    "BroadcastHub",
    "Config",
    "DEFAULT_CONFIG",
    "EmptyMessageError",
    "Message",
    "MessageFeed",
    "RelayError",
    "RuntimeConfig",
    "ServerConfig",
    "Session",
    "SessionReducer",
    "SseChannel",
    "Transcript",
    "parse_partial_json",
]
