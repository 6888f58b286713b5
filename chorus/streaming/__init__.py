"""
Streaming Module - per-response streaming pipeline

- SSEDecoder: raw SSE bytes -> content deltas
- StreamingSet: in-flight wait group used as the turn/phase barrier
- WriteThrottle: bounds store writes on long fast streams
- HttpxChatTransport: OpenAI-compatible streaming calls
- ResponseStreamController: per-message state machine
"""

from chorus.streaming.controller import (
    ResponseStreamController,
    StreamState,
    with_error_marker,
)
from chorus.streaming.decoder import SSEDecoder, iter_deltas
from chorus.streaming.throttle import ThrottleConfig, WriteKind, WriteThrottle
from chorus.streaming.tracker import StreamingSet
from chorus.streaming.transport import ChatTransport, HttpxChatTransport

__all__ = [
    "ChatTransport",
    "HttpxChatTransport",
    "ResponseStreamController",
    "SSEDecoder",
    "StreamState",
    "StreamingSet",
    "ThrottleConfig",
    "WriteKind",
    "WriteThrottle",
    "iter_deltas",
    "with_error_marker",
]
