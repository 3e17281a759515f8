"""Server-sent event transport: framing, relay and the client-side consumer."""

from .sse import EventStream, SSEEvent, SSEParser, encode_event

__all__ = ["EventStream", "SSEEvent", "SSEParser", "encode_event"]
