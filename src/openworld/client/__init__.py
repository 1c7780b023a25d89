"""Engine HTTP client and NDJSON stream decoding."""

from openworld.client.chat import ChatService, ConversationStore, build_messages
from openworld.client.decoder import (
    ChatTokenSchema,
    ParsePolicy,
    PullProgressSchema,
    RecordSchema,
    StreamDecoder,
)
from openworld.client.ollama import EngineClient

__all__ = [
    "ChatService",
    "ChatTokenSchema",
    "ConversationStore",
    "EngineClient",
    "ParsePolicy",
    "PullProgressSchema",
    "RecordSchema",
    "StreamDecoder",
    "build_messages",
]
