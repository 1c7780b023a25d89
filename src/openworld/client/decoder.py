"""Incremental NDJSON decoder for engine response streams.

One ``StreamDecoder`` serves exactly one HTTP response. Bytes arrive in
arbitrary chunks; complete newline-terminated records are parsed with the
stream's schema and handed to the consumer in byte order. A trailing record
without a newline is parsed when the stream finishes.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from pydantic import ValidationError

from openworld.engine_spine.errors import StreamParseError
from openworld.engine_spine.models import ChatToken, PullProgress

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = b"\n"

E = TypeVar("E")


class ParsePolicy(str, Enum):
    """What to do with a record that does not parse."""

    # Upstream emits blank keep-alives and the occasional fragment; one bad
    # line must not end the stream.
    SKIP_ON_PARSE_ERROR = "skip-on-parse-error"
    RAISE_ON_PARSE_ERROR = "raise-on-parse-error"


class RecordSchema(Generic[E]):
    """Turns one decoded JSON object into a typed event."""

    def parse(self, data: dict[str, Any]) -> E:
        raise NotImplementedError

    def finalize(self, event: E) -> E:
        """Adjust the event built from the unterminated tail of the stream."""
        return event


class ChatTokenSchema(RecordSchema[ChatToken]):
    """``{"message": {"content": ...}, "done": ...}`` records of /api/chat."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id

    def parse(self, data: dict[str, Any]) -> ChatToken:
        message = data.get("message") or {}
        if not isinstance(message, dict):
            raise ValueError("message is not an object")
        content = message.get("content") or ""
        if not isinstance(content, str):
            raise ValueError("message.content is not a string")
        return ChatToken(
            conversation_id=self.conversation_id,
            content=content,
            done=data.get("done") is True,
        )

    def finalize(self, event: ChatToken) -> ChatToken:
        # Consumers always observe a terminal token
        return event.model_copy(update={"done": True})


class PullProgressSchema(RecordSchema[PullProgress]):
    """``{"status", "digest"?, "total"?, "completed"?}`` records of /api/pull."""

    def parse(self, data: dict[str, Any]) -> PullProgress:
        return PullProgress.model_validate(data)


class StreamDecoder(Generic[E]):
    """Buffers one response stream and emits typed events per NDJSON record.

    Args:
        schema: Record schema for this call site
        consumer: Receives each event, in stream order
        policy: Handling of unparseable records
    """

    def __init__(
        self,
        schema: RecordSchema[E],
        consumer: Callable[[E], None],
        policy: ParsePolicy = ParsePolicy.SKIP_ON_PARSE_ERROR,
    ):
        self.schema = schema
        self.consumer = consumer
        self.policy = policy
        self._buffer = bytearray()
        self._finished = False
        self.events_emitted = 0
        self.records_skipped = 0

    @property
    def buffered(self) -> int:
        """Bytes held back waiting for a record separator."""
        return len(self._buffer)

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, chunk: bytes) -> int:
        """Append a chunk and emit every record it completes.

        Returns:
            Number of events emitted for this chunk
        """
        if self._finished:
            raise RuntimeError("feed() called after finish()")

        self._buffer.extend(chunk)
        emitted = 0
        while True:
            pos = self._buffer.find(RECORD_SEPARATOR)
            if pos < 0:
                break
            record = bytes(self._buffer[:pos])
            del self._buffer[: pos + 1]
            if self._handle(record, final=False):
                emitted += 1
        return emitted

    def finish(self) -> int:
        """Flush the unterminated tail as one last record.

        Returns:
            Number of events emitted (0 or 1)
        """
        if self._finished:
            raise RuntimeError("finish() called twice")
        self._finished = True

        if not self._buffer:
            return 0
        record = bytes(self._buffer)
        self._buffer.clear()
        return 1 if self._handle(record, final=True) else 0

    def _handle(self, record: bytes, final: bool) -> bool:
        event = self._parse(record)
        if event is None:
            return False
        if final:
            event = self.schema.finalize(event)
        self.consumer(event)
        self.events_emitted += 1
        return True

    def _parse(self, record: bytes) -> E | None:
        text = record.decode("utf-8", errors="replace").strip()
        if not text:
            # keep-alive
            return None

        try:
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            return self.schema.parse(data)
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            return self._reject(record, str(e))

    def _reject(self, record: bytes, reason: str) -> None:
        if self.policy == ParsePolicy.RAISE_ON_PARSE_ERROR:
            raise StreamParseError(record, reason)
        self.records_skipped += 1
        logger.debug(f"Skipping malformed stream record: {reason}")
        return None
