"""
Incremental assembly of streamed model output into a render-safe document
"""
from typing import List, NamedTuple, Tuple

import structlog

from trip_assistant.services.tag_codec import (
    MARKER_PREFIX,
    dangling_prefix_offset,
    extract_ids,
    strip_sentinels,
    substitute_placeholders,
)

logger = structlog.get_logger()


class AssembledDocument(NamedTuple):
    """Final output of one assistant turn"""
    document: str
    references: Tuple[str, ...]


class StreamAssembler:
    """
    Buffers fragments for one assistant turn.

    ``committed`` is the placeholder-substituted text proven free of partial
    markers. ``pending`` is the raw trailing text that could still become a
    marker and is never shown. The committed boundary only moves forward, so
    ``references`` is append-only.
    """

    def __init__(self):
        self._text = ""
        self._committed = ""
        self._pending = ""
        self._safe_length = 0
        self._references: List[str] = []
        self._finished = False

    @property
    def text(self) -> str:
        return self._text

    @property
    def committed(self) -> str:
        return self._committed

    @property
    def pending(self) -> str:
        return self._pending

    @property
    def references(self) -> Tuple[str, ...]:
        return tuple(self._references)

    @property
    def finished(self) -> bool:
        return self._finished

    def consume(self, fragment: str) -> str:
        """
        Append a fragment and return the current committed text.

        The dangling-prefix check runs over the whole accumulated text since
        a marker prefix may have arrived several fragments earlier.
        """
        if self._finished:
            raise RuntimeError("StreamAssembler already finished")

        self._text += strip_sentinels(fragment)

        offset = dangling_prefix_offset(self._text)
        if offset is None:
            offset = len(self._text)

        if offset != self._safe_length:
            safe_text = self._text[:offset]
            new_ids = extract_ids(safe_text)[len(self._references):]
            self._references.extend(new_ids)
            self._committed = substitute_placeholders(safe_text)
            self._safe_length = offset

        self._pending = self._text[offset:]
        return self._committed

    def finish(self) -> AssembledDocument:
        """
        Flush pending text and re-derive the document from the full text.

        Called once when the stream ends; an unterminated marker prefix is
        kept as plain text.
        """
        if self._finished:
            raise RuntimeError("StreamAssembler already finished")
        self._finished = True

        if self._pending.startswith(MARKER_PREFIX):
            logger.warning(
                "Unterminated product marker flushed as text",
                pending=self._pending[:50]
            )

        self._references = extract_ids(self._text)
        self._committed = substitute_placeholders(self._text)
        self._safe_length = len(self._text)
        self._pending = ""

        return AssembledDocument(self._committed, tuple(self._references))
