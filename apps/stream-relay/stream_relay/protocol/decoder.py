from __future__ import annotations

import codecs
import logging

from pydantic import ValidationError

from stream_relay.protocol.encoder import DATA_PREFIX, FRAME_DELIMITER, SENTINEL
from stream_relay.protocol.events import ContentEvent, DoneEvent, ErrorEvent, parse_event

logger = logging.getLogger(__name__)


class FrameDecoder:
    """Incremental decoder for ``data: <json>\\n\\n`` frames.

    Chunk boundaries carry no meaning: bytes are buffered until a full frame
    delimiter has been seen, and multi-byte UTF-8 sequences split across
    chunks are held by the incremental text decoder. Feeding a byte stream in
    any number of pieces yields the same events as feeding it at once.

    After the ``[DONE]`` sentinel has been decoded the decoder is finished and
    ignores further input.
    """

    def __init__(self) -> None:
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pieces: list[str] = []
        self._pending_cr = False
        self._finished = False
        self.malformed_frames = 0

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def buffer(self) -> str:
        return "".join(self._pieces)

    @property
    def has_pending(self) -> bool:
        """True when a partial frame is still waiting for its delimiter."""

        return bool(self.buffer.strip())

    def feed(self, chunk: bytes) -> list[ContentEvent | DoneEvent | ErrorEvent]:
        if self._finished:
            return []

        text = self._fold_line_endings(self._text_decoder.decode(chunk))
        if not text:
            return []
        # Only new text is scanned; a delimiter can straddle the previous piece.
        straddles = bool(self._pieces) and self._pieces[-1].endswith("\n") and text.startswith("\n")
        if FRAME_DELIMITER not in text and not straddles:
            self._pieces.append(text)
            return []

        *candidates, rest = ("".join(self._pieces) + text).split(FRAME_DELIMITER)
        self._pieces = [rest] if rest else []

        events: list[ContentEvent | DoneEvent | ErrorEvent] = []
        for candidate in candidates:
            if not candidate.strip():
                continue
            if not candidate.startswith(DATA_PREFIX):
                logger.debug("skipping non-data frame", extra={"frame_length": len(candidate)})
                continue
            payload = candidate[len(DATA_PREFIX):]
            if payload.strip() == SENTINEL:
                self._finished = True
                break
            try:
                events.append(parse_event(payload))
            except ValidationError:
                self.malformed_frames += 1
                logger.warning("skipping malformed stream frame", extra={"frame_length": len(candidate)})
        return events

    def finalize(self) -> None:
        """Flush any bytes held by the text decoder once the byte stream has ended."""

        text = self._text_decoder.decode(b"", final=True)
        if self._pending_cr:
            text += "\r"
            self._pending_cr = False
        if text:
            self._pieces.append(text)

    def _fold_line_endings(self, text: str) -> str:
        # CRLF-delimited streams are folded to LF so both framings decode alike.
        # A trailing CR is held back until the next chunk shows whether LF follows.
        if self._pending_cr:
            text = "\r" + text
            self._pending_cr = False
        if text.endswith("\r"):
            text = text[:-1]
            self._pending_cr = True
        return text.replace("\r\n", "\n")


def decode_frames(data: bytes) -> list[ContentEvent | DoneEvent | ErrorEvent]:
    decoder = FrameDecoder()
    return decoder.feed(data)
