"""Telegram framing for the P1 line stream.

A telegram starts with a line whose first character is ``/`` and ends with
a line whose first character is ``!`` (the CRC line, kept as-is). Lines
outside a telegram are dropped, and a new start line while a telegram is
still open discards the partial one.
"""

import logging
from collections.abc import Iterable, Iterator
from enum import Enum

logger = logging.getLogger(__name__)

START_MARKER = "/"
END_MARKER = "!"
# Round-trips arbitrary stream bytes through str lines unchanged.
LINE_ENCODING = "utf-8"
LINE_ERRORS = "surrogateescape"


class FramerState(Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"


class TelegramFramer:
    """Stateful line accumulator turning text lines into complete telegrams.

    ``max_size`` caps the buffered telegram in bytes. The default ``None``
    leaves the buffer unbounded, so a start line that is never followed by an
    end line keeps growing for the lifetime of the stream.
    """

    def __init__(self, max_size: int | None = None):
        self.max_size = max_size
        self.state = FramerState.IDLE
        self._lines: list[str] = []
        self._size = 0

    def feed(self, line: str) -> bytes | None:
        """Feed one line (without newline). Returns a telegram on its end line."""
        if line.startswith(START_MARKER):
            if self.state is FramerState.ACCUMULATING:
                logger.debug("Start marker inside open telegram, discarding %d buffered lines", len(self._lines))
            self._reset()
            self.state = FramerState.ACCUMULATING

        if self.state is FramerState.IDLE:
            return None

        self._lines.append(line)
        self._size += len(line.encode(LINE_ENCODING, LINE_ERRORS)) + 1

        if line.startswith(END_MARKER):
            telegram = self._emit()
            self.state = FramerState.IDLE
            return telegram

        if self.max_size is not None and self._size > self.max_size:
            logger.warning("Telegram exceeds %d bytes without end marker, discarding", self.max_size)
            self._reset()
            self.state = FramerState.IDLE
        return None

    def _emit(self) -> bytes:
        text = "".join(f"{line}\n" for line in self._lines)
        self._reset()
        return text.encode(LINE_ENCODING, LINE_ERRORS)

    def _reset(self) -> None:
        # Fresh list: an emitted telegram never shares storage with the next one.
        self._lines = []
        self._size = 0


def frame_telegrams(lines: Iterable[str], max_size: int | None = None) -> Iterator[bytes]:
    """Lazily yield complete telegrams from an iterable of lines."""
    framer = TelegramFramer(max_size=max_size)
    for line in lines:
        telegram = framer.feed(line)
        if telegram is not None:
            yield telegram
