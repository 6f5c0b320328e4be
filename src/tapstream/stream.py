import codecs
import logging
from collections import deque
from typing import Deque, Optional

from tapstream.core import TestDetails
from tapstream.grammar import INCOMPLETE, Parsed
from tapstream.protocol import parse_line, parse_version

log = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_SIZE = 1 << 20


class TapError(Exception):
    """Base tapstream exception"""


class MalformedHeader(TapError):
    """The first line is not the TAP version 14 header."""


class TapSyntaxError(TapError):
    """Buffered content can never match a TAP line."""


class TruncatedStream(TapError):
    """End of input arrived in the middle of a line or YAML block."""


class BufferLimitExceeded(TapError):
    """A single undecided unit grew past the configured buffer limit."""


class TapStreamParser:
    """
    Incremental TAP parser without any I/O of its own.

    Bytes go in through ``feed()``, records come out of ``next_record()``. A
    ``None`` from ``next_record()`` means more bytes are needed; ``close()``
    tells the parser no more will come. Errors are raised from
    ``next_record()`` after every record that precedes them has been returned.
    """

    def __init__(self, *, max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE) -> None:
        self._buf = ""
        self._off = 0  # logical cursor into _buf
        self._line = 1
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._queue: Deque[TestDetails] = deque()
        self._closed = False
        self._error: Optional[TapError] = None
        self._raised = False
        # no more text will be appended: set on close() and on undecodable input
        self._text_complete = False
        # undecided unit is an open YAML block that only a newline can finish
        self._waiting_for_newline = False
        self._fresh_newline = False
        self._max_buffer_size = max_buffer_size

    # ---------------- buffer primitives ----------------

    def _available(self) -> int:
        return len(self._buf) - self._off

    def _snippet(self, size: int = 40) -> str:
        return repr(self._buf[self._off:self._off + size])

    def _fail(self, error: TapError) -> None:
        if self._error is None:
            self._error = error

    def compact(self) -> None:
        """Drop consumed text from the front of the buffer."""
        if self._off > 0:
            self._line += self._buf.count("\n", 0, self._off)
            self._buf = self._buf[self._off:]
            self._off = 0

    # ---------------- public API ----------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        """True once input ended cleanly and every record has been returned."""
        return (
            self._closed
            and self._error is None
            and not self._queue
            and self._available() == 0
        )

    def feed(self, data: bytes) -> None:
        if self._closed:
            raise TapError("feed() called after close()")
        if not data or self._error is not None:
            return
        try:
            text = self._decoder.decode(data)
        except UnicodeDecodeError as exc:
            # keep what decoded cleanly so the records before the bad byte survive
            self._buf += exc.object[:exc.start].decode("utf-8")
            self._text_complete = True
            self._fail(TapSyntaxError(f"line {self._line}: input is not valid UTF-8 ({exc.reason})"))
        else:
            self._buf += text
            self._fresh_newline = self._fresh_newline or "\n" in text

    def close(self) -> None:
        """Mark end of input."""
        if self._closed:
            return
        self._closed = True
        self._text_complete = True
        try:
            self._buf += self._decoder.decode(b"", final=True)
        except UnicodeDecodeError:
            self._fail(TruncatedStream(f"line {self._line}: input ended inside a multi-byte character"))

    def read_header(self) -> Optional[str]:
        """
        Match the version header at the front of the buffer.

        Returns the header once matched, ``None`` while it is still undecided.
        Raises ``MalformedHeader`` for anything else, end of input included.
        """
        result = parse_version(self._buf, self._off, self._text_complete)
        if result is INCOMPLETE and self._error is None:
            return None
        if not isinstance(result, Parsed):
            raise MalformedHeader(f"expected a TAP version 14 header, got {self._snippet()}") from self._error
        self._off = result.end
        self.compact()
        return result.value

    def next_record(self) -> Optional[TestDetails]:
        if self._raised:
            raise self._error
        if not self._queue:
            self._drain()
        if self._queue:
            return self._queue.popleft()
        if self._error is not None:
            self._raised = True
            raise self._error
        return None

    def wants(self) -> int:
        """
        Read hint:
          - 0 if next_record() can answer (record or error) without more input
          - otherwise 1
        """
        if not self._queue and not self._raised:
            self._drain()
        if self._queue or self._error is not None or self._closed:
            return 0
        return 1

    # ---------------- parsing ----------------

    def _drain(self) -> None:
        """Assemble every record the buffered text allows."""
        final = self._text_complete
        if self._waiting_for_newline and not self._fresh_newline and not final:
            self._check_limit()
            return
        self._waiting_for_newline = False
        self._fresh_newline = False
        while self._available() > 0:
            result = parse_line(self._buf, self._off, final)
            if isinstance(result, Parsed):
                self._queue.append(result.value)
                self._off = result.end
                continue
            self.compact()
            if result is INCOMPLETE:
                if final:
                    self._fail(TruncatedStream(f"line {self._line}: input ended inside {self._snippet()}"))
                else:
                    # a complete first line plus more lines still undecided means an opened YAML block
                    self._waiting_for_newline = self._buf.count("\n", self._off) >= 2
                break
            self._fail(TapSyntaxError(f"line {self._line}: expected {result.expected}, got {self._snippet()}"))
            break
        if self._queue:
            log.debug("assembled %d record(s), %d character(s) left", len(self._queue), self._available())
        self.compact()
        self._check_limit()

    def _check_limit(self) -> None:
        if self._error is None and self._available() > self._max_buffer_size:
            self._fail(BufferLimitExceeded(
                f"line {self._line}: {self._available()} undecided characters exceed the "
                f"{self._max_buffer_size} character limit"
            ))
