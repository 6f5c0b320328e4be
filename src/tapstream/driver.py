import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Protocol

import serial_asyncio
from pydantic import BaseModel, ConfigDict, Field

from tapstream.core import BailOut, TestDetails, TestPoint
from tapstream.stream import DEFAULT_MAX_BUFFER_SIZE, TapError, TapStreamParser

log = logging.getLogger(__name__)


class ByteSource(Protocol):
    """Anything shaped like ``asyncio.StreamReader``: ``b""`` means end of input."""

    async def read(self, n: int = -1) -> bytes:
        ...


class ParserConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    read_size: int = Field(default=4096, gt=0)
    max_buffer_size: int = Field(default=DEFAULT_MAX_BUFFER_SIZE, gt=0)
    serial_baudrate: int = Field(default=115200, gt=0)


class BytesSource:
    """Serves an in-memory byte string, at most ``chunk_size`` bytes per read."""

    def __init__(self, data: bytes, chunk_size: Optional[int] = None) -> None:
        self._data = data
        self._pos = 0
        self._chunk_size = chunk_size

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            n = len(self._data)
        if self._chunk_size is not None:
            n = min(n, self._chunk_size)
        chunk = self._data[self._pos:self._pos + n]
        self._pos += len(chunk)
        return chunk


class TapParser:
    """
    Lazy sequence of TAP records read from an asynchronous byte source.

    Build one with ``await TapParser.create(source)``; the version header is
    checked before the parser is returned. Iterating yields records in input
    order and reads from the source only when the buffered bytes cannot
    complete the next record.
    """

    def __init__(
        self,
        source: ByteSource,
        stream: TapStreamParser,
        config: ParserConfig,
        writer: Optional[asyncio.StreamWriter] = None,
    ) -> None:
        self._source = source
        self._stream = stream
        self._config = config
        self._writer = writer

    @classmethod
    async def create(cls, source: ByteSource, config: Optional[ParserConfig] = None) -> "TapParser":
        config = config or ParserConfig()
        stream = TapStreamParser(max_buffer_size=config.max_buffer_size)
        while stream.read_header() is None:
            await cls._fill(source, stream, config.read_size)
        log.info("TAP version 14 header accepted")
        return cls(source, stream, config)

    @classmethod
    async def from_bytes(cls, data: bytes, config: Optional[ParserConfig] = None) -> "TapParser":
        return await cls.create(BytesSource(data), config)

    @classmethod
    async def connect_serial(cls, url: str, config: Optional[ParserConfig] = None, **kwargs: Any) -> "TapParser":
        """Read TAP from a serial line, e.g. a device under test printing results."""
        config = config or ParserConfig()
        reader, writer = await serial_asyncio.open_serial_connection(
            url=url,
            baudrate=config.serial_baudrate,
            **kwargs,
        )
        log.info("opened serial TAP source %s at %d baud", url, config.serial_baudrate)
        try:
            parser = await cls.create(reader, config)
        except BaseException:
            writer.close()
            raise
        parser._writer = writer
        return parser

    @staticmethod
    async def _fill(source: ByteSource, stream: TapStreamParser, size: int) -> None:
        chunk = await source.read(size)
        if chunk:
            log.debug("read %d byte(s)", len(chunk))
            stream.feed(chunk)
        else:
            log.debug("source reported end of input")
            stream.close()

    async def records(self) -> AsyncIterator[TestDetails]:
        while True:
            try:
                record = self._stream.next_record()
            except TapError as exc:
                log.warning("TAP stream terminated: %s", exc)
                raise
            if record is None:
                if self._stream.closed:
                    return
                await self._fill(self._source, self._stream, self._config.read_size)
                continue
            if isinstance(record, BailOut):
                log.info("bail out: %s", record.reason or "no reason given")
            yield record

    async def test_points(self) -> AsyncIterator[TestPoint]:
        async for record in self.records():
            if isinstance(record, TestPoint):
                yield record

    def __aiter__(self) -> AsyncIterator[TestDetails]:
        return self.records()

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError as exc:
                log.debug("error while closing serial source: %s", exc)
        self._writer = None

    async def __aenter__(self) -> "TapParser":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
