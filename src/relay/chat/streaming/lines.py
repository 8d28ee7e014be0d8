"""Reassemble arbitrary byte chunks into complete text lines."""

from __future__ import annotations

import codecs


class LineReassembler:
    """Split a chunked byte stream into logical lines.

    Bytes are decoded incrementally so a multi-byte character split across two
    reads is decoded once both halves have arrived. Invalid sequences become
    U+FFFD instead of failing the stream.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Return every line completed by ``chunk``."""

        if not chunk:
            return []
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return the unterminated remainder once the upstream has ended."""

        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        self._decoder.reset()
        tail = tail.rstrip("\r")
        return [tail] if tail else []

    @property
    def pending(self) -> str:
        return self._buffer


__all__ = ["LineReassembler"]
