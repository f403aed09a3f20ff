"""Incremental decoding of ``data:`` lines from a server-sent-event stream."""
import codecs
from typing import Union

DATA_PREFIX = "data:"


class SSELineDecoder:
    """
    Reassemble ``data:`` lines across arbitrary chunk boundaries.

    Bytes are decoded as UTF-8 incrementally, so a multi-byte character split
    between two chunks is not mangled. Only complete lines are returned;
    the unterminated tail is kept until the next feed() or flush().
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> list[str]:
        """Return the payloads of the data lines completed by this chunk."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return [payload for payload in map(_data_payload, lines) if payload is not None]

    def flush(self) -> list[str]:
        """Return the payload of a trailing line that never got a newline."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        payload = _data_payload(tail)
        return [payload] if payload is not None else []


def _data_payload(line: str):
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()
