"""
MCP Transport layer.

Provides the stdin/stdout framer. Two framings are understood:

- line framing: one JSON message per newline-terminated line
- header framing: LSP-style ``Content-Length`` headers, a blank line, then
  exactly that many bytes of payload

The framing is detected from the first message of the session and mirrored
on every response.
"""

import logging
import re
import sys
from enum import Enum
from typing import BinaryIO, Dict, Optional

from .protocol import MCPServerError


logger = logging.getLogger(__name__)

CONTENT_LENGTH_PREFIX = b"Content-Length:"
ENCODING = "utf-8"

_HEADER_LINE = re.compile(rb"^([A-Za-z0-9][A-Za-z0-9-]*):[ \t]*(.*?)[ \t]*$")


class FramingMode(Enum):
    LINE = "line"
    HEADER = "header"


class FramingError(MCPServerError):
    """Raised for malformed header framing. The stream can no longer be trusted."""


class StdioTransport:
    """
    Transport using stdin/stdout for communication.

    Works on binary streams so that ``Content-Length`` counts bytes. The
    detected framing is per-instance session state.
    """

    def __init__(
        self,
        input_stream: Optional[BinaryIO] = None,
        output_stream: Optional[BinaryIO] = None,
    ):
        self.input = input_stream or sys.stdin.buffer
        self.output = output_stream or sys.stdout.buffer
        self.mode: Optional[FramingMode] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read_message(self) -> Optional[str]:
        """
        Read the next message.

        Returns None at end of stream, including a stream that ends in the
        middle of a framed message. Raises ``FramingError`` when header
        framing is malformed.
        """
        if self._closed:
            return None

        while True:
            line = self.input.readline()
            if not line:
                return None

            if not line.strip():
                continue

            if self.mode is None:
                self._detect(line)

            if self.mode is FramingMode.HEADER:
                return self._read_framed(line)

            return line.decode(ENCODING, errors="replace").strip()

    def _detect(self, first_line: bytes) -> None:
        if first_line.startswith(CONTENT_LENGTH_PREFIX):
            self.mode = FramingMode.HEADER
        else:
            self.mode = FramingMode.LINE
        logger.info(f"Detected {self.mode.value} framing, responses will use the same format")

    def _read_headers(self, first_line: bytes) -> Optional[Dict[str, bytes]]:
        headers: Dict[str, bytes] = {}
        line = first_line
        while True:
            match = _HEADER_LINE.match(line.rstrip(b"\r\n"))
            if match is None:
                raise FramingError(f"Malformed header line: {line[:80]!r}")
            headers[match.group(1).decode("ascii")] = match.group(2)

            line = self.input.readline()
            if not line:
                logger.warning("Unexpected EOF while reading headers")
                return None
            if not line.strip():
                return headers

    def _read_framed(self, first_line: bytes) -> Optional[str]:
        headers = self._read_headers(first_line)
        if headers is None:
            return None

        if "Content-Length" not in headers:
            raise FramingError("Missing Content-Length header")

        raw_length = headers["Content-Length"]
        # Plain ASCII digits only; int() also takes signs and underscores
        if not raw_length.isdigit():
            raise FramingError(f"Invalid Content-Length: {raw_length!r}")
        length = int(raw_length)

        chunks = []
        remaining = length
        while remaining > 0:
            chunk = self.input.read(remaining)
            if not chunk:
                logger.warning(
                    f"Unexpected EOF while reading content (read {length - remaining} of {length} bytes)"
                )
                return None
            chunks.append(chunk)
            remaining -= len(chunk)

        content = b"".join(chunks).decode(ENCODING, errors="replace")
        logger.debug(f"Read framed message of {length} bytes")
        return content

    def write_message(self, content: str) -> None:
        """Write a message using the session's framing and flush."""
        if self._closed:
            raise RuntimeError("Transport is closed")

        encoded = content.encode(ENCODING)
        if self.mode is FramingMode.HEADER:
            header = f"Content-Length: {len(encoded)}\r\n\r\n".encode("ascii")
            self.output.write(header + encoded)
        else:
            self.output.write(encoded + b"\n")
        self.output.flush()

    def close(self) -> None:
        """Close the transport."""
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
