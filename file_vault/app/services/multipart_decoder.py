"""Decoder for single-file ``multipart/form-data`` upload bodies.

The body is scanned as raw bytes, never decoded as text. Only the first file
part is honored: the part headers end at the *first* ``CRLFCRLF`` in the body,
and the payload ends at the *last* boundary delimiter in the body.
"""
import re
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional, Tuple

from file_vault.app.exceptions import MalformedRequest

HEADER_TERMINATOR = b"\r\n\r\n"
LINE_TERMINATOR_LENGTH = 2
FILENAME_PATTERN = re.compile(rb'filename="([^"]+)"')
BOUNDARY_PATTERN = re.compile(r'boundary="?([^";]+)"?', re.IGNORECASE)

_BASE36_DIGITS = string.digits + string.ascii_lowercase
_UNIQUE_SUFFIX_LENGTH = 5


@dataclass(frozen=True)
class DecodedUpload:
    original_name: str
    payload: bytes

    @property
    def byte_length(self) -> int:
        return len(self.payload)


def extract_boundary(content_type: str) -> bytes:
    """Get the boundary token from a ``Content-Type`` header value."""
    if "multipart/form-data" not in content_type.lower():
        raise MalformedRequest("Not multipart data")

    match = BOUNDARY_PATTERN.search(content_type)
    boundary = match.group(1).strip() if match else ""
    if not boundary:
        raise MalformedRequest("No boundary found")

    return boundary.encode("latin-1")


class MultipartScanner:
    """Locates the first file part of a multipart body by byte offsets.

    Scanning runs in two phases over the same buffer: the header phase finds
    the part header block, then the payload phase finds where the file bytes
    stop.
    """

    def __init__(self, body: bytes, boundary: bytes):
        self.body = body
        self.delimiter = b"--" + boundary
        self.terminal_delimiter = self.delimiter + b"--"

    def scan_headers(self) -> Tuple[bytes, int]:
        """Return the header block and the offset where the payload starts."""
        header_end = self.body.find(HEADER_TERMINATOR)
        if header_end == -1:
            raise MalformedRequest("Invalid multipart format")
        return self.body[:header_end], header_end + len(HEADER_TERMINATOR)

    def scan_payload_end(self, start: int) -> int:
        """Return the offset of the boundary delimiter that closes the payload."""
        end = self.body.rfind(self.delimiter)
        if end == -1:
            end = self.body.rfind(self.terminal_delimiter)
        if end == -1 or start >= end:
            raise MalformedRequest("Could not find file boundaries")
        return end

    def scan(self) -> DecodedUpload:
        header_block, start = self.scan_headers()
        end = self.scan_payload_end(start)
        # The CRLF right before the delimiter belongs to the framing
        payload = self.body[start:end - LINE_TERMINATOR_LENGTH]
        return DecodedUpload(
            original_name=_extract_filename(header_block),
            payload=payload,
        )


def _extract_filename(header_block: bytes) -> str:
    match = FILENAME_PATTERN.search(header_block)
    if not match:
        return ""
    raw_name = match.group(1)
    try:
        return raw_name.decode("utf-8")
    except UnicodeDecodeError:
        return raw_name.decode("latin-1")


def decode_multipart(body: bytes, content_type: str) -> DecodedUpload:
    """Extract the uploaded file name and bytes from a raw request body.

    Args:
        body: The complete request body
        content_type: The request's ``Content-Type`` header

    Raises:
        MalformedRequest: If the body is not multipart or cannot be framed
    """
    boundary = extract_boundary(content_type)
    return MultipartScanner(body, boundary).scan()


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_unique_id() -> str:
    """Millisecond timestamp in base 36 followed by a random base-36 suffix."""
    suffix = "".join(secrets.choice(_BASE36_DIGITS) for _ in range(_UNIQUE_SUFFIX_LENGTH))
    return _to_base36(int(time.time() * 1000)) + suffix


def storage_filename(original_name: str, unique_id: Optional[str] = None) -> str:
    """Compose the on-disk name ``<unique>-<original name>``.

    Directory components of the client-supplied name are dropped.
    """
    safe_name = PurePosixPath(original_name.replace("\\", "/")).name
    return f"{unique_id or generate_unique_id()}-{safe_name}"
