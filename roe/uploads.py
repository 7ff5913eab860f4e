"""File uploads for dynamic agent inputs.

``FileUpload`` describes one file sent as a multipart part: a local path, an
already-open binary stream, or a remote URL (sent as a plain form value).
"""

import io
import logging
import mimetypes
import os
import stat
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple
from urllib.parse import urlparse

from roe.errors import InputFileError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
SNIFF_BYTES = 512

# (offset, signature, content type)
_SIGNATURES: List[Tuple[int, bytes, str]] = [
    (0, b"%PDF-", "application/pdf"),
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"BM", "image/bmp"),
    (0, b"II*\x00", "image/tiff"),
    (0, b"MM\x00*", "image/tiff"),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"\x1f\x8b\x08", "application/x-gzip"),
    (0, b"ID3", "audio/mpeg"),
    (0, b"OggS", "application/ogg"),
    (4, b"ftyp", "video/mp4"),
    (0, b"\x1a\x45\xdf\xa3", "video/webm"),
]

_TEXT_PREFIXES: List[Tuple[bytes, str]] = [
    (b"<!doctype html", "text/html; charset=utf-8"),
    (b"<html", "text/html; charset=utf-8"),
    (b"<?xml", "text/xml; charset=utf-8"),
]


def sniff_content_type(data: bytes) -> Optional[str]:
    """Identify well-known formats from their leading bytes.

    Returns:
        The content type, or None when no signature matches
    """
    if not data:
        return None
    if data.startswith(b"RIFF") and len(data) >= 12:
        if data[8:12] == b"WEBP":
            return "image/webp"
        if data[8:12] == b"WAVE":
            return "audio/wave"
        if data[8:12] == b"AVI ":
            return "video/avi"
    for offset, signature, content_type in _SIGNATURES:
        if data[offset : offset + len(signature)] == signature:
            return content_type
    head = data.lstrip().lower()
    for prefix, content_type in _TEXT_PREFIXES:
        if head.startswith(prefix):
            return content_type
    return None


def _looks_like_text(data: bytes) -> bool:
    if b"\x00" in data:
        return False
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        # The sniff window may split a multi-byte character.
        try:
            data[:-3].decode("utf-8")
        except UnicodeDecodeError:
            return False
    return True


class _PrefixedReader(io.RawIOBase):
    """Read-only stream replaying ``prefix`` before the rest of ``stream``."""

    def __init__(self, prefix: bytes, stream: BinaryIO):
        self._prefix = prefix
        self._stream = stream

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._prefix:
            n = min(len(buffer), len(self._prefix))
            buffer[:n] = self._prefix[:n]
            self._prefix = self._prefix[n:]
            return n
        chunk = self._stream.read(len(buffer))
        if not chunk:
            return 0
        n = len(chunk)
        buffer[:n] = chunk
        return n


def _is_seekable(stream: BinaryIO) -> bool:
    try:
        return bool(stream.seekable())
    except (AttributeError, ValueError, OSError):
        return False


def detect_mime_type(
    stream: BinaryIO, filename: str, fallback: Optional[str] = None
) -> Tuple[BinaryIO, str]:
    """Detect the content type of a stream without losing any of its bytes.

    Seekable streams are rewound after sniffing. For other streams the
    consumed prefix is buffered and replayed in front of the remaining data,
    so callers must continue reading from the returned stream.

    Args:
        stream: Binary stream positioned at the start of the content
        filename: Name used for extension-based guessing
        fallback: Content type to use when nothing is detected

    Returns:
        Tuple of (stream to read from, content type)
    """
    if _is_seekable(stream):
        start = stream.tell()
        head = stream.read(SNIFF_BYTES) or b""
        stream.seek(start)
        out: BinaryIO = stream
    else:
        head = stream.read(SNIFF_BYTES) or b""
        out = io.BufferedReader(_PrefixedReader(head, stream))

    detected = sniff_content_type(head)
    if detected:
        return out, detected

    guessed = mimetypes.guess_type(filename)[0]
    if guessed:
        return out, guessed
    if fallback:
        return out, fallback
    if head and _looks_like_text(head):
        return out, "text/plain; charset=utf-8"
    return out, DEFAULT_CONTENT_TYPE


@dataclass
class FileUpload:
    """Explicit file input.

    At least one of ``path``, ``stream`` or ``url`` must be set. An upload
    with only a URL is sent as a plain form value; the server fetches it.

    Example:
        >>> client.agents.run(agent_id, {"document": FileUpload(path="invoice.pdf")})
        >>> FileUpload(stream=io.BytesIO(data), filename="scan.png", mime_type="image/png")
    """

    path: Optional[str] = None
    stream: Optional[BinaryIO] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    url: Optional[str] = None
    max_bytes: int = 0

    @property
    def is_url(self) -> bool:
        if not self.url:
            return False
        parsed = urlparse(self.url)
        return bool(parsed.scheme) and bool(parsed.netloc)

    @property
    def is_remote(self) -> bool:
        """True when only a URL is given."""
        return self.is_url and not self.path and self.stream is None

    def effective_filename(self) -> str:
        if self.filename:
            return self.filename
        if self.path:
            return os.path.basename(self.path)
        if self.is_url:
            name = os.path.basename(urlparse(self.url).path.rstrip("/"))
            if name:
                return name
        return "upload"

    def validate(self) -> None:
        if self.stream is None and not self.path and not self.is_url:
            raise InputFileError("file upload requires path, stream, or url")

    def open(self) -> Tuple[BinaryIO, bool]:
        """Open the upload for reading.

        Local files are opened before they are inspected, so the checks apply
        to the file actually read.

        Returns:
            Tuple of (binary stream, whether the caller owns and must close it)

        Raises:
            InputFileError: If the file is missing, a directory, empty or too large
        """
        self.validate()
        if self.stream is not None:
            return self.stream, False
        if not self.path:
            raise InputFileError("file upload requires path, stream, or url")

        try:
            handle = open(self.path, "rb")
        except IsADirectoryError as e:
            raise InputFileError(
                f"file upload requires a file, got directory: {self.path}"
            ) from e
        except OSError as e:
            raise InputFileError(f"open file {self.path}: {e}") from e

        try:
            info = os.fstat(handle.fileno())
            if stat.S_ISDIR(info.st_mode):
                raise InputFileError(f"file upload requires a file, got directory: {self.path}")
            if info.st_size == 0:
                raise InputFileError(f"file {self.path} is empty")
            if self.max_bytes > 0 and info.st_size > self.max_bytes:
                raise InputFileError(
                    f"file {self.path} exceeds max size of {self.max_bytes} bytes"
                )
        except BaseException:
            handle.close()
            raise
        return handle, True

    def read_part(self) -> Tuple[str, bytes, str]:
        """Read the upload into a multipart part.

        The content is buffered so a retried request resends identical bytes.

        Returns:
            Tuple of (filename, content, content type) as accepted by httpx ``files``
        """
        filename = self.effective_filename()
        stream, owned = self.open()
        try:
            reader, detected = detect_mime_type(stream, filename)
            content = reader.read()
        finally:
            if owned:
                stream.close()
        content_type = self.mime_type or detected
        logger.debug(f"Prepared upload {filename} ({len(content)} bytes, {content_type})")
        return filename, content, content_type
