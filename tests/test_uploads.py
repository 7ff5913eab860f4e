"""Tests for file uploads and content type detection."""

import io

import pytest

from roe.errors import InputFileError
from roe.uploads import FileUpload, detect_mime_type, sniff_content_type

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
PDF = b"%PDF-1.7\n" + b"x" * 32


class _OneWayStream(io.RawIOBase):
    """Readable stream that refuses to seek."""

    def __init__(self, data: bytes):
        self._data = io.BytesIO(data)

    def readable(self):
        return True

    def seekable(self):
        return False

    def readinto(self, buffer):
        chunk = self._data.read(len(buffer))
        buffer[: len(chunk)] = chunk
        return len(chunk)


class TestSniffContentType:
    """Tests for signature sniffing."""

    @pytest.mark.parametrize(
        "data,expected",
        [
            (PNG, "image/png"),
            (PDF, "application/pdf"),
            (b"\xff\xd8\xff\xe0rest", "image/jpeg"),
            (b"GIF89a....", "image/gif"),
            (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
            (b"  <!DOCTYPE html><html>", "text/html; charset=utf-8"),
        ],
    )
    def test_known_signatures(self, data, expected):
        """Test well-known formats."""
        assert sniff_content_type(data) == expected

    def test_unknown(self):
        """Test unknown data."""
        assert sniff_content_type(b"hello") is None
        assert sniff_content_type(b"") is None


class TestDetectMimeType:
    """Tests for detect_mime_type."""

    def test_seekable_stream_rewound(self):
        """Test sniffing does not consume a seekable stream."""
        stream = io.BytesIO(PNG)

        out, content_type = detect_mime_type(stream, "x.bin")

        assert content_type == "image/png"
        assert out.read() == PNG

    def test_non_seekable_stream_replayed(self):
        """Test sniffed bytes are replayed for one-way streams."""
        data = PDF + b"y" * 2000

        out, content_type = detect_mime_type(_OneWayStream(data), "x.bin")

        assert content_type == "application/pdf"
        assert out.read() == data

    def test_extension_fallback(self):
        """Test filename extension when no signature matches."""
        _, content_type = detect_mime_type(io.BytesIO(b"a,b\n1,2\n"), "data.csv")

        assert content_type == "text/csv"

    def test_explicit_fallback(self):
        """Test caller fallback before text detection."""
        _, content_type = detect_mime_type(io.BytesIO(b"plain"), "noext", fallback="text/x-custom")

        assert content_type == "text/x-custom"

    def test_text_and_binary(self):
        """Test the final text and binary defaults."""
        _, text_type = detect_mime_type(io.BytesIO(b"just words"), "noext")
        _, binary_type = detect_mime_type(io.BytesIO(b"\x00\x01\x02"), "noext")

        assert text_type == "text/plain; charset=utf-8"
        assert binary_type == "application/octet-stream"


class TestFileUpload:
    """Tests for FileUpload."""

    def test_requires_source(self):
        """Test an upload with nothing to send is rejected."""
        with pytest.raises(InputFileError, match="requires path, stream, or url"):
            FileUpload().validate()

    def test_remote_url(self):
        """Test URL-only uploads are remote."""
        upload = FileUpload(url="https://example.com/files/doc.pdf")

        assert upload.is_url
        assert upload.is_remote
        assert upload.effective_filename() == "doc.pdf"

    def test_url_with_stream_is_not_remote(self):
        """Test a stream takes precedence over the URL."""
        upload = FileUpload(url="https://example.com/a.pdf", stream=io.BytesIO(b"x"))

        assert not upload.is_remote

    def test_effective_filename(self):
        """Test filename resolution order."""
        assert FileUpload(path="/tmp/a/report.pdf").effective_filename() == "report.pdf"
        assert FileUpload(path="/tmp/a.pdf", filename="b.pdf").effective_filename() == "b.pdf"
        assert FileUpload(stream=io.BytesIO(b"x")).effective_filename() == "upload"

    def test_read_part_from_path(self, tmp_path):
        """Test reading a local file closes it and detects the type."""
        f = tmp_path / "scan.png"
        f.write_bytes(PNG)

        filename, content, content_type = FileUpload(path=str(f)).read_part()

        assert filename == "scan.png"
        assert content == PNG
        assert content_type == "image/png"

    def test_explicit_mime_type_wins(self, tmp_path):
        """Test mime_type overrides detection."""
        f = tmp_path / "scan.png"
        f.write_bytes(PNG)

        _, _, content_type = FileUpload(path=str(f), mime_type="image/x-custom").read_part()

        assert content_type == "image/x-custom"

    def test_stream_not_closed(self):
        """Test caller-owned streams stay open."""
        stream = io.BytesIO(b"hello")

        FileUpload(stream=stream, filename="a.txt").read_part()

        assert not stream.closed

    def test_missing_file(self, tmp_path):
        """Test a missing path."""
        with pytest.raises(InputFileError, match="open file"):
            FileUpload(path=str(tmp_path / "missing.pdf")).open()

    def test_directory(self, tmp_path):
        """Test a directory path."""
        with pytest.raises(InputFileError, match="got directory"):
            FileUpload(path=str(tmp_path)).open()

    def test_empty_file(self, tmp_path):
        """Test an empty file."""
        f = tmp_path / "empty.txt"
        f.write_bytes(b"")

        with pytest.raises(InputFileError, match="is empty"):
            FileUpload(path=str(f)).open()

    def test_max_bytes(self, tmp_path):
        """Test the size limit."""
        f = tmp_path / "big.bin"
        f.write_bytes(b"x" * 100)

        with pytest.raises(InputFileError, match="exceeds max size of 10 bytes"):
            FileUpload(path=str(f), max_bytes=10).open()
