"""Tests for input classification helpers."""

from roe.utils import chunked, is_file_path, is_http_url, is_uuid_string, looks_like_path


class TestIsUuidString:
    """Tests for is_uuid_string."""

    def test_hyphenated(self):
        """Test canonical UUID."""
        assert is_uuid_string("123e4567-e89b-12d3-a456-426614174000")

    def test_compact(self):
        """Test 32 hex digits without hyphens."""
        assert is_uuid_string("123e4567e89b12d3a456426614174000")

    def test_uppercase(self):
        """Test uppercase hex."""
        assert is_uuid_string("123E4567-E89B-12D3-A456-426614174000")

    def test_rejects_other_strings(self):
        """Test non-UUID strings."""
        assert not is_uuid_string("hello")
        assert not is_uuid_string("123e4567-e89b-12d3-a456-42661417400")
        assert not is_uuid_string("123e4567-e89b-12d3-a456-42661417400g")
        assert not is_uuid_string("")

    def test_rejects_trailing_newline(self):
        """Test a trailing newline makes the string too long."""
        assert not is_uuid_string("123e4567-e89b-12d3-a456-426614174000\n")
        assert not is_uuid_string("123e4567e89b12d3a456426614174000\n")


class TestPaths:
    """Tests for path helpers."""

    def test_is_file_path(self, tmp_path):
        """Test existing files match, directories and missing paths do not."""
        f = tmp_path / "doc.txt"
        f.write_text("hi")

        assert is_file_path(str(f))
        assert not is_file_path(str(tmp_path))
        assert not is_file_path(str(tmp_path / "missing.txt"))

    def test_looks_like_path(self):
        """Test path-shaped strings."""
        assert looks_like_path("./x")
        assert looks_like_path("a/b")
        assert looks_like_path("C:\\x")
        assert looks_like_path(".hidden")
        assert not looks_like_path("hello world")
        assert not looks_like_path("report.pdf")
        assert not looks_like_path("123e4567-e89b-12d3-a456-426614174000")

    def test_is_http_url(self):
        """Test http(s) URL detection."""
        assert is_http_url("https://example.com/doc.pdf")
        assert is_http_url("http://example.com")
        assert not is_http_url("ftp://example.com")
        assert not is_http_url("/local/path")


class TestChunked:
    """Tests for chunked."""

    def test_even_split(self):
        """Test chunking into equal parts."""
        assert chunked([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_remainder(self):
        """Test the last chunk holds the remainder."""
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_size_covers_all(self):
        """Test a size at least the length yields one chunk."""
        assert chunked([1, 2, 3], 3) == [[1, 2, 3]]
        assert chunked([1, 2, 3], 10) == [[1, 2, 3]]

    def test_non_positive_size(self):
        """Test non-positive sizes yield one chunk."""
        assert chunked([1, 2, 3], 0) == [[1, 2, 3]]
        assert chunked([1, 2, 3], -1) == [[1, 2, 3]]

    def test_empty(self):
        """Test empty input."""
        assert chunked([], 5) == [[]]
