"""Tests for byte sources and source error handling."""

import io

import pytest

from csvstream import (
    BareQuoteError,
    BufferedByteSource,
    ByteSource,
    BytesSource,
    CsvValidationError,
    SourceError,
    StreamingRecordParser,
)

SAMPLE = b'id,text\r\n1,"multi\r\nline, ""quoted"""\r\n2,plain\r\n3,"end"'
EXPECTED = [
    ["id", "text"],
    ["1", 'multi\r\nline, "quoted"'],
    ["2", "plain"],
    ["3", "end"],
]


class ByteByByteSource(ByteSource):
    """Minimal source relying on the default read_run."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def read_byte(self):
        if self._pos >= len(self._data):
            return None
        b = self._data[self._pos]
        self._pos += 1
        return b

    def peek_byte(self):
        if self._pos >= len(self._data):
            return None
        return self._data[self._pos]


class FailingStream:
    """Stream that raises after serving a fixed number of bytes."""

    def __init__(self, data: bytes, fail_after: int, exc: BaseException):
        self._data = data
        self._fail_after = fail_after
        self._exc = exc
        self._pos = 0

    def read(self, n: int = -1) -> bytes:
        if self._pos >= self._fail_after:
            raise self._exc
        end = min(self._pos + n, self._fail_after)
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk


class TestBufferedByteSource:
    """Tests for BufferedByteSource."""

    def test_read_and_peek(self):
        """Test that peek does not consume."""
        source = BufferedByteSource(io.BytesIO(b"ab"))
        assert source.peek_byte() == ord("a")
        assert source.peek_byte() == ord("a")
        assert source.read_byte() == ord("a")
        assert source.read_byte() == ord("b")
        assert source.peek_byte() is None
        assert source.read_byte() is None

    def test_read_run_across_chunks(self):
        """Test that a run is collected across chunk boundaries."""
        source = BufferedByteSource(io.BytesIO(b"abcdef,g"), chunk_size=3)
        assert source.read_run(b",\n") == b"abcdef"
        assert source.read_byte() == ord(",")
        assert source.read_run(b",\n") == b"g"
        assert source.read_run(b",\n") == b""

    def test_read_run_special_bytes(self):
        """Test stop sets containing regex metacharacters."""
        source = BytesSource(b"a-b]c^d\\e")
        assert source.read_run(b"]") == b"a-b"
        source.read_byte()
        assert source.read_run(b"^\\") == b"c"
        source.read_byte()
        assert source.read_run(b"\\") == b"d"

    def test_invalid_chunk_size(self):
        """Test that the chunk size must be positive."""
        with pytest.raises(ValueError):
            BufferedByteSource(io.BytesIO(b""), chunk_size=0)

    def test_close_stream(self):
        """Test that the stream is only closed when owned."""
        stream = io.BytesIO(b"a")
        BufferedByteSource(stream).close()
        assert not stream.closed
        BufferedByteSource(stream, close_stream=True).close()
        assert stream.closed


class TestSourceEquivalence:
    """Tests that every source yields the same records."""

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 5, 8, 64])
    def test_chunk_sizes(self, chunk_size):
        """Test records are independent of chunk boundaries."""
        source = BufferedByteSource(io.BytesIO(SAMPLE), chunk_size=chunk_size)
        assert StreamingRecordParser(source).read_all() == EXPECTED

    def test_byte_by_byte_source(self):
        """Test a source without bulk scanning."""
        assert StreamingRecordParser(ByteByByteSource(SAMPLE)).read_all() == EXPECTED

    def test_error_location_matches(self):
        """Test that error locations do not depend on the source."""
        data = b'a,b\r\n"x\ny",z\r\n12"3\r\n'
        locations = []
        for source in (BytesSource(data), ByteByByteSource(data),
                       BufferedByteSource(io.BytesIO(data), chunk_size=2)):
            parser = StreamingRecordParser(source)
            parser.read_record()
            parser.read_record()
            with pytest.raises(BareQuoteError) as exc_info:
                parser.read_record()
            locations.append((exc_info.value.line, exc_info.value.column))
        assert locations == [(4, 3)] * 3

    def test_source_types(self):
        """Test accepted source types."""
        assert StreamingRecordParser("a,b").read_record() == ["a", "b"]
        assert StreamingRecordParser(b"a,b").read_record() == ["a", "b"]
        assert StreamingRecordParser(bytearray(b"a,b")).read_record() == ["a", "b"]
        assert StreamingRecordParser(io.BytesIO(b"a,b")).read_record() == ["a", "b"]

    def test_text_stream_rejected(self):
        """Test that text streams are refused."""
        with pytest.raises(CsvValidationError):
            StreamingRecordParser(io.StringIO("a,b"))

    def test_unsupported_type(self):
        """Test that unsupported sources raise TypeError."""
        with pytest.raises(TypeError):
            StreamingRecordParser(42)


class TestSourceErrors:
    """Tests for failures raised by the byte source."""

    def test_io_error_wrapped(self):
        """Test that I/O errors surface as SourceError with location."""
        stream = FailingStream(b"a,b\n1,2\n", 4, OSError("connection reset"))
        parser = StreamingRecordParser(stream)
        assert parser.read_record() == ["a", "b"]
        with pytest.raises(SourceError) as exc_info:
            parser.read_record()
        err = exc_info.value
        assert err.line == 2
        assert err.column == 1
        assert isinstance(err.__cause__, OSError)

    def test_no_partial_record(self):
        """Test that a failure mid-record returns nothing."""
        stream = FailingStream(b"a,b,c\n", 3, TimeoutError("timed out"))
        parser = StreamingRecordParser(stream)
        with pytest.raises(SourceError) as exc_info:
            parser.read_record()
        assert exc_info.value.column == 4

    def test_parser_exhausted_after_source_error(self):
        """Test that later reads keep failing."""
        parser = StreamingRecordParser(FailingStream(b"", 0, OSError("gone")))
        with pytest.raises(SourceError):
            parser.read_record()
        with pytest.raises(SourceError):
            parser.read_record()

    def test_interrupt_propagates(self):
        """Test that KeyboardInterrupt is not wrapped."""
        parser = StreamingRecordParser(FailingStream(b"a", 0, KeyboardInterrupt()))
        with pytest.raises(KeyboardInterrupt):
            parser.read_record()

    def test_text_chunks_wrapped(self):
        """Test that a stream returning str surfaces as SourceError."""

        class TextChunks:
            def read(self, n=-1):
                return "a,b\n"

        parser = StreamingRecordParser(TextChunks())
        with pytest.raises(SourceError) as exc_info:
            parser.read_record()
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert "binary mode" in str(exc_info.value)

    def test_closed_stream(self):
        """Test reading from a stream closed behind the parser's back."""
        stream = io.BytesIO(b"a,b\n")
        parser = StreamingRecordParser(stream)
        stream.close()
        with pytest.raises(SourceError):
            parser.read_record()

    def test_context_manager_closes_source(self):
        """Test that leaving the with block closes the owned source."""
        source = BufferedByteSource(io.BytesIO(b"a\n"))
        with StreamingRecordParser(source) as parser:
            assert parser.read_record() == ["a"]
        assert parser.closed
        assert source.closed
