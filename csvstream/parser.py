"""
csvstream parser - streaming, byte-oriented CSV record reader
"""

import codecs
import io
import logging
import os
import stat
from enum import Enum, IntEnum
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple, Union

from .source import DEFAULT_CHUNK_SIZE, BufferedByteSource, ByteSource, BytesSource

logger = logging.getLogger(__name__)

# Maximum file size to process (default 10GB)
MAX_FILE_SIZE = 10 * 1024 * 1024 * 1024

LF = 0x0A
CR = 0x0D
_LINE_BREAKS = b'\r\n'
_BLANKS = b' \t'


class CsvStreamError(Exception):
    """Base exception for csvstream errors."""
    pass


class CsvValidationError(CsvStreamError):
    """Raised when configuration or input validation fails."""
    pass


class CsvParseError(CsvStreamError):
    """
    Raised when the input violates the CSV grammar.

    Attributes:
        message: Description of the problem, without location
        line: 1-based line of the offending byte
        column: 1-based byte column of the offending byte
        start_line: Line on which the failing record started
        kind: Short machine-readable error name
    """

    kind = 'parse'

    def __init__(self, message: str, line: int, column: int, start_line: Optional[int] = None):
        self.message = message
        self.line = line
        self.column = column
        self.start_line = line if start_line is None else start_line
        super().__init__(f"line {line}, column {column}: {message}")


class BareQuoteError(CsvParseError):
    """A quote character appeared inside an unquoted field."""

    kind = 'bare_quote'


class ExtraneousQuoteError(CsvParseError):
    """A closing quote was followed by something other than a delimiter or line break."""

    kind = 'extraneous_quote'


class UnterminatedQuoteError(CsvParseError):
    """Input ended inside a quoted field."""

    kind = 'unterminated_quote'


class FieldCountError(CsvParseError):
    """A record has a different number of fields than expected."""

    kind = 'field_count'

    def __init__(self, expected: int, actual: int, line: int, column: int = 1,
                 start_line: Optional[int] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"wrong number of fields: expected {expected}, got {actual}",
            line, column, start_line,
        )


class SourceError(CsvStreamError):
    """Raised when the byte source fails. The original error is chained."""

    def __init__(self, message: str, line: int, column: int):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(f"line {line}, column {column}: {message}")


class ParserState(IntEnum):
    START_FIELD = 1
    UNQUOTED = 2
    QUOTED = 3
    QUOTE_IN_QUOTED = 4


class FieldCountPolicy(str, Enum):
    AUTO = 'auto'
    ENFORCE = 'enforce'
    IGNORE = 'ignore'


def _validate_char(name: str, value: str) -> None:
    if not isinstance(value, str):
        raise CsvValidationError(f"{name} must be a string, got {type(value).__name__}")
    if not value:
        raise CsvValidationError(f"{name} cannot be empty")
    if len(value) > 1:
        raise CsvValidationError(
            f"{name} must be a single character, got '{value}' "
            f"(length {len(value)}). Multi-character values are not supported."
        )
    if ord(value) > 0x7F:
        raise CsvValidationError(f"{name} must be an ASCII character, got '{value}'")
    if value in '\r\n':
        raise CsvValidationError(f"{name} cannot be a line break")


class ParserConfig:
    """
    Validated parser configuration.

    Args:
        delimiter: Field delimiter character (default: ',')
        quote: Quote character (default: '"')
        comment: Comment character; lines starting with it are skipped
        field_count: Expected number of fields per record
        field_count_policy: 'auto' learns the first record's count,
            'enforce' raises FieldCountError on mismatch, 'ignore' does neither
        lazy_quotes: Recover from quoting errors instead of raising
        pad_short_records: Pad records shorter than the expected count
            with empty fields
        skip_empty_lines: Skip lines containing no bytes at all
        reuse_record: Return the same list object from every read
        encoding: Encoding used to decode field bytes
        errors: Decode error handler (see bytes.decode)

    A config is never mutated once built; use replace() to derive a new one.
    """

    __slots__ = (
        'delimiter', 'quote', 'comment', 'field_count', 'field_count_policy',
        'lazy_quotes', 'pad_short_records', 'skip_empty_lines', 'reuse_record',
        'encoding', 'errors',
    )

    def __init__(
        self,
        delimiter: str = ',',
        quote: str = '"',
        comment: Optional[str] = None,
        field_count: Optional[int] = None,
        field_count_policy: Union[str, FieldCountPolicy] = FieldCountPolicy.AUTO,
        lazy_quotes: bool = False,
        pad_short_records: bool = False,
        skip_empty_lines: bool = True,
        reuse_record: bool = False,
        encoding: str = 'utf-8',
        errors: str = 'replace',
    ):
        _validate_char('Delimiter', delimiter)
        _validate_char('Quote', quote)
        if delimiter == quote:
            raise CsvValidationError(
                f"Delimiter and quote character cannot be the same ('{delimiter}')"
            )
        if comment is not None:
            _validate_char('Comment', comment)
            if comment in (delimiter, quote):
                raise CsvValidationError(
                    f"Comment character cannot equal the delimiter or quote ('{comment}')"
                )

        try:
            policy = FieldCountPolicy(field_count_policy)
        except ValueError:
            raise CsvValidationError(
                f"Unknown field count policy '{field_count_policy}'. "
                f"Expected one of: {', '.join(p.value for p in FieldCountPolicy)}"
            ) from None

        if field_count is not None:
            if isinstance(field_count, bool) or not isinstance(field_count, int) or field_count <= 0:
                raise CsvValidationError(
                    f"field_count must be a positive integer, got {field_count!r}"
                )

        try:
            codecs.lookup(encoding)
        except LookupError:
            raise CsvValidationError(f"Unknown encoding '{encoding}'") from None

        # Fields are split on raw bytes, so the structural bytes must decode
        # back to the same characters.
        structural = delimiter + quote + (comment or '') + '\r\n'
        try:
            compatible = structural.encode('ascii').decode(encoding) == structural
        except (LookupError, UnicodeError):
            compatible = False
        if not compatible:
            raise CsvValidationError(f"Encoding '{encoding}' is not ASCII-compatible")

        values = (
            delimiter, quote, comment, field_count, policy,
            bool(lazy_quotes), bool(pad_short_records), bool(skip_empty_lines),
            bool(reuse_record), encoding, errors,
        )
        for name, value in zip(self.__slots__, values):
            object.__setattr__(self, name, value)

    def __setattr__(self, name, value):
        raise AttributeError(f"ParserConfig is immutable, use replace() to change '{name}'")

    def __delattr__(self, name):
        raise AttributeError(f"ParserConfig is immutable, cannot delete '{name}'")

    def replace(self, **changes) -> 'ParserConfig':
        """Return a new, validated config with the given fields changed."""
        values = {name: getattr(self, name) for name in self.__slots__}
        unknown = set(changes) - set(values)
        if unknown:
            raise CsvValidationError(f"Unknown option(s): {', '.join(sorted(unknown))}")
        values.update(changes)
        return ParserConfig(**values)

    def __repr__(self) -> str:
        args = ', '.join(f"{name}={getattr(self, name)!r}" for name in self.__slots__)
        return f"ParserConfig({args})"


def _as_source(source, encoding: str) -> ByteSource:
    if isinstance(source, ByteSource):
        return source
    if isinstance(source, str):
        return BytesSource(source.encode(encoding))
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BytesSource(source)
    if isinstance(source, io.TextIOBase):
        raise CsvValidationError("Text streams are not supported, open the file in binary mode")
    if hasattr(source, 'read'):
        return BufferedByteSource(source)
    raise TypeError(f"Unsupported source type: {type(source).__name__}")


class StreamingRecordParser:
    """
    Pull-based CSV parser that returns one record per call.

    The parser reads bytes from a ByteSource on demand and runs a small
    automaton over them (START_FIELD, UNQUOTED, QUOTED, QUOTE_IN_QUOTED).
    Quoted fields may contain delimiters, line breaks and doubled quotes.
    LF, CRLF and bare CR all terminate a record.

    One parser reads one stream, sequentially. It is not thread-safe.

    In the default mode every record is a new list. With reuse_record=True
    the same list is refilled on every call; copy it before reading again
    if you need to keep it.

    Example:
        >>> with StreamingRecordParser(b'a,b\\n1,2\\n') as parser:
        ...     for record in parser:
        ...         print(record)
        ['a', 'b']
        ['1', '2']
    """

    def __init__(
        self,
        source: Union[ByteSource, BinaryIO, bytes, str],
        config: Optional[ParserConfig] = None,
        **options,
    ):
        if config is None:
            config = ParserConfig(**options)
        elif options:
            config = config.replace(**options)
        self._config = config
        self._source = _as_source(source, config.encoding)

        self._delim = ord(config.delimiter)
        self._quote = ord(config.quote)
        self._comment = ord(config.comment) if config.comment is not None else None
        self._unquoted_stops = bytes((self._delim, self._quote, CR, LF))
        self._quoted_stops = bytes((self._quote, CR, LF))

        self._state = ParserState.START_FIELD
        self._line = 1
        self._column = 1
        self._after_cr = False
        self._start_line = 1

        # Working buffer holding the unescaped bytes of the current record,
        # and the end offset of every field in it.
        self._buf = bytearray()
        self._ends: List[int] = []
        self._record: List[str] = []

        if config.field_count_policy is FieldCountPolicy.IGNORE:
            self._expected = None
        else:
            self._expected = config.field_count
        self._records_read = 0
        self._errors: List[Tuple[int, str]] = []
        self._fatal: Optional[SourceError] = None
        self._closed = False

    # Source access. Line and column are updated here for every consumed byte.

    def _source_error(self, exc: Exception) -> SourceError:
        err = SourceError(f"byte source failed: {exc}", self._line, self._column)
        self._fatal = err
        return err

    def _track(self, b: int) -> None:
        if b == LF:
            if not self._after_cr:
                self._line += 1
            self._column = 1
            self._after_cr = False
        elif b == CR:
            self._line += 1
            self._column = 1
            self._after_cr = True
        else:
            self._column += 1
            self._after_cr = False

    def _read(self) -> Optional[int]:
        try:
            b = self._source.read_byte()
        except (OSError, ValueError) as e:
            raise self._source_error(e) from e
        if b is not None:
            self._track(b)
        return b

    def _peek(self) -> Optional[int]:
        try:
            return self._source.peek_byte()
        except (OSError, ValueError) as e:
            raise self._source_error(e) from e

    def _read_run(self, stops: bytes) -> bytes:
        # stops always contains CR and LF, so a run never crosses a line
        try:
            run = self._source.read_run(stops)
        except (OSError, ValueError) as e:
            raise self._source_error(e) from e
        if run:
            self._column += len(run)
            self._after_cr = False
        return run

    def _finish_line(self, b: int) -> None:
        """Consume the LF of a CRLF pair whose CR was just read."""
        if b == CR and self._peek() == LF:
            self._read()

    def _skip_line(self) -> None:
        self._read_run(_LINE_BREAKS)
        b = self._read()
        if b is not None:
            self._finish_line(b)

    # Automaton

    def _skip_comment(self) -> bool:
        """
        Consume leading blanks of a line and, if a comment follows, the
        whole line. Blanks stay in the working buffer otherwise, as they
        belong to the first field.
        """
        buf = self._buf
        while True:
            b = self._peek()
            if b is None or b not in _BLANKS:
                break
            buf.append(self._read())
        if b is not None and b == self._comment:
            self._skip_line()
            return True
        return False

    def _parse_record(self) -> None:
        buf = self._buf
        ends = self._ends
        delim = self._delim
        quote = self._quote
        lazy = self._config.lazy_quotes
        state = ParserState.UNQUOTED if buf else ParserState.START_FIELD
        quote_line = quote_column = 0

        while True:
            if state == ParserState.START_FIELD:
                line, column = self._line, self._column
                b = self._read()
                if b is None:
                    # only reachable after a delimiter: trailing empty field
                    ends.append(len(buf))
                    break
                if b == quote:
                    quote_line, quote_column = line, column
                    state = ParserState.QUOTED
                elif b == delim:
                    ends.append(len(buf))
                elif b == LF or b == CR:
                    ends.append(len(buf))
                    self._finish_line(b)
                    break
                else:
                    buf.append(b)
                    state = ParserState.UNQUOTED

            elif state == ParserState.UNQUOTED:
                buf += self._read_run(self._unquoted_stops)
                line, column = self._line, self._column
                b = self._read()
                if b is None:
                    ends.append(len(buf))
                    break
                if b == delim:
                    ends.append(len(buf))
                    state = ParserState.START_FIELD
                elif b == LF or b == CR:
                    ends.append(len(buf))
                    self._finish_line(b)
                    break
                elif lazy:
                    buf.append(b)
                else:
                    self._state = state
                    self._skip_line()
                    raise BareQuoteError(
                        "bare quote in unquoted field", line, column, self._start_line
                    )

            elif state == ParserState.QUOTED:
                buf += self._read_run(self._quoted_stops)
                b = self._read()
                if b is None:
                    if not lazy:
                        self._state = state
                        raise UnterminatedQuoteError(
                            "quoted field not terminated before end of input",
                            quote_line, quote_column, self._start_line,
                        )
                    ends.append(len(buf))
                    break
                if b == quote:
                    state = ParserState.QUOTE_IN_QUOTED
                else:
                    buf.append(b)

            else:  # QUOTE_IN_QUOTED
                line, column = self._line, self._column
                b = self._read()
                if b is None:
                    ends.append(len(buf))
                    break
                if b == quote:
                    buf.append(b)
                    state = ParserState.QUOTED
                elif b == delim:
                    ends.append(len(buf))
                    state = ParserState.START_FIELD
                elif b == LF or b == CR:
                    ends.append(len(buf))
                    self._finish_line(b)
                    break
                elif lazy:
                    buf.append(b)
                    state = ParserState.UNQUOTED
                else:
                    self._state = state
                    self._skip_line()
                    raise ExtraneousQuoteError(
                        "extraneous or missing quote in quoted field",
                        line, column, self._start_line,
                    )

        self._state = ParserState.START_FIELD

    def _apply_field_count(self) -> None:
        ends = self._ends
        if self._config.field_count_policy is FieldCountPolicy.IGNORE or not ends:
            return
        if self._expected is None:
            self._expected = len(ends)
            logger.debug("Learned field count %d from line %d", self._expected, self._start_line)
            return
        if self._config.pad_short_records and len(ends) < self._expected:
            ends.extend([len(self._buf)] * (self._expected - len(ends)))
        if (self._config.field_count_policy is FieldCountPolicy.ENFORCE
                and len(ends) != self._expected):
            raise FieldCountError(self._expected, len(ends), self._start_line, 1, self._start_line)

    def _read_raw(self) -> bool:
        """
        Parse the next record into the working buffer.

        Returns False at end of stream. On success the unescaped field bytes
        are in self._buf and the field end offsets in self._ends.
        """
        if self._closed:
            raise ValueError("I/O operation on closed parser")
        if self._fatal is not None:
            raise self._fatal

        buf = self._buf
        try:
            while True:
                del buf[:]
                del self._ends[:]
                self._state = ParserState.START_FIELD
                self._start_line = self._line

                b = self._peek()
                if b is None:
                    return False
                if b == LF or b == CR:
                    self._finish_line(self._read())
                    if self._config.skip_empty_lines:
                        continue
                    break
                if self._comment is not None and self._skip_comment():
                    continue
                self._parse_record()
                self._apply_field_count()
                break
        except CsvParseError as e:
            self._errors.append((e.line, e.message))
            raise

        self._records_read += 1
        return True

    def _decode_fields(self) -> List[str]:
        buf = self._buf
        encoding = self._config.encoding
        errors = self._config.errors
        fields = []
        start = 0
        for end in self._ends:
            fields.append(buf[start:end].decode(encoding, errors))
            start = end
        return fields

    # Public API

    def read_record(self) -> Optional[List[str]]:
        """
        Read the next record.

        Returns:
            List of field values, or None at end of stream.

        Raises:
            CsvParseError: On a grammar violation or field count mismatch.
                The stream is left at the next record boundary.
            SourceError: If the byte source fails. The parser is exhausted.
        """
        if not self._read_raw():
            return None
        fields = self._decode_fields()
        if self._config.reuse_record:
            record = self._record
            record[:] = fields
            return record
        return fields

    next = read_record

    def read_record_into(self, out: bytearray) -> Optional[List[int]]:
        """
        Read the next record without decoding it.

        The unescaped field bytes are appended to ``out``. Returns the end
        offset of every field, relative to where this record starts in
        ``out``, or None at end of stream.
        """
        if not self._read_raw():
            return None
        out += self._buf
        return list(self._ends)

    def skip_record(self) -> bool:
        """Parse and discard the next record. Returns False at end of stream."""
        return self._read_raw()

    def read_all(self, raise_on_error: bool = True) -> List[List[str]]:
        """
        Read all remaining records.

        Args:
            raise_on_error: If False, records with parse errors are skipped
                and the errors are available from the errors property.

        Returns:
            List of records. Reaching end of stream is not an error.
        """
        reuse = self._config.reuse_record
        records = []
        while True:
            try:
                record = self.read_record()
            except CsvParseError as e:
                if raise_on_error:
                    raise
                logger.warning("Skipping record starting at line %d: %s", e.start_line, e)
                continue
            if record is None:
                return records
            records.append(list(record) if reuse else record)

    def close(self) -> None:
        """Close the parser and its byte source."""
        if self._closed:
            return
        self._closed = True
        self._source.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def config(self) -> ParserConfig:
        return self._config

    @property
    def state(self) -> ParserState:
        """Automaton state where the last read stopped."""
        return self._state

    @property
    def line(self) -> int:
        """1-based line of the next byte to be read."""
        return self._line

    @property
    def column(self) -> int:
        """1-based byte column of the next byte to be read."""
        return self._column

    @property
    def line_num(self) -> int:
        """Number of physical lines consumed so far."""
        return self._line - 1 + (1 if self._column > 1 else 0)

    @property
    def records_read(self) -> int:
        return self._records_read

    @property
    def expected_field_count(self) -> Optional[int]:
        """Configured or learned field count, None if not known yet."""
        return self._expected

    @property
    def errors(self) -> List[Tuple[int, str]]:
        """Return list of (line_number, error_message) tuples."""
        return self._errors.copy()

    def __iter__(self) -> 'StreamingRecordParser':
        return self

    def __next__(self) -> List[str]:
        record = self.read_record()
        if record is None:
            raise StopIteration
        return record

    def __enter__(self) -> 'StreamingRecordParser':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


def _validate_file_path(path: Union[str, os.PathLike], max_file_size: int) -> Path:
    """
    Validate a file path before opening it.

    Rejects missing files, device files, FIFOs, sockets, anything that is
    not a regular file after resolving symlinks, and files larger than
    max_file_size.
    """
    file_path = Path(path)

    if not file_path.exists():
        raise CsvValidationError(f"File not found: {path}")

    real_path = file_path.resolve()

    try:
        file_stat = real_path.stat()
    except OSError as e:
        raise CsvValidationError(f"Cannot access file {path}: {e}") from e

    mode = file_stat.st_mode
    if stat.S_ISBLK(mode) or stat.S_ISCHR(mode):
        raise CsvValidationError(f"Cannot parse device file: {path}")
    if stat.S_ISFIFO(mode):
        raise CsvValidationError(f"Cannot parse FIFO/pipe: {path}")
    if stat.S_ISSOCK(mode):
        raise CsvValidationError(f"Cannot parse socket: {path}")
    if not stat.S_ISREG(mode):
        raise CsvValidationError(f"Path is not a regular file: {path}")

    if file_stat.st_size > max_file_size:
        raise CsvValidationError(
            f"File too large: {file_stat.st_size} bytes "
            f"(max {max_file_size} bytes). "
            f"Increase max_file_size if this is intentional."
        )

    return real_path


def open_iterator(
    path: Union[str, os.PathLike],
    delimiter: str = ',',
    quote: str = '"',
    *,
    validate_path: bool = True,
    max_file_size: int = MAX_FILE_SIZE,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    **options,
) -> StreamingRecordParser:
    """
    Open a CSV file for record-by-record iteration.

    The returned parser owns the file; use it as a context manager or call
    close() when done.

    Example:
        >>> with open_iterator('data.csv') as reader:
        ...     for row in reader:
        ...         if row[0] == 'stop':
        ...             break
    """
    config = ParserConfig(delimiter=delimiter, quote=quote, **options)

    if validate_path:
        real_path = _validate_file_path(path, max_file_size)
    else:
        real_path = Path(path)

    stream = open(real_path, 'rb')
    logger.debug("Opened %s (chunk size %d)", real_path, chunk_size)
    return StreamingRecordParser(
        BufferedByteSource(stream, chunk_size=chunk_size, close_stream=True), config
    )


def parse_file(
    path: Union[str, os.PathLike],
    delimiter: str = ',',
    quote: str = '"',
    *,
    raise_on_error: bool = True,
    **kwargs,
) -> List[List[str]]:
    """Parse a CSV file and return all rows."""
    with open_iterator(path, delimiter, quote, **kwargs) as parser:
        return parser.read_all(raise_on_error=raise_on_error)


def parse_string(
    content: str,
    delimiter: str = ',',
    quote: str = '"',
    *,
    raise_on_error: bool = True,
    **options,
) -> List[List[str]]:
    """Parse a CSV string and return all rows."""
    parser = StreamingRecordParser(content, delimiter=delimiter, quote=quote, **options)
    return parser.read_all(raise_on_error=raise_on_error)


def parse_bytes(
    data: Union[bytes, bytearray, memoryview],
    delimiter: str = ',',
    quote: str = '"',
    *,
    raise_on_error: bool = True,
    **options,
) -> List[List[str]]:
    """Parse CSV bytes and return all rows."""
    parser = StreamingRecordParser(BytesSource(data), delimiter=delimiter, quote=quote, **options)
    return parser.read_all(raise_on_error=raise_on_error)


def count_rows(
    path_or_data: Union[str, os.PathLike, bytes, bytearray, memoryview, ByteSource, BinaryIO],
    delimiter: str = ',',
    quote: str = '"',
    **kwargs,
) -> int:
    """
    Count the records in a CSV file or in-memory data without decoding any field.

    A str or os.PathLike argument is a file path. Bytes, a ByteSource or a
    binary stream are parsed directly; path options such as validate_path
    only apply to files.

    Quoted line breaks do not start a new record, so this can be lower
    than the number of lines in the input.
    """
    if isinstance(path_or_data, (str, os.PathLike)):
        parser = open_iterator(path_or_data, delimiter, quote, **kwargs)
    else:
        parser = StreamingRecordParser(path_or_data, delimiter=delimiter, quote=quote, **kwargs)

    count = 0
    with parser:
        while parser.skip_record():
            count += 1
    return count
