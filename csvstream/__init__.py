"""
csvstream - streaming CSV record parser

Reads delimiter-separated, optionally quoted text one record at a time from
any byte source, with RFC 4180 quoting, multi-line quoted values and LF,
CRLF or CR line endings.
"""

from .parser import (
    StreamingRecordParser,
    ParserConfig,
    ParserState,
    FieldCountPolicy,
    parse_file,
    parse_string,
    parse_bytes,
    open_iterator,
    count_rows,
    CsvStreamError,
    CsvValidationError,
    CsvParseError,
    BareQuoteError,
    ExtraneousQuoteError,
    UnterminatedQuoteError,
    FieldCountError,
    SourceError,
    MAX_FILE_SIZE,
)
from .result import CsvResult, parse_file_fast, parse_string_fast
from .source import ByteSource, BufferedByteSource, BytesSource, DEFAULT_CHUNK_SIZE

__version__ = '0.1.0'
__all__ = [
    'StreamingRecordParser',
    'ParserConfig',
    'ParserState',
    'FieldCountPolicy',
    'parse_file',
    'parse_string',
    'parse_bytes',
    'open_iterator',
    'count_rows',
    'parse_file_fast',
    'parse_string_fast',
    'CsvResult',
    'ByteSource',
    'BufferedByteSource',
    'BytesSource',
    'CsvStreamError',
    'CsvValidationError',
    'CsvParseError',
    'BareQuoteError',
    'ExtraneousQuoteError',
    'UnterminatedQuoteError',
    'FieldCountError',
    'SourceError',
    'MAX_FILE_SIZE',
    'DEFAULT_CHUNK_SIZE',
]
