"""
Compact parse results backed by numpy arrays.

Every field of every record is stored as bytes in one uint8 array, with
per-field offsets and lengths and per-row field offsets. No Python string
is created until a field is accessed.
"""

import os
from typing import Iterator, List, Union

import numpy as np

from .parser import StreamingRecordParser, open_iterator


class CsvResult:
    """
    Parse result with lazy field decoding.

    This is much lighter than list[list[str]] for large inputs because only
    the fields you actually access are turned into str objects.

    Args:
        data: uint8 array with the unescaped bytes of all fields
        field_offsets: uint64 array, start of each field in data
        field_lengths: uint32 array, byte length of each field
        row_offsets: uint64 array of length row_count + 1; row i spans
            fields row_offsets[i] to row_offsets[i + 1]
        encoding: Encoding used to decode fields
        errors: Decode error handler
    """

    __slots__ = (
        '_data', '_field_offsets', '_field_lengths', '_row_offsets', '_row_count',
        '_encoding', '_errors',
    )

    def __init__(self, data: np.ndarray, field_offsets: np.ndarray,
                 field_lengths: np.ndarray, row_offsets: np.ndarray,
                 encoding: str = 'utf-8', errors: str = 'replace'):
        self._data = data
        self._field_offsets = field_offsets
        self._field_lengths = field_lengths
        self._row_offsets = row_offsets
        self._row_count = len(row_offsets) - 1
        self._encoding = encoding
        self._errors = errors

    def _decode(self, field_idx: int) -> str:
        offset = int(self._field_offsets[field_idx])
        length = int(self._field_lengths[field_idx])
        return self._data[offset:offset + length].tobytes().decode(self._encoding, self._errors)

    def _row_bounds(self, row: int):
        if row < 0:
            row = self._row_count + row
        if row < 0 or row >= self._row_count:
            raise IndexError(f"Row index {row} out of range")
        return int(self._row_offsets[row]), int(self._row_offsets[row + 1])

    def __len__(self) -> int:
        return self._row_count

    def __getitem__(self, idx: int) -> List[str]:
        start, end = self._row_bounds(idx)
        return [self._decode(i) for i in range(start, end)]

    def __iter__(self) -> Iterator[List[str]]:
        for i in range(self._row_count):
            yield self[i]

    @property
    def row_count(self) -> int:
        return self._row_count

    @property
    def field_count(self) -> int:
        """Total number of fields across all rows."""
        return len(self._field_offsets)

    @property
    def nbytes(self) -> int:
        """Bytes held by the underlying arrays."""
        return (self._data.nbytes + self._field_offsets.nbytes
                + self._field_lengths.nbytes + self._row_offsets.nbytes)

    def to_list(self) -> List[List[str]]:
        """Convert to a list of lists (materializes all data)."""
        return [self[i] for i in range(self._row_count)]

    def get_field(self, row: int, col: int) -> str:
        start, end = self._row_bounds(row)
        if col < 0:
            col = end - start + col
        if col < 0 or start + col >= end:
            raise IndexError(f"Column index {col} out of range")
        return self._decode(start + col)

    def get_column(self, col: int) -> List[str]:
        """Get all values in a column. Rows too short for it yield ''."""
        if col < 0:
            raise IndexError(f"Column index {col} out of range")
        widths = np.diff(self._row_offsets)
        column = []
        for row in range(self._row_count):
            if col < widths[row]:
                column.append(self._decode(int(self._row_offsets[row]) + col))
            else:
                column.append('')
        return column


def collect(parser: StreamingRecordParser) -> CsvResult:
    """Drain a parser into a CsvResult."""
    data = bytearray()
    offsets: List[int] = []
    lengths: List[int] = []
    row_offsets = [0]

    while True:
        base = len(data)
        ends = parser.read_record_into(data)
        if ends is None:
            break
        start = base
        for end in ends:
            offsets.append(start)
            lengths.append(base + end - start)
            start = base + end
        row_offsets.append(len(offsets))

    config = parser.config
    return CsvResult(
        np.frombuffer(bytes(data), dtype=np.uint8),
        np.array(offsets, dtype=np.uint64),
        np.array(lengths, dtype=np.uint32),
        np.array(row_offsets, dtype=np.uint64),
        encoding=config.encoding,
        errors=config.errors,
    )


def parse_string_fast(
    content: Union[str, bytes],
    delimiter: str = ',',
    quote: str = '"',
    **options,
) -> CsvResult:
    """
    Parse CSV content into a CsvResult.

    Example:
        >>> result = parse_string_fast('a,b\\n1,2\\n')
        >>> len(result)
        2
        >>> result.get_field(1, 0)
        '1'
    """
    parser = StreamingRecordParser(content, delimiter=delimiter, quote=quote, **options)
    return collect(parser)


def parse_file_fast(
    path: Union[str, os.PathLike],
    delimiter: str = ',',
    quote: str = '"',
    **kwargs,
) -> CsvResult:
    """Parse a CSV file into a CsvResult. Accepts the same options as open_iterator."""
    with open_iterator(path, delimiter, quote, **kwargs) as parser:
        return collect(parser)
