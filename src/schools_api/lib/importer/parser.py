"""CSV parser with delimiter/encoding detection and cursor-based batch reads.

School lists come out of Excel and Google Sheets in Brazil, so semicolons
and Latin-1 are as common as commas and UTF-8.  The file is read with
pandas in chunks of the job's batch size; ``read_batch`` returns the rows
that follow a checkpoint cursor.
"""

import codecs
from collections.abc import Iterator
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path

import pandas as pd
from loguru import logger

from schools_api.lib.importer.aliases import missing_required_fields, resolve_columns
from schools_api.lib.importer.records import RawSchoolRecord
from schools_api.lib.jobs.errors import InvalidFormatError

_DELIMITERS = (",", ";", "|", "\t")
_ENCODINGS = ("utf-8-sig", "latin-1")
_DECODE_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class SourceLayout:
    """How to read one source file: dialect plus the resolved column mapping."""

    delimiter: str
    encoding: str
    columns: dict[str, str]


@dataclass(frozen=True)
class SourceBatch:
    """Rows read after a cursor, and whether the file has rows beyond them."""

    rows: list[RawSchoolRecord]
    has_more: bool


def detect_encoding(file_path: Path) -> str:
    """Detect file encoding by decoding the whole file with each candidate.

    Exported sheets often carry thousands of ASCII-only rows before the
    first accented name, so a candidate is accepted only once it decodes
    every byte.

    Args:
        file_path: Path to the CSV file.

    Returns:
        The detected encoding string.

    Raises:
        InvalidFormatError: If no candidate encoding decodes the file.
    """
    for encoding in _ENCODINGS:
        if _decodes_fully(file_path, encoding):
            return encoding
    msg = f"Cannot detect encoding for {file_path.name}"
    raise InvalidFormatError(msg)


def _decodes_fully(file_path: Path, encoding: str) -> bool:
    decoder = codecs.getincrementaldecoder(encoding)()
    try:
        with file_path.open("rb") as f:
            while chunk := f.read(_DECODE_CHUNK_BYTES):
                decoder.decode(chunk)
        decoder.decode(b"", final=True)
    except UnicodeDecodeError:
        return False
    return True


def detect_delimiter(file_path: Path, encoding: str = "utf-8-sig") -> str:
    """Detect the CSV delimiter by counting candidates in the header line.

    Args:
        file_path: Path to the CSV file.
        encoding: Encoding used to read the header.

    Returns:
        The detected delimiter character.

    Raises:
        InvalidFormatError: If the file is empty or has a single column.
    """
    with file_path.open("r", encoding=encoding, newline="") as f:
        first_line = ""
        for line in f:
            if line.strip():
                first_line = line
                break

    if not first_line:
        msg = "CSV file is empty"
        raise InvalidFormatError(msg)

    counts = {delimiter: first_line.count(delimiter) for delimiter in _DELIMITERS}
    delimiter = max(counts, key=counts.get)  # type: ignore[arg-type]
    if counts[delimiter] == 0:
        msg = f"Cannot detect delimiter in {file_path.name}: header has a single column"
        raise InvalidFormatError(msg)

    logger.debug(f"Detected delimiter: {delimiter!r} for {file_path.name}")
    return delimiter


def inspect_source(file_path: Path) -> SourceLayout:
    """Detect the dialect and resolve the header of a source file.

    Raises:
        InvalidFormatError: If the header cannot be read or lacks the
            mandatory name/postal code columns.
    """
    encoding = detect_encoding(file_path)
    delimiter = detect_delimiter(file_path, encoding)
    try:
        header_frame = pd.read_csv(file_path, sep=delimiter, encoding=encoding, dtype=str, nrows=0)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        msg = f"Cannot parse CSV header: {e}"
        raise InvalidFormatError(msg) from e

    headers = [str(column).strip() for column in header_frame.columns]
    columns = resolve_columns(headers)
    missing = missing_required_fields(columns)
    if missing:
        msg = f"Required columns not found: {', '.join(missing)} (header: {', '.join(headers)})"
        raise InvalidFormatError(msg)

    logger.info(f"Source {file_path.name}: delimiter={delimiter!r}, encoding={encoding}, columns={columns}")
    return SourceLayout(delimiter=delimiter, encoding=encoding, columns=columns)


def parse_csv_chunks(file_path: Path, layout: SourceLayout, batch_size: int) -> Iterator[pd.DataFrame]:
    """Yield DataFrame chunks whose columns are the canonical field names.

    Args:
        file_path: Path to the CSV file.
        layout: Result of ``inspect_source`` for this file.
        batch_size: Rows per chunk.

    Raises:
        InvalidFormatError: If pandas cannot tokenize the file.
    """
    rename_map = {source: field for field, source in layout.columns.items()}
    try:
        with pd.read_csv(
            file_path,
            sep=layout.delimiter,
            encoding=layout.encoding,
            chunksize=batch_size,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
        ) as reader:
            for chunk in reader:
                chunk.columns = chunk.columns.str.strip()
                chunk = chunk.rename(columns=rename_map)
                yield chunk[[c for c in chunk.columns if c in layout.columns]]
    except pd.errors.ParserError as e:
        msg = f"Malformed CSV content: {e}"
        raise InvalidFormatError(msg) from e


def count_data_rows(file_path: Path, layout: SourceLayout, chunk_size: int = 10_000) -> int:
    """Count data rows (header excluded) the same way batches will read them."""
    return sum(len(chunk) for chunk in parse_csv_chunks(file_path, layout, chunk_size))


def _to_record(line: int, row: dict[str, str]) -> RawSchoolRecord:
    values = {field: (value.strip() or None) if isinstance(value, str) else None for field, value in row.items()}
    return RawSchoolRecord(line=line, **values)


def read_batch(file_path: Path, layout: SourceLayout, cursor: int, batch_size: int) -> SourceBatch:
    """Read up to ``batch_size`` rows starting after ``cursor`` consumed rows.

    Chunks that end at or before the cursor are skipped without being
    converted, so a resumed job re-reads the file but only materializes its
    own batch.

    Args:
        file_path: Path to the CSV file.
        layout: Result of ``inspect_source`` for this file.
        cursor: Number of data rows already consumed.
        batch_size: Maximum rows to return.

    Returns:
        SourceBatch with the rows and a flag telling if more rows follow.
    """
    rows: list[RawSchoolRecord] = []
    offset = 0
    with closing(parse_csv_chunks(file_path, layout, batch_size)) as chunks:
        for chunk in chunks:
            chunk_end = offset + len(chunk)
            if chunk_end <= cursor:
                offset = chunk_end
                continue

            start = max(cursor - offset, 0)
            for position, row in enumerate(chunk.iloc[start:].to_dict("records")):
                if len(rows) == batch_size:
                    return SourceBatch(rows=rows, has_more=True)
                rows.append(_to_record(offset + start + position + 1, row))
            offset = chunk_end
            if len(rows) == batch_size:
                break

        has_more = any(len(chunk) > 0 for chunk in chunks)
    return SourceBatch(rows=rows, has_more=has_more)
