"""
Ingestion parsers: byte stream -> lazy sequence of rows.

Each parser is a generator yielding, in read order, either a RawRow or a
RowError(kind=parse) for a record that could not be split into fields.
A source that cannot be read any further raises FatalStreamError.

CSV is streamed line by line. JSON is decoded in one piece because the
standard decoder has no incremental mode; uploads are capped by
MIGRATION_MAX_UPLOAD_MB, which bounds the buffer.
"""
import csv
import io
import json
from decimal import Decimal

from .exceptions import FatalStreamError
from .models import ErrorKindChoices, InputFormatChoices
from .types import RawRow, RowError

DEFAULT_ENCODING = 'utf-8-sig'  # tolerates the BOM spreadsheet exports add
ALLOWED_DELIMITERS = (',', ';', '\t', '|')


def normalize_header(name):
    return str(name).strip().lower()


def iter_rows(stream, input_format, params=None):
    """
    Dispatch to the parser for input_format.

    Args:
        stream: binary file-like object positioned at the start
        input_format: 'csv' or 'json'
        params: job params (delimiter, encoding)
    """
    params = params or {}
    encoding = params.get('encoding') or DEFAULT_ENCODING

    if input_format == InputFormatChoices.CSV:
        return iter_csv_rows(stream, delimiter=params.get('delimiter') or ',', encoding=encoding)
    if input_format == InputFormatChoices.JSON:
        return iter_json_rows(stream, encoding=encoding)
    raise FatalStreamError(f'Unsupported input format: {input_format}')


def iter_csv_rows(stream, delimiter=',', encoding=DEFAULT_ENCODING):
    """
    Stream CSV records.

    The first record is the header. Blank lines are ignored and do not
    consume a row index. A record with the wrong number of fields is a
    parse error for that row only.
    """
    if delimiter not in ALLOWED_DELIMITERS:
        raise FatalStreamError(f'Unsupported CSV delimiter: {delimiter!r}')

    try:
        text = io.TextIOWrapper(stream, encoding=encoding, newline='')
    except LookupError:
        raise FatalStreamError(f'Unknown encoding: {encoding}')

    reader = csv.reader(text, delimiter=delimiter, strict=True)
    try:
        try:
            header = next(reader)
        except StopIteration:
            return

        columns = [normalize_header(name) for name in header]
        named = [name for name in columns if name]
        duplicates = sorted({name for name in named if named.count(name) > 1})
        if duplicates:
            raise FatalStreamError(f'Duplicate column names in header: {", ".join(duplicates)}')
        if not named:
            raise FatalStreamError('CSV header has no column names')

        row_index = 0
        for fields in reader:
            if not fields or (len(fields) == 1 and not fields[0].strip() and len(columns) > 1):
                continue

            if len(fields) != len(columns):
                yield RowError(
                    row_index=row_index,
                    message=f'Expected {len(columns)} fields, found {len(fields)} (line {reader.line_num})',
                    kind=ErrorKindChoices.PARSE,
                )
            else:
                yield RawRow(
                    row_index=row_index,
                    values={name: value.strip() for name, value in zip(columns, fields) if name},
                )
            row_index += 1
    except UnicodeDecodeError as e:
        raise FatalStreamError(f'File is not valid {encoding}: {e.reason} at byte {e.start}') from e
    except csv.Error as e:
        raise FatalStreamError(f'Malformed CSV near line {reader.line_num}: {e}') from e
    finally:
        # Leave the underlying stream open for its owner
        text.detach()


def _stringify(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Decimal):
        return format(value, 'f')
    return str(value)


def _extract_records(payload):
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        arrays = [value for value in payload.values() if isinstance(value, list)]
        if len(arrays) == 1:
            return arrays[0]
    raise FatalStreamError(
        'JSON payload must be an array of objects or an object holding exactly one array'
    )


def iter_json_rows(stream, encoding=DEFAULT_ENCODING):
    """
    Decode a JSON payload of flat objects.

    Accepted shapes: [ {...}, ... ] or { "<any key>": [ {...}, ... ] }.
    Nested objects/arrays inside a record are a parse error for that row.
    """
    raw = stream.read()
    try:
        text = raw.decode(encoding) if isinstance(raw, bytes) else raw
    except LookupError:
        raise FatalStreamError(f'Unknown encoding: {encoding}')
    except UnicodeDecodeError as e:
        raise FatalStreamError(f'File is not valid {encoding}: {e.reason} at byte {e.start}') from e

    try:
        payload = json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError as e:
        raise FatalStreamError(f'Invalid JSON at line {e.lineno} column {e.colno}: {e.msg}') from e

    records = _extract_records(payload)

    for row_index, record in enumerate(records):
        if not isinstance(record, dict):
            yield RowError(
                row_index=row_index,
                message=f'Expected an object, found {type(record).__name__}',
                kind=ErrorKindChoices.PARSE,
            )
            continue

        nested = sorted(str(key) for key, value in record.items() if isinstance(value, (dict, list)))
        if nested:
            yield RowError(
                row_index=row_index,
                message=f'Nested values are not supported: {", ".join(nested)}',
                kind=ErrorKindChoices.PARSE,
            )
            continue

        yield RawRow(
            row_index=row_index,
            values={normalize_header(key): _stringify(value) for key, value in record.items()},
        )
