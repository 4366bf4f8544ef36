"""Turn uploaded CSV and XLSX files into a ParsedDataset."""

import csv
import io
import logging
import zipfile
from datetime import date, datetime, time
from pathlib import PurePath

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.exceptions import DatasetError
from app.importer.types import Cell, ParsedDataset

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = {".csv", ".txt"}
XLSX_EXTENSIONS = {".xlsx", ".xlsm"}
SUPPORTED_EXTENSIONS = CSV_EXTENSIONS | XLSX_EXTENSIONS


def normalize_cell(value) -> Cell:
    """Convert a raw spreadsheet value to a primitive cell.

    Integral floats become ints (Excel stores every number as a float), dates
    become ISO strings and times become ``HH:MM``.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(timespec="minutes")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M")
    return str(value)


def _is_blank(row: tuple[Cell, ...]) -> bool:
    return all(cell is None or (isinstance(cell, str) and not cell.strip()) for cell in row)


def _build_dataset(
    header_row, data_rows, file_name: str | None, max_rows: int | None
) -> ParsedDataset:
    headers = tuple(str(h).strip() if h is not None else "" for h in header_row)
    if not any(headers):
        raise DatasetError("The file has no header row")

    rows: list[tuple[Cell, ...]] = []
    for raw in data_rows:
        row = tuple(normalize_cell(v) for v in raw)
        if _is_blank(row):
            continue
        if max_rows is not None and len(rows) >= max_rows:
            raise DatasetError(f"The file has more than {max_rows} data rows")
        rows.append(row)

    return ParsedDataset(headers=headers, rows=tuple(rows), file_name=file_name)


def parse_csv(
    file_content: bytes, file_name: str | None = None, max_rows: int | None = None
) -> ParsedDataset:
    """Parse CSV content. Tries UTF-8 (with or without BOM) first, then Latin-1.

    Raises:
        DatasetError: If the file is empty or has no header row
    """
    text = None
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            text = file_content.decode(encoding)
            break
        except UnicodeDecodeError:
            continue
    if not text or not text.strip():
        raise DatasetError("The file is empty")

    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel

    reader = csv.reader(io.StringIO(text), dialect)
    try:
        header_row = next(reader)
    except StopIteration:
        raise DatasetError("The file is empty")
    except csv.Error as e:
        raise DatasetError(f"Could not read the file: {e}")

    try:
        return _build_dataset(header_row, reader, file_name, max_rows)
    except csv.Error as e:
        raise DatasetError(f"Could not read the file: {e}")


def parse_xlsx(
    file_content: bytes, file_name: str | None = None, max_rows: int | None = None
) -> ParsedDataset:
    """Parse the first worksheet of an XLSX workbook.

    Raises:
        DatasetError: If the workbook cannot be opened, is empty or has no header row
    """
    try:
        wb = load_workbook(filename=io.BytesIO(file_content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise DatasetError(f"Could not read the file: {e}")

    try:
        ws = wb.active
        if ws is None:
            raise DatasetError("The workbook has no worksheets")

        row_iter = ws.iter_rows(values_only=True)
        try:
            header_row = next(row_iter)
        except StopIteration:
            raise DatasetError("The file is empty")

        return _build_dataset(header_row, row_iter, file_name, max_rows)
    finally:
        wb.close()


class SpreadsheetParser:
    """Picks the parser from the file extension."""

    def __init__(self, max_rows: int | None = None):
        self.max_rows = max_rows

    def parse(self, content: bytes, file_name: str) -> ParsedDataset:
        if not content:
            raise DatasetError("The file is empty")

        extension = PurePath(file_name or "").suffix.lower()
        if extension in CSV_EXTENSIONS:
            dataset = parse_csv(content, file_name, self.max_rows)
        elif extension in XLSX_EXTENSIONS:
            dataset = parse_xlsx(content, file_name, self.max_rows)
        else:
            allowed = ", ".join(sorted(SUPPORTED_EXTENSIONS))
            raise DatasetError(f"Unsupported file type '{extension or file_name}'. Allowed: {allowed}")

        logger.info(
            f"Parsed {file_name}: {len(dataset.headers)} columns, {dataset.total_rows} rows"
        )
        return dataset
