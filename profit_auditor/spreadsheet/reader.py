import io
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List

import polars as pl

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".csv", ".xlsx", ".xls"}


class SpreadsheetError(Exception):
    """Raised when an uploaded file cannot be read as a spreadsheet"""


@dataclass
class ParsedSheet:
    headers: List[str]
    rows: List[Dict[str, Any]]


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def read_spreadsheet(content: bytes, filename: str) -> ParsedSheet:
    """Parse CSV or Excel bytes into ordered headers and rows."""
    ext = file_extension(filename)
    if ext not in SUPPORTED_EXTENSIONS:
        raise SpreadsheetError(f"Unsupported file type: {ext or 'unknown'}")
    if not content:
        raise SpreadsheetError("Empty file")

    try:
        if ext == ".csv":
            # Every column as text; numeric coercion happens during aggregation.
            # Bytes that are not utf-8 (cp1252 "£") decode to U+FFFD instead of failing the file
            df = pl.read_csv(
                io.BytesIO(content),
                infer_schema_length=0,
                encoding="utf8-lossy",
                truncate_ragged_lines=True,
            )
        else:
            df = pl.read_excel(io.BytesIO(content), sheet_id=1)
    except Exception as e:
        logger.error(f"Failed to parse {filename}: {e}")
        raise SpreadsheetError(f"Could not parse {filename}: {e}") from e

    logger.info(f"Loaded {filename} with {df.height} rows and columns: {df.columns}")
    return ParsedSheet(headers=list(df.columns), rows=df.to_dicts())
