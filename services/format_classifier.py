"""
Format classification for uploaded sales exports.
"""
import logging
import os
from typing import Optional

from schemas import FORMAT_A, FORMAT_B
from settings import (
    DATA_TYPE_ALIASES,
    DELIMITED_CONTENT_TYPES,
    DELIMITED_EXTENSIONS,
    FORMAT_A_FILENAME_TOKENS,
    SPREADSHEET_EXTENSIONS,
    resolve_data_type,
)

logger = logging.getLogger(__name__)


def classify_format(filename: Optional[str], content_type: Optional[str] = None) -> str:
    """
    Decide Format A vs Format B.

    Delimited-text extensions and filenames carrying a Format A vendor token map
    to Format A. The content type is only consulted when the extension is not a
    known spreadsheet one. Everything else is Format B. Never raises.
    """
    name = (filename or "").strip().lower()
    ext = os.path.splitext(name)[1]

    if ext in DELIMITED_EXTENSIONS:
        return FORMAT_A
    if any(token in name for token in FORMAT_A_FILENAME_TOKENS):
        return FORMAT_A
    if ext in SPREADSHEET_EXTENSIONS:
        return FORMAT_B

    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype in DELIMITED_CONTENT_TYPES:
        return FORMAT_A

    return FORMAT_B


def choose_format(filename: Optional[str], content_type: Optional[str] = None, declared: Optional[str] = None) -> str:
    """Caller-declared data type wins when recognizable, otherwise classify."""
    forced = resolve_data_type(declared)
    if forced:
        return forced
    if isinstance(declared, str) and declared.strip().lower() not in DATA_TYPE_ALIASES:
        logger.warning(f"Ignoring unrecognized data type {declared!r}; classifying {filename!r}")
    return classify_format(filename, content_type)
