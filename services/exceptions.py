"""
Ingestion errors that abort a whole upload.
Row-level defects never raise; they are defaulted or counted.
"""


class IngestionError(Exception):
    """Base class for upload-level ingestion failures."""


class InputMalformedError(IngestionError):
    """The file cannot be turned into rows at all."""


class EmptyInputError(InputMalformedError):
    """No data rows after the header."""


class UnreadableSpreadsheetError(InputMalformedError):
    """The workbook could not be opened (corrupt, wrong format, legacy .xls)."""
