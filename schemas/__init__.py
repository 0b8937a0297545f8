"""
Sales Record Schemas Package
Provides the canonical record and summary structures for ingestion.
"""

from .record_schemas import (
    # Data type identifiers
    FORMAT_A,
    FORMAT_B,
    DATA_TYPES,

    # Record schemas
    NormalizedRecord,
    NormalizedRecordDict,

    # Summary schemas
    IngestionSummary,
    IngestionSummaryDict,
)
