"""Ingestion module for uploaded documents and e-invoices."""

from .validator import DocumentValidationError, UploadValidator, is_xml_document
from .fattura_parser import FatturaExtractor, FatturaParseError, FatturaParser
from .pipeline import (
    AnalysisFailedError,
    DocumentIngestionPipeline,
    IngestionAttempt,
    IngestionError,
    IngestionEvent,
    RetryNotAllowedError,
    UploadedDocument,
    UploadFailedError,
)

__all__ = [
    "DocumentValidationError",
    "UploadValidator",
    "is_xml_document",
    "FatturaExtractor",
    "FatturaParseError",
    "FatturaParser",
    "AnalysisFailedError",
    "DocumentIngestionPipeline",
    "IngestionAttempt",
    "IngestionError",
    "IngestionEvent",
    "RetryNotAllowedError",
    "UploadedDocument",
    "UploadFailedError",
]
