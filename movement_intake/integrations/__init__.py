"""External integrations for movement intake."""

from .analyzer import AnalyzerError, HttpDocumentAnalyzer
from .storage import LocalDocumentStorage

__all__ = ["AnalyzerError", "HttpDocumentAnalyzer", "LocalDocumentStorage"]
