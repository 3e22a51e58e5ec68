"""Utility modules."""

from .text_similarity import contains_name, name_similarity, rank_by_similarity
from .audit_logger import AuditLogger

__all__ = ["contains_name", "name_similarity", "rank_by_similarity", "AuditLogger"]
