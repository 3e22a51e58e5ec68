"""
Local upload validation.

Runs synchronously before any I/O: a rejected document never reaches the
storage collaborator.
"""

from pathlib import PurePath
from typing import List, Optional

import structlog

from ..config import Settings, get_settings

logger = structlog.get_logger()

XML_MEDIA_TYPES = ("application/xml", "text/xml")


class DocumentValidationError(Exception):
    """Raised when an upload is rejected before it is stored."""

    def __init__(
        self,
        message: str,
        media_type: Optional[str] = None,
        size: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.media_type = media_type
        self.size = size


def base_media_type(media_type: Optional[str]) -> str:
    """Media type without parameters, lowercased ("text/xml; charset=utf-8" -> "text/xml")."""
    return (media_type or "").split(";", 1)[0].strip().lower()


def is_xml_document(media_type: Optional[str], file_name: Optional[str] = None) -> bool:
    """XML e-invoices go to the structured channel."""
    if base_media_type(media_type) in XML_MEDIA_TYPES:
        return True
    return bool(file_name) and PurePath(file_name).suffix.lower() == ".xml"


class UploadValidator:
    """
    Validates declared media type and size of an upload.

    Limits come from settings (max_upload_bytes, accepted_media_types).
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def max_bytes(self) -> int:
        return self.settings.max_upload_bytes

    @property
    def accepted_media_types(self) -> List[str]:
        return list(self.settings.accepted_media_types)

    def validate(self, file_name: str, media_type: Optional[str], size: int) -> None:
        """
        Check an upload.

        Raises:
            DocumentValidationError: unsupported media type, empty file or
                file larger than the configured limit
        """
        if not media_type or not self.settings.accepts_media_type(media_type):
            logger.warning(
                "Upload rejected: unsupported media type",
                file_name=file_name,
                media_type=media_type,
            )
            raise DocumentValidationError(
                f"Unsupported file type: {media_type or 'unknown'}",
                media_type=media_type,
                size=size,
            )

        if size <= 0:
            raise DocumentValidationError(
                "The file is empty",
                media_type=media_type,
                size=size,
            )

        if size > self.max_bytes:
            logger.warning(
                "Upload rejected: file too large",
                file_name=file_name,
                size=size,
                max_bytes=self.max_bytes,
            )
            limit_mb = self.max_bytes / (1024 * 1024)
            raise DocumentValidationError(
                f"File too large: maximum size is {limit_mb:g}MB",
                media_type=media_type,
                size=size,
            )
