"""
AI document analyzer client.

Sends a stored document to the analysis service and returns the
unstructured extraction. The model behind the service is opaque; only its
output contract ({extractedData, notes}) is relied upon.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from ..config import get_settings
from ..models import UnstructuredExtraction

logger = structlog.get_logger()

ANALYZE_ENDPOINT = "/api/ai/analyze-document"
ANALYSIS_TYPE = "movement_extraction"


class AnalyzerError(Exception):
    """Custom exception for analyzer API errors."""
    def __init__(self, message: str, status_code: int = 0, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class HttpDocumentAnalyzer:
    """
    Client for the document analysis API.
    Implements the unstructured extraction collaborator of the pipeline.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.settings = get_settings()
        self.base_url = base_url or self.settings.analyzer_api_url
        self.api_key = api_key if api_key is not None else self.settings.analyzer_api_key
        self.timeout = timeout or self.settings.analyzer_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a request to the analyzer API."""
        client = await self._get_client()

        try:
            response = await client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException:
            raise AnalyzerError("Request timeout")
        except httpx.RequestError as e:
            raise AnalyzerError(f"Request error: {str(e)}")

        if response.status_code >= 400:
            error_detail: Any = response.text
            try:
                error_detail = response.json()
            except ValueError:
                logger.debug("Analyzer error body is not JSON", status_code=response.status_code)
            raise AnalyzerError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        try:
            return response.json()
        except ValueError as e:
            raise AnalyzerError("Invalid JSON in analyzer response", status_code=response.status_code) from e

    async def analyze(
        self,
        file_ref: str,
        file_name: str,
        media_type: str,
    ) -> UnstructuredExtraction:
        """
        Analyze a stored document.

        Args:
            file_ref: Handle returned by document storage
            file_name: Original file name
            media_type: Declared media type

        Returns:
            UnstructuredExtraction built from the analyzer payload

        Raises:
            AnalyzerError: transport errors, HTTP errors or a malformed payload
        """
        payload = await self._request(
            "POST",
            ANALYZE_ENDPOINT,
            json={
                "filePath": file_ref,
                "fileName": file_name,
                "fileType": media_type,
                "analysisType": ANALYSIS_TYPE,
            },
        )

        extracted = payload.get("extractedData")
        if not isinstance(extracted, dict):
            raise AnalyzerError("Analyzer response has no extractedData", details=payload)

        notes = payload.get("notes") or []
        if isinstance(notes, str):
            notes = [notes]

        logger.info(
            "Document analyzed",
            file_ref=file_ref,
            confidence=extracted.get("confidence"),
            notes=len(notes),
        )
        return UnstructuredExtraction.from_payload(extracted, notes=notes, file_type=media_type)

    async def extract(self, file_ref: str, document) -> UnstructuredExtraction:
        """Pipeline collaborator entry point."""
        return await self.analyze(file_ref, document.file_name, document.media_type)
