"""
Record store client.

Read-only access to the back-office REST API: certificate eligibility,
a student's class history and the pre-aggregated history statistics.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from eligibility_engine import config
from eligibility_engine.models import ClassEnrollment, HistorySummary
from eligibility_engine.parsers import (
    parse_enrollments,
    parse_history_statistics,
)

logger = logging.getLogger(__name__)


ELIGIBILITY_PATH = "/superadmin/classes/{class_id}/students/{student_id}/certificate-eligibility"
HISTORY_PATH = "/superadmin/students/{student_id}/history"
STATISTICS_PATH = "/superadmin/students/{student_id}/statistics"


class RecordStoreError(Exception):
    """Raised when the record store cannot serve a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RecordStoreClient:
    """
    Async client for the record store.

    A new httpx.AsyncClient is opened per request; ``transport`` lets tests
    plug in an httpx.MockTransport.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.RECORD_STORE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else config.RECORD_STORE_TIMEOUT
        self.transport = transport
        self.headers = {"Content-Type": "application/json"}
        token = token if token is not None else config.RECORD_STORE_TOKEN
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a path and return the decoded JSON body, raising RecordStoreError."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(path, params=params)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException:
            logger.error(f"Record store request timed out: GET {path}")
            raise RecordStoreError(f"Timeout calling {path}")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Record store HTTP error: GET {path} -> {status}")
            raise RecordStoreError(f"Record store error {status} on {path}", status_code=status)
        except httpx.RequestError as e:
            logger.error(f"Record store unreachable: GET {path}: {e}")
            raise RecordStoreError(f"Record store unreachable: {e}")
        except ValueError as e:
            # Body was not valid JSON
            logger.error(f"Invalid JSON from record store on {path}: {e}")
            raise RecordStoreError(f"Invalid response from {path}")

    async def get_eligibility(self, class_id: str, student_id: str) -> Dict[str, Any]:
        """Raw eligibility payload: {isEligible, reason, absences}."""
        return await self._get(ELIGIBILITY_PATH.format(class_id=class_id, student_id=student_id))

    async def get_class_enrollments(self, student_id: str) -> List[ClassEnrollment]:
        """All enrollments of a student with nested attendance and grade."""
        payload = await self._get(HISTORY_PATH.format(student_id=student_id))
        try:
            return parse_enrollments(payload)
        except (ValueError, TypeError) as e:
            logger.error(f"Malformed class history for student {student_id}: {e}")
            raise RecordStoreError(f"Malformed class history for student {student_id}: {e}")

    async def get_history_statistics(self, student_id: str) -> Optional[HistorySummary]:
        """
        Pre-aggregated history statistics.

        Returns None when the store has no statistics for the student
        (404 or empty body); any other failure raises RecordStoreError.
        """
        try:
            payload = await self._get(STATISTICS_PATH.format(student_id=student_id))
        except RecordStoreError as e:
            if e.status_code == 404:
                return None
            raise
        try:
            return parse_history_statistics(payload)
        except (ValueError, TypeError) as e:
            raise RecordStoreError(f"Malformed statistics for student {student_id}: {e}")
