"""Training history aggregation: summary statistics over a student's classes."""

import asyncio
import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from eligibility_engine import config
from eligibility_engine.client import RecordStoreClient, RecordStoreError
from eligibility_engine.models import (
    AttendanceStatus,
    CertificateExpiration,
    ClassEnrollment,
    ClassStatus,
    ExpirationStatus,
    HistorySummary,
)
from eligibility_engine.parsers import clean_numeric_value

logger = logging.getLogger(__name__)


ACTIVE_STATUSES = (ClassStatus.IN_PROGRESS.value, ClassStatus.OPEN.value)

FRAME_COLUMNS = [
    'class_id',
    'training_name',
    'status',
    'start_date',
    'end_date',
    'duration_hours',
    'total_lessons',
    'attended_lessons',
    'absences',
    'practical_grade',
    'theoretical_grade',
]


class HistoryUnavailableError(Exception):
    """The class list or statistics of a student could not be fetched."""

    retryable = True

    def __init__(self, student_id: str, message: str):
        super().__init__(message)
        self.student_id = student_id


def enrollments_frame(enrollments: Iterable[ClassEnrollment]) -> pd.DataFrame:
    """
    One row per enrollment with lesson counters and grades.

    Missing grades are NaN so pandas leaves them out of averages.
    """
    rows = []
    for enrollment in enrollments:
        records = enrollment.attendance_records
        grade = enrollment.student_grade
        rows.append({
            'class_id': enrollment.class_id,
            'training_name': enrollment.training_name,
            'status': enrollment.status.value,
            'start_date': enrollment.start_date,
            'end_date': enrollment.end_date,
            'duration_hours': enrollment.duration_hours,
            'total_lessons': len(records),
            'attended_lessons': sum(1 for r in records if r.status == AttendanceStatus.PRESENT),
            'absences': sum(1 for r in records if r.status == AttendanceStatus.ABSENT),
            'practical_grade': grade.practical_grade if grade else None,
            'theoretical_grade': grade.theoretical_grade if grade else None,
        })

    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    for col in ('duration_hours', 'practical_grade', 'theoretical_grade'):
        df[col] = pd.to_numeric(df[col], errors='coerce')
    return df


def attendance_rate(attended_lessons: int, total_lessons: int) -> float:
    """
    Percentage of attended lessons.

    Args:
        attended_lessons: Lessons marked present
        total_lessons: All attendance records

    Returns:
        Rate in the 0-100 range; 0.0 when there are no lessons
    """
    if total_lessons <= 0:
        return 0.0
    rate = attended_lessons / total_lessons * 100.0
    return min(max(rate, 0.0), 100.0)


def _mean_or_none(values: pd.Series) -> Optional[float]:
    values = values.dropna()
    if values.empty:
        return None
    return float(values.mean())


def aggregate_history(enrollments: List[ClassEnrollment]) -> HistorySummary:
    """Compute the history summary from raw enrollments."""
    df = enrollments_frame(enrollments)

    completed = df['status'] == ClassStatus.COMPLETED.value
    active = df['status'].isin(ACTIVE_STATUSES)

    total_lessons = int(df['total_lessons'].sum())
    attended_lessons = int(df['attended_lessons'].sum())

    start_dates = [e.start_date for e in enrollments if e.start_date is not None]

    return HistorySummary(
        total_classes=len(df),
        completed_classes=int(completed.sum()),
        active_classes=int(active.sum()),
        attendance_rate=attendance_rate(attended_lessons, total_lessons),
        average_practical_grade=_mean_or_none(df['practical_grade']),
        average_theoretical_grade=_mean_or_none(df['theoretical_grade']),
        total_lessons=total_lessons,
        attended_lessons=attended_lessons,
        total_hours_completed=clean_numeric_value(df.loc[completed, 'duration_hours'].sum()),
        enrollment_date=min(start_dates) if start_dates else None,
    )


def certificate_expiration(
    enrollment: ClassEnrollment,
    today: Optional[date] = None,
    warning_days: Optional[int] = None
) -> Optional[CertificateExpiration]:
    """
    Expiration of the certificate of a completed class.

    The certificate expires ``validity_days`` after the class end date.
    Returns None for classes that are not completed or have no validity.
    """
    if enrollment.status != ClassStatus.COMPLETED:
        return None
    if not enrollment.validity_days or enrollment.end_date is None:
        return None

    today = today or date.today()
    if warning_days is None:
        warning_days = config.EXPIRATION_WARNING_DAYS

    expiration_date = enrollment.end_date + timedelta(days=enrollment.validity_days)
    days_left = (expiration_date - today).days

    if days_left < 0:
        status = ExpirationStatus.EXPIRED
    elif days_left <= warning_days:
        status = ExpirationStatus.EXPIRING_SOON
    else:
        status = ExpirationStatus.VALID

    return CertificateExpiration(
        expiration_date=expiration_date,
        days_until_expiration=days_left,
        status=status,
    )


def filter_enrollments(
    enrollments: List[ClassEnrollment],
    statuses: Optional[Iterable[ClassStatus]] = None,
    start_from: Optional[date] = None,
    start_until: Optional[date] = None
) -> List[ClassEnrollment]:
    """Restrict enrollments by status and start-date window (inclusive)."""
    wanted = set(statuses) if statuses else None
    filtered = []
    for enrollment in enrollments:
        if wanted is not None and enrollment.status not in wanted:
            continue
        if start_from is not None or start_until is not None:
            if enrollment.start_date is None:
                continue
            if start_from is not None and enrollment.start_date < start_from:
                continue
            if start_until is not None and enrollment.start_date > start_until:
                continue
        filtered.append(enrollment)
    return filtered


class HistoryAggregator:
    """
    Load a student's class history and summarize it.

    The pre-aggregated statistics endpoint is used when enabled and
    available; otherwise the summary is computed from the enrollments.
    """

    def __init__(self, client: RecordStoreClient, use_statistics_endpoint: Optional[bool] = None):
        self.client = client
        if use_statistics_endpoint is None:
            use_statistics_endpoint = config.USE_STATISTICS_ENDPOINT
        self.use_statistics_endpoint = use_statistics_endpoint

    async def aggregate(self, student_id: str) -> Tuple[List[ClassEnrollment], HistorySummary]:
        """
        Fetch enrollments and produce the summary.

        Raises:
            HistoryUnavailableError: when the class list or statistics fetch fails
        """
        if self.use_statistics_endpoint:
            results = await asyncio.gather(
                self.client.get_class_enrollments(student_id),
                self.client.get_history_statistics(student_id),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, RecordStoreError):
                    logger.error(f"History fetch failed for student={student_id}: {result}")
                    raise HistoryUnavailableError(student_id, str(result)) from result
                if isinstance(result, BaseException):
                    raise result
            enrollments, statistics = results
        else:
            try:
                enrollments = await self.client.get_class_enrollments(student_id)
            except RecordStoreError as e:
                logger.error(f"History fetch failed for student={student_id}: {e}")
                raise HistoryUnavailableError(student_id, str(e)) from e
            statistics = None

        if statistics is not None:
            logger.debug(f"Using pre-aggregated statistics for student={student_id}")
            return enrollments, statistics

        return enrollments, aggregate_history(enrollments)
