"""Normalization of record-store payloads into engine models."""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from eligibility_engine.models import (
    AttendanceRecord,
    AttendanceStatus,
    ClassEnrollment,
    ClassStatus,
    HistorySummary,
    StudentGrade,
)

logger = logging.getLogger(__name__)


# Accepted spellings per status, compared after normalize_key()
CLASS_STATUS_VARIATIONS = {
    ClassStatus.OPEN: ["open", "em aberto", "aberta", "scheduled"],
    ClassStatus.IN_PROGRESS: ["in progress", "em andamento", "ongoing", "active"],
    ClassStatus.COMPLETED: ["completed", "concluida", "concluída", "finished", "done"],
    ClassStatus.CANCELLED: ["cancelled", "canceled", "cancelada"],
    ClassStatus.SUSPENDED: ["suspended", "suspensa"],
}

ATTENDANCE_STATUS_VARIATIONS = {
    AttendanceStatus.PRESENT: ["present", "presente", "attended"],
    AttendanceStatus.ABSENT: ["absent", "ausente", "falta", "missed"],
    AttendanceStatus.PENDING: ["pending", "pendente", "scheduled"],
}


def normalize_key(value: Any) -> str:
    """
    Normalize a status code or key for matching.

    Lowercases, turns underscores/hyphens into spaces and collapses
    whitespace, so 'EM_ANDAMENTO', 'em-andamento' and 'Em Andamento'
    compare equal.
    """
    if value is None:
        return ""
    normalized = str(value).strip().lower()
    normalized = re.sub(r'[_\-]+', ' ', normalized)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip()


def pick(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """
    Return the first non-null value among several candidate keys.

    Dotted keys ('training.durationHours') walk into nested objects.
    """
    for key in keys:
        current: Any = payload
        for part in key.split('.'):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                current = None
                break
        if current is not None:
            return current
    return default


def clean_numeric_value(value) -> float:
    """
    Clean numeric values to ensure JSON compliance.
    Replaces NaN, Infinity, and -Infinity with 0.0.
    """
    if value is None or pd.isna(value):
        return 0.0
    try:
        val = float(value)
        if np.isnan(val) or np.isinf(val):
            return 0.0
        return val
    except (ValueError, TypeError):
        return 0.0


def to_grade(value) -> Optional[float]:
    """
    Convert a grade as sent by the record store into a float.

    Accepts numbers and strings with a decimal comma ('7,5'). Missing or
    unparseable values become None so they never count as failing.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        val_str = value.strip().replace(',', '.')
        if not val_str:
            return None
        try:
            val = float(val_str)
        except ValueError:
            logger.warning("Ignoring unparseable grade %r", value)
            return None
    else:
        try:
            val = float(value)
        except (ValueError, TypeError):
            logger.warning("Ignoring unparseable grade %r", value)
            return None
    if np.isnan(val) or np.isinf(val):
        return None
    return val


def to_hours(value) -> float:
    """
    Convert workloads like '40:00' or '7,5' to numeric hours.

    Args:
        value: String in format 'HH:MM', decimal string or numeric value

    Returns:
        Decimal hours (e.g., '40:00' -> 40.0, '0:15' -> 0.25, 16 -> 16.0)
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return clean_numeric_value(value)

    if value is None or value == '':
        return 0.0

    if isinstance(value, str) and ":" in value:
        try:
            hours, minutes = value.split(":")
            return float(hours) + float(minutes) / 60.0
        except (ValueError, TypeError):
            return 0.0

    try:
        return clean_numeric_value(str(value).replace(',', '.').rstrip('hH'))
    except (ValueError, TypeError):
        return 0.0


def to_date(value) -> Optional[date]:
    """Parse ISO dates and timestamps; anything unparseable becomes None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = pd.to_datetime(value, errors='coerce')
    if pd.isna(parsed):
        return None
    return parsed.date()


def to_datetime(value) -> Optional[datetime]:
    if value is None or value == '':
        return None
    parsed = pd.to_datetime(value, errors='coerce', utc=True)
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def parse_class_status(value) -> ClassStatus:
    """Map a wire status code to ClassStatus; unknown codes raise ValueError."""
    normalized = normalize_key(value)
    for status, variations in CLASS_STATUS_VARIATIONS.items():
        if normalized == normalize_key(status.value) or normalized in variations:
            return status
    raise ValueError(f"Unknown class status: {value!r}")


def parse_attendance_status(value) -> AttendanceStatus:
    """
    Map a wire attendance value to AttendanceStatus.

    Booleans are accepted ('present': true/false). Unknown or missing
    values are PENDING: the lesson has not been recorded yet.
    """
    if isinstance(value, bool):
        return AttendanceStatus.PRESENT if value else AttendanceStatus.ABSENT
    normalized = normalize_key(value)
    for status, variations in ATTENDANCE_STATUS_VARIATIONS.items():
        if normalized == normalize_key(status.value) or normalized in variations:
            return status
    if normalized:
        logger.warning("Unknown attendance status %r, treating as pending", value)
    return AttendanceStatus.PENDING


def parse_attendance_record(raw: Dict[str, Any]) -> AttendanceRecord:
    status = pick(raw, 'status', 'attendanceStatus', 'present')
    lesson_id = pick(raw, 'lessonId', 'lesson_id', 'lesson.id')
    return AttendanceRecord(
        lesson_id=str(lesson_id) if lesson_id is not None else None,
        lesson_title=pick(raw, 'lesson.title', 'lessonTitle'),
        status=parse_attendance_status(status),
    )


def parse_student_grade(raw: Optional[Dict[str, Any]]) -> Optional[StudentGrade]:
    if not raw:
        return None
    return StudentGrade(
        practical_grade=to_grade(pick(raw, 'practicalGrade', 'practical_grade')),
        theoretical_grade=to_grade(pick(raw, 'theoreticalGrade', 'theoretical_grade')),
        observations=pick(raw, 'observations'),
        graded_at=to_datetime(pick(raw, 'gradedAt', 'graded_at', 'updatedAt')),
    )


def parse_enrollment(raw: Dict[str, Any]) -> ClassEnrollment:
    """
    Build a ClassEnrollment from one entry of the student history payload.

    Raises:
        ValueError: when the entry has no class id or an unknown status
    """
    class_id = pick(raw, 'classId', 'class_id', 'id', 'class.id')
    if class_id is None:
        raise ValueError("Enrollment entry without a class id")

    records = pick(raw, 'attendanceRecords', 'attendances', 'lessonAttendances', default=[])
    if not isinstance(records, list):
        raise ValueError(f"Attendance records of class {class_id} are not a list: {records!r}")
    grade = pick(raw, 'studentGrade', 'grade', 'grades')
    if isinstance(grade, list):
        # The store keeps at most one grade per (class, student)
        grade = grade[0] if grade else None
    if grade is not None and not isinstance(grade, dict):
        raise ValueError(f"Grade of class {class_id} is not an object: {grade!r}")

    validity = pick(raw, 'validityDays', 'certificateValidityDays', 'training.validityDays')

    return ClassEnrollment(
        class_id=str(class_id),
        training_name=pick(raw, 'trainingName', 'training.title', 'training.name'),
        status=parse_class_status(pick(raw, 'status', 'class.status')),
        start_date=to_date(pick(raw, 'startDate', 'start_date', 'class.startDate')),
        end_date=to_date(pick(raw, 'endDate', 'end_date', 'class.endDate')),
        duration_hours=to_hours(pick(
            raw, 'durationHours', 'trainingDurationHours', 'training.durationHours', default=0
        )),
        validity_days=int(to_hours(validity)) if validity is not None else None,
        attendance_records=[parse_attendance_record(r) for r in records],
        student_grade=parse_student_grade(grade),
    )


def parse_enrollments(payload: Any) -> List[ClassEnrollment]:
    """
    Parse the class history of a student.

    Accepts a bare list or an envelope such as {"classes": [...]}.
    """
    if isinstance(payload, dict):
        payload = pick(payload, 'classes', 'data', 'enrollments', default=[])
    if not isinstance(payload, list):
        raise ValueError(f"Unexpected class history payload: {type(payload).__name__}")
    return [parse_enrollment(raw) for raw in payload]


def parse_remote_eligibility(payload: Any) -> Tuple[bool, str, int]:
    """
    Extract (is_eligible, reason, absences) from an eligibility response.

    Raises:
        ValueError: when the eligibility flag is missing, or the response
            claims eligibility despite recorded absences
    """
    if not isinstance(payload, dict):
        raise ValueError("Eligibility response is not an object")
    is_eligible = pick(payload, 'isEligible', 'is_eligible', 'eligible')
    if not isinstance(is_eligible, bool):
        raise ValueError(f"Eligibility response without a boolean flag: {payload!r}")
    reason = pick(payload, 'reason', 'message', default='')
    absences = int(clean_numeric_value(pick(payload, 'absences', 'absenceCount', default=0)))
    absences = max(absences, 0)
    if is_eligible and absences > 0:
        raise ValueError(f"Eligibility response reports eligible with {absences} absence(s)")
    return is_eligible, str(reason), absences


def parse_history_statistics(payload: Any) -> Optional[HistorySummary]:
    """Parse the pre-aggregated statistics payload; empty payloads yield None."""
    if not payload or not isinstance(payload, dict):
        return None
    attendance_rate = clean_numeric_value(pick(payload, 'attendanceRate', default=0.0))
    return HistorySummary(
        total_classes=int(clean_numeric_value(pick(payload, 'totalClasses', default=0))),
        completed_classes=int(clean_numeric_value(pick(payload, 'completedClasses', default=0))),
        active_classes=int(clean_numeric_value(pick(payload, 'activeClasses', default=0))),
        attendance_rate=min(max(attendance_rate, 0.0), 100.0),
        average_practical_grade=to_grade(pick(
            payload, 'averageGrades.practical', 'averagePracticalGrade'
        )),
        average_theoretical_grade=to_grade(pick(
            payload, 'averageGrades.theoretical', 'averageTheoreticalGrade'
        )),
        total_lessons=int(clean_numeric_value(pick(payload, 'totalLessons', default=0))),
        attended_lessons=int(clean_numeric_value(pick(payload, 'attendedLessons', default=0))),
        total_hours_completed=to_hours(pick(payload, 'totalHoursCompleted', default=0)),
        enrollment_date=to_date(pick(payload, 'enrollmentDate')),
    )
