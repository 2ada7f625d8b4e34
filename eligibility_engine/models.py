"""Data models for the certificate eligibility engine."""

from datetime import date, datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field


class ClassStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    PENDING = "PENDING"


class VerdictSource(str, Enum):
    REMOTE = "REMOTE"
    LOCAL_FALLBACK = "LOCAL_FALLBACK"


class ViewerRole(str, Enum):
    CLIENT = "CLIENT"
    INSTRUCTOR = "INSTRUCTOR"
    STAFF = "STAFF"


class Action(str, Enum):
    BLOCKED = "BLOCKED"
    ALLOWED_WITH_WARNING = "ALLOWED_WITH_WARNING"
    ALLOWED = "ALLOWED"


class ImpedimentKind(str, Enum):
    NONE = "NONE"
    ATTENDANCE = "ATTENDANCE"
    GRADE = "GRADE"


class ExpirationStatus(str, Enum):
    VALID = "VALID"
    EXPIRING_SOON = "EXPIRING_SOON"
    EXPIRED = "EXPIRED"


class AttendanceRecord(BaseModel):
    """Attendance of one student at one lesson."""
    lesson_id: Optional[str] = None
    lesson_title: Optional[str] = None
    status: AttendanceStatus = AttendanceStatus.PENDING


class StudentGrade(BaseModel):
    """Practical and theoretical grades of a student in a class."""
    practical_grade: Optional[float] = None
    theoretical_grade: Optional[float] = None
    observations: Optional[str] = None
    graded_at: Optional[datetime] = None


class ClassEnrollment(BaseModel):
    """A class the student participated in, with its raw records."""
    class_id: str
    training_name: Optional[str] = None
    status: ClassStatus
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration_hours: float = 0.0
    validity_days: Optional[int] = None
    attendance_records: List[AttendanceRecord] = Field(default_factory=list)
    student_grade: Optional[StudentGrade] = None


class EligibilityVerdict(BaseModel):
    """Outcome of a certificate eligibility check."""
    is_eligible: bool
    reason: str
    absence_count: int = Field(0, ge=0)
    source: VerdictSource


class HistorySummary(BaseModel):
    """Performance statistics over a student's full class history."""
    total_classes: int = 0
    completed_classes: int = 0
    active_classes: int = 0
    attendance_rate: float = Field(0.0, ge=0.0, le=100.0)
    average_practical_grade: Optional[float] = None
    average_theoretical_grade: Optional[float] = None
    total_lessons: int = 0
    attended_lessons: int = 0
    total_hours_completed: float = 0.0
    enrollment_date: Optional[date] = None


class CertificateExpiration(BaseModel):
    """Expiration of the certificate issued for a completed class."""
    expiration_date: date
    days_until_expiration: int
    status: ExpirationStatus


class EligibilityDecision(BaseModel):
    """Verdict plus the action the viewer is allowed to take."""
    verdict: EligibilityVerdict
    action: Action
    impediment: ImpedimentKind
    notice: Optional[str] = None


class StudentOverview(BaseModel):
    """Enrollments and summary returned to the presentation layer."""
    enrollments: List[ClassEnrollment]
    summary: HistorySummary


class CertificateCard(BaseModel):
    """Decision for one completed class of a student."""
    class_id: str
    training_name: Optional[str] = None
    decision: EligibilityDecision
    expiration: Optional[CertificateExpiration] = None


class StudentEligibility(BaseModel):
    """Decision for one student of a class batch."""
    student_id: str
    decision: EligibilityDecision


class ClassEligibilityReport(BaseModel):
    """Batch eligibility for several students of one class."""
    class_id: str
    results: List[StudentEligibility]
    eligible_count: int
    total: int


class ClassEligibilityRequest(BaseModel):
    """Request body for batch class eligibility."""
    student_ids: List[str]
    role: str = ViewerRole.CLIENT.value
