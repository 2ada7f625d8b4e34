"""Certificate eligibility: local rules, verdict cache and the resolver."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from eligibility_engine.client import RecordStoreClient, RecordStoreError
from eligibility_engine.models import (
    AttendanceRecord,
    AttendanceStatus,
    ClassEnrollment,
    EligibilityVerdict,
    ImpedimentKind,
    StudentGrade,
    VerdictSource,
)
from eligibility_engine.notices import RECORDS_UNAVAILABLE_REASON, build_reason
from eligibility_engine.parsers import parse_remote_eligibility

logger = logging.getLogger(__name__)


PASSING_GRADE = 5.0
GRADE_REASON_TOKEN = "nota"

VerdictKey = Tuple[str, str]


def is_failing_grade(grade: Optional[float]) -> bool:
    """
    A grade fails when it is present and below PASSING_GRADE.

    Args:
        grade: Grade on the 0-10 scale, or None when not graded

    Returns:
        True if the grade blocks the certificate
    """
    return grade is not None and grade < PASSING_GRADE


def count_absences(records: Iterable[AttendanceRecord]) -> int:
    return sum(1 for r in records if r.status == AttendanceStatus.ABSENT)


def failing_grades(grade: Optional[StudentGrade]) -> Dict[str, float]:
    """Failing grades by label ('prática', 'teórica'); empty when none fail."""
    if grade is None:
        return {}
    failing = {}
    if is_failing_grade(grade.practical_grade):
        failing['prática'] = grade.practical_grade
    if is_failing_grade(grade.theoretical_grade):
        failing['teórica'] = grade.theoretical_grade
    return failing


def local_verdict(enrollment: ClassEnrollment) -> EligibilityVerdict:
    """
    Recompute eligibility from the raw records of one enrollment.

    Any absence or any present grade below 5.0 makes the student
    ineligible; missing grades never fail.
    """
    absences = count_absences(enrollment.attendance_records)
    failing = failing_grades(enrollment.student_grade)
    return EligibilityVerdict(
        is_eligible=not (absences > 0 or failing),
        reason=build_reason(absences, failing),
        absence_count=absences,
        source=VerdictSource.LOCAL_FALLBACK,
    )


def unavailable_verdict() -> EligibilityVerdict:
    """Verdict used when neither the service nor the raw records answer."""
    return EligibilityVerdict(
        is_eligible=False,
        reason=RECORDS_UNAVAILABLE_REASON,
        absence_count=0,
        source=VerdictSource.LOCAL_FALLBACK,
    )


def classify_impediment(verdict: EligibilityVerdict) -> ImpedimentKind:
    """Grade-related when the reason mentions "nota", attendance-related otherwise."""
    if verdict.is_eligible:
        return ImpedimentKind.NONE
    if GRADE_REASON_TOKEN in (verdict.reason or "").lower():
        return ImpedimentKind.GRADE
    return ImpedimentKind.ATTENDANCE


class VerdictCache:
    """
    Session-scoped verdicts keyed by (class_id, student_id).

    Writes for a key replace the previous verdict; other keys are untouched.
    """

    def __init__(self):
        self._verdicts: Dict[VerdictKey, EligibilityVerdict] = {}

    def get(self, class_id: str, student_id: str) -> Optional[EligibilityVerdict]:
        return self._verdicts.get((class_id, student_id))

    def set(self, class_id: str, student_id: str, verdict: EligibilityVerdict) -> None:
        self._verdicts[(class_id, student_id)] = verdict

    def invalidate(self, class_id: Optional[str] = None, student_id: Optional[str] = None) -> int:
        """Drop entries matching the given ids (all entries when both are None)."""
        doomed = [
            key for key in self._verdicts
            if (class_id is None or key[0] == class_id)
            and (student_id is None or key[1] == student_id)
        ]
        for key in doomed:
            del self._verdicts[key]
        return len(doomed)

    def __contains__(self, key: VerdictKey) -> bool:
        return key in self._verdicts

    def __len__(self) -> int:
        return len(self._verdicts)


class EligibilityResolver:
    """
    Resolve certificate eligibility for (class, student) pairs.

    The remote eligibility service is asked first; when it fails the
    verdict is recomputed from the student's raw records. Resolved
    verdicts are cached for the lifetime of the resolver.
    """

    def __init__(self, client: RecordStoreClient, cache: Optional[VerdictCache] = None):
        self.client = client
        self.cache = cache if cache is not None else VerdictCache()
        self._records: Dict[str, List[ClassEnrollment]] = {}

    def prime_records(self, student_id: str, enrollments: List[ClassEnrollment]) -> None:
        """Keep already fetched enrollments for use by the local fallback."""
        self._records[student_id] = list(enrollments)

    def invalidate(self, class_id: Optional[str] = None, student_id: Optional[str] = None) -> int:
        if student_id is None:
            if class_id is None:
                self._records.clear()
        else:
            self._records.pop(student_id, None)
        return self.cache.invalidate(class_id, student_id)

    async def resolve(self, class_id: str, student_id: str) -> EligibilityVerdict:
        """Return the verdict for a class and student; never raises."""
        cached = self.cache.get(class_id, student_id)
        if cached is not None:
            logger.debug(f"Verdict cache hit for class={class_id} student={student_id}")
            return cached

        try:
            verdict = await self._resolve_remote(class_id, student_id)
        except (RecordStoreError, ValueError) as e:
            logger.warning(
                f"Eligibility service failed for class={class_id} student={student_id}: {e}; "
                f"recomputing locally"
            )
            verdict = await self._resolve_local(class_id, student_id)
            if verdict is None:
                return unavailable_verdict()
            logger.info(
                f"Local verdict for class={class_id} student={student_id}: "
                f"eligible={verdict.is_eligible} absences={verdict.absence_count}"
            )

        self.cache.set(class_id, student_id, verdict)
        return verdict

    async def _resolve_remote(self, class_id: str, student_id: str) -> EligibilityVerdict:
        payload = await self.client.get_eligibility(class_id, student_id)
        is_eligible, reason, absences = parse_remote_eligibility(payload)
        return EligibilityVerdict(
            is_eligible=is_eligible,
            reason=reason,
            absence_count=absences,
            source=VerdictSource.REMOTE,
        )

    async def _resolve_local(self, class_id: str, student_id: str) -> Optional[EligibilityVerdict]:
        """Local verdict, or None when the student's records cannot be found."""
        enrollments = self._records.get(student_id)
        if enrollments is None:
            try:
                enrollments = await self.client.get_class_enrollments(student_id)
            except RecordStoreError as e:
                logger.error(f"Records unavailable for student={student_id}: {e}")
                return None
            self._records[student_id] = enrollments

        for enrollment in enrollments:
            if enrollment.class_id == class_id:
                return local_verdict(enrollment)

        logger.error(f"Class {class_id} not found in the history of student={student_id}")
        return None
