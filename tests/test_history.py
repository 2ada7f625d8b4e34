"""Unit tests for history aggregation."""

import asyncio
from datetime import date

import httpx
import pytest

from eligibility_engine.client import RecordStoreClient
from eligibility_engine.history import (
    HistoryAggregator,
    HistoryUnavailableError,
    aggregate_history,
    attendance_rate,
    certificate_expiration,
    filter_enrollments,
)
from eligibility_engine.models import (
    AttendanceRecord,
    AttendanceStatus,
    ClassEnrollment,
    ClassStatus,
    ExpirationStatus,
    StudentGrade,
)

HISTORY_S1 = "/superadmin/students/s1/history"
STATISTICS_S1 = "/superadmin/students/s1/statistics"

P = AttendanceStatus.PRESENT
A = AttendanceStatus.ABSENT


def make_enrollment(class_id, status, hours=40, records=(), practical=None, theoretical=None,
                    graded=False, start=None, end=None, validity=None):
    return ClassEnrollment(
        class_id=class_id,
        status=status,
        duration_hours=hours,
        start_date=start,
        end_date=end,
        validity_days=validity,
        attendance_records=[AttendanceRecord(status=s) for s in records],
        student_grade=StudentGrade(practical_grade=practical, theoretical_grade=theoretical)
        if graded else None,
    )


def make_client(routes):
    def handler(request):
        result = routes.get(request.url.path)
        if result is None:
            return httpx.Response(404, json={"detail": "not found"})
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    return RecordStoreClient(base_url="http://store.test", transport=httpx.MockTransport(handler))


def test_attendance_rate():
    assert attendance_rate(0, 0) == 0.0
    assert attendance_rate(3, 4) == 75.0
    assert attendance_rate(4, 4) == 100.0


def test_aggregate_counts_and_hours():
    """Two completed classes of 40h and one in progress."""
    enrollments = [
        make_enrollment("c1", ClassStatus.COMPLETED, hours=40),
        make_enrollment("c2", ClassStatus.COMPLETED, hours=40),
        make_enrollment("c3", ClassStatus.IN_PROGRESS, hours=16),
    ]

    summary = aggregate_history(enrollments)

    assert summary.total_classes == 3
    assert summary.completed_classes == 2
    assert summary.active_classes == 1
    assert summary.total_hours_completed == 80


def test_aggregate_active_includes_open():
    enrollments = [
        make_enrollment("c1", ClassStatus.OPEN),
        make_enrollment("c2", ClassStatus.IN_PROGRESS),
        make_enrollment("c3", ClassStatus.CANCELLED),
        make_enrollment("c4", ClassStatus.SUSPENDED),
    ]

    summary = aggregate_history(enrollments)

    assert summary.active_classes == 2
    assert summary.completed_classes == 0
    assert summary.total_hours_completed == 0


def test_aggregate_zero_lessons_rate_is_zero():
    """No attendance records gives 0% attendance, not NaN."""
    summary = aggregate_history([make_enrollment("c1", ClassStatus.OPEN)])

    assert summary.total_lessons == 0
    assert summary.attended_lessons == 0
    assert summary.attendance_rate == 0.0


def test_aggregate_empty_history():
    summary = aggregate_history([])

    assert summary.total_classes == 0
    assert summary.attendance_rate == 0.0
    assert summary.average_practical_grade is None
    assert summary.average_theoretical_grade is None
    assert summary.enrollment_date is None


def test_aggregate_attendance_across_enrollments():
    enrollments = [
        make_enrollment("c1", ClassStatus.COMPLETED, records=[P, P, A]),
        make_enrollment("c2", ClassStatus.IN_PROGRESS, records=[P, AttendanceStatus.PENDING]),
    ]

    summary = aggregate_history(enrollments)

    assert summary.total_lessons == 5
    assert summary.attended_lessons == 3
    assert summary.attendance_rate == pytest.approx(60.0)


def test_aggregate_grade_averages_skip_missing():
    """Enrollments without a grade type are excluded from that average."""
    enrollments = [
        make_enrollment("c1", ClassStatus.COMPLETED, graded=True, practical=8.0, theoretical=6.0),
        make_enrollment("c2", ClassStatus.COMPLETED, graded=True, practical=6.0, theoretical=None),
        make_enrollment("c3", ClassStatus.IN_PROGRESS),
    ]

    summary = aggregate_history(enrollments)

    assert summary.average_practical_grade == pytest.approx(7.0)
    assert summary.average_theoretical_grade == pytest.approx(6.0)


def test_aggregate_enrollment_date_is_earliest_start():
    enrollments = [
        make_enrollment("c1", ClassStatus.COMPLETED, start=date(2024, 5, 2)),
        make_enrollment("c2", ClassStatus.OPEN, start=date(2023, 11, 20)),
        make_enrollment("c3", ClassStatus.OPEN),
    ]
    assert aggregate_history(enrollments).enrollment_date == date(2023, 11, 20)


def test_certificate_expiration():
    """Certificates expire validity_days after the end of the class."""
    enrollment = make_enrollment("c1", ClassStatus.COMPLETED, end=date(2024, 1, 31), validity=365)

    valid = certificate_expiration(enrollment, today=date(2024, 6, 1), warning_days=30)
    assert valid.expiration_date == date(2025, 1, 30)
    assert valid.status == ExpirationStatus.VALID

    soon = certificate_expiration(enrollment, today=date(2025, 1, 10), warning_days=30)
    assert soon.status == ExpirationStatus.EXPIRING_SOON
    assert soon.days_until_expiration == 20

    expired = certificate_expiration(enrollment, today=date(2025, 2, 1), warning_days=30)
    assert expired.status == ExpirationStatus.EXPIRED
    assert expired.days_until_expiration == -2


def test_certificate_expiration_not_applicable():
    in_progress = make_enrollment("c1", ClassStatus.IN_PROGRESS, end=date(2024, 1, 31), validity=365)
    no_validity = make_enrollment("c2", ClassStatus.COMPLETED, end=date(2024, 1, 31))
    no_end = make_enrollment("c3", ClassStatus.COMPLETED, validity=365)

    assert certificate_expiration(in_progress) is None
    assert certificate_expiration(no_validity) is None
    assert certificate_expiration(no_end) is None


def test_filter_enrollments():
    enrollments = [
        make_enrollment("c1", ClassStatus.COMPLETED, start=date(2024, 1, 10)),
        make_enrollment("c2", ClassStatus.IN_PROGRESS, start=date(2024, 3, 5)),
        make_enrollment("c3", ClassStatus.COMPLETED, start=date(2024, 6, 1)),
        make_enrollment("c4", ClassStatus.COMPLETED),
    ]

    completed = filter_enrollments(enrollments, statuses=[ClassStatus.COMPLETED])
    assert [e.class_id for e in completed] == ["c1", "c3", "c4"]

    window = filter_enrollments(enrollments, start_from=date(2024, 2, 1), start_until=date(2024, 6, 1))
    assert [e.class_id for e in window] == ["c2", "c3"]

    assert filter_enrollments(enrollments) == enrollments


def test_aggregator_computes_when_statistics_absent():
    client = make_client({
        HISTORY_S1: [
            {"classId": "c1", "status": "CONCLUIDA", "training": {"durationHours": 40}},
            {"classId": "c2", "status": "CONCLUIDA", "training": {"durationHours": 40}},
            {"classId": "c3", "status": "EM_ANDAMENTO", "training": {"durationHours": 8}},
        ],
    })
    aggregator = HistoryAggregator(client, use_statistics_endpoint=True)

    enrollments, summary = asyncio.run(aggregator.aggregate("s1"))

    assert len(enrollments) == 3
    assert summary.completed_classes == 2
    assert summary.active_classes == 1
    assert summary.total_hours_completed == 80


def test_aggregator_prefers_statistics_endpoint():
    client = make_client({
        HISTORY_S1: {"classes": [{"classId": "c1", "status": "CONCLUIDA"}]},
        STATISTICS_S1: {
            "totalClasses": 7,
            "completedClasses": 5,
            "attendanceRate": 92.5,
            "averageGrades": {"practical": 8.1, "theoretical": 7.4},
            "totalHoursCompleted": 200,
        },
    })
    aggregator = HistoryAggregator(client, use_statistics_endpoint=True)

    enrollments, summary = asyncio.run(aggregator.aggregate("s1"))

    assert len(enrollments) == 1
    assert summary.total_classes == 7
    assert summary.attendance_rate == 92.5
    assert summary.average_practical_grade == 8.1


def test_aggregator_ignores_statistics_when_disabled():
    client = make_client({
        HISTORY_S1: [{"classId": "c1", "status": "CONCLUIDA"}],
        STATISTICS_S1: {"totalClasses": 7},
    })
    aggregator = HistoryAggregator(client, use_statistics_endpoint=False)

    _, summary = asyncio.run(aggregator.aggregate("s1"))

    assert summary.total_classes == 1


def test_aggregator_class_list_failure_is_retryable():
    client = make_client({HISTORY_S1: httpx.Response(502, json={"detail": "bad gateway"})})
    aggregator = HistoryAggregator(client, use_statistics_endpoint=False)

    with pytest.raises(HistoryUnavailableError) as excinfo:
        asyncio.run(aggregator.aggregate("s1"))

    assert excinfo.value.retryable == True
    assert excinfo.value.student_id == "s1"


def test_aggregator_statistics_failure_is_retryable():
    """A failing statistics endpoint (other than 404) is not papered over."""
    client = make_client({
        HISTORY_S1: [{"classId": "c1", "status": "CONCLUIDA"}],
        STATISTICS_S1: httpx.Response(500, json={"detail": "boom"}),
    })
    aggregator = HistoryAggregator(client, use_statistics_endpoint=True)

    with pytest.raises(HistoryUnavailableError):
        asyncio.run(aggregator.aggregate("s1"))
