"""
Viewing sessions: the interface used by the presentation layer.

An EngineSession owns the verdict cache of one viewer. Card resolves run
concurrently; a ViewScope keeps results of late resolves away from views
that were dismissed in the meantime.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from datetime import date
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from eligibility_engine.client import RecordStoreClient
from eligibility_engine.eligibility import EligibilityResolver, classify_impediment
from eligibility_engine.history import (
    HistoryAggregator,
    certificate_expiration,
    filter_enrollments,
)
from eligibility_engine.models import (
    CertificateCard,
    ClassEligibilityReport,
    ClassStatus,
    EligibilityDecision,
    EligibilityVerdict,
    StudentEligibility,
    StudentOverview,
    ViewerRole,
)
from eligibility_engine.notices import build_notice
from eligibility_engine.policy import coerce_role, decide

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ViewScope:
    """Liveness of a consuming view."""

    def __init__(self):
        self.alive = True

    def dismiss(self) -> None:
        self.alive = False

    async def apply(self, pending: Awaitable[T], callback: Callable[[T], None]) -> bool:
        """
        Await ``pending`` and hand its result to ``callback`` if still alive.

        The awaitable always runs to completion, so a dismissed view still
        lets the resolve populate the cache.
        """
        result = await pending
        if not self.alive:
            logger.debug("View dismissed before result arrived; not applying")
            return False
        callback(result)
        return True


def make_decision(verdict: EligibilityVerdict, viewer_role: Union[str, ViewerRole]) -> EligibilityDecision:
    """Run a verdict through the policy gate and attach the notice text."""
    role = coerce_role(viewer_role)
    action = decide(verdict, role)
    impediment = classify_impediment(verdict)
    return EligibilityDecision(
        verdict=verdict,
        action=action,
        impediment=impediment,
        notice=build_notice(verdict, impediment, action, role),
    )


class EngineSession:
    """Eligibility and history operations for one viewing session."""

    def __init__(
        self,
        client: Optional[RecordStoreClient] = None,
        use_statistics_endpoint: Optional[bool] = None
    ):
        self.client = client or RecordStoreClient()
        self.resolver = EligibilityResolver(self.client)
        self.aggregator = HistoryAggregator(self.client, use_statistics_endpoint)

    async def resolve_eligibility(
        self,
        class_id: str,
        student_id: str,
        viewer_role: Union[str, ViewerRole]
    ) -> EligibilityDecision:
        verdict = await self.resolver.resolve(class_id, student_id)
        return make_decision(verdict, viewer_role)

    async def get_student_overview(
        self,
        student_id: str,
        statuses: Optional[Iterable[ClassStatus]] = None,
        start_from: Optional[date] = None,
        start_until: Optional[date] = None
    ) -> StudentOverview:
        """
        Enrollments and summary of a student.

        Filters only narrow the returned enrollments; the summary always
        covers the full history.

        Raises:
            HistoryUnavailableError: when the history cannot be fetched
        """
        enrollments, summary = await self.aggregator.aggregate(student_id)
        self.resolver.prime_records(student_id, enrollments)
        return StudentOverview(
            enrollments=filter_enrollments(enrollments, statuses, start_from, start_until),
            summary=summary,
        )

    async def get_certificate_cards(
        self,
        student_id: str,
        viewer_role: Union[str, ViewerRole],
        today: Optional[date] = None
    ) -> List[CertificateCard]:
        """
        Decisions for every completed class of a student.

        Raises:
            HistoryUnavailableError: when the history cannot be fetched
        """
        overview = await self.get_student_overview(student_id, statuses=[ClassStatus.COMPLETED])
        completed = overview.enrollments
        decisions = await asyncio.gather(*(
            self.resolve_eligibility(e.class_id, student_id, viewer_role) for e in completed
        ))
        return [
            CertificateCard(
                class_id=enrollment.class_id,
                training_name=enrollment.training_name,
                decision=decision,
                expiration=certificate_expiration(enrollment, today=today),
            )
            for enrollment, decision in zip(completed, decisions)
        ]

    async def resolve_class(
        self,
        class_id: str,
        student_ids: List[str],
        viewer_role: Union[str, ViewerRole]
    ) -> ClassEligibilityReport:
        """Resolve several students of one class concurrently."""
        unique_ids = list(dict.fromkeys(student_ids))
        decisions = await asyncio.gather(*(
            self.resolve_eligibility(class_id, sid, viewer_role) for sid in unique_ids
        ))
        results = [
            StudentEligibility(student_id=sid, decision=decision)
            for sid, decision in zip(unique_ids, decisions)
        ]
        eligible = sum(1 for r in results if r.decision.verdict.is_eligible)
        logger.info(f"Class {class_id}: {eligible}/{len(results)} students eligible")
        return ClassEligibilityReport(
            class_id=class_id,
            results=results,
            eligible_count=eligible,
            total=len(results),
        )

    def invalidate(self, class_id: Optional[str] = None, student_id: Optional[str] = None) -> int:
        """Forget cached verdicts (and records) matching the given ids."""
        return self.resolver.invalidate(class_id, student_id)


class SessionRegistry:
    """
    In-memory sessions keyed by session id.

    At most `max_sessions` are kept; opening one more evicts the least
    recently used. Sessions untouched for `idle_seconds` are expired on the
    next access. Either limit is disabled by passing None.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], EngineSession]] = None,
        max_sessions: Optional[int] = 1000,
        idle_seconds: Optional[float] = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory or EngineSession
        self.max_sessions = max_sessions
        self.idle_seconds = idle_seconds
        self.clock = clock
        self.sessions: "OrderedDict[str, EngineSession]" = OrderedDict()
        self.last_seen: Dict[str, float] = {}

    def get(self, session_id: str) -> EngineSession:
        now = self.clock()
        self.expire_idle(now)
        session = self.sessions.get(session_id)
        if session is None:
            session = self.session_factory()
            self.sessions[session_id] = session
            logger.debug(f"Opened session {session_id}")
        self.sessions.move_to_end(session_id)
        self.last_seen[session_id] = now
        if self.max_sessions is not None:
            while len(self.sessions) > self.max_sessions:
                evicted, _ = self.sessions.popitem(last=False)
                self.last_seen.pop(evicted, None)
                logger.info(f"Evicted least recently used session {evicted}")
        return session

    def expire_idle(self, now: Optional[float] = None) -> int:
        """Drop sessions idle for longer than `idle_seconds`; returns how many."""
        if self.idle_seconds is None:
            return 0
        now = self.clock() if now is None else now
        # Oldest first: stop at the first session still within the window
        expired = []
        for session_id in self.sessions:
            if now - self.last_seen.get(session_id, now) <= self.idle_seconds:
                break
            expired.append(session_id)
        for session_id in expired:
            self.drop(session_id)
            logger.debug(f"Expired idle session {session_id}")
        return len(expired)

    def __contains__(self, session_id: str) -> bool:
        self.expire_idle()
        return session_id in self.sessions

    def __len__(self) -> int:
        return len(self.sessions)

    def drop(self, session_id: str) -> bool:
        self.last_seen.pop(session_id, None)
        return self.sessions.pop(session_id, None) is not None
