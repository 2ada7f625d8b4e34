"""FastAPI application for the certificate eligibility engine."""

import logging
import traceback
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from eligibility_engine import config
from eligibility_engine.export import history_to_csv, history_to_xlsx
from eligibility_engine.history import HistoryUnavailableError
from eligibility_engine.models import (
    CertificateCard,
    ClassEligibilityReport,
    ClassEligibilityRequest,
    ClassStatus,
    EligibilityDecision,
    StudentOverview,
    ViewerRole,
)
from eligibility_engine.service import EngineSession, SessionRegistry

config.setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Certificate Eligibility Engine", version="1.0.0")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One verdict cache per session id, bounded in count and idle time
registry = SessionRegistry(
    max_sessions=config.SESSION_MAX_COUNT,
    idle_seconds=config.SESSION_IDLE_SECONDS,
)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(HistoryUnavailableError)
async def history_unavailable_handler(request: Request, exc: HistoryUnavailableError):
    """History fetch failures are retryable; no partial summary is returned."""
    return JSONResponse(
        status_code=503,
        content={
            "detail": f"History unavailable for student {exc.student_id}: {exc}",
            "retryable": exc.retryable,
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception(f"Unhandled error on {request.url.path}")
    error_detail = str(exc)
    if config.DEBUG:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


def get_registry() -> SessionRegistry:
    return registry


def get_session(
    x_session_id: str = Header("anonymous"),
    sessions: SessionRegistry = Depends(get_registry)
) -> EngineSession:
    """Session of the caller, identified by the X-Session-Id header."""
    return sessions.get(x_session_id)


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.get(
    "/classes/{class_id}/students/{student_id}/eligibility",
    response_model=EligibilityDecision
)
async def resolve_eligibility(
    class_id: str,
    student_id: str,
    role: str = Query(ViewerRole.CLIENT.value),
    session: EngineSession = Depends(get_session)
):
    """Eligibility verdict and allowed action for one student of a class."""
    return await session.resolve_eligibility(class_id, student_id, role)


@app.post("/classes/{class_id}/eligibility", response_model=ClassEligibilityReport)
async def resolve_class_eligibility(
    class_id: str,
    request: ClassEligibilityRequest,
    session: EngineSession = Depends(get_session)
):
    """Batch eligibility for several students of a class."""
    if not request.student_ids:
        raise HTTPException(status_code=400, detail="student_ids must not be empty")
    return await session.resolve_class(class_id, request.student_ids, request.role)


@app.get("/students/{student_id}/overview", response_model=StudentOverview)
async def student_overview(
    student_id: str,
    status: Optional[List[ClassStatus]] = Query(None),
    start_from: Optional[date] = Query(None),
    start_until: Optional[date] = Query(None),
    session: EngineSession = Depends(get_session)
):
    """Class history and summary statistics of a student."""
    return await session.get_student_overview(
        student_id,
        statuses=status,
        start_from=start_from,
        start_until=start_until,
    )


@app.get("/students/{student_id}/certificates", response_model=List[CertificateCard])
async def student_certificates(
    student_id: str,
    role: str = Query(ViewerRole.CLIENT.value),
    session: EngineSession = Depends(get_session)
):
    """Certificate decisions for every completed class of a student."""
    return await session.get_certificate_cards(student_id, role)


@app.get("/students/{student_id}/history.csv")
async def download_history_csv(
    student_id: str,
    session: EngineSession = Depends(get_session)
):
    """Download the class history of a student as CSV."""
    overview = await session.get_student_overview(student_id)
    content = history_to_csv(overview.enrollments)
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=history_{student_id}.csv"
        }
    )


@app.get("/students/{student_id}/history.xlsx")
async def download_history_xlsx(
    student_id: str,
    session: EngineSession = Depends(get_session)
):
    """Download the class history of a student as an Excel workbook."""
    overview = await session.get_student_overview(student_id)
    return Response(
        content=history_to_xlsx(overview.enrollments),
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f"attachment; filename=history_{student_id}.xlsx"
        }
    )


@app.delete("/sessions/{session_id}/verdicts")
async def invalidate_verdicts(
    session_id: str,
    class_id: Optional[str] = Query(None),
    student_id: Optional[str] = Query(None),
    sessions: SessionRegistry = Depends(get_registry)
):
    """Forget cached verdicts of a session."""
    if session_id not in sessions:
        raise HTTPException(status_code=404, detail="Session not found")
    removed = sessions.get(session_id).invalidate(class_id, student_id)
    return {"removed": removed}


@app.delete("/sessions/{session_id}")
async def close_session(session_id: str, sessions: SessionRegistry = Depends(get_registry)):
    """Close a viewing session and drop its cache."""
    if not sessions.drop(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"closed": session_id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
