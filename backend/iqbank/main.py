"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the IQ test and balance
transfer service. Controllers are intentionally thin: they accept
requests, delegate to services, and return JSON responses. Every error
response has the shape `{"error": <message>}`.

Endpoints implemented:
- GET /health
- POST /auth/register, POST /auth/login, GET /auth/me
- GET /test/questions, POST /test/submit, GET /test/history, GET /test/result/{id}
- GET /transactions/balance, POST /transactions/transfer, GET /transactions/history
- PATCH /transactions/admin/{id}/status, GET /transactions/admin/all
- GET /transactions/users/search
- GET /admin/users, GET /admin/users/{id}, GET /admin/stats
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlmodel import Session
from datetime import datetime, timezone
from typing import Optional
import os
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import get_current_user, require_admin
from .errors import ServiceError
from .schemas import LoginIn, RegisterIn, SettleIn, SubmissionIn, TransferIn
from .config import settings

app = FastAPI(title="IQ Test and Ledger API")
logger = logging.getLogger("iqbank.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

# Wide-open CORS keeps local frontends working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _access_record(request: Request, req_id: str, started: float, **extra) -> str:
    """One JSON access-log line for a finished or failed request."""
    record = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        **extra,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "client": request.client.host if request.client else "unknown",
    }
    return json.dumps(record, ensure_ascii=True, default=str)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed %s", _access_record(request, req_id, started))
        raise
    response.headers["X-Request-ID"] = req_id
    logger.info("request_done %s", _access_record(request, req_id, started, status_code=response.status_code))
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    content = {"error": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "error": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "invalid request", "details": details})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal server error"})


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post('/auth/register', status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user and return a token so the client is logged in."""
    auth = services.AuthService(db)
    user = auth.register(payload.username, payload.email, payload.password)
    return {'token': auth.issue_token(user), 'user': services.user_payload(user)}


@app.post('/auth/login')
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a signed JWT.

    The token carries `user_id`, `username` and `role`.
    """
    auth = services.AuthService(db)
    user = auth.authenticate(payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail='invalid email or password')
    return {'token': auth.issue_token(user), 'user': services.user_payload(user)}


@app.get('/auth/me')
def me(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the caller's profile with a fresh balance."""
    fresh = db.get(models.User, user.id)
    if not fresh:
        raise HTTPException(status_code=404, detail='user not found')
    return services.user_payload(fresh)


@app.get('/test/questions')
def test_questions(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return a random set of questions for a new attempt.

    Options are listed without any indication of which one is correct.
    """
    return services.AssessmentService(db).start_session()


@app.post('/test/submit')
def test_submit(submission: SubmissionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Grade a submitted attempt and store the result with every answer."""
    svc = services.AssessmentService(db)
    pairs = [(a.question_id, a.selected_answer) for a in submission.answers]
    result = svc.submit(user, pairs)
    return {'message': 'test submitted', 'result': result}


@app.get('/test/history')
def test_history(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """The caller's results, most recent first."""
    return [services.result_summary(r) for r in services.AssessmentService(db).history(user.id)]


@app.get('/test/result/{result_id}')
def test_result(result_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """One result with per-question detail; owner or admin only."""
    return services.AssessmentService(db).result_detail(result_id, user)


@app.get('/transactions/balance')
def balance(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {'balance': services.format_money(services.LedgerService(db).balance_of(user.id))}


@app.post('/transactions/transfer', status_code=201)
def transfer(payload: TransferIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Create a pending transfer. Money moves only when an admin completes it."""
    tx = services.LedgerService(db).request_transfer(user, payload.receiver_id, payload.amount)
    return {'message': 'transfer created; awaiting admin approval', 'transactionId': tx.id}


@app.get('/transactions/history')
def transaction_history(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.LedgerService(db).history_for(user.id)


@app.patch('/transactions/admin/{tx_id}/status')
def settle_transaction(tx_id: int, payload: SettleIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Complete or fail a pending transfer."""
    tx = services.LedgerService(db).settle(tx_id, payload.status, admin)
    message = 'transfer completed' if tx.status == models.TransactionStatus.completed else 'transfer failed'
    return {'message': message, 'transactionId': tx.id, 'status': tx.status}


@app.get('/transactions/admin/all')
def all_transactions(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.LedgerService(db).all_transactions()


@app.get('/transactions/users/search')
def search_users(q: Optional[str] = None, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Find transfer recipients by username; needs at least 2 characters."""
    return services.LedgerService(db).search_transferable_users(q, user.id)


@app.get('/admin/users')
def admin_users(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.AdminService(db).list_users()


@app.get('/admin/users/{user_id}')
def admin_user_detail(user_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.AdminService(db).user_detail(user_id)


@app.get('/admin/stats')
def admin_stats(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.AdminService(db).stats()
