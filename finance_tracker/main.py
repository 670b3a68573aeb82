import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import analytics, crud, models, schemas
from . import config
from .auth import create_access_token
from .cache import Cache, build_cache
from .db import Base, engine, get_db
from .dependencies import get_cache, get_current_user, require_permission
from .errors import AuthorizationError, NotFoundError, register_error_handlers
from .permissions import Action, allowed_actions, is_admin
from .ratelimit import ANALYTICS_LIMIT, API_LIMIT, AUTH_LIMIT, RateLimiter, rate_limit

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Create tables, pick the cache backend and reset rate limits at startup."""
    settings = config.get_settings()
    logging.basicConfig(level=settings.log_level)
    config.validate_runtime_config()

    # Create tables if not existing. The schema is owned by the models.
    Base.metadata.create_all(bind=engine)
    logger.info("database ready: %s", engine.url.render_as_string(hide_password=True))

    fastapi_app.state.cache = build_cache(settings.redis_url, settings.cache_ttl_seconds)
    fastapi_app.state.rate_limiter = RateLimiter(enabled=settings.rate_limit_enabled)

    yield

    fastapi_app.state.cache.close()


app = FastAPI(title="Finance Tracker API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.get_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self'; "
        "img-src 'self' data: https:; object-src 'none'; frame-ancestors 'self'; base-uri 'self'"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


register_error_handlers(app)


def _token_for(user: models.User) -> str:
    return create_access_token(user.id, user.email, user.role)


def _resolve_owner(db: Session, current_user: models.User, requested: Optional[str]) -> str:
    """Owner id for a request; only admins may act on another user's records."""
    if requested is None or requested == current_user.id:
        return current_user.id
    if not is_admin(current_user.role):
        raise AuthorizationError("Insufficient permissions")
    if crud.get_user(db, requested) is None:
        raise NotFoundError("User not found")
    return requested


@app.get("/health")
def health(db: Session = Depends(get_db), cache: Cache = Depends(get_cache)):
    database = "connected"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health check: database unreachable")
        database = "unavailable"
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": database,
        "cache": cache.backend_name,
    }


# -------------------- Auth --------------------

@app.post(
    "/auth/register",
    response_model=schemas.AuthResponse,
    status_code=201,
    dependencies=[Depends(rate_limit(AUTH_LIMIT))],
)
def register(payload: schemas.UserCreate, db: Session = Depends(get_db)):
    user = crud.create_user(db, payload)
    logger.info("registered user %s", user.id)
    return {"message": "User created successfully", "user": user, "token": _token_for(user)}


@app.post("/auth/login", response_model=schemas.AuthResponse, dependencies=[Depends(rate_limit(AUTH_LIMIT))])
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.authenticate(db, payload.email, payload.password)
    return {"message": "Login successful", "user": user, "token": _token_for(user)}


@app.get("/auth/me", response_model=schemas.MeResponse)
def me(current_user: models.User = Depends(get_current_user)):
    return {"user": current_user, "permissions": allowed_actions(current_user.role)}


# -------------------- Transactions --------------------

@app.get("/transactions", response_model=schemas.TransactionPage, dependencies=[Depends(rate_limit(API_LIMIT))])
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=100),
    user_id: Optional[str] = Query(None, alias="userId"),
    current_user: models.User = Depends(require_permission(Action.READ)),
    db: Session = Depends(get_db),
):
    owner_id = _resolve_owner(db, current_user, user_id)
    items, total = crud.list_transactions(db, owner_id, page=page, page_size=limit, search=search)
    total_pages = math.ceil(total / limit)
    return {
        "transactions": items,
        "pagination": {
            "current_page": page,
            "page_size": limit,
            "total_pages": total_pages,
            "total_count": total,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


@app.post(
    "/transactions",
    response_model=schemas.TransactionEnvelope,
    status_code=201,
    dependencies=[Depends(rate_limit(API_LIMIT))],
)
def create_transaction(
    payload: schemas.TransactionCreate,
    current_user: models.User = Depends(require_permission(Action.WRITE)),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    owner_id = _resolve_owner(db, current_user, payload.user_id)
    created = crud.create_transaction(db, owner_id, payload)
    analytics.invalidate_user(cache, owner_id)
    return {"message": "Transaction created successfully", "transaction": created}


@app.put(
    "/transactions/{transaction_id}",
    response_model=schemas.TransactionEnvelope,
    dependencies=[Depends(rate_limit(API_LIMIT))],
)
def update_transaction(
    transaction_id: str,
    payload: schemas.TransactionCreate,
    current_user: models.User = Depends(require_permission(Action.WRITE)),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    transaction = crud.get_transaction_for(db, transaction_id, current_user)
    updated = crud.update_transaction(db, transaction, payload)
    analytics.invalidate_user(cache, updated.user_id)
    return {"message": "Transaction updated successfully", "transaction": updated}


@app.delete(
    "/transactions/{transaction_id}",
    response_model=schemas.Message,
    dependencies=[Depends(rate_limit(API_LIMIT))],
)
def delete_transaction(
    transaction_id: str,
    current_user: models.User = Depends(require_permission(Action.WRITE)),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    transaction = crud.get_transaction_for(db, transaction_id, current_user)
    owner_id = transaction.user_id
    crud.delete_transaction(db, transaction)
    analytics.invalidate_user(cache, owner_id)
    return {"message": "Transaction deleted successfully"}


# -------------------- Analytics --------------------

def _json(raw: str) -> Response:
    return Response(content=raw, media_type="application/json")


@app.get("/analytics/overview", dependencies=[Depends(rate_limit(ANALYTICS_LIMIT))])
def analytics_overview(
    current_user: models.User = Depends(require_permission(Action.READ)),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    return _json(analytics.overview(db, cache, current_user.id))


@app.get("/analytics/detailed", dependencies=[Depends(rate_limit(ANALYTICS_LIMIT))])
def analytics_detailed(
    time_range: str = Query(analytics.DEFAULT_TIME_RANGE.value, alias="timeRange"),
    current_user: models.User = Depends(require_permission(Action.READ)),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    return _json(analytics.detailed(db, cache, current_user.id, analytics.parse_time_range(time_range)))


# -------------------- Users (admin) --------------------

@app.get("/users", response_model=schemas.UserList, dependencies=[Depends(rate_limit(API_LIMIT))])
def list_users(
    current_user: models.User = Depends(require_permission(Action.ADMIN)),
    db: Session = Depends(get_db),
):
    users = []
    for user, count in crud.list_users_with_counts(db):
        data = schemas.UserAdminRead.model_validate(user)
        data.transaction_count = count
        users.append(data)
    return {"users": users}
