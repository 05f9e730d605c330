import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.config import Settings, get_settings
from app.database import create_tables, dispose_db, init_db
from app.rate_limit import limiter
from app.auth.router import router as auth_router
from shared.middleware.error_handler import error_envelope_middleware, register_error_handlers
from shared.middleware.request_id import RequestIdLogFilter, request_id_middleware

logger = logging.getLogger(__name__)


# ── OpenAPI metadata ──────────────────────────────────────────────────────────

_DESCRIPTION = """
## Courses Identity Service

Credential and session lifecycle for the course platform:

* **Registration** — username / email / password sign-up; a 24-hour verification
  link is emailed and a token pair is returned immediately.
* **Authentication** — email + password login and social sign-in
  (Google, Facebook, GitHub); JWT access (1 h) + refresh (7 d) tokens.
* **Token refresh** — exchange a refresh token for a complete new pair.
* **Password management** — 1-hour single-use reset links and in-session change.
* **Logout** — revokes every outstanding token of the user.

### Authentication
All protected endpoints require:
```
Authorization: Bearer <access_token>
```

### Error shape
All errors return a consistent JSON envelope:
```json
{ "code": "INVALID_CREDENTIALS", "message": "Invalid credentials", "request_id": "..." }
```
Validation errors return `400` with code `VALIDATION_ERROR` and an `errors` list.

### Rate limits
`429 Too Many Requests` is returned when a rate limit is exceeded.
"""

_TAGS_METADATA = [
    {
        "name": "auth",
        "description": (
            "Registration, login (email+password and social), token refresh/logout, "
            "password reset and change, and email verification."
        ),
    },
]


# ── Health schema ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    service: str


# ── Logging ───────────────────────────────────────────────────────────────────

def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(levelname)s:%(name)s:[%(request_id)s] %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdLogFilter) for f in handler.filters):
            handler.addFilter(RequestIdLogFilter())


# ── App factory ───────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    init_db(settings.database_url)
    if settings.database_create_tables:
        await create_tables()
    logger.info("Identity service started (env=%s)", settings.env_name)
    yield
    await dispose_db()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)
    app = FastAPI(
        title="Courses Identity Service",
        version="1.0.0",
        description=_DESCRIPTION,
        openapi_tags=_TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Attach rate limiter state before middleware
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_error_handlers(app)

    # Middleware is applied in reverse-registration order (last added = outermost).
    # CORS must be outermost so ALL responses (including 429s) carry CORS headers.
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(error_envelope_middleware)
    app.middleware("http")(request_id_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.include_router(auth_router, prefix="/api/v1")

    @app.get("/health", response_model=HealthResponse, tags=["health"], include_in_schema=True)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service="identity")

    return app


app = create_app()
