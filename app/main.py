from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.limiter import limiter
from app.features.organizations.routes import router as organization_router
from app.features.rbac.errors import PUBLIC_DENIAL_MESSAGE, AuthorizationError, InvalidSubjectError
from app.features.rbac.routes import router as rbac_router
from app.features.rbac.seed import seed_rbac
from app.features.users.routes import router as admin_user_router
from app.utils import get_logger


VERSION = "0.1.0"

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Create tables and, unless disabled, seed the default roles."""
    await init_db()
    if config.SEED_RBAC_ON_STARTUP:
        async with AsyncSessionLocal() as db:
            await seed_rbac(db)
    log.info("Database ready")
    yield


log.info("Initializing admin console server")
app = FastAPI(
    lifespan=lifespan,
    title="Admin Console Backend",
    description="Per-target capabilities, organizations and roles with Appwrite authentication",
    version=VERSION,
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.ALLOW_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    # {field: message}, keyed by the camelCase field name the client sent
    errors = {
        error["loc"][-1]: error["msg"]
        for error in exc.errors()
        if error.get("loc") and "msg" in error
    }
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError) -> Response:
    log.info("Authorization denied on %s %s: %s (%s)", request.method, request.url.path, exc.reason.value, exc.detail)
    return JSONResponse({"detail": PUBLIC_DENIAL_MESSAGE}, status_code=403)


@app.exception_handler(InvalidSubjectError)
async def invalid_subject_handler(request: Request, exc: InvalidSubjectError) -> Response:
    log.error("Invalid subject on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": "Invalid user record"}, status_code=500)


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.get("/")
async def root():
    return {
        "message": "Admin Console Backend API",
        "version": VERSION,
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "public_endpoints": ["/", "/health", "/password-policy"],
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/password-policy")
async def password_policy():
    """Password rules enforced on admin password resets."""
    return {"minLength": config.PASSWORD_MIN_LENGTH}


app.include_router(admin_user_router, prefix="/admin/users", tags=["admin-users"])
app.include_router(organization_router, prefix="/organizations", tags=["organizations"])
app.include_router(rbac_router, prefix="/rbac", tags=["rbac"])
