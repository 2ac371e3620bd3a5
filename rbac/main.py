from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from rbac.core import config
from rbac.core.database.engine import init_db
from rbac.features.permissions.exceptions import (
    AccessError,
    AlreadyAssignedError,
    NotAssignedError,
    NotSyncedError,
)
from rbac.features.permissions.naming import import_enum
from rbac.features.permissions.routes import router as access_router
from rbac.features.users.dependencies import get_authorization_header
from rbac.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="RBAC Engine",
    description="Role and permission resolution with a management API",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter

# Closed role enumeration, injected into resolvers and managers per request
app.state.role_enum = import_enum(config.ROLE_ENUM) if config.ROLE_ENUM else None
if app.state.role_enum is not None:
    log.info("Using role enum %s", config.ROLE_ENUM)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.rbac.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if not config.JWT_SECRET:
    if config.JWT_TRUST_UNSIGNED:
        log.warning("JWT_TRUST_UNSIGNED set: bearer token signatures are not verified")
    else:
        log.warning("JWT_SECRET not set: every bearer token will be rejected")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(AccessError)
async def access_error_handler(_request: Request, exc: AccessError) -> Response:
    content = {"detail": str(exc)}
    if isinstance(exc, NotSyncedError):
        status_code = 422
        content["names"] = exc.names
    elif isinstance(exc, AlreadyAssignedError):
        status_code = 409
    elif isinstance(exc, NotAssignedError):
        status_code = 404
    else:
        status_code = 422
    log.info("Access error %s: %s", type(exc).__name__, exc)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "RBAC Engine API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/access/*"],
            "manage_permission": config.ACCESS_MANAGE_PERMISSION,
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Access management routes
app.include_router(access_router, prefix="/access", tags=["access"])
