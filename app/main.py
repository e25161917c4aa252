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

from app.core import config
from app.core.database.engine import init_db
from app.core.errors import AppError, app_error_handler
from app.core.responses import error_response
from app.features.access.context import ContextResolver
from app.features.access.dependencies import build_catalog
from app.features.access.identity import build_identity_source, get_authorization_header
from app.features.access.policy import AccessPolicy
from app.features.access.routes import router as access_router
from app.features.organizations.routes import router as member_router
from app.features.permissions.routes import router as permission_router
from app.features.projects.routes import router as project_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Sitebook API",
    description="Construction project management backend with organization-scoped access control",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
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


app.add_exception_handler(AppError, app_error_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[str(key)] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(error_response("Validation failed", "VALIDATION_ERROR", errors)),
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse(error_response("You are going too fast", "RATE_LIMITED"), status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database and access control on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")

    catalog = build_catalog()
    access_policy = AccessPolicy.default(catalog)
    app.state.catalog = catalog
    app.state.access_policy = access_policy
    app.state.context_resolver = ContextResolver(build_identity_source(), access_policy)
    log.info("Access control ready: %d permissions, roles %s", len(catalog), ", ".join(access_policy.names()))


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Sitebook API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require a Bearer token carrying organization, user and role claims",
            "identity_source": config.IDENTITY_SOURCE,
            "protected_endpoints": ["/access/*", "/permissions/*", "/roles/*", "/members/*", "/projects/*"],
            "public_endpoints": ["/", "/health"]
        },
        "features": {
            "access": "Resolved role, permissions and project scope of the caller",
            "permissions": "Permission catalog grouped by category",
            "roles": "System and custom organization roles with per-resource scopes",
            "members": "Organization members and their project assignments",
            "projects": "Projects filtered by the caller's access"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(access_router, prefix="/access", tags=["access"])

# Permission catalog and role routes
app.include_router(permission_router, tags=["permissions"])

# Member routes
app.include_router(member_router, prefix="/members", tags=["members"])

# Project routes
app.include_router(project_router, prefix="/projects", tags=["projects"])
