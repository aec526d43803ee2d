from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from api.v1 import auth, users
from core.config import settings
from core.errors import ApiError
from db.mongodb import close_mongo_client, get_mongo_db, init_mongo_indexes, ping_mongo
from services.asset_service import get_asset_store
from utils.logging_config import configure_logging, RequestContextMiddleware
from utils.responses import error_response

# Configure logging with date-based files and TTL retention
logger = configure_logging("blog_platform")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG
)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} at {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.error_code, reason=exc.reason)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
    return error_response(400, message, "validation_error")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), "http_error")


# Global exception handler to ensure 500s for unexpected errors
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error at {request.url.path}: {exc}")
    return error_response(500, "Internal server error", "server_error")

# Add GZip compression for larger JSON payloads
app.add_middleware(GZipMiddleware, minimum_size=500)

# Add logging context middleware to capture user_id and API path
app.add_middleware(RequestContextMiddleware)

# CORS middleware; credentials are required for the auth cookies
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix=f"{settings.API_V1_STR}/users", tags=["Authentication"])
app.include_router(users.router, prefix=f"{settings.API_V1_STR}/users", tags=["Users"])

_assets = get_asset_store()
if _assets.is_local:
    app.mount("/uploads", StaticFiles(directory=str(_assets.uploads_dir), check_dir=False), name="uploads")


@app.on_event("startup")
async def startup_db_client():
    if settings.USE_MONGO:
        if await init_mongo_indexes():
            logger.info("Mongo indexes ensured")
    else:
        logger.info("USE_MONGO=false; using in-memory user store")
    logger.info("Application startup complete")

@app.on_event("shutdown")
async def shutdown_db_client():
    close_mongo_client()
    logger.info("Application shutdown complete")

@app.get("/")
async def root():
    return {"message": settings.APP_NAME, "version": settings.VERSION}

@app.get("/health")
async def health_check():
    if not settings.USE_MONGO:
        return {"status": "healthy", "database": "memory"}
    if get_mongo_db() is None:
        return {"status": "degraded", "database": "mongo_unconfigured"}
    try:
        await ping_mongo()
        return {"status": "healthy", "database": "mongo_connected"}
    except Exception as e:
        logger.warning(f"Health Mongo check failed: {e}")
        return {"status": "degraded", "database": "mongo_unavailable"}
