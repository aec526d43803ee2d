import logging
import logging.handlers
import contextvars
import time
from pathlib import Path
from typing import Dict, Optional, Tuple

from core.config import settings
from core.errors import TokenError
from core.security import ACCESS, token_issuer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

LOG_FORMAT = "%(levelname)s - %(asctime)s - %(user_id)s - %(api)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ACCESS_LOGGER = "blog_platform.access"

# logger name -> handler keys; the root entry catches module loggers (services.*, db.*, api.*)
LOGGER_ROUTES: Dict[str, Tuple[str, ...]] = {
    "": ("app", "error", "console"),
    "uvicorn": ("app", "error", "console"),
    "uvicorn.error": ("app", "error", "console"),
    "fastapi": ("app", "error", "console"),
    "uvicorn.access": ("access", "console"),
    ACCESS_LOGGER: ("access",),
}

user_id_var = contextvars.ContextVar("user_id", default="-")
api_var = contextvars.ContextVar("api", default="-")

access_logger = logging.getLogger(ACCESS_LOGGER)


def map_log_level(level_name: str) -> int:
    level = getattr(logging, (level_name or "INFO").upper(), None)
    return level if isinstance(level, int) else logging.INFO


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = user_id_var.get()
        record.api = api_var.get()
        return True


def _daily_file(log_dir: Path, filename: str, level: int) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir / filename),
        when="midnight",
        backupCount=max(int(settings.LOG_TTL_DAYS), 0),
        encoding="utf-8",
        utc=True,
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    return handler


def _build_handlers(level: int, log_dir: Path) -> Dict[str, logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: Dict[str, logging.Handler] = {
        "app": _daily_file(log_dir, "app.log", level),
        "access": _daily_file(log_dir, "access.log", level),
        "error": _daily_file(log_dir, "error.log", logging.WARNING),
        "console": logging.StreamHandler(),
    }
    handlers["console"].setLevel(level)
    context = ContextFilter()
    for handler in handlers.values():
        handler.setFormatter(formatter)
        handler.addFilter(context)
    return handlers


def _attach(target: logging.Logger, handlers, level: int) -> None:
    for h in list(target.handlers):
        target.removeHandler(h)
    for h in handlers:
        target.addHandler(h)
    target.setLevel(level)


def configure_logging(app_logger_name: Optional[str] = None) -> logging.Logger:
    """Configure logging with daily rotation and TTL-based retention.

    - Rotates at midnight UTC; keeps the last LOG_TTL_DAYS files
    - app.log and error.log get application and server logs, access.log
      gets one line per request
    """
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = map_log_level(settings.LOG_LEVEL)
    handlers = _build_handlers(level, log_dir)

    routes = dict(LOGGER_ROUTES)
    routes.setdefault(app_logger_name or "blog_platform", ("app", "error", "console"))
    for name, keys in routes.items():
        lgr = logging.getLogger(name)
        if name:
            lgr.propagate = False
        _attach(lgr, [handlers[k] for k in keys], level)

    return logging.getLogger(app_logger_name or "blog_platform")


def _request_user_id(request: Request) -> str:
    token = request.cookies.get(settings.ACCESS_COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("authorization") or ""
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
    if not token:
        return "-"
    try:
        return token_issuer.verify(token, ACCESS).get("sub") or "-"
    except TokenError:
        # Rejection is the gate's job; the log line just stays anonymous
        return "-"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag every log record of a request with the caller and the route."""

    async def dispatch(self, request: Request, call_next):
        user_token = user_id_var.set(_request_user_id(request))
        api_token = api_var.set(f"{request.method} {request.url.path}")
        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            access_logger.info(f"{status} in {elapsed_ms:.1f} ms")
            user_id_var.reset(user_token)
            api_var.reset(api_token)
