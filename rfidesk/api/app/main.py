import logging
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .errors import BackendError, RFIDeskError, ValidationError, kind_for_status
from .logging_utils import configure_logging, reset_request_id, set_request_id
from .schemas import format_validation_errors
from .admin import router as admin_router
from .auth_routes import router as auth_router
from .export import router as export_router
from .notifications import router as notifications_router
from .projects import router as projects_router
from .rfis import router as rfis_router
from .secure_links import router as client_router
from .startup import shutdown as _shutdown_handler, startup as _startup_handler

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="RFI Desk API", version="1.0.0")

app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(rfis_router)
app.include_router(admin_router)
app.include_router(export_router)
app.include_router(notifications_router)
app.include_router(client_router)

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
if origins:
    wildcard = "*" in origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else origins,
        # Credentials cannot be combined with a wildcard origin
        allow_credentials=False if wildcard else True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(GZipMiddleware, minimum_size=500)


@app.middleware("http")
async def request_id_context(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    token = set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)
    response.headers.setdefault("X-Request-ID", request_id)
    return response


@app.exception_handler(RFIDeskError)
async def rfidesk_error_handler(request: Request, exc: RFIDeskError):
    if isinstance(exc, BackendError):
        logger.warning(f"{request.method} {request.url.path}: {exc.raw_message}")
    return JSONResponse(jsonable_encoder(exc.to_payload()), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    payload = {
        "success": False,
        "error": exc.detail if isinstance(exc.detail, str) else "Request failed",
        "kind": kind_for_status(exc.status_code),
    }
    return JSONResponse(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = ValidationError("Invalid input data", details=format_validation_errors(exc.errors()))
    return JSONResponse(jsonable_encoder(err.to_payload()), status_code=err.status_code)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(BackendError(str(exc)).to_payload(), status_code=500)


app.on_event("startup")(_startup_handler)
app.on_event("shutdown")(_shutdown_handler)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {"status": "healthy", "version": app.version}

