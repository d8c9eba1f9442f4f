import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from interlink.api import endpoints
from interlink.core.config import settings
from interlink.core.errors import InterlinkError, ValidationError
from interlink.core.limiter import limiter
from interlink.core.logging_config import configure_logging
from interlink.db.base import init_db

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables. A broken database should stop the process.
    init_db()
    logger.info(f"{settings.PROJECT_NAME} started")
    yield


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Rate Limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(InterlinkError)
async def interlink_error_handler(request: Request, exc: InterlinkError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content={"error": exc.code, "detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {"loc": (), "msg": "Invalid request"}
    field = ".".join(str(part) for part in first["loc"] if part != "body")
    detail = f"{field}: {first['msg']}" if field else first["msg"]
    return JSONResponse(status_code=400, content={"error": ValidationError.code, "detail": detail})


# Set all CORS enabled origins
_cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(endpoints.router, prefix="/api", tags=["api"])


@app.get("/health")
def health_check():
    return {"status": "healthy", "project": settings.PROJECT_NAME}


@app.get("/")
def root():
    return {"message": "Welcome to Interlink API"}
