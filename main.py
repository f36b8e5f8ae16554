import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from contact_store import SqliteContactStore
from db_models import ErrorResponse, FinalResponse, IdentifyRequest
from db_setup import init_db
from errors import AppError
from reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

START_TIME = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    init_db(settings.db_name)
    logger.info("Contact store ready at %s (%s)", settings.db_name, settings.environment)
    yield
    logger.info("Shutting down")


app = FastAPI(
    title=get_settings().app_name,
    version="1.0.0",
    lifespan=lifespan,
)


def get_engine() -> ReconciliationEngine:
    return ReconciliationEngine(SqliteContactStore(get_settings().db_name))


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message).model_dump(),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code < 500:
        logger.warning("Operational error: %s (%s)", exc.message, exc.status_code)
        return error_response(exc.status_code, exc.message)

    logger.error("Request failed: %s", exc.message, exc_info=exc)
    message = exc.message if get_settings().debug else "Internal server error"
    return error_response(exc.status_code, message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        msg = error.get("msg", "Invalid request")
        messages.append(msg.removeprefix("Value error, "))
    message = "; ".join(messages) or "Invalid request"
    logger.warning("Invalid request body: %s", message)
    return error_response(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return error_response(404, f"Route not found: {request.method} {request.url.path}")
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=exc)
    return error_response(500, "Internal server error")


@app.get("/")
async def root():
    return {"message": "Bitespeed API is up"}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - START_TIME, 3),
    }


@app.post(
    "/identify",
    response_model=FinalResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def identify(request: IdentifyRequest, engine: ReconciliationEngine = Depends(get_engine)):
    logger.info("Received identify request email=%s phoneNumber=%s", request.email, request.phoneNumber)
    contact = engine.identify(request.email, request.phoneNumber)
    return FinalResponse(contact=contact)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
