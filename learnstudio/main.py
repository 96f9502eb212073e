import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from the project .env (tests configure the environment themselves)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from learnstudio.core.config import settings, validate_config  # noqa: E402
from learnstudio.core.logging import configure_logging  # noqa: E402
from learnstudio.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from learnstudio.core.validation import validate_env  # noqa: E402
from learnstudio.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from learnstudio.api import admin_billing, admin_invoices, health, payments  # noqa: E402

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("learnstudio")
    logger.info("Starting LearnStudio billing service...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("learnstudio").info("Stopping LearnStudio billing service...")


app = FastAPI(title="LearnStudio - Billing", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(admin_invoices.router, tags=["admin-invoices"])
app.include_router(admin_billing.router, tags=["admin-billing"])
app.include_router(payments.router, tags=["payments"])


def run() -> None:
    """Serve the API with uvicorn (HOST/PORT from the environment)."""
    import uvicorn

    uvicorn.run(
        "learnstudio.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    run()
