import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from subscription_engine.api import metrics, subscriptions
from subscription_engine.core.config import settings, validate_config
from subscription_engine.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from subscription_engine.core.logging import configure_logging
from subscription_engine.core.middleware.request_id import RequestIdMiddleware
from subscription_engine.features.subscriptions.engine import reset_engine

configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("subscription_engine")
    logger.info("Starting subscription engine...")
    try:
        yield
    finally:
        reset_engine()
        logger.info("Stopping subscription engine...")


app = FastAPI(title="Subscription Engine", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(subscriptions.router)
app.include_router(metrics.router)


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("subscription_engine.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
