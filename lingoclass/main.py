from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lingoclass.config import settings
from lingoclass.errors import DomainError
from lingoclass.extensions import db
from lingoclass.logging_config import configure_logging
from lingoclass.routers import activities, auth, bookings, credits, exams, health, rewards

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.create_all()
    log.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    db.remove_session()


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error(request: Request, exc: DomainError):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in e["loc"] if p != "body") for e in exc.errors()]
        return JSONResponse({"error": "Invalid request", "fields": fields}, status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app() -> FastAPI:
    configure_logging(settings)
    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    register_error_handlers(app)

    app.include_router(auth.router)
    app.include_router(bookings.router)
    app.include_router(credits.router)
    app.include_router(rewards.router)
    app.include_router(activities.router)
    app.include_router(exams.router)
    app.include_router(health.router)
    return app


app = create_app()
