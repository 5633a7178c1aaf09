import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lingoclass.config import settings
from lingoclass.dependencies import get_db

log = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", name="health.check")
def health(session: Session = Depends(get_db)):
    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        log.exception("Database health check failed")
        return JSONResponse({"status": "error", "database": "unavailable"}, status_code=503)
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION}
