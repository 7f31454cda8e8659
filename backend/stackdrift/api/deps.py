"""Dependency injection for FastAPI routes."""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from stackdrift.config import Settings, get_settings
from stackdrift.database import get_db
from stackdrift.services.pipeline import ChangePipeline, build_pipeline

# Type aliases for dependency injection
DbSession = Annotated[Session, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def _check_bearer(authorization: str | None, secret: str) -> None:
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def require_cron_secret(
    settings: AppSettings,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    _check_bearer(authorization, settings.cron_secret)


def require_admin_key(
    settings: AppSettings,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    _check_bearer(authorization, settings.admin_api_key)


def get_pipeline(db: DbSession, settings: AppSettings) -> ChangePipeline:
    return build_pipeline(db, settings)


Pipeline = Annotated[ChangePipeline, Depends(get_pipeline)]
