"""Endpoints that run the change detection batch."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from stackdrift.api.deps import AppSettings, Pipeline, require_admin_key, require_cron_secret

logger = logging.getLogger(__name__)
router = APIRouter()


def _run_check(pipeline: Pipeline, settings: AppSettings, source: str) -> dict[str, Any]:
    logger.info(f"Change check triggered by {source}")
    try:
        result = pipeline.run_batch(settings.batch_budget_seconds)
    except Exception as e:
        logger.exception(f"Change check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check documents",
        )
    return result.to_dict()


@router.get("/cron/check-tos", dependencies=[Depends(require_cron_secret)])
def cron_check(pipeline: Pipeline, settings: AppSettings) -> dict[str, Any]:
    """Scheduled check of every active document."""
    return _run_check(pipeline, settings, "cron")


@router.post("/admin/trigger-check", dependencies=[Depends(require_admin_key)])
def trigger_check(pipeline: Pipeline, settings: AppSettings) -> dict[str, Any]:
    """Operator-triggered check of every active document."""
    return _run_check(pipeline, settings, "admin")
