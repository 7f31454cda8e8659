"""Celery task definitions.

These tasks are thin wrappers around ``ChangePipeline``; the detection logic
lives in the services module.
"""

import logging

from celery.exceptions import SoftTimeLimitExceeded

from stackdrift.config import get_settings
from stackdrift.database import SessionLocal
from stackdrift.services.pipeline import ReanalysisPreconditionError, build_pipeline
from stackdrift.workers.celery_app import celery_app

settings = get_settings()
logger = logging.getLogger(__name__)

# Hard limit leaves room for the document in flight when the budget runs out
BATCH_TIME_LIMIT_MARGIN = 60


@celery_app.task(
    soft_time_limit=settings.batch_budget_seconds + BATCH_TIME_LIMIT_MARGIN,
    time_limit=settings.batch_budget_seconds + 2 * BATCH_TIME_LIMIT_MARGIN,
)
def check_documents_for_changes(budget_seconds: float | None = None) -> dict:
    """Periodic task: check every active document once.

    Runs daily via Celery Beat. Documents not reached within the budget are
    reported as deferred and picked up by the next run.
    """
    session = SessionLocal()
    try:
        pipeline = build_pipeline(session, settings)
        result = pipeline.run_batch(
            budget_seconds if budget_seconds is not None else settings.batch_budget_seconds
        )
        return result.to_dict()

    except SoftTimeLimitExceeded:
        session.rollback()
        logger.error("check_documents_for_changes hit its soft time limit")
        return {"error": "Batch timed out"}

    except Exception as e:
        session.rollback()
        logger.error(f"check_documents_for_changes failed: {e}")
        return {"error": str(e)}

    finally:
        session.close()


@celery_app.task(soft_time_limit=120, time_limit=150)
def reanalyze_change(change_id: str) -> dict:
    """Re-run analysis for one stored change."""
    session = SessionLocal()
    try:
        pipeline = build_pipeline(session, settings)
        return pipeline.reanalyze_change(change_id).to_dict()

    except ReanalysisPreconditionError as e:
        logger.warning(f"Cannot re-analyze change {change_id}: {e}")
        return {"error": str(e)}

    except Exception as e:
        session.rollback()
        logger.error(f"reanalyze_change failed for {change_id}: {e}")
        return {"error": str(e)}

    finally:
        session.close()
