"""Operator endpoints for stored changes."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from stackdrift.api.deps import Pipeline, require_admin_key
from stackdrift.repositories import PersistenceError
from stackdrift.services.pipeline import (
    ChangeNotFoundError,
    EmptyDiffError,
    EmptySnapshotError,
    SnapshotNotFoundError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin_key)])


class ReanalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    change_id: str | None = Field(default=None, alias="changeId")


@router.post("/reanalyze")
def reanalyze(pipeline: Pipeline, payload: ReanalyzeRequest | None = None) -> dict[str, Any]:
    """Re-run analysis for an existing change, overwriting its analysis fields."""
    if payload is None or not payload.change_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="changeId is required")

    change_id = payload.change_id
    try:
        result = pipeline.reanalyze_change(change_id)
    except ChangeNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Change not found")
    except SnapshotNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snapshots not found")
    except EmptySnapshotError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Snapshot content is empty",
        )
    except EmptyDiffError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No differences found between snapshots",
        )
    except PersistenceError as e:
        logger.error(f"Failed to save re-analysis for change {change_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update change",
        )

    return {"success": True, **result.to_dict()}
