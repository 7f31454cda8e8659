"""Change history endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from stackdrift.api.deps import Pipeline, require_admin_key
from stackdrift.services.pipeline import ChangeNotFoundError, SnapshotNotFoundError

router = APIRouter(prefix="/history", dependencies=[Depends(require_admin_key)])


@router.get("/diff")
def change_diff(
    pipeline: Pipeline,
    change_id: str | None = Query(default=None, alias="id"),
) -> dict[str, Any]:
    """Sentence-level diff behind a stored change, recomputed from its snapshots."""
    if not change_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing change id")

    try:
        result = pipeline.diff_for_change(change_id)
    except ChangeNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Change not found")
    except SnapshotNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snapshots not found")

    return {"change_id": change_id, **result.to_dict()}
