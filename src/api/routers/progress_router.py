"""
Progress router.

Export and import of progress snapshots as versioned JSON documents.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import Response

from src.api.dependencies import get_progress_codec
from src.progress.codec import ProgressCodec

router = APIRouter()


@router.get("/{exam_id}/progress", summary="Export progress snapshot")
def export_progress(
    exam_id: str,
    codec: ProgressCodec = Depends(get_progress_codec),
) -> Response:
    """Export answers, SRS cards and bookmarks keyed by question number."""
    snapshot = codec.export(exam_id)
    return Response(
        content=codec.dumps(snapshot),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="progress-{exam_id}.json"'},
    )


@router.post("/{exam_id}/progress", summary="Import progress snapshot")
def import_progress(
    exam_id: str,
    snapshot: dict[str, Any] = Body(..., description="Progress snapshot document"),
    remap: bool = Query(False, description="Accept a snapshot exported from another exam id"),
    codec: ProgressCodec = Depends(get_progress_codec),
) -> dict[str, Any]:
    """
    Replay a snapshot into the exam.

    Re-importing the same snapshot adds no answers; card state converges to
    the snapshot's values.
    """
    report = codec.import_snapshot(exam_id, snapshot, remap=remap)
    return {"imported": report.to_dict()}
