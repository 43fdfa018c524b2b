import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.dependencies import get_activity_store, limiter
from app.models.read_response import ReadSuccessResponse
from app.services.activity import ActivityStore, replay_entry
from app.services.deduplicator import PATH_READ_GET
from app.services.reader import default_markdown

logger = logging.getLogger(__name__)

router = APIRouter(tags=["logs"])


@router.get("/logs/{request_id}", summary="Replay a logged response")
@limiter.limit("60/minute")
async def get_log(
    request: Request,
    request_id: str,
    store: ActivityStore = Depends(get_activity_store),
):
    """Return the logged response in the shape the original endpoint sent it."""
    entry = await store.get_activity(request_id)
    response = await replay_entry(store, entry) if entry is not None else None
    if response is None:
        raise HTTPException(status_code=404, detail=f"No logged request with id {request_id}.")
    if isinstance(response, dict):
        return JSONResponse(status_code=200, content=response)
    if entry.path == PATH_READ_GET and isinstance(response, ReadSuccessResponse):
        markdown = response.markdown or default_markdown(response.title, response.target_url, response.description)
        return PlainTextResponse(markdown, media_type="text/markdown")
    return JSONResponse(status_code=200, content=response.to_wire())
