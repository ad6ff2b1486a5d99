import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from omnigate.dependencies import Container, get_container, require_internal_key
from omnigate.schemas.media import MediaResolveResponse
from omnigate.services.media_content import parse_media_content
from omnigate.services.storage_service import ObjectNotFoundError

router = APIRouter(prefix="/v1/media", dependencies=[Depends(require_internal_key)])


@router.get("/resolve", response_model=MediaResolveResponse)
def resolve_media(content: str = Query(...)):
    """Decode a media reference from message content into a fetchable URL."""
    reference = parse_media_content(content)
    if reference is None:
        raise HTTPException(status_code=400, detail="Not a media reference")
    return MediaResolveResponse(
        media_type=reference.media_type,
        storage_key=reference.storage_key,
        caption=reference.caption,
        url=f"/v1/media/{reference.storage_key}",
    )


@router.get("/{storage_key:path}")
async def get_media(storage_key: str, container: Container = Depends(get_container)):
    if ".." in storage_key.split("/"):
        raise HTTPException(status_code=400, detail="Invalid storage key")
    try:
        stored = await asyncio.to_thread(container.storage.get, storage_key)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Media not found")
    return Response(
        content=stored.body,
        media_type=stored.content_type,
        headers={"Cache-Control": "private, max-age=3600"},
    )
