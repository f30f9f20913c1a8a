from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from .. import models
from ..database import get_db
from ..dependencies import (
    gallery_token, get_gate, get_limiter, get_pipeline, get_store, get_urls
)
from ..schemas import (
    AccessTokenOut, DownloadOut, FeaturedPhotoOut, GalleryOut, LockedGalleryOut,
    PasswordIn, PhotoOut,
)
from ..services import galleries, zips
from ..services.access import AccessTokenGate
from ..services.photos import PhotoPipeline
from ..services.ratelimit import RateLimiter
from ..services.storage import StorageNotConfigured
from ..services.url_cache import SignedUrlCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["public"])

# One response for every failed unlock or access check, whatever the reason
ACCESS_DENIED = "Access denied"


def deny() -> HTTPException:
    return HTTPException(status_code=403, detail=ACCESS_DENIED)


def load_gallery(db: Session, slug: str) -> models.Gallery:
    """Fetch a gallery by slug or 404."""
    gallery = galleries.get_gallery_by_slug(db, slug)
    if not gallery:
        raise HTTPException(status_code=404, detail="Gallery not found")
    return gallery


def load_visible_photo(db: Session, photo_id: str) -> models.Photo:
    photo = galleries.get_photo(db, photo_id)
    if not photo or photo.is_hidden:
        raise HTTPException(status_code=404, detail="Photo not found")
    return photo


async def present_photos(pipeline: PhotoPipeline, photos: Sequence[models.Photo]) -> List[PhotoOut]:
    urls = await pipeline.rendition_urls_many(photos)
    return [PhotoOut.model_validate(p).model_copy(update=u) for p, u in zip(photos, urls)]


async def cover_url(
    db: Session, urls: SignedUrlCache, gallery: models.Gallery
) -> Optional[str]:
    """Thumbnail of the chosen cover if visible, else of the first visible photo."""
    photo = galleries.get_photo(db, gallery.cover_photo_id) if gallery.cover_photo_id else None
    if photo is None or photo.is_hidden:
        visible = galleries.gallery_photos(db, gallery.id)
        photo = visible[0] if visible else None
    return await urls.get_url(photo.s3_thumbnail_key) if photo else None


# ================
# Galleries
# ================
@router.get("/galleries", response_model=List[GalleryOut])
async def list_galleries(
    db: Session = Depends(get_db), urls: SignedUrlCache = Depends(get_urls)
):
    """Public galleries, newest first, with a cover URL."""
    result = []
    for gallery in galleries.list_public_galleries(db):
        out = GalleryOut.model_validate(gallery)
        result.append(out.model_copy(update={"cover_url": await cover_url(db, urls, gallery)}))
    return result


@router.get("/galleries/{slug}", response_model=None)
async def get_gallery(
    slug: str,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(gallery_token),
    gate: AccessTokenGate = Depends(get_gate),
    urls: SignedUrlCache = Depends(get_urls),
):
    """Gallery details. A locked private gallery is described without its id."""
    gallery = load_gallery(db, slug)
    if not gate.check_access(gallery, token):
        return LockedGalleryOut.model_validate(gallery)

    galleries.increment_gallery_views(db, gallery.id)
    db.refresh(gallery)
    out = GalleryOut.model_validate(gallery)
    return out.model_copy(update={"cover_url": await cover_url(db, urls, gallery)})


@router.post("/galleries/{slug}/verify", response_model=AccessTokenOut)
def verify_gallery_password(
    slug: str,
    body: PasswordIn,
    db: Session = Depends(get_db),
    gate: AccessTokenGate = Depends(get_gate),
):
    """Exchange a private gallery's password for a signed access token."""
    gallery = load_gallery(db, slug)
    if gallery.is_public or not gate.verify_password(gallery, body.password):
        logger.info("Rejected unlock attempt for gallery %s", slug)
        raise deny()
    token = gate.issue_access_token(gallery.id, gallery.slug)
    return AccessTokenOut(token=token, expires_in=gate.ttl_seconds)


@router.get("/galleries/{slug}/photos", response_model=List[PhotoOut])
async def get_gallery_photos(
    slug: str,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(gallery_token),
    gate: AccessTokenGate = Depends(get_gate),
    pipeline: PhotoPipeline = Depends(get_pipeline),
):
    gallery = load_gallery(db, slug)
    if not gate.check_access(gallery, token):
        raise deny()
    return await present_photos(pipeline, galleries.gallery_photos(db, gallery.id))


@router.get("/galleries/{slug}/download")
def download_gallery(
    slug: str,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(gallery_token),
    gate: AccessTokenGate = Depends(get_gate),
    store=Depends(get_store),
):
    """Stream every visible original of a gallery as one ZIP archive."""
    gallery = load_gallery(db, slug)
    if not gate.check_access(gallery, token):
        raise deny()
    if not store.configured:
        raise StorageNotConfigured("S3 is not configured. Check AWS environment variables.")

    entries = [(p.original_filename, p.s3_key) for p in galleries.gallery_photos(db, gallery.id)]
    headers = {"Content-Disposition": f'attachment; filename="{gallery.slug}.zip"'}
    return StreamingResponse(
        zips.stream_zip(store, entries, base_prefix=gallery.slug),
        media_type="application/zip",
        headers=headers,
    )


# ================
# Photos
# ================
@router.get("/photos/featured", response_model=List[FeaturedPhotoOut])
async def get_featured(
    db: Session = Depends(get_db), pipeline: PhotoPipeline = Depends(get_pipeline)
):
    photos = galleries.featured_photos(db)
    presented = await present_photos(pipeline, photos)
    return [
        FeaturedPhotoOut(
            **out.model_dump(), gallery_title=p.gallery.title, gallery_slug=p.gallery.slug
        )
        for p, out in zip(photos, presented)
    ]


@router.get("/photos/{photo_id}", response_model=PhotoOut)
async def get_photo(
    photo_id: str,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(gallery_token),
    gate: AccessTokenGate = Depends(get_gate),
    pipeline: PhotoPipeline = Depends(get_pipeline),
):
    photo = load_visible_photo(db, photo_id)
    if not gate.check_access(photo.gallery, token):
        raise deny()
    (out,) = await present_photos(pipeline, [photo])
    return out


@router.get("/photos/{photo_id}/download", response_model=DownloadOut)
async def download_photo(
    photo_id: str,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(gallery_token),
    gate: AccessTokenGate = Depends(get_gate),
    urls: SignedUrlCache = Depends(get_urls),
):
    """Signed URL of the untouched original; counts the download."""
    photo = load_visible_photo(db, photo_id)
    if not gate.check_access(photo.gallery, token):
        raise deny()
    download_url = await urls.get_url(photo.s3_key)
    galleries.increment_photo_downloads(db, photo.id)
    return DownloadOut(filename=photo.original_filename, download_url=download_url)


@router.post("/photos/{photo_id}/view", status_code=204)
def track_photo_view(
    photo_id: str,
    request: Request,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(gallery_token),
    gate: AccessTokenGate = Depends(get_gate),
    limiter: RateLimiter = Depends(get_limiter),
):
    """Count a lightbox view. Always 204 so limits and misses are not observable."""
    ip = request.client.host if request.client else "unknown"
    if limiter.hit(f"{ip}:{request.url.path}"):
        photo = galleries.get_photo(db, photo_id)
        if photo and not photo.is_hidden and gate.check_access(photo.gallery, token):
            galleries.increment_photo_views(db, photo.id)
    return Response(status_code=204)
