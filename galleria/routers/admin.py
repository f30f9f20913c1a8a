import logging
import secrets
from typing import List

from fastapi import (
    APIRouter, Depends, Request, UploadFile, File, Form, HTTPException, Query
)
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import models
from ..database import get_db
from ..dependencies import get_pipeline, get_urls, is_admin, require_admin
from ..schemas import (
    AdminGalleryOut, AnalyticsOut, CoverIn, DeleteResultOut, GalleryCreate, GalleryPatch, MoveIn,
    MoveResultOut, PhotoOut, PhotoPatch, ReorderIn, TopGalleryOut, UploadResultOut,
)
from ..services import galleries
from ..services.galleries import GalleryRuleViolation, SlugConflict
from ..services.images import InvalidImage
from ..services.photos import PhotoPipeline, UploadFailed
from ..services.storage import StorageNotConfigured
from ..services.url_cache import SignedUrlCache
from .public import present_photos

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ================
# Helpers
# ================
def load_gallery(db: Session, gallery_id: str) -> models.Gallery:
    gallery = galleries.get_gallery(db, gallery_id)
    if not gallery:
        raise HTTPException(status_code=404, detail="Gallery not found")
    return gallery


def load_photo(db: Session, photo_id: str) -> models.Photo:
    photo = galleries.get_photo(db, photo_id)
    if not photo:
        raise HTTPException(status_code=404, detail="Photo not found")
    return photo


def admin_view(gallery: models.Gallery, photo_count: int = 0) -> AdminGalleryOut:
    return AdminGalleryOut.model_validate(gallery).model_copy(
        update={"photo_count": photo_count, "has_password": bool(gallery.password_hash)}
    )


# ================
# Session
# ================
@router.post("/login")
def admin_login(request: Request, password: str = Form(...)):
    expected = request.app.state.settings.ADMIN_PASSWORD
    if secrets.compare_digest(password.encode("utf-8"), expected.encode("utf-8")):
        request.session["admin"] = True
        return {"ok": True}
    raise HTTPException(status_code=401, detail="Wrong password")


@router.post("/logout")
def admin_logout(request: Request):
    request.session.pop("admin", None)
    return {"ok": True}


@router.get("/me")
def admin_me(request: Request):
    return {"admin": is_admin(request)}


# ================
# Galleries
# ================
@router.get("/galleries", response_model=List[AdminGalleryOut])
def list_galleries(request: Request, db: Session = Depends(get_db)):
    require_admin(request)
    counts = galleries.photo_counts(db)
    return [admin_view(g, counts.get(g.id, 0)) for g in galleries.list_galleries(db)]


@router.post("/galleries", response_model=AdminGalleryOut, status_code=201)
def create_gallery(request: Request, body: GalleryCreate, db: Session = Depends(get_db)):
    require_admin(request)
    try:
        gallery = galleries.create_gallery(db, body)
    except SlugConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    return admin_view(gallery)


@router.patch("/galleries/{gallery_id}", response_model=AdminGalleryOut)
def update_gallery(
    request: Request, gallery_id: str, body: GalleryPatch, db: Session = Depends(get_db)
):
    require_admin(request)
    gallery = load_gallery(db, gallery_id)
    try:
        gallery = galleries.apply_gallery_patch(db, gallery, body)
    except SlugConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except GalleryRuleViolation as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    return admin_view(gallery, galleries.photo_counts(db).get(gallery.id, 0))


@router.delete("/galleries/{gallery_id}", response_model=DeleteResultOut)
async def delete_gallery(
    request: Request,
    gallery_id: str,
    db: Session = Depends(get_db),
    pipeline: PhotoPipeline = Depends(get_pipeline),
):
    """Delete a gallery with all its photos; storage cleanup is best-effort."""
    require_admin(request)
    gallery = load_gallery(db, gallery_id)
    cleanup = await pipeline.delete_gallery(db, gallery)
    return DeleteResultOut(objects_removed=cleanup.removed, objects_failed=cleanup.failed)


@router.put("/galleries/{gallery_id}/cover", response_model=AdminGalleryOut)
def set_cover(request: Request, gallery_id: str, body: CoverIn, db: Session = Depends(get_db)):
    require_admin(request)
    gallery = load_gallery(db, gallery_id)
    try:
        gallery = galleries.set_cover(db, gallery, body.photo_id)
    except GalleryRuleViolation as e:
        raise HTTPException(status_code=400, detail=str(e))
    return admin_view(gallery, galleries.photo_counts(db).get(gallery.id, 0))


# ================
# Photos
# ================
@router.get("/galleries/{gallery_id}/photos", response_model=List[PhotoOut])
async def list_photos(
    request: Request,
    gallery_id: str,
    db: Session = Depends(get_db),
    pipeline: PhotoPipeline = Depends(get_pipeline),
):
    require_admin(request)
    gallery = load_gallery(db, gallery_id)
    return await present_photos(pipeline, galleries.gallery_photos(db, gallery.id, include_hidden=True))


@router.post("/galleries/{gallery_id}/photos", response_model=UploadResultOut)
async def upload_photos(
    request: Request,
    gallery_id: str,
    files: list[UploadFile] = File(...),
    db: Session = Depends(get_db),
    pipeline: PhotoPipeline = Depends(get_pipeline),
):
    """
    Upload one or more photos. Each file either lands with all three
    renditions stored and a row written, or is reported under `failed`.
    """
    require_admin(request)
    gallery = load_gallery(db, gallery_id)
    max_bytes = request.app.state.settings.MAX_UPLOAD_BYTES

    uploaded = []
    failed = []
    storage_error = False
    too_large = 0
    for file in files:
        name = file.filename or "upload"
        data = await file.read()
        if len(data) > max_bytes:
            too_large += 1
            failed.append({"filename": name, "error": "File too large"})
            continue
        try:
            uploaded.append(await pipeline.upload_photo(db, gallery, data, name))
        except InvalidImage as e:
            logger.warning("Rejected upload %s: %s", name, e)
            failed.append({"filename": name, "error": str(e)})
        except (UploadFailed, StorageNotConfigured):
            storage_error = True
            failed.append({"filename": name, "error": "Storage error, please retry"})

    result = UploadResultOut(uploaded=await present_photos(pipeline, uploaded), failed=failed)
    if not uploaded:
        if storage_error:
            status = 502
        elif too_large == len(files):
            status = 413
        else:
            status = 400
        return JSONResponse(status_code=status, content=result.model_dump(mode="json"))
    return result


@router.put("/galleries/{gallery_id}/photos/order")
def reorder_photos(
    request: Request, gallery_id: str, body: ReorderIn, db: Session = Depends(get_db)
):
    require_admin(request)
    gallery = load_gallery(db, gallery_id)
    try:
        galleries.reorder_photos(db, gallery, body.photo_ids)
    except GalleryRuleViolation as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True}


@router.patch("/photos/{photo_id}", response_model=PhotoOut)
async def update_photo(
    request: Request,
    photo_id: str,
    body: PhotoPatch,
    db: Session = Depends(get_db),
    pipeline: PhotoPipeline = Depends(get_pipeline),
):
    require_admin(request)
    photo = galleries.apply_photo_patch(db, load_photo(db, photo_id), body)
    (out,) = await present_photos(pipeline, [photo])
    return out


@router.post("/photos/move", response_model=MoveResultOut)
async def move_photos(
    request: Request,
    body: MoveIn,
    db: Session = Depends(get_db),
    pipeline: PhotoPipeline = Depends(get_pipeline),
):
    """Move photos to another gallery, re-keying their stored renditions."""
    require_admin(request)
    target = load_gallery(db, body.target_gallery_id)
    result = await pipeline.relocate(db, body.photo_ids, target)
    return MoveResultOut(
        moved=result.moved, failed=result.failed, cleanup_failures=result.cleanup_failures
    )


@router.delete("/photos/{photo_id}", response_model=DeleteResultOut)
async def delete_photo(
    request: Request,
    photo_id: str,
    db: Session = Depends(get_db),
    pipeline: PhotoPipeline = Depends(get_pipeline),
):
    require_admin(request)
    cleanup = await pipeline.delete_photo(db, load_photo(db, photo_id))
    return DeleteResultOut(objects_removed=cleanup.removed, objects_failed=cleanup.failed)


# ================
# Analytics
# ================
@router.get("/analytics", response_model=AnalyticsOut)
async def analytics(
    request: Request,
    days: int = Query(30, ge=1, le=365),
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
    urls: SignedUrlCache = Depends(get_urls),
):
    """Most viewed galleries and photos, storage use and recent upload activity."""
    require_admin(request)

    photos = galleries.top_photos(db, limit)
    thumbnails = await urls.get_urls(p.s3_thumbnail_key for p in photos)
    by_gallery = galleries.storage_by_gallery(db)
    original_bytes = sum(size for _, _, size in by_gallery)

    return {
        "top_galleries": [TopGalleryOut.model_validate(g) for g in galleries.top_galleries(db, limit)],
        "top_photos": [
            {
                "id": p.id,
                "gallery_id": p.gallery_id,
                "gallery_title": p.gallery.title,
                "original_filename": p.original_filename,
                "view_count": p.view_count,
                "download_count": p.download_count,
                "thumbnail_url": url,
            }
            for p, url in zip(photos, thumbnails)
        ],
        "storage": {
            "original_bytes": original_bytes,
            "estimated_bytes": round(original_bytes * galleries.STORAGE_MULTIPLIER),
            "galleries": [
                {"id": gid, "title": title, "bytes": round(size * galleries.STORAGE_MULTIPLIER)}
                for gid, title, size in by_gallery
            ],
        },
        "upload_activity": [
            {"day": day, "count": count} for day, count in galleries.upload_activity(db, days)
        ],
    }
