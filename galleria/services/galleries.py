"""
Gallery and photo rows.

Partial updates go through `GalleryPatch` / `PhotoPatch`: only the fields listed
in GALLERY_PATCH_FIELDS / PHOTO_PATCH_FIELDS are ever written, and only when the
client actually sent them.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..schemas import GalleryCreate, GalleryPatch, PhotoPatch
from ..utils import gen_slug, hash_password, slug_from_title

logger = logging.getLogger(__name__)

GALLERY_PATCH_FIELDS = ("title", "slug", "description", "is_public", "password")
PHOTO_PATCH_FIELDS = ("is_featured", "is_hidden", "sort_order")


class SlugConflict(ValueError):
    """The requested slug belongs to another gallery."""


class GalleryRuleViolation(ValueError):
    """A write would break a gallery invariant (e.g. private without password)."""


# ================
# Reads
# ================
def get_gallery(db: Session, gallery_id: str) -> Optional[models.Gallery]:
    return db.get(models.Gallery, gallery_id)


def get_gallery_by_slug(db: Session, slug: str) -> Optional[models.Gallery]:
    return db.query(models.Gallery).filter(models.Gallery.slug == slug).first()


def list_public_galleries(db: Session) -> List[models.Gallery]:
    return (
        db.query(models.Gallery)
        .filter(models.Gallery.is_public.is_(True))
        .order_by(models.Gallery.created_at.desc())
        .all()
    )


def list_galleries(db: Session) -> List[models.Gallery]:
    return db.query(models.Gallery).order_by(models.Gallery.created_at.desc()).all()


def photo_counts(db: Session) -> dict:
    rows = (
        db.query(models.Photo.gallery_id, func.count(models.Photo.id))
        .group_by(models.Photo.gallery_id)
        .all()
    )
    return dict(rows)


def get_photo(db: Session, photo_id: str) -> Optional[models.Photo]:
    return db.get(models.Photo, photo_id)


def gallery_photos(db: Session, gallery_id: str, include_hidden: bool = False) -> List[models.Photo]:
    q = db.query(models.Photo).filter(models.Photo.gallery_id == gallery_id)
    if not include_hidden:
        q = q.filter(models.Photo.is_hidden.is_(False))
    return q.order_by(models.Photo.sort_order.asc(), models.Photo.uploaded_at.asc()).all()


def featured_photos(db: Session) -> List[models.Photo]:
    return (
        db.query(models.Photo)
        .join(models.Gallery, models.Photo.gallery_id == models.Gallery.id)
        .filter(
            models.Photo.is_featured.is_(True),
            models.Photo.is_hidden.is_(False),
            models.Gallery.is_public.is_(True),
        )
        .order_by(models.Photo.sort_order.asc(), models.Photo.uploaded_at.desc())
        .all()
    )


def next_sort_order(db: Session, gallery_id: str) -> int:
    current = (
        db.query(func.max(models.Photo.sort_order))
        .filter(models.Photo.gallery_id == gallery_id)
        .scalar()
    )
    return 0 if current is None else current + 1


# ================
# Writes
# ================
def _slug_taken(db: Session, slug: str, exclude_id: Optional[str] = None) -> bool:
    q = db.query(models.Gallery.id).filter(models.Gallery.slug == slug)
    if exclude_id:
        q = q.filter(models.Gallery.id != exclude_id)
    return db.query(q.exists()).scalar()


def _commit(db: Session, slug: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        # Lost a race against another writer on the unique slug index
        db.rollback()
        raise SlugConflict(f"Slug '{slug}' is already in use") from e


def create_gallery(db: Session, data: GalleryCreate) -> models.Gallery:
    if data.slug:
        slug = data.slug
        if _slug_taken(db, slug):
            raise SlugConflict(f"Slug '{slug}' is already in use")
    else:
        slug = slug_from_title(data.title)
        if _slug_taken(db, slug):
            slug = f"{slug[:70].rstrip('-')}-{gen_slug(3)}"

    gallery = models.Gallery(
        title=data.title,
        slug=slug,
        description=data.description,
        is_public=data.is_public,
        password_hash=None if data.is_public else hash_password(data.password),
    )
    db.add(gallery)
    _commit(db, slug)
    db.refresh(gallery)
    logger.info("Created %s gallery %s (%s)",
                "public" if gallery.is_public else "private", gallery.id, slug)
    return gallery


def apply_gallery_patch(db: Session, gallery: models.Gallery, patch: GalleryPatch) -> models.Gallery:
    changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items()
               if k in GALLERY_PATCH_FIELDS}

    if "title" in changes:
        gallery.title = changes["title"]
    if "description" in changes:
        gallery.description = changes["description"]
    if "slug" in changes and changes["slug"] != gallery.slug:
        if _slug_taken(db, changes["slug"], exclude_id=gallery.id):
            raise SlugConflict(f"Slug '{changes['slug']}' is already in use")
        gallery.slug = changes["slug"]

    if "is_public" in changes or "password" in changes:
        make_public = changes.get("is_public", gallery.is_public)
        password = changes.get("password")
        if make_public:
            if password:
                raise GalleryRuleViolation("a public gallery cannot have a password")
            gallery.password_hash = None
        elif password:
            gallery.password_hash = hash_password(password)
        elif "password" in changes or not gallery.password_hash:
            raise GalleryRuleViolation("a private gallery needs a password")
        gallery.is_public = make_public

    _commit(db, gallery.slug)
    db.refresh(gallery)
    return gallery


def set_cover(db: Session, gallery: models.Gallery, photo_id: Optional[str]) -> models.Gallery:
    if photo_id is not None:
        photo = db.get(models.Photo, photo_id)
        if photo is None or photo.gallery_id != gallery.id:
            raise GalleryRuleViolation("cover photo must belong to the gallery")
    gallery.cover_photo_id = photo_id
    db.commit()
    db.refresh(gallery)
    return gallery


def apply_photo_patch(db: Session, photo: models.Photo, patch: PhotoPatch) -> models.Photo:
    changes = patch.model_dump(exclude_unset=True)
    for field in PHOTO_PATCH_FIELDS:
        if field in changes:
            setattr(photo, field, changes[field])
    db.commit()
    db.refresh(photo)
    return photo


def reorder_photos(db: Session, gallery: models.Gallery, photo_ids: Sequence[str]) -> None:
    photos = {p.id: p for p in gallery_photos(db, gallery.id, include_hidden=True)}
    unknown = [pid for pid in photo_ids if pid not in photos]
    if unknown or len(set(photo_ids)) != len(photo_ids):
        raise GalleryRuleViolation("photo_ids must be distinct photos of this gallery")
    for position, pid in enumerate(photo_ids):
        photos[pid].sort_order = position
    db.commit()


# ================
# Counters
# ================
def increment_gallery_views(db: Session, gallery_id: str) -> None:
    db.execute(
        update(models.Gallery)
        .where(models.Gallery.id == gallery_id)
        # Counters are not edits; keep updated_at as it was
        .values(
            view_count=models.Gallery.view_count + 1,
            updated_at=models.Gallery.updated_at,
        )
    )
    db.commit()


def increment_photo_views(db: Session, photo_id: str) -> None:
    db.execute(
        update(models.Photo)
        .where(models.Photo.id == photo_id)
        .values(view_count=models.Photo.view_count + 1)
    )
    db.commit()


def increment_photo_downloads(db: Session, photo_id: str) -> None:
    db.execute(
        update(models.Photo)
        .where(models.Photo.id == photo_id)
        .values(download_count=models.Photo.download_count + 1)
    )
    db.commit()


# ================
# Analytics
# ================
# Stored bytes per photo relative to its original: web (~15%) and thumbnail (~2%) on top
STORAGE_MULTIPLIER = 1.17


def top_galleries(db: Session, limit: int = 5) -> List[models.Gallery]:
    return (
        db.query(models.Gallery)
        .order_by(models.Gallery.view_count.desc(), models.Gallery.created_at.desc())
        .limit(limit)
        .all()
    )


def top_photos(db: Session, limit: int = 5) -> List[models.Photo]:
    return (
        db.query(models.Photo)
        .order_by(models.Photo.view_count.desc(), models.Photo.download_count.desc())
        .limit(limit)
        .all()
    )


def storage_by_gallery(db: Session) -> List[Tuple[str, str, int]]:
    """(gallery id, title, bytes of originals) for every gallery, largest first."""
    total = func.coalesce(func.sum(models.Photo.file_size), 0)
    rows = (
        db.query(models.Gallery.id, models.Gallery.title, total)
        .outerjoin(models.Photo, models.Photo.gallery_id == models.Gallery.id)
        .group_by(models.Gallery.id, models.Gallery.title)
        .order_by(total.desc())
        .all()
    )
    return [(gid, title, int(size)) for gid, title, size in rows]


def upload_activity(
    db: Session, days: int = 30, today: Optional[date] = None
) -> List[Tuple[date, int]]:
    """Photos uploaded per day over the last `days` days, oldest first, zero-filled."""
    today = today or datetime.now(timezone.utc).date()
    first_day = today - timedelta(days=days - 1)
    since = datetime.combine(first_day, time.min, tzinfo=timezone.utc)

    counts = Counter(
        uploaded_at.date()
        for (uploaded_at,) in db.query(models.Photo.uploaded_at)
        .filter(models.Photo.uploaded_at >= since)
        .all()
        if uploaded_at is not None
    )
    window = [first_day + timedelta(days=i) for i in range(days)]
    return [(day, counts.get(day, 0)) for day in window]
