"""
Photo pipeline: upload, relocation and deletion of a photo's three renditions.

Object storage and the database are kept consistent by ordering alone:

* upload   - all three objects are stored before the row is written;
* relocate - objects are copied, the row is committed, then old objects go;
* delete   - the row is deleted, then objects are removed best-effort.

A crash between steps can leave unreachable objects behind, never a row that
points at missing objects.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, List, NamedTuple, Sequence

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .. import models
from . import galleries, images
from .images import InvalidImage, derive_renditions, extract_capture_metadata, validate
from .storage import StorageKeys, allocate_storage_keys, original_extension
from .url_cache import SignedUrlCache

logger = logging.getLogger(__name__)


class UploadFailed(RuntimeError):
    """At least one rendition could not be stored; no photo row was written."""


class CleanupResult(NamedTuple):
    removed: int = 0
    failed: int = 0

    def __add__(self, other):
        return CleanupResult(self.removed + other.removed, self.failed + other.failed)


class RelocationResult(NamedTuple):
    moved: List[str]
    failed: List[str]
    cleanup_failures: int


def _errors(results) -> List[BaseException]:
    return [r for r in results if isinstance(r, BaseException)]


class PhotoPipeline:
    def __init__(
        self,
        store,
        urls: SignedUrlCache,
        web_bound: int = images.WEB_MAX_DIMENSION,
        web_quality: int = images.WEB_QUALITY,
        thumb_bound: int = images.THUMB_MAX_DIMENSION,
        thumb_quality: int = images.THUMB_QUALITY,
    ):
        self.store = store
        self.urls = urls
        self.rendition_options = {
            "web_bound": web_bound,
            "web_quality": web_quality,
            "thumb_bound": thumb_bound,
            "thumb_quality": thumb_quality,
        }

    @classmethod
    def from_settings(cls, settings, store, urls: SignedUrlCache) -> "PhotoPipeline":
        return cls(
            store,
            urls,
            web_bound=settings.WEB_MAX_DIMENSION,
            web_quality=settings.WEB_QUALITY,
            thumb_bound=settings.THUMB_MAX_DIMENSION,
            thumb_quality=settings.THUMB_QUALITY,
        )

    # ===== create =====
    async def upload_photo(
        self, db: Session, gallery: models.Gallery, data: bytes, filename: str
    ) -> models.Photo:
        if not validate(data):
            raise InvalidImage("Unsupported file type. Allowed: JPEG, PNG, WebP, TIFF, HEIF")

        # Pillow work is CPU bound; keep it off the event loop
        renditions = await run_in_threadpool(derive_renditions, data, **self.rendition_options)
        metadata = await run_in_threadpool(extract_capture_metadata, data)

        photo_id = str(uuid.uuid4())
        keys = allocate_storage_keys(gallery.id, photo_id, renditions.original_ext)
        pairs = zip(keys, (renditions.original, renditions.web, renditions.thumbnail))

        # Wait for all three, then fail if any failed
        results = await asyncio.gather(
            *(self.store.put(key, r.data, r.content_type) for key, r in pairs),
            return_exceptions=True,
        )
        errors = _errors(results)
        if errors:
            logger.error(
                "Upload of %s to gallery %s failed: %d/3 renditions not stored (%s)",
                filename, gallery.id, len(errors), errors[0],
            )
            raise UploadFailed(f"Failed to store {filename}") from errors[0]

        original = renditions.original
        photo = models.Photo(
            id=photo_id,
            gallery_id=gallery.id,
            original_filename=filename or f"{photo_id}.{renditions.original_ext}",
            s3_key=keys.original,
            s3_web_key=keys.web,
            s3_thumbnail_key=keys.thumbnail,
            width=original.width,
            height=original.height,
            file_size=original.size,
            sort_order=galleries.next_sort_order(db, gallery.id),
            exif_data=metadata.to_dict() if metadata else None,
        )
        db.add(photo)
        db.commit()
        db.refresh(photo)
        logger.info("Uploaded photo %s (%dx%d) to gallery %s",
                    photo.id, photo.width, photo.height, gallery.id)
        return photo

    # ===== delete =====
    async def delete_all_renditions(self, keys: StorageKeys) -> CleanupResult:
        """Attempt all three deletes; never raises."""
        if not self.store.configured:
            return CleanupResult()
        self.urls.invalidate(*keys)
        results = await asyncio.gather(
            *(self.store.delete(key) for key in keys), return_exceptions=True
        )
        failed = len(_errors(results))
        if failed:
            logger.warning("Failed to delete %d/3 files under %s", failed,
                           keys.original.rsplit("/", 1)[0])
        return CleanupResult(len(keys) - failed, failed)

    async def delete_photo(self, db: Session, photo: models.Photo) -> CleanupResult:
        keys = StorageKeys.for_photo(photo)
        gallery = photo.gallery
        if gallery is not None and gallery.cover_photo_id == photo.id:
            gallery.cover_photo_id = None
        db.delete(photo)
        db.commit()
        return await self.delete_all_renditions(keys)

    async def delete_gallery(self, db: Session, gallery: models.Gallery) -> CleanupResult:
        # Loading the photos lets the ORM cascade remove their rows
        keys = [StorageKeys.for_photo(p) for p in gallery.photos]
        gallery_id = gallery.id
        db.delete(gallery)
        db.commit()

        results = await asyncio.gather(*(self.delete_all_renditions(k) for k in keys))
        total = sum(results, CleanupResult())
        logger.info("Deleted gallery %s: %d photos, %d objects removed, %d failed",
                    gallery_id, len(keys), total.removed, total.failed)
        return total

    # ===== move =====
    async def relocate(
        self, db: Session, photo_ids: Sequence[str], target: models.Gallery
    ) -> RelocationResult:
        moved: List[str] = []
        failed: List[str] = []
        cleanup_failures = 0

        for photo_id in photo_ids:
            photo = db.get(models.Photo, photo_id)
            if photo is None:
                failed.append(photo_id)
                continue
            if photo.gallery_id == target.id:
                moved.append(photo_id)
                continue

            old_keys = StorageKeys.for_photo(photo)
            new_keys = allocate_storage_keys(target.id, photo.id, original_extension(photo.s3_key))
            results = await asyncio.gather(
                *(self.store.copy(src, dst) for src, dst in zip(old_keys, new_keys)),
                return_exceptions=True,
            )
            errors = _errors(results)
            if errors:
                logger.warning("Move of photo %s aborted, copy failed: %s", photo_id, errors[0])
                failed.append(photo_id)
                continue

            source = photo.gallery
            if source is not None and source.cover_photo_id == photo.id:
                source.cover_photo_id = None
            photo.gallery_id = target.id
            photo.s3_key, photo.s3_web_key, photo.s3_thumbnail_key = new_keys
            photo.sort_order = galleries.next_sort_order(db, target.id)
            db.commit()
            moved.append(photo_id)

            # The move is committed; leftover old objects are only wasted bytes
            cleanup = await self.delete_all_renditions(old_keys)
            cleanup_failures += cleanup.failed

        logger.info("Moved %d photos to gallery %s (%d failed)", len(moved), target.id, len(failed))
        return RelocationResult(moved, failed, cleanup_failures)

    # ===== read =====
    async def rendition_urls(self, photo: models.Photo) -> Dict[str, str]:
        url, web_url, thumbnail_url = await self.urls.get_urls(StorageKeys.for_photo(photo))
        return {"url": url, "web_url": web_url, "thumbnail_url": thumbnail_url}

    async def rendition_urls_many(self, photos: Sequence[models.Photo]) -> List[Dict[str, str]]:
        return list(await asyncio.gather(*(self.rendition_urls(p) for p in photos)))
