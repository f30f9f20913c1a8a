from __future__ import annotations
from datetime import date, datetime
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from .utils import is_valid_slug


# ==========
# Base
# ==========
class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


def _check_slug(v: Optional[str]) -> Optional[str]:
    if v is not None and not is_valid_slug(v):
        raise ValueError(
            "slug must be lowercase letters/digits joined by single hyphens"
        )
    return v


# ==========
# Inputs
# ==========
class GalleryCreate(BaseSchema):
    title: str = Field(..., min_length=1, max_length=255)
    # Derived from the title when omitted
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    is_public: bool = True
    password: Optional[str] = Field(None, min_length=1)

    @field_validator("slug")
    @classmethod
    def _slug_format(cls, v):
        return _check_slug(v)

    @model_validator(mode="after")
    def _password_matches_visibility(self):
        if not self.is_public and not self.password:
            raise ValueError("a private gallery needs a password")
        if self.is_public and self.password:
            raise ValueError("a public gallery cannot have a password")
        return self


class GalleryPatch(BaseSchema):
    """Partial gallery update. Only fields present in the request are applied."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    is_public: Optional[bool] = None
    # New password; explicit null removes it (only valid when going public)
    password: Optional[str] = Field(None, min_length=1)

    @field_validator("slug")
    @classmethod
    def _slug_format(cls, v):
        return _check_slug(v)

    @field_validator("title", "slug", "is_public")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class PhotoPatch(BaseSchema):
    is_featured: Optional[bool] = None
    is_hidden: Optional[bool] = None
    sort_order: Optional[int] = Field(None, ge=0)

    @field_validator("is_featured", "is_hidden", "sort_order")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class PasswordIn(BaseSchema):
    password: str = Field(..., max_length=1024)


class CoverIn(BaseSchema):
    photo_id: Optional[str] = None


class ReorderIn(BaseSchema):
    photo_ids: List[str] = Field(..., min_length=1)


class MoveIn(BaseSchema):
    photo_ids: List[str] = Field(..., min_length=1)
    target_gallery_id: str


# ==========
# Outputs
# ==========
class AccessTokenOut(BaseSchema):
    token: str
    expires_in: int


class LockedGalleryOut(BaseSchema):
    """What a client sees of a private gallery before unlocking it: no id."""

    title: str
    slug: str
    description: Optional[str] = None
    is_public: bool = False
    requires_password: bool = True


class GalleryOut(BaseSchema):
    id: str
    title: str
    slug: str
    description: Optional[str] = None
    is_public: bool
    cover_photo_id: Optional[str] = None
    view_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None
    cover_url: Optional[str] = None


class AdminGalleryOut(GalleryOut):
    photo_count: int = 0
    # Derived so the hash itself never leaves the server
    has_password: bool = False


class ExifOut(BaseSchema):
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    iso: Optional[int] = None
    aperture: Optional[float] = None
    shutter_speed: Optional[float] = None
    focal_length: Optional[float] = None
    date_taken: Optional[str] = None


class PhotoOut(BaseSchema):
    id: str
    gallery_id: str
    original_filename: str
    width: int
    height: int
    file_size: int
    sort_order: int
    is_featured: bool
    is_hidden: bool = False
    view_count: int = 0
    download_count: int = 0
    uploaded_at: datetime
    exif_data: Optional[ExifOut] = None

    url: Optional[str] = None            # original, for downloads
    web_url: Optional[str] = None        # lightbox
    thumbnail_url: Optional[str] = None  # grid


class FeaturedPhotoOut(PhotoOut):
    gallery_title: str
    gallery_slug: str


class DownloadOut(BaseSchema):
    filename: str
    download_url: str


class UploadResultOut(BaseSchema):
    uploaded: List[PhotoOut] = []
    failed: List[dict] = []


class MoveResultOut(BaseSchema):
    moved: List[str] = []
    failed: List[str] = []
    cleanup_failures: int = 0


class DeleteResultOut(BaseSchema):
    deleted: bool = True
    objects_removed: int = 0
    objects_failed: int = 0


# ==========
# Analytics
# ==========
class TopGalleryOut(BaseSchema):
    id: str
    title: str
    slug: str
    is_public: bool
    view_count: int


class TopPhotoOut(BaseSchema):
    id: str
    gallery_id: str
    gallery_title: str
    original_filename: str
    view_count: int
    download_count: int
    thumbnail_url: Optional[str] = None


class GalleryStorageOut(BaseSchema):
    id: str
    title: str
    bytes: int


class StorageOut(BaseSchema):
    original_bytes: int
    # Originals plus the derived web and thumbnail copies
    estimated_bytes: int
    galleries: List[GalleryStorageOut] = []


class UploadDayOut(BaseSchema):
    day: date
    count: int


class AnalyticsOut(BaseSchema):
    top_galleries: List[TopGalleryOut] = []
    top_photos: List[TopPhotoOut] = []
    storage: StorageOut
    upload_activity: List[UploadDayOut] = []
