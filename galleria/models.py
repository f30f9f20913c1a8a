import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
)
from sqlalchemy.orm import relationship
from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Gallery(Base):
    """Represents a photo gallery, public or password protected."""
    __tablename__ = "galleries"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)

    is_public = Column(Boolean, default=True, nullable=False)
    password_hash = Column(String(255), nullable=True)  # set only for private galleries

    # Plain reference, cleared by the repository when the photo leaves the gallery
    cover_photo_id = Column(String(36), nullable=True)

    view_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    photos = relationship(
        "Photo",
        back_populates="gallery",
        cascade="all, delete-orphan",
        order_by="[Photo.sort_order, Photo.uploaded_at]",
    )

    @property
    def requires_password(self) -> bool:
        return not self.is_public


class Photo(Base):
    """Represents one uploaded photo and its three stored renditions."""
    __tablename__ = "photos"

    id = Column(String(36), primary_key=True, default=_uuid)

    # Link to gallery
    gallery_id = Column(
        String(36), ForeignKey("galleries.id", ondelete="CASCADE"), index=True, nullable=False
    )
    gallery = relationship("Gallery", back_populates="photos")

    original_filename = Column(String(255), nullable=False)

    # Storage keys: galleries/{gallery_id}/{photo_id}/{original|web|thumb}.{ext}
    s3_key = Column(String(512), nullable=False)
    s3_web_key = Column(String(512), nullable=False)
    s3_thumbnail_key = Column(String(512), nullable=False)

    # Original dimensions (after EXIF orientation) and byte size
    width = Column(Integer, nullable=False)
    height = Column(Integer, nullable=False)
    file_size = Column(BigInteger, nullable=False)

    sort_order = Column(Integer, default=0, nullable=False, index=True)
    is_featured = Column(Boolean, default=False, nullable=False)
    is_hidden = Column(Boolean, default=False, nullable=False)

    view_count = Column(Integer, default=0, nullable=False)
    download_count = Column(Integer, default=0, nullable=False)

    # Capture metadata (camera, lens, exposure); None when absent or unreadable
    exif_data = Column(JSON, nullable=True)

    uploaded_at = Column(DateTime(timezone=True), default=_now, index=True)
