"""
Tests for gallery rules: slugs, visibility/password pairing and partial updates
"""
from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from galleria import models
from galleria.schemas import GalleryCreate, GalleryPatch, PhotoPatch
from galleria.services import galleries
from galleria.services.galleries import GalleryRuleViolation, SlugConflict
from galleria.utils import is_valid_slug, verify_password


def add_photo(db, gallery, sort_order=0, **fields):
    photo = models.Photo(
        gallery_id=gallery.id,
        original_filename="p.jpg",
        s3_key="galleries/x/y/original.jpg",
        s3_web_key="galleries/x/y/web.webp",
        s3_thumbnail_key="galleries/x/y/thumb.webp",
        width=10,
        height=10,
        file_size=100,
        sort_order=sort_order,
        **fields,
    )
    db.add(photo)
    db.commit()
    return photo


class TestSlugs:
    @pytest.mark.parametrize("slug", ["my-gallery-2024", "a", "2024", "wedding-anna-tom"])
    def test_valid(self, slug):
        assert is_valid_slug(slug)

    @pytest.mark.parametrize(
        "slug", ["-leading", "trailing-", "My_Gallery", "double--hyphen", "UPPER", "with space", ""]
    )
    def test_invalid(self, slug):
        assert not is_valid_slug(slug)

    def test_schema_rejects_bad_slug(self):
        with pytest.raises(ValidationError):
            GalleryCreate(title="x", slug="Bad_Slug")


class TestCreate:
    def test_private_requires_password(self):
        with pytest.raises(ValidationError):
            GalleryCreate(title="Secret", is_public=False)

    def test_public_cannot_have_password(self):
        with pytest.raises(ValidationError):
            GalleryCreate(title="Open", is_public=True, password="hunter22")

    def test_slug_derived_from_title(self, gallery_factory):
        gallery = gallery_factory(title="Summer in Lisbon")
        assert gallery.slug == "summer-in-lisbon"

    def test_derived_slug_collision_gets_suffix(self, gallery_factory):
        first = gallery_factory(title="Summer")
        second = gallery_factory(title="Summer")

        assert first.slug == "summer"
        assert second.slug != "summer"
        assert second.slug.startswith("summer-")
        assert is_valid_slug(second.slug)

    def test_long_title_collision_keeps_slug_format(self, gallery_factory):
        # Cut at 70 characters lands on the hyphen between the two words
        title = "a" * 69 + " " + "b" * 10
        gallery_factory(title=title)
        second = gallery_factory(title=title)

        assert "--" not in second.slug
        assert is_valid_slug(second.slug)

    def test_explicit_slug_conflict(self, gallery_factory):
        gallery_factory(title="One", slug="taken")
        with pytest.raises(SlugConflict):
            gallery_factory(title="Two", slug="taken")

    def test_password_stored_hashed(self, gallery_factory):
        gallery = gallery_factory(title="Secret", is_public=False, password="hunter22")

        assert gallery.password_hash != "hunter22"
        assert verify_password("hunter22", gallery.password_hash)
        assert gallery.requires_password


class TestPatch:
    def test_only_sent_fields_change(self, db, gallery_factory):
        gallery = gallery_factory(title="Original", description="before")
        galleries.apply_gallery_patch(db, gallery, GalleryPatch(description="after"))

        assert gallery.title == "Original"
        assert gallery.description == "after"

    def test_null_title_rejected(self):
        with pytest.raises(ValidationError):
            GalleryPatch(title=None)

    def test_going_private_needs_password(self, db, gallery_factory):
        gallery = gallery_factory()
        with pytest.raises(GalleryRuleViolation):
            galleries.apply_gallery_patch(db, gallery, GalleryPatch(is_public=False))

    def test_going_private_with_password(self, db, gallery_factory):
        gallery = gallery_factory()
        galleries.apply_gallery_patch(db, gallery, GalleryPatch(is_public=False, password="pw12345"))

        assert gallery.is_public is False
        assert verify_password("pw12345", gallery.password_hash)

    def test_going_public_clears_password(self, db, gallery_factory):
        gallery = gallery_factory(is_public=False, password="pw12345")
        galleries.apply_gallery_patch(db, gallery, GalleryPatch(is_public=True))

        assert gallery.is_public is True
        assert gallery.password_hash is None

    def test_public_gallery_cannot_get_password(self, db, gallery_factory):
        gallery = gallery_factory()
        with pytest.raises(GalleryRuleViolation):
            galleries.apply_gallery_patch(db, gallery, GalleryPatch(password="pw12345"))

    def test_private_gallery_cannot_drop_password(self, db, gallery_factory):
        gallery = gallery_factory(is_public=False, password="pw12345")
        with pytest.raises(GalleryRuleViolation):
            galleries.apply_gallery_patch(db, gallery, GalleryPatch(password=None))

    def test_private_gallery_password_change(self, db, gallery_factory):
        gallery = gallery_factory(is_public=False, password="pw12345")
        galleries.apply_gallery_patch(db, gallery, GalleryPatch(password="new-pw"))
        assert verify_password("new-pw", gallery.password_hash)

    def test_slug_change_conflict(self, db, gallery_factory):
        gallery_factory(title="A", slug="first")
        second = gallery_factory(title="B", slug="second")
        with pytest.raises(SlugConflict):
            galleries.apply_gallery_patch(db, second, GalleryPatch(slug="first"))


class TestPhotos:
    def test_sort_order_appends(self, db, gallery_factory):
        gallery = gallery_factory()
        assert galleries.next_sort_order(db, gallery.id) == 0
        add_photo(db, gallery, sort_order=4)
        assert galleries.next_sort_order(db, gallery.id) == 5

    def test_hidden_photos_excluded_from_public_listing(self, db, gallery_factory):
        gallery = gallery_factory()
        shown = add_photo(db, gallery, 0)
        add_photo(db, gallery, 1, is_hidden=True)

        assert [p.id for p in galleries.gallery_photos(db, gallery.id)] == [shown.id]
        assert len(galleries.gallery_photos(db, gallery.id, include_hidden=True)) == 2

    def test_reorder(self, db, gallery_factory):
        gallery = gallery_factory()
        a, b, c = (add_photo(db, gallery, i) for i in range(3))
        galleries.reorder_photos(db, gallery, [c.id, a.id, b.id])

        assert [p.id for p in galleries.gallery_photos(db, gallery.id)] == [c.id, a.id, b.id]

    def test_reorder_rejects_foreign_photo(self, db, gallery_factory):
        gallery = gallery_factory(title="One")
        other = gallery_factory(title="Two")
        foreign = add_photo(db, other)
        with pytest.raises(GalleryRuleViolation):
            galleries.reorder_photos(db, gallery, [foreign.id])

    def test_photo_patch(self, db, gallery_factory):
        photo = add_photo(db, gallery_factory())
        galleries.apply_photo_patch(db, photo, PhotoPatch(is_featured=True))

        assert photo.is_featured is True
        assert photo.is_hidden is False

    def test_featured_only_from_public_galleries(self, db, gallery_factory):
        public = gallery_factory(title="Open")
        private = gallery_factory(title="Closed", is_public=False, password="pw12345")
        shown = add_photo(db, public, is_featured=True)
        add_photo(db, public, is_featured=True, is_hidden=True)
        add_photo(db, private, is_featured=True)

        assert [p.id for p in galleries.featured_photos(db)] == [shown.id]

    def test_cover_must_belong_to_gallery(self, db, gallery_factory):
        gallery = gallery_factory(title="One")
        foreign = add_photo(db, gallery_factory(title="Two"))
        with pytest.raises(GalleryRuleViolation):
            galleries.set_cover(db, gallery, foreign.id)

        own = add_photo(db, gallery)
        galleries.set_cover(db, gallery, own.id)
        assert gallery.cover_photo_id == own.id

    def test_view_count_does_not_touch_updated_at(self, db, gallery_factory):
        gallery = gallery_factory()
        before = gallery.updated_at
        galleries.increment_gallery_views(db, gallery.id)
        db.refresh(gallery)

        assert gallery.view_count == 1
        assert gallery.updated_at == before


class TestAnalytics:
    def test_top_galleries_by_views(self, db, gallery_factory):
        quiet = gallery_factory(title="Quiet")
        busy = gallery_factory(title="Busy")
        for _ in range(3):
            galleries.increment_gallery_views(db, busy.id)
        galleries.increment_gallery_views(db, quiet.id)

        assert [g.id for g in galleries.top_galleries(db)] == [busy.id, quiet.id]
        assert [g.id for g in galleries.top_galleries(db, limit=1)] == [busy.id]

    def test_top_photos_by_views(self, db, gallery_factory):
        gallery = gallery_factory()
        low = add_photo(db, gallery, 0, view_count=1)
        high = add_photo(db, gallery, 1, view_count=9)

        assert [p.id for p in galleries.top_photos(db)] == [high.id, low.id]

    def test_storage_by_gallery(self, db, gallery_factory):
        empty = gallery_factory(title="Empty")
        full = gallery_factory(title="Full")
        add_photo(db, full, 0)
        add_photo(db, full, 1)

        assert galleries.storage_by_gallery(db) == [(full.id, "Full", 200), (empty.id, "Empty", 0)]

    def test_upload_activity_zero_filled(self, db, gallery_factory):
        gallery = gallery_factory()
        today = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
        add_photo(db, gallery, 0, uploaded_at=today)
        add_photo(db, gallery, 1, uploaded_at=today - timedelta(days=2))
        add_photo(db, gallery, 2, uploaded_at=today - timedelta(days=40))

        activity = galleries.upload_activity(db, days=3, today=today.date())

        assert activity == [
            (date(2024, 5, 8), 1),
            (date(2024, 5, 9), 0),
            (date(2024, 5, 10), 1),
        ]
