"""
Integration tests for Model over real datastores.

Tests cover:
- Idempotent model() factory
- Index declaration at construction
- create/update/delete/count
- Storage options and settings fallback
"""

import datetime
import tempfile
from pathlib import Path

import pytest

from docmodel import (
    Model,
    ModelOptions,
    Settings,
    StorageError,
    ValidationError,
    ValidationErrorKind,
    model,
)


class TestModelFactory:
    """Tests for the model() factory."""

    def test_same_name_returns_same_instance(self, registry, settings):
        """A second definition is ignored, not merged."""
        first = model("Book", {"title": {"type": str, "required": True}}, registry=registry, settings=settings)
        second = model("Book", {"isbn": {"type": str}}, {"in_memory_only": False}, registry=registry)

        assert second is first
        assert "isbn" not in second.schema
        assert second.datastore.in_memory_only

    def test_redefinition_logs_warning(self, registry, settings, caplog):
        model("Book", {"title": {"type": str}}, registry=registry, settings=settings)

        with caplog.at_level("WARNING", logger="docmodel.model"):
            model("Book", {"isbn": {"type": str}}, registry=registry)

        assert "already defined" in caplog.text

    def test_lookup_without_definition(self, registry, settings):
        Book = model("Book", {"title": {"type": str}}, registry=registry, settings=settings)

        assert model("Book", registry=registry) is Book
        with pytest.raises(KeyError):
            model("Missing", registry=registry)

    def test_uses_default_registry(self, settings):
        Book = model("Book", {"title": {"type": str}}, settings=settings)
        try:
            assert model("Book") is Book
        finally:
            Book.close()


class TestModelStorage:
    """Tests for storage options and index declaration."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    def test_default_filename_under_data_dir(self, registry, data_dir):
        settings = Settings(data_dir=str(Path(data_dir) / "db"))

        Book = Model("Book", {"title": {"type": str}}, registry=registry, settings=settings)

        assert Book.datastore.filename == Path(data_dir) / "db" / "Book.db"
        assert Book.datastore.filename.exists()

    def test_explicit_filename(self, registry, data_dir):
        path = Path(data_dir) / "custom.db"

        Book = Model("Book", {}, ModelOptions(filename=path), registry=registry, settings=Settings())

        assert Book.datastore.filename == path

    def test_options_override_settings(self, registry, data_dir):
        settings = Settings(data_dir=data_dir, in_memory_only=True)

        Book = Model("Book", {}, {"in_memory_only": False}, registry=registry, settings=settings)

        assert not Book.datastore.in_memory_only

    def test_autocompaction_from_options(self, registry, settings):
        Book = Model(
            "Book",
            {},
            ModelOptions(autocompaction_interval_ms=60000),
            registry=registry,
            settings=settings,
        )

        assert Book.datastore.persistence.autocompaction_interval_ms == 60000

    @pytest.mark.asyncio
    async def test_unique_field_declares_index(self, registry, settings):
        User = Model("User", {"email": {"type": str, "unique": True}}, registry=registry, settings=settings)
        await User.create({"email": "ada@example.com"})

        with pytest.raises(StorageError):
            await User.create({"email": "ada@example.com"})

    @pytest.mark.asyncio
    async def test_ttl_field_expires_documents(self, registry, settings):
        Session = Model(
            "Session",
            {"created_at": {"type": datetime.datetime, "ttl": 30}},
            registry=registry,
            settings=settings,
        )
        now = datetime.datetime.now(datetime.timezone.utc)
        await Session.create({"created_at": now - datetime.timedelta(minutes=5)})
        await Session.create({"created_at": now})

        assert await Session.count() == 1

    @pytest.mark.asyncio
    async def test_index_failure_is_fatal(self, registry, data_dir):
        """A failing index leaves the model unregistered."""
        path = Path(data_dir) / "users.db"
        seed = Model("Seed", {}, ModelOptions(filename=path), registry=registry, settings=Settings())
        await seed.create({"email": "dup@example.com"})
        await seed.create({"email": "dup@example.com"})

        with pytest.raises(StorageError):
            Model(
                "User",
                {"email": {"type": str, "unique": True}},
                ModelOptions(filename=path),
                registry=registry,
                settings=Settings(),
            )

        assert registry.get("User") is None


class TestModelCrud:
    """Tests for create/update/delete."""

    @pytest.fixture
    def Book(self, registry, settings):
        return Model(
            "Book",
            {
                "title": {"type": str, "required": True},
                "pages": {"type": int, "default": 0},
                "tags": {"type": list, "default": list},
            },
            registry=registry,
            settings=settings,
        )

    @pytest.mark.asyncio
    async def test_create_applies_defaults(self, Book):
        doc = await Book.create({"title": "Dune", "isbn": "0441013597"})

        assert doc["_id"]
        assert doc["pages"] == 0
        assert doc["tags"] == []
        assert doc["isbn"] == "0441013597"

    @pytest.mark.asyncio
    async def test_create_validation_error_before_io(self, Book):
        with pytest.raises(ValidationError) as exc_info:
            await Book.create({"pages": 3})

        assert exc_info.value.kind is ValidationErrorKind.REQUIRED_FIELD_MISSING
        assert await Book.count() == 0

    @pytest.mark.asyncio
    async def test_create_type_mismatch(self, Book):
        with pytest.raises(ValidationError) as exc_info:
            await Book.create({"title": "Dune", "tags": 5})

        assert exc_info.value.kind is ValidationErrorKind.TYPE_MISMATCH

    @pytest.mark.asyncio
    async def test_update_patches_all_matches(self, Book):
        """update merges the patch into every match and returns the count."""
        await Book.create({"title": "A", "pages": 1})
        await Book.create({"title": "B", "pages": 1})
        await Book.create({"title": "C", "pages": 2})

        modified = await Book.update({"pages": 1}, {"pages": 10})

        assert modified == 2
        docs = await Book.find({"pages": 10}).sort({"title": 1}).exec()
        assert [d["title"] for d in docs] == ["A", "B"]
        assert all(d["tags"] == [] for d in docs)

    @pytest.mark.asyncio
    async def test_update_single(self, Book):
        await Book.create({"title": "A"})
        await Book.create({"title": "B"})

        assert await Book.update({}, {"pages": 5}, multi=False) == 1

    @pytest.mark.asyncio
    async def test_update_upsert(self, Book):
        assert await Book.update({"title": "New"}, {"pages": 9}, upsert=True) == 1

        doc = await Book.find_one({"title": "New"})
        assert doc["pages"] == 9

    @pytest.mark.asyncio
    async def test_delete(self, Book):
        await Book.create({"title": "A"})
        await Book.create({"title": "A"})
        await Book.create({"title": "B"})

        assert await Book.delete({"title": "A"}) == 2
        assert await Book.delete({"title": "Z"}) == 0
        assert await Book.count() == 1
