"""
Unit tests for schema definitions and document validation.

Tests cover:
- Field type tags and Python type conversion
- Field definition parsing
- Defaults (literal and generator)
- Required and type checks
- Pass-through of undeclared keys
"""

import datetime

import pytest

from docmodel.errors import SchemaDefinitionError, ValidationError, ValidationErrorKind
from docmodel.schema import FieldDef, FieldType, Schema, field, validate_document


class TestFieldType:
    """Tests for FieldType."""

    def test_coerce_from_python_types(self):
        """Python types map to tags."""
        assert FieldType.coerce(str) is FieldType.STRING
        assert FieldType.coerce(int) is FieldType.NUMBER
        assert FieldType.coerce(float) is FieldType.NUMBER
        assert FieldType.coerce(bool) is FieldType.BOOLEAN
        assert FieldType.coerce(datetime.datetime) is FieldType.DATE
        assert FieldType.coerce(list) is FieldType.ARRAY
        assert FieldType.coerce(dict) is FieldType.OBJECT

    def test_coerce_from_tag_name(self):
        """Tag strings map to tags."""
        assert FieldType.coerce("array") is FieldType.ARRAY
        assert FieldType.coerce(FieldType.DATE) is FieldType.DATE

    def test_coerce_invalid(self):
        """Unknown types are rejected."""
        with pytest.raises(SchemaDefinitionError, match="Invalid field type"):
            FieldType.coerce("uuid")
        with pytest.raises(SchemaDefinitionError, match="Unsupported field type"):
            FieldType.coerce(set)

    def test_number_excludes_bool(self):
        """Booleans are not numbers."""
        assert FieldType.NUMBER.matches(3)
        assert FieldType.NUMBER.matches(2.5)
        assert not FieldType.NUMBER.matches(True)

    def test_containers_match_nominally(self):
        """Containers check the container kind, not the elements."""
        assert FieldType.ARRAY.matches([1, "two", None])
        assert not FieldType.ARRAY.matches((1, 2))
        assert FieldType.OBJECT.matches({"nested": [1]})


class TestFieldDef:
    """Tests for FieldDef parsing."""

    def test_from_dict(self):
        """Plain mappings become FieldDefs."""
        fdef = FieldDef.from_dict({"type": list, "ref": "Book", "default": list}, name="books")

        assert fdef.type is FieldType.ARRAY
        assert fdef.ref == "Book"
        assert fdef.default is list

    def test_missing_type_raises(self):
        """type is mandatory."""
        with pytest.raises(SchemaDefinitionError, match="must declare a type"):
            FieldDef.from_dict({"required": True}, name="title")

    def test_unknown_option_raises(self):
        """Typos in options are caught at definition time."""
        with pytest.raises(SchemaDefinitionError, match="Unknown option"):
            FieldDef.from_dict({"type": str, "requried": True}, name="title")

    def test_negative_ttl_raises(self):
        with pytest.raises(SchemaDefinitionError, match="ttl"):
            field(datetime.datetime, ttl=-1)

    def test_needs_index(self):
        """unique, index and ttl each require a storage index."""
        assert field(str, unique=True).needs_index
        assert field(str, index=True).needs_index
        assert field(datetime.datetime, ttl=60).needs_index
        assert not field(str, required=True).needs_index

    def test_to_dict(self):
        fdef = field("string", required=True, ref="Author")
        assert fdef.to_dict() == {"type": "string", "required": True, "ref": "Author"}


class TestSchema:
    """Tests for Schema."""

    def test_indexed_fields(self):
        """Only index-bearing fields are listed."""
        schema = Schema(
            {
                "email": {"type": str, "unique": True},
                "name": {"type": str},
                "expires": {"type": datetime.datetime, "ttl": 3600},
            }
        )

        assert [name for name, _ in schema.indexed_fields()] == ["email", "expires"]

    def test_rejects_non_mapping_field(self):
        with pytest.raises(SchemaDefinitionError):
            Schema({"name": str})


class TestValidateDocument:
    """Tests for validate_document."""

    @pytest.fixture
    def schema(self):
        """Book schema for testing."""
        return Schema(
            {
                "title": field(str, required=True),
                "pages": field(int),
                "tags": field(list, default=list),
                "published": field(bool, default=False),
                "meta": field(dict),
            }
        )

    def test_valid_document(self, schema):
        """Valid document passes with defaults applied."""
        result = validate_document(schema, {"title": "Dune", "pages": 412})

        assert result == {"title": "Dune", "pages": 412, "tags": [], "published": False}

    def test_required_field_missing(self, schema):
        """Missing required field fails."""
        with pytest.raises(ValidationError) as exc_info:
            validate_document(schema, {"pages": 10})

        assert exc_info.value.kind is ValidationErrorKind.REQUIRED_FIELD_MISSING
        assert exc_info.value.field_name == "title"

    def test_required_field_none(self, schema):
        """None counts as missing."""
        with pytest.raises(ValidationError) as exc_info:
            validate_document(schema, {"title": None})

        assert exc_info.value.kind is ValidationErrorKind.REQUIRED_FIELD_MISSING

    def test_type_mismatch(self, schema):
        """A number where a list is declared fails."""
        with pytest.raises(ValidationError) as exc_info:
            validate_document(schema, {"title": "Dune", "tags": 5})

        assert exc_info.value.kind is ValidationErrorKind.TYPE_MISMATCH
        assert exc_info.value.field_name == "tags"
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_bool_is_not_number(self, schema):
        with pytest.raises(ValidationError) as exc_info:
            validate_document(schema, {"title": "Dune", "pages": True})

        assert exc_info.value.kind is ValidationErrorKind.TYPE_MISMATCH

    def test_extra_keys_preserved(self, schema):
        """The schema is non-exclusive."""
        result = validate_document(schema, {"title": "Dune", "isbn": "0441013597"})

        assert result["isbn"] == "0441013597"

    def test_input_not_mutated(self, schema):
        doc = {"title": "Dune"}
        validate_document(schema, doc)

        assert doc == {"title": "Dune"}

    def test_generator_default_called_once(self):
        """Generator defaults run exactly once per validation."""
        calls = []

        def make_id():
            calls.append(1)
            return f"id-{len(calls)}"

        schema = Schema({"ref_code": field(str, required=True, default=make_id)})

        first = validate_document(schema, {})
        second = validate_document(schema, {})

        assert first["ref_code"] == "id-1"
        assert second["ref_code"] == "id-2"
        assert len(calls) == 2

    def test_default_not_used_when_value_present(self):
        calls = []
        schema = Schema({"code": field(str, default=lambda: calls.append(1) or "x")})

        result = validate_document(schema, {"code": "given"})

        assert result["code"] == "given"
        assert calls == []

    def test_literal_list_default_not_shared(self):
        """Each document gets its own copy of a literal list default."""
        schema = Schema({"tags": field(list, default=[])})

        first = validate_document(schema, {})
        first["tags"].append("x")
        second = validate_document(schema, {})

        assert second["tags"] == []

    def test_default_type_checked(self):
        """Defaults go through the same type check."""
        schema = Schema({"count": field(int, default="zero")})

        with pytest.raises(ValidationError) as exc_info:
            validate_document(schema, {})

        assert exc_info.value.kind is ValidationErrorKind.TYPE_MISMATCH

    def test_date_field(self):
        schema = Schema({"at": field(datetime.datetime, required=True)})
        now = datetime.datetime.now(datetime.timezone.utc)

        assert validate_document(schema, {"at": now})["at"] == now
        with pytest.raises(ValidationError):
            validate_document(schema, {"at": "2024-01-01"})

    def test_schema_validate_delegates(self, schema):
        assert schema.validate({"title": "Dune"})["tags"] == []
