"""Tests for core types."""

import pytest
from pydantic import ValidationError

from relgraph.core.types import (
    EntityInfo,
    EntitySpec,
    FetchStrategy,
    FieldInfo,
    FieldSpec,
    FieldType,
    InsertGraphOptions,
    RelationKind,
    RelationSpec,
    UpsertGraphOptions,
)


class TestEnums:
    """Tests for the string enums."""

    def test_field_types(self):
        """All documented field types should exist."""
        expected = ["string", "text", "int", "float", "bool", "datetime", "json", "uuid"]
        assert FieldType.values() == expected

    def test_relation_kinds(self):
        """Relation kinds use their wire names."""
        assert RelationKind.values() == ["belongs_to_one", "has_many", "has_one", "many_to_many"]
        assert RelationKind("has_many") == RelationKind.HAS_MANY

    def test_fetch_strategy_from_string(self):
        """Strategies compare equal to their string values."""
        assert FetchStrategy("join") == FetchStrategy.JOIN
        assert FetchStrategy.SEPARATE == "separate"


class TestFieldSpec:
    """Tests for FieldSpec model."""

    def test_minimal_spec(self):
        """Can create spec with just name."""
        spec = FieldSpec(name="email")
        assert spec.type == "string"
        assert spec.column_name is None
        assert spec.required is False
        assert spec.unique is False

    def test_invalid_type(self):
        """Unknown field types are rejected."""
        with pytest.raises(ValidationError):
            FieldSpec(name="email", type="varchar")


class TestRelationSpec:
    """Tests for RelationSpec model."""

    def test_single_join_field(self):
        """A single join field is accepted as a string."""
        spec = RelationSpec(name="pets", kind="has_many", target="Animal", join_from="id", join_to="ownerId")
        assert spec.join_from == ["id"]
        assert spec.join_to == ["ownerId"]
        assert spec.kind == "has_many"

    def test_through(self):
        """Middle table columns are coerced to lists."""
        spec = RelationSpec.model_validate(
            {
                "name": "movies",
                "kind": "many_to_many",
                "target": "Movie",
                "join_from": "id",
                "join_to": "id",
                "through": {"table": "persons_movies", "from_columns": "person_id", "to_columns": ["movie_id"]},
            }
        )
        assert spec.through is not None
        assert spec.through.from_columns == ["person_id"]
        assert spec.through.to_columns == ["movie_id"]

    def test_invalid_kind(self):
        """Unknown relation kinds are rejected."""
        with pytest.raises(ValidationError):
            RelationSpec(name="pets", kind="has_lots", target="Animal", join_from="id", join_to="ownerId")


class TestEntitySpec:
    """Tests for EntitySpec model."""

    def test_defaults(self):
        """Identity defaults to a single 'id' field."""
        spec = EntitySpec(name="Person", table="persons")
        assert spec.id == ["id"]
        assert spec.fields == []
        assert spec.relations == []

    def test_composite_id(self):
        """Composite identities are lists; single names are coerced."""
        assert EntitySpec(name="Line", table="lines", id=["order", "line"]).id == ["order", "line"]
        assert EntitySpec(name="Tag", table="tags", id="slug").id == ["slug"]


class TestEntityInfo:
    """Tests for EntityInfo output model."""

    def test_serializes(self):
        """Info models dump to plain JSON-compatible dicts."""
        info = EntityInfo(
            name="Person",
            table_name="persons",
            id=["id"],
            fields=[FieldInfo(name="id", column_name="id", type="int", required=True, unique=False)],
        )
        data = info.model_dump()
        assert data["fields"][0]["column_name"] == "id"
        assert data["relations"] == []
        assert data["modifiers"] == []


class TestWriteOptions:
    """Tests for per-path write options."""

    def test_bool_applies_everywhere(self):
        """A True flag covers the root and every relation path."""
        options = InsertGraphOptions(relate=True)
        assert options.applies("relate", "")
        assert options.applies("relate", "movies.actors")

    def test_paths(self):
        """A list flag covers only the named relation paths."""
        options = UpsertGraphOptions(no_delete=["pets"])
        assert options.applies("no_delete", "pets")
        assert not options.applies("no_delete", "")
        assert not options.applies("no_delete", "children.pets")
        assert not options.applies("unrelate", "pets")
        assert options.update_only is False
