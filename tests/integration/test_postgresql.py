"""End-to-end graph workflow against PostgreSQL.

Requires TEST_DATABASE_URL pointing at a disposable database.
"""

import pytest

from relgraph import (
    ForeignKeyViolationError,
    NotNullViolationError,
    RelGraph,
    UniqueViolationError,
)


class TestGraphWorkflow:
    """Insert, fetch and upsert a graph on PostgreSQL."""

    def test_insert_fetch_upsert(self, pg_db: RelGraph) -> None:
        """Test a full round of graph operations with both fetch strategies."""
        person = pg_db.insert_graph(
            "Person",
            {
                "name": "Jennifer",
                "pets": [{"name": "Doggo", "species": "dog"}],
                "movies": [{"#id": "friends", "name": "Friends"}],
                "children": [{"name": "Kid", "movies": [{"#ref": "friends"}]}],
            },
        )

        expression = "[pets, movies.actors, children]"
        separate = pg_db.fetch_graph("Person", expression, ids=[person["id"]])
        joined = pg_db.fetch_graph("Person", expression, ids=[person["id"]], strategy="join")
        assert joined == separate
        assert sorted(a["name"] for a in separate[0]["movies"][0]["actors"]) == ["Jennifer", "Kid"]

        pg_db.upsert_graph(
            "Person",
            {"id": person["id"], "age": 51, "pets": [{"name": "Kat", "species": "cat"}]},
        )
        updated = pg_db.fetch_graph("Person", "pets", ids=[person["id"]])[0]
        assert updated["age"] == 51
        assert [pet["name"] for pet in updated["pets"]] == ["Kat"]


class TestErrorTranslation:
    """Test SQLSTATE based error translation."""

    def test_unique(self, pg_db: RelGraph) -> None:
        """Test unique violations carry table and constraint."""
        pg_db.entity("Movie").insert({"name": "Friends"})
        with pytest.raises(UniqueViolationError) as exc_info:
            pg_db.entity("Movie").insert({"name": "Friends"})
        assert exc_info.value.table == "movies"
        assert exc_info.value.constraint is not None

    def test_not_null(self, pg_db: RelGraph) -> None:
        """Test not-null violations name the column."""
        with pytest.raises(NotNullViolationError) as exc_info:
            pg_db.entity("Person").insert({"age": 3})
        assert exc_info.value.columns == ["name"]

    def test_foreign_key(self, pg_db: RelGraph) -> None:
        """Test foreign key violations."""
        with pytest.raises(ForeignKeyViolationError):
            pg_db.entity("Animal").insert({"name": "Rex", "ownerId": 999})
