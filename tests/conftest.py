"""Shared test fixtures for relgraph."""

import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

from relgraph import EntityRegistry, RelGraph

# Make sample_models importable for the CLI's --models option
sys.path.insert(0, str(Path(__file__).parent))

from sample_models import build_order_registry, build_registry  # noqa: E402


def _psycopg_available() -> bool:
    """Check if psycopg is installed."""
    try:
        import psycopg  # noqa: F401

        return True
    except ImportError:
        return False


def _postgresql_connectable(url: str) -> bool:
    """Check if we can connect to PostgreSQL."""
    if not _psycopg_available():
        return False
    try:
        from relgraph.core.connection import DatabaseConnection

        conn = DatabaseConnection(url)
        result = conn.test_connection()
        conn.close()
        return result
    except Exception:
        return False


@pytest.fixture
def postgresql_url() -> str:
    """Get PostgreSQL URL from TEST_DATABASE_URL.

    Skips when psycopg is missing or the server cannot be reached.
    """
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    if not _postgresql_connectable(url):
        pytest.skip(f"Cannot connect to PostgreSQL at {url}")
    return url


@pytest.fixture
def pg_db(postgresql_url: str) -> Generator[RelGraph, None, None]:
    """Create a RelGraph instance on PostgreSQL with fresh tables."""
    database = RelGraph(postgresql_url, build_registry())
    database.registry.finalize()
    metadata = database.registry.metadata
    metadata.drop_all(database.backend.engine)
    database.create_tables()
    yield database
    # Cleanup
    metadata.drop_all(database.backend.engine)
    database.close()


@pytest.fixture
def registry() -> EntityRegistry:
    """Person / Animal / Movie registry."""
    return build_registry()


@pytest.fixture
def db(registry: EntityRegistry) -> Generator[RelGraph, None, None]:
    """Create a RelGraph instance with SQLite in-memory and empty tables."""
    database = RelGraph("sqlite:///:memory:", registry)
    database.create_tables()
    yield database
    database.close()


@pytest.fixture
def seeded_db(db: RelGraph) -> RelGraph:
    """Populate the Person / Animal / Movie tables.

    Persons:  1 Jennifer (50), 2 Brad (55), 3 Kid (10, child of Jennifer)
    Animals:  1 Doggo (dog, Jennifer), 2 Kat (cat, Jennifer),
              3 Rex (dog, Brad), 4 Stray (cat, no owner)
    Movies:   1 Friends (Jennifer, Brad), 2 Se7en (Brad)
    """
    persons = db.entity("Person")
    persons.insert({"id": 1, "name": "Jennifer", "age": 50})
    persons.insert({"id": 2, "name": "Brad", "age": 55})
    persons.insert({"id": 3, "name": "Kid", "age": 10, "parentId": 1})

    animals = db.entity("Animal")
    animals.insert({"id": 1, "name": "Doggo", "species": "dog", "ownerId": 1})
    animals.insert({"id": 2, "name": "Kat", "species": "cat", "ownerId": 1})
    animals.insert({"id": 3, "name": "Rex", "species": "dog", "ownerId": 2})
    animals.insert({"id": 4, "name": "Stray", "species": "cat"})

    movies = db.entity("Movie")
    movies.insert({"id": 1, "name": "Friends"})
    movies.insert({"id": 2, "name": "Se7en"})
    persons.relate("movies", 1, 1)
    persons.relate("movies", 2, 1)
    persons.relate("movies", 2, 2)

    db.reset_statistics()
    return db


@pytest.fixture
def order_db() -> Generator[RelGraph, None, None]:
    """Orders with composite keys; order number 1 exists in two tenants."""
    database = RelGraph("sqlite:///:memory:", build_order_registry())
    database.create_tables()
    orders = database.entity("Order")
    lines = database.entity("OrderLine")
    orders.insert({"tenant": "a", "number": 1, "customer": "Alice"})
    orders.insert({"tenant": "b", "number": 1, "customer": "Bob"})
    lines.insert({"tenant": "a", "orderNumber": 1, "line": 1, "product": "apple"})
    lines.insert({"tenant": "a", "orderNumber": 1, "line": 2, "product": "avocado"})
    lines.insert({"tenant": "b", "orderNumber": 1, "line": 1, "product": "banana"})
    database.reset_statistics()
    yield database
    database.close()
