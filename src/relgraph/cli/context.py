"""CLI context management for database connections and shared state."""

import importlib
import os
from dataclasses import dataclass, field

from relgraph import EntityRegistry, RelGraph


def get_database_url(url: str | None) -> str:
    """Resolve database URL from CLI arg, environment variable, or default.

    Priority:
    1. Explicit URL argument
    2. RELGRAPH_URL environment variable
    3. Default: sqlite:///./relgraph.db
    """
    if url:
        return url
    if env_url := os.getenv("RELGRAPH_URL"):
        return env_url
    return "sqlite:///./relgraph.db"


def load_registry(target: str) -> EntityRegistry:
    """Import an entity registry from a ``module:attribute`` reference.

    The attribute may be an ``EntityRegistry`` or a callable returning one.

    Raises:
        ValueError: If the reference is malformed or does not name a registry
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Invalid models reference: '{target}'. Expected format: module:attribute")

    module = importlib.import_module(module_name)
    try:
        value = getattr(module, attribute)
    except AttributeError as e:
        raise ValueError(f"Module '{module_name}' has no attribute '{attribute}'") from e

    if callable(value) and not isinstance(value, EntityRegistry):
        value = value()
    if not isinstance(value, EntityRegistry):
        raise ValueError(
            f"'{target}' is a {type(value).__name__}, expected an EntityRegistry"
        )
    return value


@dataclass
class CLIContext:
    """Shared context for CLI commands.

    Manages database connection lifecycle and output preferences.
    """

    database_url: str
    echo: bool
    json_output: bool
    _db: RelGraph | None = field(default=None, init=False, repr=False)

    def get_db(self, registry: EntityRegistry) -> RelGraph:
        """Get or create database connection (lazy initialization).

        Args:
            registry: Entity registry the engine operates on

        Returns:
            RelGraph instance
        """
        if self._db is None:
            self._db = RelGraph(self.database_url, registry, echo=self.echo)
        return self._db

    def close(self) -> None:
        """Close database connection if open."""
        if self._db is not None:
            self._db.close()
            self._db = None
