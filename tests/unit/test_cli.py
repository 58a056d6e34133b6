"""CLI command tests for relgraph."""

import json
import os
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from sample_models import build_registry
from typer.testing import CliRunner

from relgraph import RelGraph
from relgraph.cli.main import app

runner = CliRunner()

MODELS = "sample_models:build_registry"


@pytest.fixture
def temp_db() -> Generator[str, None, None]:
    """Create a temporary SQLite database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield f"sqlite:///{db_path}"
    # Cleanup
    if os.path.exists(db_path):
        os.remove(db_path)


@pytest.fixture
def seeded_temp_db(temp_db: str) -> str:
    """A temporary database file with one person graph."""
    with RelGraph(temp_db, build_registry()) as db:
        db.create_tables()
        db.insert_graph(
            "Person",
            {
                "name": "Jennifer",
                "pets": [{"name": "Doggo", "species": "dog"}, {"name": "Kat", "species": "cat"}],
                "movies": [{"name": "Friends"}],
            },
        )
    return temp_db


class TestVersionCommand:
    """Test the version command."""

    def test_version_output(self) -> None:
        """Test that version command shows version info."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "relgraph v" in result.stdout


class TestExprCommands:
    """Test relation expression commands."""

    def test_parse_json(self) -> None:
        """Test parsing to the canonical string and object form."""
        result = runner.invoke(app, ["--json", "expr", "parse", "[pets(orderByName), movies.actors]"])
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        data = json.loads(result.stdout)
        assert data["expression"] == "[pets(orderByName), movies.actors]"
        assert data["tree"] == {
            "pets": {"$modify": ["orderByName"]},
            "movies": {"actors": True},
        }

    def test_parse_tree(self) -> None:
        """Test the rich tree output."""
        result = runner.invoke(app, ["expr", "parse", "children.pets"])
        assert result.exit_code == 0
        assert "children" in result.stdout
        assert "pets" in result.stdout

    def test_syntax_error(self) -> None:
        """Test that syntax errors exit with code 1 and a structured error."""
        result = runner.invoke(app, ["--json", "expr", "parse", "pets.[owner"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] == "GraphExpressionSyntaxError"
        assert data["context"]["position"] == 5

    def test_allowed(self) -> None:
        """Test checking an expression against an allowed graph."""
        result = runner.invoke(
            app, ["--json", "expr", "parse", "pets", "--allow", "[pets, movies]"]
        )
        assert result.exit_code == 0

    def test_not_allowed(self) -> None:
        """Test that relations outside the allowed graph are rejected."""
        result = runner.invoke(
            app, ["--json", "expr", "parse", "movies.actors", "--allow", "[pets, movies]"]
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] == "RelationNotAllowedError"


class TestSchemaCommands:
    """Test schema inspection commands."""

    def test_describe_entity_json(self) -> None:
        """Test describing one entity."""
        result = runner.invoke(app, ["--json", "schema", "describe", "-m", MODELS, "Person"])
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        data = json.loads(result.stdout)
        assert data["name"] == "Person"
        assert data["table_name"] == "persons"
        assert [rel["name"] for rel in data["relations"]] == [
            "pets",
            "children",
            "parent",
            "movies",
        ]

    def test_describe_all(self) -> None:
        """Test describing every registered entity."""
        result = runner.invoke(app, ["--json", "schema", "describe", "-m", MODELS])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [info["name"] for info in data] == ["Animal", "Movie", "Person"]

    def test_describe_rich(self) -> None:
        """Test the table output."""
        result = runner.invoke(app, ["schema", "describe", "-m", MODELS, "Animal"])
        assert result.exit_code == 0
        assert "Entity:" in result.stdout
        assert "animals" in result.stdout

    def test_unknown_entity(self) -> None:
        """Test describing an unregistered entity."""
        result = runner.invoke(app, ["--json", "schema", "describe", "-m", MODELS, "Robot"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] == "UnknownEntityError"

    def test_bad_models_reference(self) -> None:
        """Test that --models must be module:attribute."""
        result = runner.invoke(app, ["--json", "schema", "describe", "-m", "sample_models"])
        assert result.exit_code == 1
        assert "module:attribute" in json.loads(result.stdout)["error"]


class TestPlanCommands:
    """Test write plan commands."""

    def test_plan_insert(self, tmp_path: Path) -> None:
        """Test showing the write order of an insert graph."""
        graph_file = tmp_path / "person.json"
        graph_file.write_text(
            json.dumps(
                {"name": "Jennifer", "pets": [{"name": "Doggo"}], "movies": [{"name": "Friends"}]}
            )
        )
        result = runner.invoke(
            app, ["--json", "plan", "insert", "-m", MODELS, "Person", str(graph_file)]
        )
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        steps = json.loads(result.stdout)
        assert [(step["action"], step["entity"]) for step in steps] == [
            ("insert", "Person"),
            ("insert", "Animal"),
            ("insert", "Movie"),
            ("link", "persons_movies"),
        ]

    def test_plan_insert_cycle(self, tmp_path: Path) -> None:
        """Test that cyclic graphs are reported."""
        graph_file = tmp_path / "cycle.json"
        graph_file.write_text(
            json.dumps(
                {
                    "#id": "a",
                    "name": "A",
                    "parent": {"#id": "b", "name": "B", "parent": {"#ref": "a"}},
                }
            )
        )
        result = runner.invoke(
            app, ["--json", "plan", "insert", "-m", MODELS, "Person", str(graph_file)]
        )
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"] == "CyclicGraphError"

    def test_missing_file(self) -> None:
        """Test a missing graph file."""
        result = runner.invoke(
            app, ["--json", "plan", "insert", "-m", MODELS, "Person", "/nonexistent/graph.json"]
        )
        assert result.exit_code == 1


class TestGraphCommands:
    """Test graph fetch commands."""

    @pytest.mark.parametrize("strategy", ["separate", "join"])
    def test_fetch(self, seeded_temp_db: str, strategy: str) -> None:
        """Test fetching one person with pets and movies."""
        result = runner.invoke(
            app,
            [
                "-d",
                seeded_temp_db,
                "--json",
                "graph",
                "fetch",
                "-m",
                MODELS,
                "Person",
                "1",
                "[pets, movies]",
                "-s",
                strategy,
            ],
        )
        assert result.exit_code == 0, f"Failed with: {result.stdout}"
        data = json.loads(result.stdout)
        assert data["name"] == "Jennifer"
        assert [pet["name"] for pet in data["pets"]] == ["Doggo", "Kat"]
        assert [movie["name"] for movie in data["movies"]] == ["Friends"]

    def test_fetch_missing(self, seeded_temp_db: str) -> None:
        """Test that a missing root exits with code 1."""
        result = runner.invoke(
            app,
            ["-d", seeded_temp_db, "--json", "graph", "fetch", "-m", MODELS, "Person", "99"],
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] == "ModelNotFoundError"
