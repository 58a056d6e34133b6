"""Write plan commands."""

from typing import Annotated

import typer

from relgraph.cli.commands.schema import ModelsOption
from relgraph.cli.context import CLIContext, load_registry
from relgraph.cli.output import OutputFormatter
from relgraph.cli.parsing import read_json_file
from relgraph.core.types import InsertGraphOptions
from relgraph.graph.insert import InsertGraphPlanner

# Create plan subcommand group
app = typer.Typer(help="Show how graph writes would be executed")


@app.command("insert")
def plan_insert(
    ctx: typer.Context,
    models: ModelsOption,
    entity_name: Annotated[str, typer.Argument(help="Root entity name")],
    file: Annotated[str, typer.Argument(help="JSON file with the graph (object or array)")],
    relate: Annotated[
        bool,
        typer.Option("--relate", help="Relate nodes that carry their identity"),
    ] = False,
) -> None:
    """Show the write order of an insert graph without touching the database.

    Example:

        relgraph plan insert -m myapp.models:registry Person person.json
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        registry = load_registry(models)
        graph = read_json_file(file)
        planner = InsertGraphPlanner(InsertGraphOptions(relate=relate))
        _, plan = planner.plan(registry.resolve(entity_name), graph)
        formatter.print_plan(plan.describe())
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
