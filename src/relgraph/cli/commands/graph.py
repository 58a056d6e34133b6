"""Graph fetch commands."""

from typing import Annotated

import typer

from relgraph.cli.commands.schema import ModelsOption
from relgraph.cli.context import CLIContext, load_registry
from relgraph.cli.output import OutputFormatter
from relgraph.cli.parsing import parse_identity
from relgraph.core.types import FetchStrategy

# Create graph subcommand group
app = typer.Typer(help="Fetch object graphs from the database")


@app.command("fetch")
def graph_fetch(
    ctx: typer.Context,
    models: ModelsOption,
    entity_name: Annotated[str, typer.Argument(help="Root entity name")],
    identity: Annotated[str, typer.Argument(help="Root identity (JSON array for composite keys)")],
    expression: Annotated[str, typer.Argument(help="Relation expression")] = "",
    strategy: Annotated[
        FetchStrategy,
        typer.Option("--strategy", "-s", help="Fetch strategy"),
    ] = FetchStrategy.SEPARATE,
) -> None:
    """Fetch one row with the relations named by EXPRESSION.

    Example:

        relgraph -d sqlite:///app.db graph fetch -m myapp.models:registry Person 1 "[pets, movies]"
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        db = cli_ctx.get_db(load_registry(models))
        rows = db.fetch_graph(
            entity_name,
            expression or None,
            ids=[parse_identity(identity)],
            strategy=strategy,
            require=True,
        )
        formatter.print_data(rows[0])
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
