"""Relation expression commands."""

from typing import Annotated

import typer

from relgraph.cli.context import CLIContext
from relgraph.cli.output import OutputFormatter
from relgraph.graph.expression import RelationExpression

# Create expr subcommand group
app = typer.Typer(help="Parse and check relation expressions")


@app.command("parse")
def expr_parse(
    ctx: typer.Context,
    expression: Annotated[str, typer.Argument(help="Relation expression, e.g. '[pets, movies.actors]'")],
    allow: Annotated[
        str | None,
        typer.Option("--allow", "-a", help="Allowed graph the expression must stay within"),
    ] = None,
) -> None:
    """Parse a relation expression and show its tree.

    Examples:

        relgraph expr parse "[pets(orderByName), children.pets]"

        relgraph expr parse "movies.actors" --allow "[pets, movies]"
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        parsed = RelationExpression.parse(expression)
        if allow is not None:
            parsed.check_allowed(allow)
        formatter.print_expression(parsed)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
