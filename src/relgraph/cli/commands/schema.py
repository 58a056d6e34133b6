"""Schema inspection commands."""

from typing import Annotated

import typer

from relgraph.cli.context import CLIContext, load_registry
from relgraph.cli.output import OutputFormatter

# Create schema subcommand group
app = typer.Typer(help="Inspect registered entities")

ModelsOption = Annotated[
    str,
    typer.Option(
        "--models",
        "-m",
        envvar="RELGRAPH_MODELS",
        help="Entity registry to load, as module:attribute",
    ),
]


@app.command("describe")
def schema_describe(
    ctx: typer.Context,
    models: ModelsOption,
    entity_name: Annotated[
        str | None, typer.Argument(help="Entity name (all entities when omitted)")
    ] = None,
) -> None:
    """Show registered entities with their fields and relations."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        registry = load_registry(models)
        if entity_name is not None:
            formatter.print_entity_info(registry.describe_entity(entity_name))
            return

        infos = registry.describe()
        if cli_ctx.json_output:
            formatter.print_data([info.model_dump() for info in infos])
        else:
            for info in infos:
                formatter.print_entity_info(info)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
