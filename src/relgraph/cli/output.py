"""Output formatting for CLI commands."""

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from relgraph.core.types import EntityInfo
from relgraph.exceptions import RelGraphError
from relgraph.graph.expression import RelationExpression

console = Console()


class OutputFormatter:
    """Formats output for terminal or JSON mode."""

    def __init__(self, json_mode: bool = False) -> None:
        """Initialize formatter.

        Args:
            json_mode: If True, output JSON instead of Rich formatting
        """
        self.json_mode = json_mode

    def print_entity_info(self, entity: EntityInfo) -> None:
        """Print entity information with fields and relations.

        Args:
            entity: Entity information to display
        """
        if self.json_mode:
            print(json.dumps(entity.model_dump(), default=str, indent=2))
            return

        console.print(f"\n[bold]Entity:[/bold] {entity.name}")
        console.print(f"Table: {entity.table_name}")
        console.print(f"Identity: {', '.join(entity.id)}")
        if entity.description:
            console.print(f"Description: {entity.description}")

        if entity.fields:
            console.print(f"\n[bold]Fields ({len(entity.fields)}):[/bold]")
            fields_table = Table(show_header=True, header_style="bold cyan")
            fields_table.add_column("Name")
            fields_table.add_column("Column")
            fields_table.add_column("Type")
            fields_table.add_column("Required")
            fields_table.add_column("Unique")

            for field in entity.fields:
                fields_table.add_row(
                    field.name,
                    field.column_name,
                    field.type,
                    "✓" if field.required else "",
                    "✓" if field.unique else "",
                )
            console.print(fields_table)

        if entity.relations:
            console.print(f"\n[bold]Relations ({len(entity.relations)}):[/bold]")
            rel_table = Table(show_header=True, header_style="bold cyan")
            rel_table.add_column("Name")
            rel_table.add_column("Kind")
            rel_table.add_column("To Entity")
            rel_table.add_column("Join")
            rel_table.add_column("Through")

            for rel in entity.relations:
                rel_table.add_row(
                    rel.name,
                    rel.kind,
                    rel.target_entity,
                    f"{', '.join(rel.join_from)} -> {', '.join(rel.join_to)}",
                    rel.through_table or "",
                )
            console.print(rel_table)

        if entity.modifiers:
            console.print(f"\nModifiers: {', '.join(entity.modifiers)}")

    def print_expression(self, expression: RelationExpression) -> None:
        """Print a relation expression as a tree (or its object form in JSON mode)."""
        if self.json_mode:
            print(
                json.dumps(
                    {"expression": expression.to_string(), "tree": expression.to_dict()},
                    indent=2,
                )
            )
            return

        tree = Tree(f"[bold]{escape(expression.to_string())}[/bold]")

        def add(branch: Tree, node: RelationExpression) -> None:
            for child in node:
                label = escape(child.name)
                names = [m for m in child.modifiers if isinstance(m, str)]
                if names:
                    label += f" [dim]({', '.join(names)})[/dim]"
                add(branch.add(label), child)

        add(tree, expression)
        console.print(tree)

    def print_plan(self, steps: list[dict[str, Any]]) -> None:
        """Print ordered write plan steps."""
        if self.json_mode:
            print(json.dumps(steps, default=str, indent=2))
            return

        table = Table(title=f"Write plan ({len(steps)} steps)", header_style="bold magenta")
        table.add_column("#", justify="right")
        table.add_column("Action")
        table.add_column("Entity")
        table.add_column("Node")
        table.add_column("After")
        for i, step in enumerate(steps, 1):
            table.add_row(
                str(i),
                step["action"],
                step["entity"],
                escape(step["node"]),
                escape(", ".join(step["after"])),
            )
        console.print(table)

    def print_error(self, error: Exception) -> None:
        """Print error message.

        Args:
            error: Exception to display
        """
        if self.json_mode:
            if isinstance(error, RelGraphError):
                print(json.dumps(error.to_dict(), default=str, indent=2))
            else:
                print(json.dumps({"error": str(error)}, indent=2))
        else:
            error_text = str(error)
            # For RelGraphError, include context if available
            if isinstance(error, RelGraphError) and error.context:
                context_str = "\n".join(f"{k}: {v}" for k, v in error.context.items())
                error_text = f"{error_text}\n\n{context_str}"

            panel = Panel(
                escape(error_text),
                title="[red]Error[/red]",
                border_style="red",
            )
            console.print(panel)

    def print_data(self, data: Any) -> None:
        """Print generic data (dict, list, etc.).

        Args:
            data: Data to print
        """
        if self.json_mode:
            print(json.dumps(data, default=str, indent=2))
        else:
            console.print(data)
