"""CLI entry point for inspecting record state machines.

Provides commands:
  - describe: Show the states, events and persistence policy of a model
  - counts: Count stored records per state in a SQLite database
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from recordfsm.database import Database
from recordfsm.machine import StateMachine
from recordfsm.record import Record
from recordfsm.schema import describe as describe_machine

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="recordfsm - inspect state machines attached to persistent records",
    rich_markup_mode="rich",
)
console = Console()


@app.callback()
def app_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output from recordfsm"),
    ] = False,
) -> None:
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def find_machine(model: type) -> tuple[str, StateMachine]:
    """Return ``(attribute, machine)`` for the most derived machine on *model*."""
    for klass in model.__mro__:
        for name, value in vars(klass).items():
            if isinstance(value, StateMachine):
                return name, value
    raise typer.BadParameter(f"{model.__name__} declares no state machine")


def load_model(target: str) -> type:
    """Import ``package.module:ClassName``."""
    module_name, _, class_name = target.partition(":")
    if not module_name or not class_name:
        raise typer.BadParameter(f"Expected MODULE:CLASS, got '{target}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise typer.BadParameter(f"Cannot import '{module_name}': {e}") from e
    model = getattr(module, class_name, None)
    if not isinstance(model, type):
        raise typer.BadParameter(f"'{class_name}' is not a class in {module_name}")
    return model


@app.command()
def describe(
    target: Annotated[str, typer.Argument(help="Model to inspect, as MODULE:CLASS")],
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the definition as JSON"),
    ] = False,
) -> None:
    """Show states, events and persistence policy of a model's state machine."""
    model = load_model(target)
    _, machine = find_machine(model)
    schema = describe_machine(machine)

    if as_json:
        typer.echo(schema.model_dump_json(indent=2))
        return

    console.print(
        Panel(
            f"[bold]{model.__name__}[/bold]  column: [cyan]{schema.column}[/cyan]",
            title="State machine",
        )
    )

    states_table = Table(title="States")
    states_table.add_column("State", style="cyan")
    states_table.add_column("Display")
    states_table.add_column("Initial", justify="center")
    for state in schema.states:
        if state.initial or schema.initial == state.name:
            marker = "[green]yes[/green]"
        elif state.conditional_initial:
            marker = "[yellow]conditional[/yellow]"
        else:
            marker = ""
        states_table.add_row(state.name, state.display, marker)
    console.print(states_table)

    events_table = Table(title="Events")
    events_table.add_column("Event", style="magenta")
    events_table.add_column("From")
    events_table.add_column("To")
    events_table.add_column("Guard", style="dim")
    for event in schema.events:
        for i, transition in enumerate(event.transitions):
            sources = ", ".join(transition.from_states) if transition.from_states else "*"
            target_state = transition.to or f"<{transition.resolver}>"
            events_table.add_row(
                event.name if i == 0 else "",
                sources,
                target_state,
                transition.guard or "",
            )
    console.print(events_table)

    policy = ", ".join(f"{k}={v}" for k, v in schema.config.items())
    console.print(f"[dim]Policy: {policy}[/dim]")


@app.command()
def counts(
    target: Annotated[str, typer.Argument(help="Model to count, as MODULE:CLASS")],
    db_path: Annotated[
        Path,
        typer.Option("--db", "-d", help="Path to SQLite database"),
    ] = Path("data/records.db"),
) -> None:
    """Count stored records per state."""
    model = load_model(target)
    _, machine = find_machine(model)
    if not issubclass(model, Record):
        console.print(f"[red]{model.__name__} is not a persistent Record[/red]")
        raise typer.Exit(code=1)
    if not db_path.exists():
        console.print(f"[red]Database not found:[/red] {db_path}")
        raise typer.Exit(code=1)

    had_own_binding = "_database" in vars(model)
    previous = vars(model).get("_database")
    with Database(db_path) as db:
        model.use(db)
        try:
            table = Table(title=f"{model.__name__} by {machine.column}")
            table.add_column("State", style="cyan")
            table.add_column("Count", justify="right")
            total = 0
            for state in machine.state_names:
                count = model.where(**{machine.column: state}).count()
                total += count
                table.add_row(state, str(count))
            unset = model.where(**{machine.column: None}).count()
            if unset:
                table.add_row("[dim](unset)[/dim]", str(unset))
                total += unset
            table.add_row("[bold]Total[/bold]", f"[bold]{total}[/bold]")
            console.print(table)
        finally:
            if had_own_binding:
                model.use(previous)
            else:
                del model._database


if __name__ == "__main__":
    app()
