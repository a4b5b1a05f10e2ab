"""Flow Builder CLI - inspect node types, validate and preview flows."""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

import click
import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from . import __version__
from .canvas import FlowValidator
from .config import NodeCategory, SimulatorState, get_settings
from .exceptions import FlowBuilderError
from .executor import FlowSimulator
from .models import Flow, FlowPreviewStep
from .nodes import get_node_registry
from .resources import HttpFlowResource, InMemoryFlowResource

logger = logging.getLogger(__name__)

console = Console()

SEVERITY_STYLES = {"error": "red", "warning": "yellow"}


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def print_data(data: Any, format_type: str) -> None:
    """Print data as JSON or YAML."""
    if format_type == "yaml":
        text = yaml.dump(data, default_flow_style=False, sort_keys=False)
    else:
        text = json.dumps(data, indent=2, default=str)
    console.print(Syntax(text, format_type, theme="monokai", line_numbers=False))


def parse_vars(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    """Parse KEY=VALUE options; values are read as JSON when possible."""
    variables = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--var")
        key, value = pair.split("=", 1)
        try:
            variables[key.strip()] = json.loads(value)
        except ValueError:
            variables[key.strip()] = value
    return variables


async def _load_flow(path: str, flow_id: Optional[str]) -> Flow:
    resource = InMemoryFlowResource.from_file(path)
    if flow_id:
        return await resource.get_flow(flow_id)

    flows = await resource.list_flows()
    if not flows:
        raise FlowBuilderError(f"No flows found in {path}", error_code="EMPTY_DOCUMENT")
    return await resource.get_flow(flows[0].id)


@click.group()
@click.version_option(version=__version__, prog_name="flowbuilder")
@click.option("--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table",
              help="Output format")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, output: str, debug: bool):
    """Flow Builder CLI - work with conversational flows from the command line.

    \b
    Examples:
      flowbuilder nodes
      flowbuilder validate flow.json
      flowbuilder preview flow.json --var name=Alice
    """
    settings = get_settings()
    level = logging.DEBUG if debug or settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    ctx.ensure_object(dict)
    ctx.obj["output"] = output
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


@cli.command("nodes")
@click.option("--category", "-c", type=click.Choice([c.value for c in NodeCategory]),
              help="Only show one category")
@click.pass_context
def nodes(ctx: click.Context, category: Optional[str]):
    """List the available node types."""
    registry = get_node_registry()
    definitions = registry.by_category(category) if category else registry.implemented_types()

    if ctx.obj["output"] != "table":
        print_data([d.to_dict() for d in definitions], ctx.obj["output"])
        return

    table = Table(title="Node Types", show_header=True, header_style="bold cyan")
    table.add_column("Type")
    table.add_column("Label")
    table.add_column("Category")
    table.add_column("Description")

    for definition in definitions:
        table.add_row(
            f"[{definition.color}]{definition.type.value}[/]",
            definition.label,
            definition.category.value,
            definition.description,
        )

    console.print(table)


@cli.command("validate")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--flow-id", help="Flow to validate when the file holds several")
@click.pass_context
def validate(ctx: click.Context, file: str, flow_id: Optional[str]):
    """Validate a flow JSON document."""
    try:
        flow = asyncio.run(_load_flow(file, flow_id))
    except (FlowBuilderError, OSError, KeyError, ValueError) as e:
        print_error(f"Could not read flow: {e}")
        sys.exit(1)

    result = FlowValidator(settings=ctx.obj["settings"]).validate_flow(flow)

    if ctx.obj["output"] != "table":
        print_data(
            {
                "flowId": flow.id,
                "valid": result.valid,
                "issues": [
                    {
                        "severity": i.severity,
                        "message": i.message,
                        "nodeId": i.node_id,
                        "transitionId": i.transition_id,
                    }
                    for i in result.issues
                ],
            },
            ctx.obj["output"],
        )
    elif result.issues:
        names = {n.id: n.name for n in flow.nodes}
        table = Table(title=f"Issues in '{flow.name}'", show_header=True, header_style="bold cyan")
        table.add_column("Severity")
        table.add_column("Where")
        table.add_column("Message")

        for issue in result.issues:
            style = SEVERITY_STYLES.get(issue.severity, "white")
            where = names.get(issue.node_id, issue.node_id) or issue.transition_id or "flow"
            table.add_row(f"[{style}]{issue.severity}[/]", where, issue.message)

        console.print(table)

    if result.valid:
        print_success(f"Flow '{flow.name}' is valid ({len(result.warnings)} warnings)")
    else:
        print_error(f"Flow '{flow.name}' has {len(result.errors)} errors")
        sys.exit(1)


def _print_steps(steps: List[FlowPreviewStep]) -> None:
    for step in steps:
        label = f"[bold]{step.node_name}[/bold] [dim]({step.node_type.value})[/dim]"
        if step.input is not None:
            console.print(f"{label} [cyan]> {step.input}[/cyan]")
        if step.output is not None:
            output = step.output
            if not isinstance(output, str):
                output = json.dumps(output, default=str)
            console.print(f"{label} {output}")


async def _run_preview(
    flow: Flow,
    variables: Dict[str, Any],
    answers: List[str],
    no_delay: bool,
    settings,
) -> FlowSimulator:
    if no_delay:
        settings = settings.model_copy(
            update={"simulator": settings.simulator.model_copy(update={"message_delay_s": 0})}
        )

    simulator = FlowSimulator(flow.nodes, flow.transitions, settings=settings, flow_id=flow.id)
    printed = 0

    await simulator.start(variables)
    while True:
        _print_steps(simulator.steps[printed:])
        printed = len(simulator.steps)

        if simulator.state != SimulatorState.WAITING_FOR_INPUT:
            break

        if answers:
            answer = answers.pop(0)
            console.print(f"[yellow]?[/yellow] {simulator.current_prompt} [cyan]{answer}[/cyan]")
        else:
            answer = click.prompt(simulator.current_prompt, default="", show_default=False)
        await simulator.submit_input(answer)

    return simulator


@cli.command("preview")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--flow-id", help="Flow to preview when the file holds several")
@click.option("--var", "variables", multiple=True, metavar="KEY=VALUE",
              help="Initial variable (repeatable)")
@click.option("--answer", "answers", multiple=True,
              help="Answer for the next question instead of prompting (repeatable)")
@click.option("--no-delay", is_flag=True, help="Skip the pause after messages")
@click.pass_context
def preview(
    ctx: click.Context,
    file: str,
    flow_id: Optional[str],
    variables: Tuple[str, ...],
    answers: Tuple[str, ...],
    no_delay: bool,
):
    """Dry-run a flow JSON document."""
    initial = parse_vars(variables)

    try:
        flow = asyncio.run(_load_flow(file, flow_id))
        simulator = asyncio.run(
            _run_preview(flow, initial, list(answers), no_delay, ctx.obj["settings"])
        )
    except (FlowBuilderError, OSError, KeyError, ValueError) as e:
        if ctx.obj["debug"]:
            logger.exception("Preview failed")
        print_error(f"Preview failed: {e}")
        sys.exit(1)

    for warning in simulator.warnings:
        console.print(f"[yellow]![/yellow] {warning}")

    if ctx.obj["output"] != "table":
        print_data(
            {
                "stopReason": simulator.stop_reason.value if simulator.stop_reason else None,
                "steps": simulator.timeline(),
                "variables": simulator.variables,
            },
            ctx.obj["output"],
        )

    reason = simulator.stop_reason.value if simulator.stop_reason else simulator.state.value
    print_success(f"Preview finished: {reason} after {len(simulator.steps)} steps")


@cli.command("fetch")
@click.argument("flow_id")
@click.pass_context
def fetch(ctx: click.Context, flow_id: str):
    """Load a flow from the flow API and print it."""
    settings = ctx.obj["settings"]

    async def _fetch() -> Flow:
        async with HttpFlowResource(settings.resource) as resource:
            return await resource.get_flow(flow_id)

    try:
        flow = asyncio.run(_fetch())
    except FlowBuilderError as e:
        if ctx.obj["debug"]:
            logger.exception("Fetch failed")
        print_error(f"Error: {e}")
        sys.exit(1)

    if ctx.obj["output"] != "table":
        print_data(flow.to_dict(), ctx.obj["output"])
        return

    console.print(f"[bold]{flow.name}[/bold] ({flow.slug}) v{flow.version}")

    node_table = Table(title="Nodes", show_header=True, header_style="bold cyan")
    node_table.add_column("ID")
    node_table.add_column("Name")
    node_table.add_column("Type")
    node_table.add_column("Position", justify="right")
    for node in flow.nodes:
        node_table.add_row(
            node.id,
            node.name,
            node.type.value,
            f"{node.position['x']:g}, {node.position['y']:g}",
        )
    console.print(node_table)

    names = {n.id: n.name for n in flow.nodes}
    transition_table = Table(title="Transitions", show_header=True, header_style="bold cyan")
    transition_table.add_column("From")
    transition_table.add_column("To")
    transition_table.add_column("Condition")
    transition_table.add_column("Priority", justify="right")
    for transition in flow.transitions:
        transition_table.add_row(
            names.get(transition.from_node_id, transition.from_node_id),
            names.get(transition.to_node_id, transition.to_node_id),
            transition.condition or "-",
            str(transition.priority),
        )
    console.print(transition_table)


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
