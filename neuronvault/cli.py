"""
NeuronVault CLI - Main entry point.

Commands:
- models: show the model registry
- analyze: show Athena's analysis and recommendation for a prompt
- run: connect, orchestrate a prompt and print the synthesized answer
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from neuronvault import __version__
from neuronvault.config.loader import load_config
from neuronvault.config.models import NeuronVaultConfig
from neuronvault.core.events import EventTopic
from neuronvault.core.exceptions import NeuronVaultError
from neuronvault.core.metrics import get_metrics_summary
from neuronvault.core.types import HealthStatus, RunStatus, Strategy
from neuronvault.orchestration.models import ModelResultEvent, RunProgress
from neuronvault.registry.loader import load_registry
from neuronvault.session import NeuronVaultSession
from neuronvault.trace.decision_trace import DecisionNode, DecisionTrace
from neuronvault.utils.logger import setup_logger

console = Console()

HEALTH_STYLES = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.UNHEALTHY: "red",
}


def _parse_weights(values: tuple[str, ...]) -> dict[str, float]:
    weights: dict[str, float] = {}
    for item in values:
        name, sep, raw = item.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected MODEL=WEIGHT, got '{item}'", param_hint="--weight")
        try:
            weights[name.strip().lower()] = float(raw)
        except ValueError as e:
            raise click.BadParameter(f"weight '{raw}' is not a number", param_hint="--weight") from e
    return weights


def _add_tree_node(parent: Tree, node: DecisionNode) -> None:
    branch = parent.add(
        f"[bold]{node.title}[/bold] {node.description} [dim]({node.confidence:.2f})[/dim]"
    )
    for child in node.children:
        _add_tree_node(branch, child)


@click.group()
@click.version_option(version=__version__, prog_name="neuronvault")
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), default=None,
              help="Configuration file (default ~/.neuronvault/config.yaml)")
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """
    NeuronVault - Multi-model AI orchestration.
    """
    ctx.ensure_object(dict)
    session_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:19]

    try:
        config = load_config(config_path)
    except NeuronVaultError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        sys.exit(2)

    setup_logger(verbose=verbose, session_id=session_id, config=config.logging)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["session_id"] = session_id


@cli.command()
@click.option("--catalog", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="YAML model catalog")
@click.pass_context
def models(ctx: click.Context, catalog: Path | None) -> None:
    """Show the model registry."""
    config: NeuronVaultConfig = ctx.obj["config"]
    registry_config = config.registry
    if catalog is not None:
        registry_config = registry_config.model_copy(update={"catalog_path": catalog})

    try:
        registry = load_registry(registry_config, config.health)
    except NeuronVaultError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        sys.exit(1)

    table = Table(title="Models")
    table.add_column("Name", style="cyan")
    table.add_column("Provider")
    table.add_column("Health")
    table.add_column("Reliability", justify="right")
    table.add_column("Cost eff.", justify="right")
    table.add_column("Avg time", justify="right")
    table.add_column("Best at")

    for snap in registry.all():
        best = sorted(snap.capabilities.items(), key=lambda kv: -kv[1])[:2]
        style = HEALTH_STYLES[snap.status]
        table.add_row(
            snap.display_name,
            snap.provider,
            f"[{style}]{snap.status.value}[/{style}]",
            f"{snap.reliability:.2f}",
            f"{snap.cost_efficiency:.2f}",
            f"{snap.avg_response_time:.1f}s",
            ", ".join(c.value for c, _ in best),
        )
    console.print(table)


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option("--tree", is_flag=True, help="Show the decision tree")
@click.pass_context
def analyze(ctx: click.Context, prompt: tuple[str, ...], tree: bool) -> None:
    """
    Show Athena's recommendation for a prompt.

    Example: neuronvault analyze "Compare B-trees and LSM trees"
    """
    prompt_str = " ".join(prompt)

    async def _analyze() -> None:
        async with NeuronVaultSession(ctx.obj["config"], session_id=ctx.obj["session_id"]) as session:
            session.toggle_athena(True)
            session.toggle_auto_apply(False)
            rec = await session.recommend(prompt_str)

            analysis = rec.analysis
            console.print(
                f"\n[bold]Category[/bold] [cyan]{analysis.category.value}[/cyan]  "
                f"[bold]Complexity[/bold] [cyan]{analysis.complexity.value}[/cyan]  "
                f"[bold]Certainty[/bold] {analysis.certainty:.2f}"
            )

            table = Table(title="Model scores")
            table.add_column("Model", style="cyan")
            table.add_column("Score", justify="right")
            table.add_column("Gain", justify="right")
            table.add_column("Selected")
            table.add_column("Reason")
            for score in rec.scores:
                table.add_row(
                    score.model,
                    f"{score.final_score:.2f}",
                    f"{score.marginal_gain:.2f}",
                    "[green]yes[/green]" if score.selected else "[dim]no[/dim]",
                    score.reason,
                )
            console.print(table)

            weights = ", ".join(f"{m}={w:.2f}" for m, w in rec.weights.items())
            console.print(
                f"[bold]Strategy[/bold] {rec.strategy.value}  [bold]Weights[/bold] {weights}\n"
                f"[bold]Confidence[/bold] {rec.overall_confidence:.2f} "
                f"(auto-apply {'yes' if rec.auto_apply_recommended else 'no'})  "
                f"[bold]Estimated[/bold] {rec.estimated_time_s:.1f}s"
            )
            console.print("\n[bold]Reasoning[/bold]")
            for line in rec.reasoning:
                console.print(f"  • {line}")

            if tree:
                root = DecisionTrace.as_tree(rec)
                view = Tree("[bold]Decision tree[/bold]")
                _add_tree_node(view, root)
                console.print(view)

    try:
        asyncio.run(_analyze())
    except NeuronVaultError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option("--host", default=None, help="Orchestration backend host")
@click.option("--port", type=int, default=None, help="Orchestration backend port")
@click.option("--model", "-m", "model_names", multiple=True, help="Model to include (repeatable)")
@click.option("--strategy", "-s", type=click.Choice([s.value for s in Strategy]),
              default=Strategy.PARALLEL.value, show_default=True)
@click.option("--weight", "-w", "weight_values", multiple=True, help="MODEL=WEIGHT (repeatable)")
@click.option("--athena/--no-athena", default=False, help="Let Athena pick models and strategy")
@click.pass_context
def run(
    ctx: click.Context,
    prompt: tuple[str, ...],
    host: str | None,
    port: int | None,
    model_names: tuple[str, ...],
    strategy: str,
    weight_values: tuple[str, ...],
    athena: bool,
) -> None:
    """
    Orchestrate a prompt across models.

    Example: neuronvault run "Explain CRDTs" -m claude -m gpt -s consensus
    """
    prompt_str = " ".join(prompt)
    weights = _parse_weights(weight_values)
    config: NeuronVaultConfig = ctx.obj["config"]

    if not model_names and not athena:
        console.print("[red]❌ Select models with --model or use --athena[/red]")
        sys.exit(2)

    def on_progress(progress: RunProgress) -> None:
        console.print(
            f"[dim]{progress.phase.value}: {progress.completed_models}/"
            f"{progress.total_models} ({progress.overall_progress:.0%})[/dim]"
        )

    def on_result(event: ModelResultEvent) -> None:
        result = event.result
        if result.success:
            console.print(
                f"  [green]✅ {result.model}[/green] "
                f"[dim]{result.latency_ms:.0f}ms, confidence {result.confidence:.2f}[/dim]"
            )
        else:
            cause = result.cause.value if result.cause else "error"
            console.print(f"  [red]❌ {result.model}[/red] [dim]{cause}: {result.error}[/dim]")

    async def _run() -> int:
        async with NeuronVaultSession(config, session_id=ctx.obj["session_id"]) as session:
            connected = await session.connect(host, port)
            if not connected:
                console.print(f"[red]❌ Connection failed: {connected.error}[/red]")
                return 1

            session.subscribe(EventTopic.PROGRESS, on_progress)
            session.subscribe(EventTopic.MODEL_RESULT, on_result)

            if athena:
                session.toggle_athena(True)
                session.toggle_auto_apply(False)
                rec = await session.recommend(prompt_str)
                console.print(
                    f"[cyan]🧠 Athena: {rec.strategy.value} over {', '.join(rec.models)} "
                    f"(confidence {rec.overall_confidence:.2f})[/cyan]"
                )
                submitted = await session.apply_recommendation(rec)
            else:
                submitted = await session.submit(
                    prompt_str, model_names, strategy=strategy, weights=weights or None
                )

            finished = await session.wait(submitted.run_id)
            if finished is None or finished.status != RunStatus.COMPLETED:
                error = finished.error if finished else "run not found"
                console.print(f"[red]❌ Run failed: {error}[/red]")
                if finished is not None:
                    for model, reason in finished.errors.items():
                        console.print(f"  [dim]{model}: {reason}[/dim]")
                return 1

            title = f"{finished.strategy.value} · confidence {finished.confidence:.2f}"
            if finished.is_partial:
                title += f" · {len(finished.failed)} model(s) failed"
            console.print(Panel(finished.synthesized or "", title=title))

            if ctx.obj["verbose"]:
                console.print(get_metrics_summary())
            return 0

    try:
        code = asyncio.run(_run())
    except NeuronVaultError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        code = 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        code = 130
    sys.exit(code)


@cli.command()
def version() -> None:
    """Show version information."""
    console.print(f"NeuronVault v{__version__}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
