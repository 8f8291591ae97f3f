"""Adaptive Agent CLI entry point."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from adaptive_agent.application.factory import AgentFactory
from adaptive_agent.application.settings import AgentSettings
from adaptive_agent.core.domain.models import AgentResult, RequestContext
from adaptive_agent.core.quality.checks import builtin_checks
from adaptive_agent.core.quality.models import QualityPipelineConfig, QualityReport, Severity
from adaptive_agent.core.quality.pipeline import QualityPipeline
from adaptive_agent.observability.logging_config import configure_logging

app = typer.Typer(
    name="adaptive-agent",
    help="Adaptive Agent - quality-checked, self-recovering request pipeline",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

SEVERITY_STYLES = {
    Severity.LOW: "dim",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "red",
    Severity.CRITICAL: "bold red",
}


@app.callback()
def main(
    ctx: typer.Context,
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="Configuration profile"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Adaptive Agent CLI."""
    settings = AgentSettings()
    if profile:
        settings.profile = profile
    if verbose:
        settings.log_level = "DEBUG"
    configure_logging(level=settings.log_level, json_output=settings.json_logs)
    ctx.obj = {"settings": settings}


def _settings(ctx: typer.Context) -> AgentSettings:
    return (ctx.obj or {}).get("settings") or AgentSettings()


@app.command()
def run(
    ctx: typer.Context,
    request: str = typer.Argument(..., help="Request to process"),
    session_id: Optional[str] = typer.Option(None, "--session", "-s", help="Session to run in"),
    mode: str = typer.Option("code", "--mode", "-m", help="Provider mode"),
):
    """Process a single request through the agent pipeline."""
    settings = _settings(ctx)
    factory = AgentFactory(config_dir=settings.config_dir)
    try:
        agent = factory.create_agent(profile=settings.profile, session_id=session_id)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(code=2)

    context = RequestContext(session_id=session_id, mode=mode)
    with console.status("[bold blue]Processing request..."):
        result = asyncio.run(agent.process(request, context))

    _print_result(result)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def check(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="File to check"),
    parallel: bool = typer.Option(True, "--parallel/--sequential", help="Run checks concurrently"),
    all_checks: bool = typer.Option(False, "--all", help="Enable every built-in check"),
):
    """Run the quality pipeline over a file and print its report."""
    config = QualityPipelineConfig(parallel_execution=parallel)
    if all_checks:
        config.enabled_checks = [c.check_id for c in builtin_checks()]
    pipeline = QualityPipeline(config=config)

    content = file.read_text(encoding="utf-8")
    report = asyncio.run(pipeline.run_quality_check(content, str(file)))
    _print_report(report)


@app.command()
def version():
    """Show Adaptive Agent version."""
    from adaptive_agent import __version__

    console.print(f"[bold blue]Adaptive Agent[/bold blue] version [cyan]{__version__}[/cyan]")


def _print_result(result: AgentResult) -> None:
    style = "green" if result.success else "red"
    title = "Response" if result.success else "Failed"
    console.print(Panel(result.response or "(empty)", title=title, border_style=style))

    metadata = result.metadata
    table = Table(show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Session", metadata.session_id or "")
    table.add_row("Duration", f"{metadata.duration_ms} ms")
    table.add_row("Attempts", str(metadata.attempts))
    table.add_row("Reasoning steps", str(metadata.reasoning_steps))
    table.add_row("Quality score", "" if metadata.quality_score is None else str(metadata.quality_score))
    table.add_row("Recovery used", str(metadata.error_recovery_used))
    table.add_row("Adaptations", str(metadata.adaptations_applied))
    table.add_row("Stages", ", ".join(f"{k}={v}" for k, v in metadata.stages.items()))
    console.print(table)


def _print_report(report: QualityReport) -> None:
    console.print(
        f"[bold]{report.target}[/bold]  score [cyan]{report.score}[/cyan]  "
        f"grade [cyan]{report.grade}[/cyan]  confidence [cyan]{report.confidence}[/cyan]"
    )

    if report.issues:
        table = Table(title="Issues")
        table.add_column("Severity")
        table.add_column("Category", style="cyan")
        table.add_column("Check", style="dim")
        table.add_column("Message")
        table.add_column("Suggestion", style="dim")
        for issue in report.issues:
            table.add_row(
                f"[{SEVERITY_STYLES[issue.severity]}]{issue.severity.value}[/]",
                issue.category.value,
                issue.check_id,
                issue.message,
                issue.suggestion or "",
            )
        console.print(table)
    else:
        console.print("[green]No issues found[/green]")

    for recommendation in report.recommendations:
        console.print(f"- {recommendation}")


if __name__ == "__main__":
    app()
