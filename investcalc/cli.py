from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from investcalc import services
from investcalc.config import get_settings, get_tables
from investcalc.db import init_db, session_scope
from investcalc.engine import calculate_investment, calculate_staged_funding, format_currency
from investcalc.mapper import DEFAULT_INPUTS, map_project_to_inputs
from investcalc.parser import collect_files, parse_file_collection
from investcalc.report import build_report, render_markdown, run_batch
from investcalc.schemas import CalculationResult, EngineInput, StagedFunding

app = typer.Typer(help="Innovation investment calculator: scenario estimates, export import and reports")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    home: str | None = typer.Option(None, "--home", help="Directory holding data/ (default: current directory)."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if home:
        os.environ["INVESTCALC_HOME"] = str(Path(home).expanduser().resolve())
        get_settings.cache_clear()
        get_tables.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _render_table(title: str, rows: list[tuple[str, str]], *, border_style: str = "cyan") -> None:
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for metric, value in rows:
        table.add_row(metric, value)
    console.print(Panel(table, title=title, border_style=border_style))


def _render_results(results: CalculationResult, staged: StagedFunding) -> None:
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    for col in ("Scenario", "Total", "Development", "Regulatory", "GTM Y1", "Risk buffer", "Timeline", "Break-even"):
        table.add_column(col, justify="left" if col == "Scenario" else "right")
    for sc in results.scenarios:
        b = sc.breakdown
        table.add_row(
            sc.name, format_currency(sc.total), format_currency(b.development),
            format_currency(b.regulatory), format_currency(b.gtm_year1),
            format_currency(b.risk_buffer), f"{sc.timeline} mo", f"{sc.break_even} mo",
            style="bold yellow" if sc.name == "Realistic" else None,
        )
    console.print(Panel(table, title="Scenarios", border_style="cyan"))
    ci = results.confidence_interval
    console.print(f"Confidence range: {format_currency(ci.min)} - {format_currency(ci.max)}")

    _render_table("Staged funding", [
        (p.name, f"{format_currency(p.investment)} ({p.percentage}%) over {p.duration} mo")
        for p in staged.phases
    ], border_style="green")


@app.command("options")
def options_command(ctx: typer.Context) -> None:
    """List the allowed values for every input."""
    from investcalc.coefficients import MARKET_GROUPS, REGULATORY_ENVIRONMENTS, STAGES, TEAM_STATUSES, TECHNOLOGY_GROUPS

    payload = {
        "technology_type": {k: list(v) for k, v in TECHNOLOGY_GROUPS.items()},
        "current_stage": list(STAGES),
        "target_market": {k: list(v) for k, v in MARKET_GROUPS.items()},
        "geographic_location": list(get_tables().geographic_locations),
        "team_status": list(TEAM_STATUSES),
        "regulatory_environment": list(REGULATORY_ENVIRONMENTS),
    }
    if _wants_json(ctx):
        _echo_json(payload)
        return
    for field, values in payload.items():
        console.print(f"[bold cyan]{field}[/bold cyan]")
        if isinstance(values, dict):
            for group, items in values.items():
                console.print(f"  [bold]{group}[/bold]")
                for item in items:
                    console.print(f"    {item}")
        else:
            for item in values:
                console.print(f"  {item}")


@app.command("estimate")
def estimate_command(
    ctx: typer.Context,
    technology: str = typer.Option(DEFAULT_INPUTS.technology_type, "--technology", "-t"),
    stage: str = typer.Option(DEFAULT_INPUTS.current_stage, "--stage", "-s"),
    market: str = typer.Option(DEFAULT_INPUTS.target_market, "--market", "-m"),
    location: str = typer.Option(DEFAULT_INPUTS.geographic_location, "--location", "-l"),
    team: str = typer.Option(DEFAULT_INPUTS.team_status, "--team"),
    regulatory: str = typer.Option(DEFAULT_INPUTS.regulatory_environment, "--regulatory"),
    save: bool = typer.Option(False, "--save", help="Store the calculation and print its share link."),
    markdown: Path | None = typer.Option(None, "--markdown", help="Write the full report to this file."),
) -> None:
    """Estimate the three scenarios and the staged-funding plan."""
    try:
        inputs = EngineInput(
            technology_type=technology, current_stage=stage, target_market=market,
            geographic_location=location, team_status=team, regulatory_environment=regulatory,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    tables = get_tables()
    results = calculate_investment(inputs, tables)
    staged = calculate_staged_funding(results)

    link = None
    if save:
        init_db()
        with session_scope() as session:
            calc_id = services.save_calculation(session, inputs, results)
        link = services.share_link(get_settings().base_url, calc_id)

    if markdown is not None:
        markdown.write_text(render_markdown(build_report(inputs, results, staged, tables=tables)), encoding="utf-8")

    if _wants_json(ctx):
        _echo_json({
            "results": results.model_dump(mode="json"),
            "staged_funding": staged.model_dump(mode="json"),
            "link": link,
        })
        return
    _render_results(results, staged)
    if link:
        console.print(f"Saved: [bold]{link}[/bold]")
    if markdown is not None:
        console.print(f"Report written to {markdown}")


@app.command("import")
def import_command(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, help="Export folder or a single exported file."),
    reports_dir: Path | None = typer.Option(None, "--reports", help="Write a Markdown report per project here."),
) -> None:
    """Parse an export and map each project to calculator inputs."""
    result = asyncio.run(parse_file_collection(collect_files(path)))
    mapped = [(p, map_project_to_inputs(p)) for p in result.projects]

    if reports_dir is not None:
        reports_dir.mkdir(parents=True, exist_ok=True)
        batch = run_batch(result.projects, get_tables())
        for rep in batch.reports:
            (reports_dir / f"{rep.project_id}.md").write_text(render_markdown(rep), encoding="utf-8")
        result.errors.extend(batch.errors)

    if _wants_json(ctx):
        _echo_json({
            "files_seen": result.files_seen,
            "files_skipped": result.files_skipped,
            "errors": result.errors,
            "projects": [
                {"id": p.id, "title": p.title, "inputs": inputs.model_dump()} for p, inputs in mapped
            ],
        })
        return

    _render_table("Import", [
        ("Files seen", str(result.files_seen)),
        ("Files skipped", str(result.files_skipped)),
        ("Projects", str(len(result.projects))),
        ("Errors", str(len(result.errors))),
    ])
    for project, inputs in mapped:
        _render_table(f"{project.title} ({project.id})", [
            (field, str(value)) for field, value in inputs.model_dump().items()
        ], border_style="green")
    for err in result.errors:
        console.print(f"[red]{err}[/red]")


@app.command("list")
def list_command(
    ctx: typer.Context,
    limit: int = typer.Option(20, help="Max rows."),
) -> None:
    """Show saved calculations, newest first."""
    init_db()
    with session_scope() as session:
        rows = [
            services.calculation_summary(s)
            for s in services.list_calculations(session, limit=limit, base_url=get_settings().base_url)
        ]
    if _wants_json(ctx):
        _echo_json(rows)
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    for col in ("ID", "Saved", "Technology", "Stage", "Realistic"):
        table.add_column(col)
    for r in rows:
        table.add_row(
            r["id"], r["created_at"] or "-", r["technology_type"], r["current_stage"],
            format_currency(r["realistic_total"]) if r["realistic_total"] is not None else "-",
        )
    console.print(table)


@app.command("show")
def show_command(ctx: typer.Context, calc_id: str = typer.Argument(...)) -> None:
    """Reload a saved calculation by id."""
    init_db()
    with session_scope() as session:
        saved = services.load_calculation(session, calc_id, get_settings().base_url)
    if saved is None:
        console.print(f"[red]Calculation {calc_id} not found[/red]")
        raise typer.Exit(code=1)
    if _wants_json(ctx):
        _echo_json(saved.model_dump(mode="json"))
        return
    _render_results(saved.results, calculate_staged_funding(saved.results))
    console.print(f"Link: {saved.link}")


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Port."),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes."),
) -> None:
    """Run the HTTP API."""
    import uvicorn
    uvicorn.run("investcalc.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
