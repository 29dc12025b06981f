"""
CLI for the takeoff ledger.

Commands:
    run              - Run the pipeline over one document
    validate-ledger  - Audit a stored ledger snapshot
    policy show      - Print a resolved policy
    policy validate  - Validate a policy file
"""

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table as RichTable

from ..config.settings import get_settings
from ..extraction import ProjectDocument, StaticExtractionClient
from ..ledger import InferenceLedger, LedgerError
from ..pipeline import PipelineResult
from ..pipeline.factory import create_pipeline, get_default_config
from ..services import PipelineServices, build_services

app = typer.Typer(
    name="takeoff-ledger",
    help="Takeoff Ledger - staged inference with a provenance ledger",
)
policy_app = typer.Typer(help="Inspect and validate policies")
app.add_typer(policy_app, name="policy")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Debug logging"),
):
    level = "DEBUG" if verbose else get_settings().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _read_json(path: Path) -> Any:
    if not path.exists():
        rprint(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError as e:
        rprint(f"[red]Invalid JSON in {path}: {e}[/red]")
        raise typer.Exit(1)


def _print_result(result: PipelineResult) -> None:
    summary = result.ledger.get_summary()

    table = RichTable(title=f"Run {summary.run_id}")
    table.add_column("Records", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Evidence", str(summary.evidence_count))
    table.add_row("Assumptions", f"{summary.assumption_count} ({summary.active_assumption_count} active)")
    table.add_row("Inferences", str(summary.inference_count))
    table.add_row("Decisions", str(summary.decision_count))
    table.add_row("Flags", f"{summary.flag_count} ({summary.unresolved_flag_count} unresolved)")
    console.print(table)

    if result.ledger.decisions:
        decisions = RichTable(title="Decisions")
        decisions.add_column("Topic", style="cyan")
        decisions.add_column("Value")
        decisions.add_column("Rationale", style="dim")
        for decision in result.ledger.decisions:
            decisions.add_row(decision.topic, json.dumps(decision.selected_value, default=str), decision.justification)
        console.print(decisions)

    if result.ledger.flags:
        flags = RichTable(title="Flags")
        flags.add_column("Type", style="yellow")
        flags.add_column("Severity")
        flags.add_column("Topic", style="cyan")
        flags.add_column("Message")
        for flag in result.ledger.flags:
            flags.add_row(flag.type.value, flag.severity.value, flag.topic or "", flag.message)
        console.print(flags)

    for error in result.errors:
        rprint(f"[red]Stage {error.stage} failed ({error.kind}, {error.attempts} attempt(s)): {error.error}[/red]")

    status = "[green]✓ Completed[/green]" if result.success else "[yellow]⚠ Completed with errors[/yellow]"
    rprint(f"\n{status} in {result.execution_time_ms:.0f}ms")


@app.command()
def run(
    document_json: Path = typer.Argument(..., help="JSON file with document, extraction and overrides"),
    policy_id: Optional[str] = typer.Option(None, "--policy-id", "-p", help="Policy to resolve"),
    vision: bool = typer.Option(False, "--vision", help="Enable vision strategies"),
    save: bool = typer.Option(True, "--save/--no-save", help="Store the ledger"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the ledger snapshot here"),
):
    """
    Run the pipeline over one document.

    The input file holds a ``document`` object and, optionally, precomputed
    ``extraction`` findings by kind, ``projectDocuments``, ``policyOverrides``
    and ``assumptionOverrides``.

    Examples:
        takeoff-ledger run plan.json --policy-id residential_2024
        takeoff-ledger run plan.json --no-save --output ledger.json
    """
    payload = _read_json(document_json)
    if not isinstance(payload, dict) or "document" not in payload:
        rprint("[red]Input must be an object with a 'document' entry[/red]")
        raise typer.Exit(1)

    try:
        document = ProjectDocument.model_validate(payload["document"])
        project_documents = [
            ProjectDocument.model_validate(d) for d in payload.get("projectDocuments", [])
        ]
    except ValidationError as e:
        rprint(f"[red]Invalid document: {e}[/red]")
        raise typer.Exit(1)

    services: PipelineServices = build_services()
    if "extraction" in payload:
        services = replace(
            services,
            extraction_client=StaticExtractionClient({document.id: payload["extraction"]}),
        )

    config = get_default_config()
    config = config.model_copy(update={
        "policy_id": policy_id or config.policy_id,
        "policy_overrides": payload.get("policyOverrides", {}),
        "assumption_overrides": payload.get("assumptionOverrides", {}),
        "feature_flags": {"enableVisionStrategies": True} if vision else {},
    })

    async def execute() -> tuple[PipelineResult, Optional[str]]:
        try:
            pipeline = create_pipeline(services, config)
            result = await pipeline.execute({
                "document": document.model_dump(),
                "project_documents": [d.model_dump() for d in project_documents],
            })
            key = None
            if save:
                key = await services.ledger_store.save_ledger(result.ledger, document.id)
            return result, key
        finally:
            await services.extraction_client.close()

    result, key = asyncio.run(execute())
    _print_result(result)

    if key:
        rprint(f"  Stored as: {key}")
    if output:
        output.write_text(json.dumps(result.ledger.to_dict(), indent=2))
        rprint(f"  Snapshot: {output}")

    if not result.success:
        raise typer.Exit(1)


@app.command("validate-ledger")
def validate_ledger(
    snapshot_json: Path = typer.Argument(..., help="Ledger snapshot JSON file"),
):
    """
    Replay a ledger snapshot and report every integrity violation.
    """
    data = _read_json(snapshot_json)

    try:
        ledger = InferenceLedger.replay(data)
    except (ValidationError, LedgerError) as e:
        rprint(f"[red]✗ Snapshot cannot be replayed: {e}[/red]")
        raise typer.Exit(1)

    report = ledger.validate_integrity()
    summary = ledger.get_summary()
    rprint(f"Ledger {summary.ledger_id} (run {summary.run_id}, policy {summary.policy_id})")

    if report.is_valid:
        rprint("[green]✓ Ledger is consistent[/green]")
        return

    for error in report.errors:
        rprint(f"[red]  - {error}[/red]")
    raise typer.Exit(1)


@policy_app.command("show")
def policy_show(
    policy_id: Optional[str] = typer.Argument(None, help="Policy id (default policy when omitted)"),
):
    """Print a resolved policy as JSON."""
    services = build_services()
    resolver = services.policy_resolver

    if policy_id and not resolver.has_policy(policy_id):
        available = ", ".join(resolver.available_policy_ids())
        rprint(f"[yellow]Unknown policy '{policy_id}', showing default. Available: {available}[/yellow]")

    policy = resolver.get_policy(policy_id)
    console.print_json(policy.model_dump_json(by_alias=True))


@policy_app.command("validate")
def policy_validate(
    policy_file: Path = typer.Argument(..., help="Policy JSON file"),
):
    """Validate a complete policy document."""
    data = _read_json(policy_file)
    report = build_services().policy_resolver.validate_policy(data)

    if report.is_valid:
        rprint(f"[green]✓ Valid policy: {policy_file}[/green]")
        return

    for error in report.errors:
        rprint(f"[red]  - {error}[/red]")
    raise typer.Exit(1)


if __name__ == "__main__":
    app()
