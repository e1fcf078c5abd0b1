"""
CLI interface for Cloud Cost Advisor.

Imports usage data, runs the analysis and drives the approval workflow.
"""

import csv
import sqlite3
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from cloud_cost_advisor.config.loader import (
    AdvisorConfig,
    default_config,
    load_advisor_config,
)
from cloud_cost_advisor.config.logging_setup import configure_logging
from cloud_cost_advisor.core.commitments import CommitmentPlanner
from cloud_cost_advisor.core.confidence import ConfidenceScorer
from cloud_cost_advisor.core.errors import AdvisorError
from cloud_cost_advisor.core.pipeline import AnalysisService
from cloud_cost_advisor.core.recommendations import RecommendationGenerator
from cloud_cost_advisor.core.workflow import WorkflowStateMachine
from cloud_cost_advisor.storage.db import DEFAULT_DB_PATH
from cloud_cost_advisor.storage.models import ItemKind, UsageRecord, WorkflowStatus
from cloud_cost_advisor.storage.repository import WorkflowRepository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Errors reported as a failed command instead of a traceback
CLI_ERRORS = (AdvisorError, ValueError, OSError, sqlite3.Error, yaml.YAMLError)

CSV_COLUMNS = ("resource_id", "provider", "service", "timestamp", "cost")

DB_OPTION = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite database")
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to the YAML configuration")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", help="Minimum log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Write logs as JSON lines"),
):
    """Cloud Cost Advisor CLI."""
    configure_logging(log_level, json_output=json_logs)
    if ctx.invoked_subcommand is None:
        console.print("Cloud Cost Advisor - Use --help to see available commands")


@app.command()
def init(db: str = DB_OPTION):
    """Initialize the advisor database."""
    try:
        WorkflowRepository(db).initialize_schema()
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("import-usage")
def import_usage(
    csv_path: Path = typer.Argument(..., help="CSV with resource_id, provider, service, timestamp, cost[, utilization]"),
    db: str = DB_OPTION,
):
    """Import usage records from a CSV file."""
    try:
        records = read_usage_csv(csv_path)
        inserted = WorkflowRepository(db).insert_usage_records(records)
    except Exception as e:
        console.print(f"[red]Error importing usage:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Imported {inserted} usage records")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def analyze(
    db: str = DB_OPTION,
    config: Optional[str] = CONFIG_OPTION,
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Only analyze this provider"),
    service: Optional[str] = typer.Option(None, "--service", "-s", help="Only analyze this service"),
    submit: bool = typer.Option(False, "--submit", help="Queue recommendations for approval"),
):
    """
    Generate optimization recommendations from stored usage.

    Only recommendations at or above the configured confidence threshold
    are shown. With --submit they are queued as pending approval.
    """
    try:
        advisor_config = _load_config(config)
        repository = WorkflowRepository(db)
        records = repository.fetch_usage_records(provider=provider, service=service)
        if not records:
            _print_no_usage()
            sys.exit(EXIT_CODE_PASS)

        recommendations = build_analysis_service(advisor_config).recommend(records)
        _display_recommendations(recommendations)

        if submit:
            workflow = build_workflow(repository, advisor_config)
            queued = sum(
                1 for r in recommendations
                if workflow.submit_recommendation(r) is not None
            )
            console.print(f"\nQueued {queued} of {len(recommendations)} for approval")
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            _print_no_usage()
            sys.exit(EXIT_CODE_PASS)
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except CLI_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    sys.exit(EXIT_CODE_PASS)


@app.command()
def commitments(
    db: str = DB_OPTION,
    config: Optional[str] = CONFIG_OPTION,
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Only plan for this provider"),
    submit: bool = typer.Option(False, "--submit", help="Queue commitments for approval"),
):
    """Plan reserved capacity and savings plan commitments per service."""
    try:
        advisor_config = _load_config(config)
        repository = WorkflowRepository(db)
        records = repository.fetch_usage_records(provider=provider)
        if not records:
            _print_no_usage()
            sys.exit(EXIT_CODE_PASS)

        forecast = build_analysis_service(advisor_config).plan_commitments(records)
        _display_commitments(forecast)

        if submit:
            workflow = build_workflow(repository, advisor_config)
            queued = sum(
                1 for r in forecast.recommendations
                if workflow.submit_recommendation(r) is not None
            )
            console.print(f"\nQueued {queued} of {len(forecast.recommendations)} for approval")
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            _print_no_usage()
            sys.exit(EXIT_CODE_PASS)
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except CLI_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    sys.exit(EXIT_CODE_PASS)


@app.command("list")
def list_items(
    db: str = DB_OPTION,
    status: Optional[WorkflowStatus] = typer.Option(None, "--status", help="Filter by status"),
    kind: Optional[ItemKind] = typer.Option(None, "--kind", help="Filter by item kind"),
):
    """List workflow items."""
    try:
        items = WorkflowRepository(db).list_items(kind=kind, status=status)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not items:
        console.print("[dim]No workflow items found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Workflow Items")
    table.add_column("ID", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Key")
    table.add_column("Decided by")
    for item in items:
        table.add_row(
            item.id,
            item.kind.value,
            item.status.value,
            item.key,
            item.decided_by or "",
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def approve(
    item_id: str = typer.Argument(..., help="Workflow item to approve"),
    approver: str = typer.Option(..., "--approver", "-a", help="Name of the approver"),
    db: str = DB_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Approve a pending recommendation, commitment or action."""
    try:
        workflow = build_workflow(WorkflowRepository(db), _load_config(config))
        item = workflow.approve(item_id, approver)
    except CLI_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] {item.id} is {item.status.value}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def reject(
    item_id: str = typer.Argument(..., help="Workflow item to reject"),
    approver: str = typer.Option(..., "--approver", "-a", help="Name of the approver"),
    reason: str = typer.Option(..., "--reason", "-r", help="Why the item is rejected"),
    db: str = DB_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Reject a pending item with a reason."""
    try:
        workflow = build_workflow(WorkflowRepository(db), _load_config(config))
        item = workflow.reject(item_id, approver, reason)
    except CLI_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[yellow]✗[/] {item.id} is {item.status.value}")
    sys.exit(EXIT_CODE_PASS)


@app.command("create-action")
def create_action(
    item_id: str = typer.Argument(..., help="Approved recommendation or commitment"),
    db: str = DB_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Create the executable action for an approved recommendation."""
    try:
        workflow = build_workflow(WorkflowRepository(db), _load_config(config))
        item = workflow.create_action_for(item_id)
    except CLI_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    payload = item.payload
    console.print(f"[green]✓[/] Action {item.id} is {item.status.value}")
    console.print(f"  {payload['type']} {payload['provider']}/{payload['resource_id']}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    item_id: str = typer.Argument(..., help="Workflow item"),
    db: str = DB_OPTION,
):
    """Show the status transitions of a workflow item."""
    try:
        transitions = build_workflow(WorkflowRepository(db), default_config()).history(item_id)
    except CLI_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"History of {item_id}")
    table.add_column("Time")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Actor")
    table.add_column("Reason")
    for t in transitions:
        table.add_row(
            t.timestamp.isoformat(timespec="seconds"),
            t.from_status.value if t.from_status else "-",
            t.to_status.value,
            t.actor,
            t.reason or "",
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def audit(
    action_id: str = typer.Argument(..., help="Action to show the audit trail for"),
    db: str = DB_OPTION,
):
    """Show the execution audit trail of an action."""
    try:
        entries = WorkflowRepository(db).list_audit_entries(action_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not entries:
        console.print(f"[dim]No audit entries for {action_id}.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Audit trail of {action_id}")
    table.add_column("Time")
    table.add_column("Status")
    table.add_column("Detail")
    for entry in entries:
        table.add_row(
            entry.timestamp.isoformat(timespec="seconds"),
            entry.status.value,
            entry.detail,
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


def build_analysis_service(config: AdvisorConfig) -> AnalysisService:
    """Wire the analysis pipeline from configuration."""
    scorer = ConfidenceScorer(min_samples=config.thresholds.min_samples)
    return AnalysisService(
        generator=RecommendationGenerator(
            scorer=scorer,
            settings=config.rules,
            min_confidence=config.thresholds.min_confidence,
        ),
        planner=CommitmentPlanner(
            scorer=scorer,
            settings=config.commitment,
            min_confidence=config.thresholds.min_confidence,
        ),
        max_workers=config.execution.max_workers,
    )


def build_workflow(repository: WorkflowRepository, config: AdvisorConfig) -> WorkflowStateMachine:
    return WorkflowStateMachine(
        repository,
        approvers=config.approvers,
        min_confidence=config.thresholds.min_confidence,
    )


def read_usage_csv(path: Path) -> List[UsageRecord]:
    """Parse a usage CSV into records.

    Args:
        path: CSV file with a header row; ``utilization`` is optional and
            may be left blank per row

    Returns:
        Parsed records in file order

    Raises:
        ValueError: If a required column is missing or a row is malformed
    """
    records = []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = set(CSV_COLUMNS) - set(reader.fieldnames or ())
        if missing:
            raise ValueError(f"Missing CSV columns: {sorted(missing)}")
        for line_number, row in enumerate(reader, start=2):
            try:
                utilization = (row.get("utilization") or "").strip()
                records.append(UsageRecord(
                    resource_id=row["resource_id"],
                    provider=row["provider"],
                    service=row["service"],
                    timestamp=datetime.fromisoformat(row["timestamp"]),
                    cost=float(row["cost"]),
                    utilization=float(utilization) if utilization else None,
                ))
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid row at line {line_number}: {e}")
    return records


def _load_config(path: Optional[str]) -> AdvisorConfig:
    return load_advisor_config(path) if path else default_config()


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _print_no_usage():
    console.print("\n[bold yellow]No usage data found[/]")
    console.print("\nTo get started with Cloud Cost Advisor:")
    console.print("1. Run `cloud-cost-advisor init` to initialize the database")
    console.print("2. Run `cloud-cost-advisor import-usage usage.csv`")
    console.print("3. Run this command again\n")


def _display_recommendations(recommendations):
    console.print("\n[bold]Optimization Recommendations[/bold]")
    console.print("-" * 40)

    if not recommendations:
        console.print("\n[dim]No recommendations met the confidence threshold.[/]")
        return

    table = Table()
    table.add_column("Type")
    table.add_column("Provider")
    table.add_column("Resource")
    table.add_column("Savings", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Impact")
    for r in recommendations:
        table.add_row(
            r.type.value,
            r.provider,
            ", ".join(r.resource_ids),
            _format_currency(r.estimated_savings),
            f"{r.confidence_score:.2f}",
            r.impact.value,
        )
    console.print(table)


def _display_commitments(forecast):
    console.print("\n[bold]Commitment Plan[/bold]")
    console.print("-" * 40)

    if not forecast.recommendations:
        console.print("\n[dim]No commitments met the confidence threshold.[/]")
        return

    table = Table()
    table.add_column("Provider")
    table.add_column("Service")
    table.add_column("Type")
    table.add_column("Term")
    table.add_column("Quantity", justify="right")
    table.add_column("Savings", justify="right")
    table.add_column("Risks")
    for c in forecast.recommendations:
        table.add_row(
            c.provider,
            c.service,
            c.commitment_type.value,
            f"{c.term_months} months",
            str(c.quantity),
            _format_currency(c.estimated_savings),
            "; ".join(c.risk_factors) or "-",
        )
    console.print(table)
    console.print(f"Total potential savings: {_format_currency(forecast.total_potential_savings)}")
    console.print(f"Average confidence: {forecast.average_confidence:.2f}")


if __name__ == "__main__":
    app()
