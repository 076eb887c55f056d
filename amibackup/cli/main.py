"""Main CLI entry point using Typer."""

import logging
import re
import sys
from datetime import datetime, timezone
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..aws.credentials import validate_credentials
from ..aws.resource_api import Ec2ResourceAPI
from ..catalog.reader import CatalogReader
from ..errors import ConfigurationError, CredentialValidationError, RemoteError
from ..models.backup_task import BackupState
from ..models.purge_operation import PurgeOperation
from ..models.run_config import build_run_config, known_ec2_regions
from ..result import Disposition, RunResult
from ..retention.audit import AuditStorage
from ..runner import BackupRunner, cleanup_images
from ..utils.logging import setup_logging
from .config import Config

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="amibackup",
    help="Cross-region EC2 AMI backups with windowed retention",
    add_completion=False,
)

# Create Rich console for output
console = Console()

# Global config
config: Optional[Config] = None


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output except errors"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
):
    """amibackup - cross-region EC2 AMI backups with windowed retention."""
    global config

    # Setup logging before the config file is read so its diagnostics show
    setup_logging(level="ERROR" if quiet else ("DEBUG" if verbose else "INFO"), verbose=verbose)

    try:
        config = Config.load()
    except ConfigurationError as e:
        console.print(f"✗ {e}", style="bold red")
        raise typer.Exit(code=2)

    log_level = "ERROR" if quiet else ("DEBUG" if verbose else config.log_level)
    logging.getLogger().setLevel(log_level)

    if no_color:
        console.no_color = True


@app.command()
def version():
    """Show version information."""
    import boto3

    from .. import __version__

    console.print(f"amibackup version {__version__}")
    console.print(f"Python {sys.version.split()[0]}")
    console.print(f"boto3 {boto3.__version__}")


def format_age(when: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Render a timestamp as a relative age, e.g. ``3 days ago``."""
    if when is None:
        return "-"
    seconds = int(((now or datetime.now(timezone.utc)) - when).total_seconds())
    if seconds < 0:
        return "in the future"
    if seconds < 60:
        return "just now"

    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


def _current_config() -> Config:
    return config if config is not None else Config()


def _check_credentials(profile: Optional[str], region: str, nagios: bool = False) -> None:
    try:
        identity = validate_credentials(profile, region)
    except CredentialValidationError as e:
        _fatal(str(e), nagios)
    logger.debug(f"Using AWS account {identity['account_id']} ({identity['arn']})")


def _fatal(message: str, nagios: bool = False) -> None:
    if nagios:
        result = RunResult()
        result.critical("run", "", message)
        typer.echo(result.status_line())
    else:
        console.print(f"✗ {message}", style="bold red")
    raise typer.Exit(code=int(Disposition.CRITICAL))


def _print_purge_summary(operations: List[PurgeOperation]) -> None:
    if not operations:
        return
    table = Table(title="Purge")
    table.add_column("Name", style="cyan")
    table.add_column("Region")
    table.add_column("Mode")
    table.add_column("Selected", justify="right")
    table.add_column("AMIs deleted", justify="right")
    table.add_column("Snapshots deleted", justify="right")
    table.add_column("Failed", justify="right")

    for operation in operations:
        table.add_row(
            operation.name or "",
            operation.region,
            operation.mode.value,
            str(operation.images_total),
            str(operation.images_deleted),
            str(operation.snapshots_deleted),
            f"[red]{operation.failed_count}[/red]" if operation.failed_count else "0",
        )
    console.print(table)


def _print_result(result: RunResult) -> None:
    style = {Disposition.OK: "green", Disposition.WARNING: "yellow", Disposition.CRITICAL: "bold red"}
    for outcome in result.outcomes:
        if outcome.status == Disposition.OK:
            console.print(f"✓ {outcome.message}", style=style[outcome.status])
        else:
            console.print(f"✗ {outcome.message}", style=style[outcome.status])


@app.command()
def backup(
    names: List[str] = typer.Argument(..., help="Name tag values of the instances to back up"),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Source region (default: us-east-1)"),
    dest: Optional[str] = typer.Option(None, "--dest", "-d", help="Destination region (default: us-west-1)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Global timeout in seconds (default: 300)"),
    prune: Optional[List[str]] = typer.Option(
        None, "--prune", "-p", help="Retention window INTERVAL:START:END, e.g. 1d:4d:30d (repeatable)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log purge actions without deleting anything"),
    prune_only: bool = typer.Option(False, "--prune-only", "-o", help="Purge old AMIs without creating new ones"),
    ignore_volume: Optional[List[str]] = typer.Option(
        None, "--ignore-volume", "-i", help="Device name to exclude from the image, e.g. /dev/sdb (repeatable)"
    ),
    encrypt: bool = typer.Option(False, "--encrypt", help="Encrypt the destination copy"),
    kms_key_id: Optional[str] = typer.Option(None, "--kms-key-id", help="KMS key for the destination copy"),
    nagios: bool = typer.Option(False, "--nagios", "-n", help="Print a single monitoring status line"),
    audit_dir: Optional[str] = typer.Option(None, "--audit-dir", help="Write purge audit logs to this directory"),
    profile: Optional[str] = typer.Option(None, "--profile", help="AWS profile name"),
):
    """Purge old AMIs, then back up every instance matching the name tags.

    Examples:
        # Back up two instances and copy to us-west-2
        amibackup backup web db --source us-east-1 --dest us-west-2

        # Keep hourly backups for a day, then daily backups for a month
        amibackup backup web -p 1h:0:1d -p 1d:1d:30d

        # See what would be pruned
        amibackup backup web -p 1d:1d:30d --prune-only --dry-run
    """
    settings = _current_config()
    if nagios and logging.getLogger().level < logging.ERROR:
        logging.getLogger().setLevel(logging.ERROR)

    try:
        run_config = build_run_config(
            names,
            source_region=source or settings.source_region,
            dest_region=dest or settings.dest_region,
            timeout=timeout if timeout is not None else settings.timeout,
            poll_interval=settings.poll_interval,
            window_specs=prune or [],
            dry_run=dry_run,
            prune_only=prune_only,
            ignored_devices=ignore_volume or [],
            encrypt=encrypt,
            kms_key_id=kms_key_id,
            aws_profile=profile or settings.aws_profile,
            audit_dir=audit_dir or settings.audit_dir,
        )
    except ConfigurationError as e:
        _fatal(str(e), nagios)

    _check_credentials(run_config.aws_profile, run_config.source_region, nagios)

    for window in run_config.windows:
        logger.debug(f"Window {window.spec}: {window.describe()}")

    audit_storage = AuditStorage(run_config.audit_dir) if run_config.audit_dir else None
    runner = BackupRunner(Ec2ResourceAPI(run_config.aws_profile), run_config, audit_storage=audit_storage)
    result = runner.run()

    if nagios:
        typer.echo(result.status_line())
    else:
        _print_purge_summary(runner.operations)
        if runner.report is not None:
            table = Table(title="Backup")
            table.add_column("Instance", style="cyan")
            table.add_column("Name")
            table.add_column(f"AMI ({run_config.source_region})")
            table.add_column(f"Copy ({run_config.dest_region})")
            table.add_column("State")
            for task in runner.report.tasks:
                state_style = "red" if task.state == BackupState.FAILED else "green"
                table.add_row(
                    task.instance.instance_id,
                    task.instance.name,
                    task.image_id or "-",
                    task.copy_image_id or "-",
                    f"[{state_style}]{task.state.value}[/{state_style}]",
                )
            console.print(table)
        _print_result(result)

    raise typer.Exit(code=result.exit_code)


@app.command()
def inventory(
    name: str = typer.Argument(..., help="Name tag value the backups were taken for"),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Source region"),
    dest: Optional[str] = typer.Option(None, "--dest", "-d", help="Destination region"),
    profile: Optional[str] = typer.Option(None, "--profile", help="AWS profile name"),
):
    """List backup AMIs for a name tag, newest first, in both regions."""
    settings = _current_config()
    source_region = source or settings.source_region
    dest_region = dest or settings.dest_region
    aws_profile = profile or settings.aws_profile

    regions = known_ec2_regions()
    for region in (source_region, dest_region):
        if region not in regions:
            _fatal(f"Bad region: {region}")

    _check_credentials(aws_profile, source_region)

    catalog = CatalogReader(Ec2ResourceAPI(aws_profile))
    now = datetime.now(timezone.utc)
    exit_code = 0

    for region in dict.fromkeys((source_region, dest_region)):
        try:
            images = catalog.list_managed_images(region, name)
        except RemoteError as e:
            console.print(f"✗ {e}", style="bold red")
            exit_code = 1
            continue

        images.sort(key=lambda image: (image.backup_timestamp, image.image_id), reverse=True)

        table = Table(title=f"{name} AMIs in {region}")
        table.add_column("AMI ID", style="cyan")
        table.add_column("Instance")
        table.add_column("Backup time")
        table.add_column("Age")
        table.add_column("State")
        table.add_column("Copied from")
        for image in images:
            table.add_row(
                image.image_id,
                image.instance_id,
                image.backup_timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                format_age(image.backup_timestamp, now),
                image.state.value,
                image.source_region or "-",
            )
        console.print(table)
        console.print(f"{len(images)} AMIs\n")

    raise typer.Exit(code=exit_code)


@app.command()
def cleanup(
    pattern: str = typer.Argument(..., help="Regular expression matched against AMI names"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="Region to clean up (default: source region)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log actions without deleting anything"),
    audit_dir: Optional[str] = typer.Option(None, "--audit-dir", help="Write the purge audit log to this directory"),
    profile: Optional[str] = typer.Option(None, "--profile", help="AWS profile name"),
):
    """Deregister private AMIs whose name matches PATTERN and delete their snapshots.

    Examples:
        # Preview
        amibackup cleanup '^web-2019' --region us-east-1 --dry-run
    """
    settings = _current_config()
    target_region = region or settings.source_region
    aws_profile = profile or settings.aws_profile

    try:
        re.compile(pattern)
    except re.error as e:
        _fatal(f"Invalid pattern {pattern!r}: {e}")
    if target_region not in known_ec2_regions():
        _fatal(f"Bad region: {target_region}")

    _check_credentials(aws_profile, target_region)

    storage_dir = audit_dir or settings.audit_dir
    audit_storage = AuditStorage(storage_dir) if storage_dir else None

    try:
        operation = cleanup_images(
            Ec2ResourceAPI(aws_profile), target_region, pattern, dry_run=dry_run, audit_storage=audit_storage
        )
    except RemoteError as e:
        _fatal(str(e))

    _print_purge_summary([operation])
    if operation.had_errors:
        console.print(f"✗ {operation.failed_count} deletions failed", style="yellow")
        raise typer.Exit(code=int(Disposition.WARNING))
    if dry_run:
        console.print(f"Dry run: {operation.images_total} AMIs would be deregistered", style="cyan")
    else:
        console.print(f"✓ Deregistered {operation.images_deleted} AMIs", style="green")


@app.command()
def audit(
    operation_id: Optional[str] = typer.Argument(None, help="Show the records of this operation"),
    audit_dir: Optional[str] = typer.Option(None, "--audit-dir", help="Audit log directory"),
):
    """List recorded purge operations, or show one operation's records.

    Examples:
        # Every purge pass written to the default audit directory
        amibackup audit

        # What one pass deleted
        amibackup audit op_1234 --audit-dir /var/log/amibackup
    """
    settings = _current_config()
    storage = AuditStorage(audit_dir or settings.audit_dir)

    if operation_id is None:
        logs = storage.list_operations()
        if not logs:
            console.print("No purge operations recorded.", style="yellow")
            return

        table = Table(show_header=True, title="Purge operations")
        table.add_column("Operation", style="cyan")
        table.add_column("Started")
        table.add_column("Name")
        table.add_column("Region")
        table.add_column("Mode")
        table.add_column("Status")
        table.add_column("AMIs deleted", justify="right")
        table.add_column("Snapshots deleted", justify="right")
        table.add_column("Failed", justify="right")
        for log in logs:
            operation = log["operation"]
            table.add_row(
                operation["operation_id"],
                str(operation["timestamp"]),
                operation["name"] or "",
                operation["region"],
                operation["mode"],
                operation["status"],
                str(operation["images_deleted"]),
                str(operation["snapshots_deleted"]),
                str(operation["failed_count"]),
            )
        console.print(table)
        console.print(f"\nTotal operations: {len(logs)}")
        return

    log = storage.get_operation(operation_id)
    if log is None:
        _fatal(f"Purge operation '{operation_id}' not found in {storage.storage_dir}")

    operation = log["operation"]
    console.print(f"\n[bold]Operation: {operation['operation_id']}[/bold]")
    console.print(f"Region: {operation['region']}")
    console.print(f"Mode: {operation['mode']}")
    console.print(f"Status: {operation['status']}")
    console.print(f"Kept: {', '.join(operation['kept_images']) or '-'}\n")

    table = Table(show_header=True)
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("AMI")
    table.add_column("Status")
    table.add_column("Error")
    for record in log["records"]:
        status_style = "red" if record["status"] == "failed" else "green"
        table.add_row(
            record["resource_id"],
            record["kind"],
            record["parent_image_id"] or "-",
            f"[{status_style}]{record['status']}[/{status_style}]",
            record["error_code"] or "",
        )
    console.print(table)


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
