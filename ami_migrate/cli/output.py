"""Rich rendering of lifecycle results."""

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ami_migrate.lifecycle.models import (
    BackupResult,
    BatchResult,
    CreateResult,
    MigrationResult,
    MigrationStatus,
    RestoreResult,
    SnapshotRestoreResult,
)
from ami_migrate.lifecycle.status import render_status


def show_migration(console: Console, result: MigrationResult) -> None:
    console.print(f"✅ [green]Migrated {result.source_instance_id} to {result.new_instance_id}[/green]")
    console.print(f"   New AMI:          {result.image_id}")
    console.print(f"   Original state:   {result.source_final_state}")


def show_create(console: Console, result: CreateResult) -> None:
    console.print(f"✅ [green]Created instance {result.instance_id}[/green]")
    console.print(f"   AMI:              {result.image_id}")
    console.print(f"   Instance type:    {result.instance_type}")
    if result.key_name:
        console.print(f"   Key pair:         {escape(result.key_name)}")
    if result.subnet_id:
        console.print(f"   Subnet:           {result.subnet_id}")
    if result.user_data_provided:
        console.print("   User data:        [provided]", markup=False, highlight=False)
    console.print("[dim]The launch was accepted; the instance may still be pending.[/dim]")


def show_backup(console: Console, result: BackupResult) -> None:
    console.print(f"✅ [green]Backup of {result.instance_id} started as {result.image_id}[/green]")
    console.print(f"   Name:             {result.name}")
    console.print(f"   OS:               {result.os}")
    console.print("[dim]The image may still be pending; wait for it to become available before use.[/dim]")


def show_restore(console: Console, result: RestoreResult) -> None:
    console.print(
        f"✅ [green]Restored {result.source_instance_id} from {result.image_id} "
        f"as {result.new_instance_id}[/green]"
    )
    console.print(f"   Original {result.source_instance_id} kept stopped as a fallback")


def show_snapshot_restore(console: Console, result: SnapshotRestoreResult) -> None:
    console.print(
        f"✅ [green]Restored volume {result.volume_id} from snapshot {result.snapshot_id} "
        f"to instance {result.instance_id} at device {result.device_name}[/green]"
    )


def show_status(console: Console, status: MigrationStatus) -> None:
    # markup off: the text may contain brackets from tag values
    console.print(render_status(status), markup=False, highlight=False)


def show_batch(console: Console, batch: BatchResult) -> None:
    """Summarise a bulk run as a table."""
    table = Table(title=f"Bulk {batch.operation}")
    table.add_column("Instance", style="cyan")
    table.add_column("Result")
    table.add_column("Detail")

    for result in batch.succeeded:
        if isinstance(result, MigrationResult):
            table.add_row(result.source_instance_id, "[green]migrated[/green]", result.new_instance_id)
        elif isinstance(result, BackupResult):
            table.add_row(result.instance_id, "[green]backed up[/green]", result.image_id)
    for instance_id in batch.skipped:
        table.add_row(instance_id, "[dim]skipped[/dim]", "already current")
    for failure in batch.failed:
        table.add_row(failure.instance_id, "[red]failed[/red]", escape(f"[{failure.step}] {failure.message}"))

    if batch.succeeded or batch.skipped or batch.failed:
        console.print(table)
    else:
        console.print("[yellow]No instances are tagged for this operation.[/yellow]")

    if batch.cancelled:
        console.print("⚠️  [yellow]Batch cancelled before all instances were processed[/yellow]")
