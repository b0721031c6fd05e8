"""
Main CLI entry point for AMI Migrate.

Provides the "ami-migrate" command group.
"""

import functools
import logging
import sys
import threading
from typing import Optional

import boto3
import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from ami_migrate import __version__
from ami_migrate.cli import output
from ami_migrate.cli.keyboard import escape_listener, show_escape_hint
from ami_migrate.core.config import Config, ConfigManager
from ami_migrate.core.exceptions import (
    AMIMigrateError,
    ConfigurationError,
    OperationCancelled,
    ProviderCallFailed,
    ProviderError,
    ResourceNotFound,
    ValidationError,
    WaitError,
)
from ami_migrate.lifecycle.operations import BulkOperations
from ami_migrate.lifecycle.orchestrator import LifecycleOrchestrator
from ami_migrate.lifecycle.status import StatusReporter
from ami_migrate.providers.ec2 import EC2Provider
from ami_migrate.providers.models import LaunchTemplate


console = Console()

# Exit codes for different error types
EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_NOT_FOUND = 3
EXIT_PROVIDER_ERROR = 4
EXIT_WAIT_ERROR = 5
EXIT_USER_CANCELLED = 130


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def load_settings(ctx: click.Context) -> Config:
    """Config file values overridden by global command-line options."""
    config = ConfigManager().load_config()

    overrides = {k: v for k, v in ctx.obj.items() if v is not None}
    if overrides:
        # validate the merged values, model_copy alone would not
        config = Config(**{**config.model_dump(), **overrides})
    return config


def create_provider(config: Config) -> EC2Provider:
    session = boto3.Session(profile_name=config.profile, region_name=config.default_region)
    return EC2Provider(session, config.default_region)


def create_orchestrator(config: Config) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(create_provider(config), config=config)


def handle_errors(command):
    """Translate AMI Migrate errors into messages and exit codes."""

    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except (KeyboardInterrupt, OperationCancelled):
            console.print("\n⚠️  [yellow]Operation cancelled by user[/yellow]")
            sys.exit(EXIT_USER_CANCELLED)
        except (ConfigurationError, ValidationError) as e:
            console.print(f"❌ [red]{escape(str(e))}[/red]")
            sys.exit(EXIT_CONFIG_ERROR)
        except ResourceNotFound as e:
            console.print(f"❌ [red]{escape(str(e))}[/red]")
            sys.exit(EXIT_NOT_FOUND)
        except WaitError as e:
            console.print(f"⏱️  [red]{escape(str(e))}[/red]")
            _print_replacement_hint(e)
            sys.exit(EXIT_WAIT_ERROR)
        except (ProviderCallFailed, ProviderError) as e:
            console.print(f"❌ [red]Provider error: {escape(str(e))}[/red]")
            _print_replacement_hint(e)
            sys.exit(EXIT_PROVIDER_ERROR)
        except AMIMigrateError as e:
            console.print(f"❌ [red]{escape(str(e))}[/red]")
            sys.exit(EXIT_GENERAL_ERROR)

    return wrapper


def _print_replacement_hint(error: Exception) -> None:
    replacement = getattr(error, 'replacement_instance_id', None)
    if replacement:
        console.print(
            f"[yellow]Replacement instance {replacement} was launched and left in place. "
            "Clean it up or finish the cutover manually; do not simply re-run migrate.[/yellow]"
        )


def _cancellable(orchestrator_call):
    """Run a call with a cancel event wired to the ESC key."""
    cancel_event = threading.Event()
    show_escape_hint(console)
    with escape_listener(cancel_event, console):
        return orchestrator_call(cancel_event)


@click.group()
@click.option("--region", help="AWS region to operate in (defaults to configured region)")
@click.option("--profile", help="AWS named profile to use")
@click.option("--timeout", type=float, help="Maximum seconds to wait for any single state change")
@click.option("--poll-interval", type=float, help="Seconds between state polls")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level",
)
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context,
    region: Optional[str] = None,
    profile: Optional[str] = None,
    timeout: Optional[float] = None,
    poll_interval: Optional[float] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    AMI Migrate - move EC2 instances between AMIs.

    Migrate instances to new images, back them up, and restore them from
    images or snapshots.
    """
    ctx.ensure_object(dict)
    ctx.obj.update({
        'default_region': region,
        'profile': profile,
        'max_wait': timeout,
        'poll_interval': poll_interval,
        'log_level': log_level.upper() if log_level else None,
    })


def _settings(ctx: click.Context) -> Config:
    try:
        config = load_settings(ctx)
    except ValueError as e:
        raise ConfigurationError(f"Invalid option: {e}")
    configure_logging(config.log_level)
    return config


@main.command()
@click.option("--new-ami", required=True, help="ID of the AMI to migrate to")
@click.option("--instance-id", help="Migrate only this instance (bypasses tag selection)")
@click.pass_context
@handle_errors
def migrate(ctx: click.Context, new_ami: str, instance_id: Optional[str]) -> None:
    """Migrate instances to a new AMI.

    Without --instance-id, migrates every instance tagged ami-migrate=enabled.
    Running instances also need ami-migrate-if-running=enabled.
    """
    orchestrator = create_orchestrator(_settings(ctx))

    if instance_id:
        console.print(f"Starting migration of instance {instance_id} to AMI {new_ami}")
        result = _cancellable(lambda cancel: orchestrator.migrate(instance_id, new_ami, cancel))
        output.show_migration(console, result)
        return

    console.print(f"Starting migration of tagged instances to AMI {new_ami}")
    batch = _cancellable(lambda cancel: BulkOperations(orchestrator).migrate_enabled(new_ami, cancel))
    output.show_batch(console, batch)
    if batch.cancelled:
        sys.exit(EXIT_USER_CANCELLED)
    if batch.failed:
        sys.exit(EXIT_GENERAL_ERROR)


@main.command()
@click.option("--instance-id", help="Back up only this instance (bypasses tag selection)")
@click.pass_context
@handle_errors
def backup(ctx: click.Context, instance_id: Optional[str]) -> None:
    """Back up instances to new AMIs."""
    orchestrator = create_orchestrator(_settings(ctx))

    if instance_id:
        console.print(f"Starting backup of instance {instance_id}")
        output.show_backup(console, orchestrator.backup(instance_id))
        return

    console.print("Starting backup of tagged instances")
    batch = _cancellable(lambda cancel: BulkOperations(orchestrator).backup_enabled(cancel))
    output.show_batch(console, batch)
    if batch.cancelled:
        sys.exit(EXIT_USER_CANCELLED)
    if batch.failed:
        sys.exit(EXIT_GENERAL_ERROR)


@main.command()
@click.option("--instance-id", required=True, help="Instance to restore")
@click.option("--snapshot-id", help="Snapshot to restore a volume from")
@click.option("--image-id", help="AMI to restore a replacement instance from")
@click.pass_context
@handle_errors
def restore(ctx: click.Context, instance_id: str, snapshot_id: Optional[str], image_id: Optional[str]) -> None:
    """Restore an instance from a snapshot or an AMI."""
    if bool(snapshot_id) == bool(image_id):
        raise ValidationError("exactly one of --snapshot-id or --image-id is required")

    orchestrator = create_orchestrator(_settings(ctx))

    if snapshot_id:
        console.print(f"Starting restore of snapshot {snapshot_id} to instance {instance_id}")
        result = _cancellable(
            lambda cancel: orchestrator.restore_from_snapshot(instance_id, snapshot_id, cancel)
        )
        output.show_snapshot_restore(console, result)
    else:
        console.print(f"Starting restore of instance {instance_id} from AMI {image_id}")
        result = _cancellable(
            lambda cancel: orchestrator.restore_from_image(instance_id, image_id, cancel)
        )
        output.show_restore(console, result)


@main.command()
@click.option("--image", "image_id", help="AMI to launch from")
@click.option("--latest", is_flag=True, help="Launch from the AMI tagged ami-migrate=latest")
@click.option("--os", "os_name", help="With --latest, only consider AMIs tagged with this OS")
@click.option("--type", "instance_type", default="t2.micro", show_default=True, help="Instance type")
@click.option("--key", "key_name", help="Key pair name")
@click.option("--subnet", "subnet_id", help="Subnet to launch into")
@click.option("--userdata", "user_data", help="User data script passed to the instance")
@click.pass_context
@handle_errors
def create(
    ctx: click.Context,
    image_id: Optional[str],
    latest: bool,
    os_name: Optional[str],
    instance_type: str,
    key_name: Optional[str],
    subnet_id: Optional[str],
    user_data: Optional[str],
) -> None:
    """Launch a new instance from an AMI."""
    if bool(image_id) == latest:
        raise ValidationError("exactly one of --image or --latest is required")
    if os_name and not latest:
        raise ValidationError("--os only applies together with --latest")

    orchestrator = create_orchestrator(_settings(ctx))

    if latest:
        image_id = StatusReporter(orchestrator.provider).find_latest_image(os_name).image_id
        console.print(f"Using latest AMI {image_id}")

    template = LaunchTemplate(instance_type=instance_type, subnet_id=subnet_id, key_name=key_name)
    output.show_create(console, orchestrator.create_instance(image_id, template, user_data))


@main.command()
@click.option("--instance-id", required=True, help="Instance to check")
@click.option("--latest-ami", help="AMI designated as latest")
@click.option("--os", "os_name", help="Use the AMI tagged ami-migrate=latest for this OS")
@click.pass_context
@handle_errors
def check(ctx: click.Context, instance_id: str, latest_ami: Optional[str], os_name: Optional[str]) -> None:
    """Check whether an instance needs migrating."""
    if bool(latest_ami) == bool(os_name):
        raise ValidationError("exactly one of --latest-ami or --os is required")

    reporter = StatusReporter(create_provider(_settings(ctx)))
    if os_name:
        latest_ami = reporter.find_latest_image(os_name).image_id

    output.show_status(console, reporter.check_migration_status(instance_id, latest_ami))


@main.command()
@click.option("--image-id", required=True, help="AMI to designate as latest")
@click.option("--name-prefix", help="Only demote latest AMIs whose name starts with this")
@click.pass_context
@handle_errors
def latest(ctx: click.Context, image_id: str, name_prefix: Optional[str]) -> None:
    """Tag an AMI as the latest migration target."""
    reporter = StatusReporter(create_provider(_settings(ctx)))
    outdated = reporter.mark_latest_image(image_id, name_prefix)

    console.print(f"✅ [green]{image_id} is now tagged ami-migrate=latest[/green]")
    for old in outdated:
        console.print(f"   {old} tagged ami-migrate=outdated")


@main.command()
@click.option("--instance-id", required=True, help="Instance to start")
@click.pass_context
@handle_errors
def start(ctx: click.Context, instance_id: str) -> None:
    """Start an instance and wait until it is running."""
    orchestrator = create_orchestrator(_settings(ctx))
    _cancellable(lambda cancel: orchestrator.start_instance(instance_id, cancel))
    console.print(f"✅ [green]Instance {instance_id} is running[/green]")


@main.command()
@click.option("--instance-id", required=True, help="Instance to stop")
@click.pass_context
@handle_errors
def stop(ctx: click.Context, instance_id: str) -> None:
    """Stop an instance and wait until it is stopped."""
    orchestrator = create_orchestrator(_settings(ctx))
    _cancellable(lambda cancel: orchestrator.stop_instance(instance_id, cancel))
    console.print(f"✅ [green]Instance {instance_id} is stopped[/green]")


@main.command()
@click.option("--instance-id", required=True, help="Instance to restart")
@click.pass_context
@handle_errors
def restart(ctx: click.Context, instance_id: str) -> None:
    """Stop then start an instance."""
    orchestrator = create_orchestrator(_settings(ctx))
    _cancellable(lambda cancel: orchestrator.restart_instance(instance_id, cancel))
    console.print(f"✅ [green]Instance {instance_id} restarted[/green]")


@main.command()
@click.option("--instance-id", required=True, help="Instance to terminate")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@handle_errors
def delete(ctx: click.Context, instance_id: str, yes: bool) -> None:
    """Terminate an instance."""
    if not yes:
        click.confirm(f"Terminate instance {instance_id}?", abort=True)

    orchestrator = create_orchestrator(_settings(ctx))
    state = orchestrator.delete_instance(instance_id)
    console.print(f"Instance {instance_id} is being terminated (current state: {state})")


if __name__ == "__main__":
    main()
