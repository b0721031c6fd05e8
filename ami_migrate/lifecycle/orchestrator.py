"""
Lifecycle orchestrator for migrating, backing up and restoring instances.

Every operation is a strictly ordered sequence of steps. A failing step
aborts the remaining sequence and surfaces an error naming the step. Nothing
is retried and nothing already done is rolled back.
"""
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from .models import BackupResult, CreateResult, MigrationResult, RestoreResult, SnapshotRestoreResult
from .platform import PlatformInspector
from .waiter import Waiter
from ..core.config import Config
from ..core.exceptions import (
    AMIMigrateError,
    ImageNotFound,
    InstanceNotFound,
    LaunchFailed,
    OperationCancelled,
    ProviderCallFailed,
    ProviderError,
    SnapshotNotFound,
    StopFailed,
    ValidationError,
    WaitError,
)
from ..providers.base import ComputeProvider
from ..providers.models import (
    TAG_BACKUP_TYPE,
    TAG_NAME,
    TAG_OS,
    TAG_SOURCE_INSTANCE,
    ImageRecord,
    InstanceRecord,
    InstanceState,
    LaunchTemplate,
    ResourceKind,
    SnapshotRecord,
    VolumeState,
    writable_tags,
)


logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"
BACKUP_TYPE_MANUAL = "manual"


class LifecycleOrchestrator:
    """Drives an instance and its images, snapshots and volumes through
    migrate, backup and restore sequences against an injected provider."""

    def __init__(
        self,
        provider: ComputeProvider,
        waiter: Optional[Waiter] = None,
        config: Optional[Config] = None,
        platform_inspector: Optional[Callable[[InstanceRecord], str]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the orchestrator.

        Args:
            provider: Compute provider all calls go through
            waiter: Waiter for asynchronous settling. Built from config if None.
            config: Timeouts and defaults. Uses Config() defaults if None.
            platform_inspector: Callable returning an instance's OS
            clock: Wall clock used to timestamp backup image names
        """
        self.provider = provider
        self.config = config or Config()
        self.waiter = waiter or Waiter(
            provider,
            poll_interval=self.config.poll_interval,
            max_wait=self.config.max_wait,
        )
        self.platform_inspector = platform_inspector or PlatformInspector(provider)
        self._clock = clock

    def migrate(
        self,
        instance_id: str,
        new_image_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> MigrationResult:
        """Replace an instance with a new one launched from ``new_image_id``.

        Launches the replacement with the original's type, subnet and key,
        waits for it to run, copies the original's tags onto it, then stops
        and terminates the original.

        This is not retry-safe: calling it again after a partial failure
        launches a second replacement. A replacement that was launched but
        failed later is left running and reported on the error as
        ``replacement_instance_id``.

        Raises:
            ValidationError: If an id is empty
            InstanceNotFound: If the instance does not exist
            ImageNotFound: If the target image does not exist
            LaunchFailed: If the replacement cannot be launched
            StopFailed: If the stop call for the original errors
            WaitTimeout, WaitTerminalState: If a wait step fails
            ProviderCallFailed: If any other provider call fails
            OperationCancelled: If cancel_event is set
        """
        original = self._require_instance(instance_id, 'validate')
        self._require_id(new_image_id, "new image id", 'validate')
        self._require_image(new_image_id, 'validate')

        logger.info(f"Migrating instance {instance_id} from {original.image_id} to {new_image_id}")

        self._check_cancelled(cancel_event, 'launch')
        new_instance_id = self._call(
            'launch',
            lambda: self.provider.launch_instance(new_image_id, original.launch_template()),
            f"launch replacement for {instance_id} from {new_image_id}",
            error_cls=LaunchFailed,
        )
        logger.info(f"Launched replacement instance {new_instance_id}")

        try:
            self._wait('await_new_running', ResourceKind.INSTANCE, new_instance_id,
                       InstanceState.RUNNING, cancel_event)

            self._copy_tags('copy_tags', original, new_instance_id, cancel_event)

            final_state = self._cutover(original.instance_id, cancel_event)
        except AMIMigrateError as e:
            e.replacement_instance_id = new_instance_id
            logger.warning(
                f"Migration of {instance_id} failed after launch; "
                f"replacement {new_instance_id} left in place"
            )
            raise

        logger.info(f"Migrated {instance_id} to {new_instance_id} (original is {final_state})")
        return MigrationResult(
            source_instance_id=instance_id,
            new_instance_id=new_instance_id,
            image_id=new_image_id,
            source_final_state=final_state,
        )

    def backup(self, instance_id: str, cancel_event: Optional[threading.Event] = None) -> BackupResult:
        """Capture an instance into a new image tagged as a manual backup.

        Does not wait for the image to become available.

        Raises:
            InstanceNotFound: If the instance does not exist
            ProviderCallFailed: If image creation or tagging fails. The
                provider error is chained and kept on ``cause``.
        """
        instance = self._require_instance(instance_id, 'validate')

        self._check_cancelled(cancel_event, 'inspect_platform')
        os_name = self._call(
            'inspect_platform',
            lambda: self.platform_inspector(instance),
            f"inspect platform of {instance_id}",
        )

        name = f"backup-{instance_id}-{self._clock().strftime(BACKUP_TIMESTAMP_FORMAT)}"
        self._check_cancelled(cancel_event, 'create_image')
        image_id = self._call(
            'create_image',
            lambda: self.provider.create_image(instance_id, name, f"Backup of {instance_id}"),
            f"create image of {instance_id}",
        )
        logger.info(f"Created backup image {image_id} ({name}) of {instance_id}")

        tags = {
            TAG_NAME: f"Backup of {instance_id}",
            TAG_SOURCE_INSTANCE: instance_id,
            TAG_OS: os_name,
            TAG_BACKUP_TYPE: BACKUP_TYPE_MANUAL,
        }
        self._call(
            'tag_image',
            lambda: self.provider.tag_resource(image_id, tags),
            f"tag backup image {image_id}",
        )

        return BackupResult(instance_id=instance_id, image_id=image_id, name=name, os=os_name)

    def restore_from_image(
        self,
        instance_id: str,
        image_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> RestoreResult:
        """Launch a new instance from an image and switch over to it.

        The original is stopped but never terminated, so it remains as a
        fallback.

        Raises:
            ValidationError: If an id is empty
            InstanceNotFound: If the instance does not exist
            ImageNotFound: If describing the image yields nothing
            LaunchFailed: If the new instance cannot be launched
            StopFailed: If the stop call for the original errors
            WaitTimeout, WaitTerminalState: If a wait step fails
        """
        original = self._require_instance(instance_id, 'validate')
        self._require_id(image_id, "image id", 'validate')
        self._require_image(image_id, 'validate')

        logger.info(f"Restoring instance {instance_id} from image {image_id}")

        self._check_cancelled(cancel_event, 'launch')
        new_instance_id = self._call(
            'launch',
            lambda: self.provider.launch_instance(image_id, original.launch_template()),
            f"launch instance from {image_id}",
            error_cls=LaunchFailed,
        )
        logger.info(f"Launched restored instance {new_instance_id}")

        self._copy_tags('copy_tags', original, new_instance_id, cancel_event)
        self._stop_and_wait(instance_id, 'stop_original', 'await_original_stopped', cancel_event)
        self._start_and_wait(new_instance_id, 'start_new', 'await_new_running', cancel_event)

        logger.info(f"Restored {instance_id} as {new_instance_id}; original kept stopped")
        return RestoreResult(
            source_instance_id=instance_id,
            new_instance_id=new_instance_id,
            image_id=image_id,
        )

    def restore_from_snapshot(
        self,
        instance_id: str,
        snapshot_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> SnapshotRestoreResult:
        """Attach a volume created from a snapshot to a stopped instance.

        The device comes from the snapshot's ``ami-migrate-device`` tag, or
        the configured default (``/dev/xvdf``) when the tag is absent.

        Raises:
            ValidationError: If an id is empty
            InstanceNotFound: If the instance does not exist
            StopFailed: If the stop call itself errors
            SnapshotNotFound: If describing the snapshot yields nothing
            WaitTimeout, WaitTerminalState: If a wait step fails
            ProviderCallFailed: If any other provider call fails
        """
        instance = self._require_instance(instance_id, 'validate')
        self._require_id(snapshot_id, "snapshot id", 'validate')

        logger.info(f"Restoring snapshot {snapshot_id} onto instance {instance_id}")

        self._stop_and_wait(instance_id, 'stop_instance', 'await_stopped', cancel_event)

        self._check_cancelled(cancel_event, 'lookup_snapshot')
        snapshot = self._require_snapshot(snapshot_id, 'lookup_snapshot')

        self._check_cancelled(cancel_event, 'create_volume')
        volume_id = self._call(
            'create_volume',
            lambda: self.provider.create_volume(snapshot_id, instance.availability_zone),
            f"create volume from {snapshot_id} in {instance.availability_zone}",
        )
        logger.info(f"Created volume {volume_id} from snapshot {snapshot_id}")
        self._wait('await_volume_available', ResourceKind.VOLUME, volume_id,
                   VolumeState.AVAILABLE, cancel_event)

        device_name = self.resolve_device(snapshot)

        self._check_cancelled(cancel_event, 'attach_volume')
        self._call(
            'attach_volume',
            lambda: self.provider.attach_volume(instance_id, volume_id, device_name),
            f"attach {volume_id} to {instance_id} at {device_name}",
        )
        logger.info(f"Attached volume {volume_id} to {instance_id} at {device_name}")

        self._start_and_wait(instance_id, 'start_instance', 'await_running', cancel_event)

        return SnapshotRestoreResult(
            instance_id=instance_id,
            snapshot_id=snapshot_id,
            volume_id=volume_id,
            device_name=device_name,
        )

    def resolve_device(self, snapshot: SnapshotRecord) -> str:
        """Device path a snapshot's volume should be attached at."""
        return snapshot.device_name or self.config.default_device

    def create_instance(
        self,
        image_id: str,
        template: LaunchTemplate,
        user_data: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CreateResult:
        """Launch a single new instance from an image.

        Returns as soon as the launch is accepted; the instance is not
        awaited.

        Args:
            image_id: Image to launch from
            template: Instance type, subnet and key for the new instance
            user_data: Startup script passed to the instance. Overrides the
                template's user_data when given.
            cancel_event: Checked before the launch

        Raises:
            ValidationError: If the image id or instance type is empty
            ImageNotFound: If the image does not exist
            LaunchFailed: If the launch is rejected
        """
        self._require_id(image_id, "image id", 'validate')
        self._require_id(template.instance_type, "instance type", 'validate')
        self._require_image(image_id, 'validate')

        if user_data is not None:
            template = replace(template, user_data=user_data)

        self._check_cancelled(cancel_event, 'launch')
        instance_id = self._call(
            'launch',
            lambda: self.provider.launch_instance(image_id, template),
            f"launch {template.instance_type} instance from {image_id}",
            error_cls=LaunchFailed,
        )
        logger.info(f"Launched instance {instance_id} from {image_id}")

        return CreateResult(
            instance_id=instance_id,
            image_id=image_id,
            instance_type=template.instance_type,
            key_name=template.key_name,
            subnet_id=template.subnet_id,
            user_data_provided=bool(template.user_data),
        )

    # Single-instance power operations

    def start_instance(self, instance_id: str, cancel_event: Optional[threading.Event] = None) -> InstanceRecord:
        self._require_instance(instance_id, 'validate')
        return self._start_and_wait(instance_id, 'start_instance', 'await_running', cancel_event)

    def stop_instance(self, instance_id: str, cancel_event: Optional[threading.Event] = None) -> InstanceRecord:
        self._require_instance(instance_id, 'validate')
        return self._stop_and_wait(instance_id, 'stop_instance', 'await_stopped', cancel_event)

    def restart_instance(self, instance_id: str, cancel_event: Optional[threading.Event] = None) -> InstanceRecord:
        self._require_instance(instance_id, 'validate')
        self._stop_and_wait(instance_id, 'stop_instance', 'await_stopped', cancel_event)
        return self._start_and_wait(instance_id, 'start_instance', 'await_running', cancel_event)

    def delete_instance(self, instance_id: str) -> str:
        """Terminate an instance and return the provider-reported state."""
        self._require_instance(instance_id, 'validate')
        state = self._call(
            'terminate',
            lambda: self.provider.terminate_instance(instance_id),
            f"terminate {instance_id}",
        )
        logger.info(f"Instance {instance_id} is {state}")
        return state

    # Steps shared between sequences

    def _cutover(self, instance_id: str, cancel_event: Optional[threading.Event]) -> str:
        self._stop_and_wait(instance_id, 'stop_original', 'await_original_stopped', cancel_event)

        self._check_cancelled(cancel_event, 'terminate_original')
        state = self._call(
            'terminate_original',
            lambda: self.provider.terminate_instance(instance_id),
            f"terminate original instance {instance_id}",
        )
        logger.info(f"Original instance {instance_id} is {state}")
        return state

    def _copy_tags(
        self,
        step: str,
        source: InstanceRecord,
        target_id: str,
        cancel_event: Optional[threading.Event],
    ) -> None:
        tags = writable_tags(source.tags)
        if len(tags) != len(source.tags):
            logger.warning(f"Skipping provider-reserved tags of {source.instance_id}")
        if not tags:
            logger.info(f"Instance {source.instance_id} has no tags to copy")
            return

        self._check_cancelled(cancel_event, step)
        self._call(
            step,
            lambda: self.provider.tag_resource(target_id, tags),
            f"copy tags from {source.instance_id} to {target_id}",
        )
        logger.info(f"Copied {len(tags)} tag(s) from {source.instance_id} to {target_id}")

    def _stop_and_wait(
        self,
        instance_id: str,
        stop_step: str,
        wait_step: str,
        cancel_event: Optional[threading.Event],
    ) -> InstanceRecord:
        self._check_cancelled(cancel_event, stop_step)
        self._call(
            stop_step,
            lambda: self.provider.stop_instance(instance_id),
            f"stop instance {instance_id}",
            error_cls=StopFailed,
        )
        return self._wait(wait_step, ResourceKind.INSTANCE, instance_id,
                          InstanceState.STOPPED, cancel_event)

    def _start_and_wait(
        self,
        instance_id: str,
        start_step: str,
        wait_step: str,
        cancel_event: Optional[threading.Event],
    ) -> InstanceRecord:
        self._check_cancelled(cancel_event, start_step)
        self._call(
            start_step,
            lambda: self.provider.start_instance(instance_id),
            f"start instance {instance_id}",
        )
        return self._wait(wait_step, ResourceKind.INSTANCE, instance_id,
                          InstanceState.RUNNING, cancel_event)

    # Lookups

    def _require_id(self, value: str, label: str, step: str) -> None:
        if not value or not value.strip():
            raise ValidationError(f"{label} is required", step=step)

    def _require_instance(self, instance_id: str, step: str) -> InstanceRecord:
        self._require_id(instance_id, "instance id", step)
        return self._lookup(step, instance_id, self.provider.get_instance, InstanceNotFound)

    def _require_image(self, image_id: str, step: str) -> ImageRecord:
        return self._lookup(step, image_id, self.provider.get_image, ImageNotFound)

    def _require_snapshot(self, snapshot_id: str, step: str) -> SnapshotRecord:
        return self._lookup(step, snapshot_id, self.provider.get_snapshot, SnapshotNotFound)

    def _lookup(self, step: str, resource_id: str, getter, not_found_cls):
        try:
            record = getter(resource_id)
        except ProviderError as e:
            if e.is_not_found:
                raise not_found_cls(resource_id, step=step) from e
            raise ProviderCallFailed(
                f"describe {resource_id} failed: {e.message}", step=step, cause=e
            ) from e

        if record is None:
            logger.warning(f"{not_found_cls.resource_kind} {resource_id} not found")
            raise not_found_cls(resource_id, step=step)
        return record

    # Step plumbing

    def _call(self, step: str, fn, description: str, error_cls=ProviderCallFailed):
        try:
            return fn()
        except ProviderError as e:
            logger.error(f"Step {step} failed: {description}: {e.message}")
            raise error_cls(f"{description} failed: {e.message}", step=step, cause=e) from e

    def _wait(
        self,
        step: str,
        kind: str,
        resource_id: str,
        target_state: str,
        cancel_event: Optional[threading.Event],
    ):
        try:
            return self.waiter.wait_until(kind, resource_id, target_state, cancel_event=cancel_event)
        except (WaitError, OperationCancelled) as e:
            e.step = step
            logger.error(f"Step {step} failed: {e.message}")
            raise
        except ProviderError as e:
            logger.error(f"Step {step} failed while polling {kind} {resource_id}: {e.message}")
            raise ProviderCallFailed(
                f"polling {kind} {resource_id} failed: {e.message}", step=step, cause=e
            ) from e

    def _check_cancelled(self, cancel_event: Optional[threading.Event], step: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Cancellation requested before step {step}")
            raise OperationCancelled(f"Operation cancelled before {step}", step=step)
