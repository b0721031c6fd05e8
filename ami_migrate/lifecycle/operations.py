"""
Bulk migrate and backup over instances selected by the ami-migrate tag.
"""
import logging
import threading
from typing import Callable, List, Optional

from .models import BatchFailure, BatchResult
from .orchestrator import LifecycleOrchestrator
from ..core.exceptions import AMIMigrateError, OperationCancelled, ValidationError
from ..providers.models import (
    TAG_MIGRATE,
    TAG_MIGRATE_IF_RUNNING,
    InstanceRecord,
    InstanceState,
)


logger = logging.getLogger(__name__)

ENABLED_VALUE = "enabled"


class BulkOperations:
    """Runs single-instance lifecycle operations over every enabled instance.

    Instances are processed one after another, never concurrently. A failure
    on one instance is recorded and the batch moves on; cancellation stops
    the batch.
    """

    def __init__(self, orchestrator: LifecycleOrchestrator, enabled_value: str = ENABLED_VALUE):
        """Initialize with a lifecycle orchestrator.

        Args:
            orchestrator: LifecycleOrchestrator used for each instance
            enabled_value: Value of the ami-migrate tag that opts an instance in
        """
        self.orchestrator = orchestrator
        self.enabled_value = enabled_value

    def select_enabled_instances(self) -> List[InstanceRecord]:
        """Instances opted in via the ami-migrate tag.

        Stopped instances need only ``ami-migrate=enabled``. Running or pending
        instances also need ``ami-migrate-if-running=enabled``. Instances that
        are going away never qualify.
        """
        candidates = self.orchestrator.provider.list_instances(
            {f"tag:{TAG_MIGRATE}": [self.enabled_value]}
        )

        selected = []
        for instance in candidates:
            if instance.tags.get(TAG_MIGRATE) != self.enabled_value:
                continue
            if instance.state in (InstanceState.SHUTTING_DOWN, InstanceState.TERMINATED):
                continue
            if instance.state in (InstanceState.STOPPED, InstanceState.STOPPING):
                selected.append(instance)
            elif instance.tags.get(TAG_MIGRATE_IF_RUNNING) == ENABLED_VALUE:
                selected.append(instance)
            else:
                logger.info(
                    f"Skipping {instance.instance_id}: {instance.state} without "
                    f"{TAG_MIGRATE_IF_RUNNING}={ENABLED_VALUE}"
                )

        logger.info(f"Selected {len(selected)} of {len(candidates)} tagged instance(s)")
        return selected

    def migrate_enabled(self, new_image_id: str, cancel_event: Optional[threading.Event] = None) -> BatchResult:
        """Migrate every enabled instance not already running ``new_image_id``."""
        if not new_image_id:
            raise ValidationError("new image id is required", step='validate')

        def already_current(instance: InstanceRecord) -> bool:
            return instance.image_id == new_image_id

        return self._run_batch(
            'migrate',
            lambda instance_id: self.orchestrator.migrate(instance_id, new_image_id, cancel_event),
            cancel_event,
            skip=already_current,
        )

    def backup_enabled(self, cancel_event: Optional[threading.Event] = None) -> BatchResult:
        """Back up every enabled instance."""
        return self._run_batch(
            'backup',
            lambda instance_id: self.orchestrator.backup(instance_id, cancel_event),
            cancel_event,
        )

    def _run_batch(
        self,
        operation: str,
        action: Callable[[str], object],
        cancel_event: Optional[threading.Event],
        skip: Optional[Callable[[InstanceRecord], bool]] = None,
    ) -> BatchResult:
        batch = BatchResult(operation=operation)

        for instance in self.select_enabled_instances():
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Batch {operation} cancelled")
                batch.cancelled = True
                break

            if skip is not None and skip(instance):
                logger.info(f"Skipping {instance.instance_id}: nothing to {operation}")
                batch.skipped.append(instance.instance_id)
                continue

            try:
                batch.succeeded.append(action(instance.instance_id))
            except OperationCancelled:
                logger.info(f"Batch {operation} cancelled during {instance.instance_id}")
                batch.cancelled = True
                break
            except AMIMigrateError as e:
                logger.error(f"{operation} of {instance.instance_id} failed: {e}")
                batch.failed.append(BatchFailure(
                    instance_id=instance.instance_id,
                    step=e.step,
                    message=e.message,
                ))

        logger.info(
            f"Batch {operation}: {len(batch.succeeded)} succeeded, "
            f"{len(batch.failed)} failed, {len(batch.skipped)} skipped"
        )
        if batch.failed:
            logger.warning(f"{len(batch.failed)} {operation} operation(s) failed:")
            for failure in batch.failed:
                logger.warning(f"  - {failure.instance_id} [{failure.step}]: {failure.message}")

        return batch
