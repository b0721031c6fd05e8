"""Instance lifecycle orchestration."""

from .models import (
    BackupResult,
    BatchResult,
    CreateResult,
    ImageDetails,
    MigrationResult,
    MigrationStatus,
    RestoreResult,
    SnapshotRestoreResult,
)
from .waiter import Waiter
from .orchestrator import LifecycleOrchestrator
from .operations import BulkOperations
from .status import StatusReporter, render_status

__all__ = [
    'BackupResult',
    'BatchResult',
    'BulkOperations',
    'CreateResult',
    'ImageDetails',
    'LifecycleOrchestrator',
    'MigrationResult',
    'MigrationStatus',
    'RestoreResult',
    'SnapshotRestoreResult',
    'StatusReporter',
    'Waiter',
    'render_status',
]
