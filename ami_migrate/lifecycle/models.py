"""
Result records returned by lifecycle operations.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class MigrationResult:
    """Outcome of migrating an instance onto a new image."""
    source_instance_id: str
    new_instance_id: str
    image_id: str
    source_final_state: str   # provider-reported, 'shutting-down' or 'terminated'


@dataclass
class CreateResult:
    """A freshly launched instance. Its state is not awaited."""
    instance_id: str
    image_id: str
    instance_type: str
    key_name: Optional[str] = None
    subnet_id: Optional[str] = None
    user_data_provided: bool = False


@dataclass
class BackupResult:
    """Outcome of capturing an instance into an image."""
    instance_id: str
    image_id: str
    name: str
    os: str


@dataclass
class RestoreResult:
    """Outcome of restoring an instance from an image."""
    source_instance_id: str
    new_instance_id: str
    image_id: str


@dataclass
class SnapshotRestoreResult:
    """Outcome of attaching a snapshot-backed volume to an instance."""
    instance_id: str
    snapshot_id: str
    volume_id: str
    device_name: str


@dataclass
class ImageDetails:
    image_id: str
    name: Optional[str] = None
    creation_date: Optional[str] = None


@dataclass
class MigrationStatus:
    """Comparison of an instance's image against a designated target image."""
    instance_id: str
    instance_type: str
    state: str
    os: str
    current_image: ImageDetails
    latest_image: ImageDetails
    needs_migrate: bool
    launch_time: Optional[datetime] = None
    private_ip: Optional[str] = None
    public_ip: Optional[str] = None


@dataclass
class BatchFailure:
    instance_id: str
    step: Optional[str]
    message: str


@dataclass
class BatchResult:
    """Outcome of running one operation over a set of tagged instances."""
    operation: str                              # 'migrate', 'backup'
    succeeded: List[object] = field(default_factory=list)
    failed: List[BatchFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled
