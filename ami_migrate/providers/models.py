"""
Resource records as reported by the compute provider.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


# Reserved tag keys
TAG_NAME = "Name"
TAG_OS = "OS"
TAG_BACKUP_TYPE = "BackupType"
TAG_SOURCE_INSTANCE = "SourceInstanceId"
TAG_DEVICE = "ami-migrate-device"
TAG_MIGRATE = "ami-migrate"
TAG_MIGRATE_IF_RUNNING = "ami-migrate-if-running"

# Provider-reserved tag prefix; keys under it cannot be written by callers
RESERVED_TAG_PREFIX = "aws:"


class InstanceState:
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


class ImageState:
    PENDING = "pending"
    AVAILABLE = "available"
    FAILED = "failed"
    INVALID = "invalid"
    DEREGISTERED = "deregistered"
    ERROR = "error"


class SnapshotState:
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


class VolumeState:
    CREATING = "creating"
    AVAILABLE = "available"
    IN_USE = "in-use"
    ERROR = "error"
    DELETING = "deleting"
    DELETED = "deleted"


class ResourceKind:
    INSTANCE = "instance"
    IMAGE = "image"
    SNAPSHOT = "snapshot"
    VOLUME = "volume"


@dataclass
class BlockDevice:
    """A volume attached to an instance at a device path."""
    device_name: str
    volume_id: str


@dataclass
class LaunchTemplate:
    """Settings an instance is launched with.

    Replacements inherit everything but user_data from their original.
    """
    instance_type: str
    subnet_id: Optional[str] = None
    key_name: Optional[str] = None
    user_data: Optional[str] = None


@dataclass
class InstanceRecord:
    """Snapshot of an instance as last reported by the provider."""
    instance_id: str
    image_id: str
    instance_type: str
    state: str
    availability_zone: Optional[str] = None
    subnet_id: Optional[str] = None
    key_name: Optional[str] = None
    platform: Optional[str] = None
    launch_time: Optional[datetime] = None
    private_ip: Optional[str] = None
    public_ip: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)
    block_devices: List[BlockDevice] = field(default_factory=list)

    @property
    def name(self) -> Optional[str]:
        return self.tags.get(TAG_NAME)

    def launch_template(self) -> LaunchTemplate:
        return LaunchTemplate(
            instance_type=self.instance_type,
            subnet_id=self.subnet_id,
            key_name=self.key_name,
        )


@dataclass
class ImageRecord:
    """An image (AMI)."""
    image_id: str
    name: Optional[str]
    state: str
    tags: Dict[str, str] = field(default_factory=dict)
    creation_date: Optional[str] = None


@dataclass
class SnapshotRecord:
    """A point-in-time copy of a volume."""
    snapshot_id: str
    volume_id: Optional[str]
    state: str
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def device_name(self) -> Optional[str]:
        """Origin device recorded on the snapshot, if any."""
        return self.tags.get(TAG_DEVICE) or None


@dataclass
class VolumeRecord:
    """A block storage volume."""
    volume_id: str
    state: str
    availability_zone: Optional[str] = None


def tags_to_dict(tags: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    """Convert the provider's [{'Key': k, 'Value': v}] list into an ordered dict."""
    result = {}
    for tag in tags or []:
        result[tag['Key']] = tag.get('Value', '')
    return result


def dict_to_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    return [{'Key': key, 'Value': value} for key, value in tags.items()]


def writable_tags(tags: Dict[str, str]) -> Dict[str, str]:
    """Drop keys under the provider-reserved prefix, keeping order."""
    return {k: v for k, v in tags.items() if not k.startswith(RESERVED_TAG_PREFIX)}
