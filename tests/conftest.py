"""
Pytest configuration and shared fixtures for AMI Migrate tests.
"""

import itertools
import threading
from datetime import datetime
from typing import Dict, List, Optional

import pytest
from moto import mock_aws

from ami_migrate.core.config import Config, ConfigManager
from ami_migrate.core.exceptions import ProviderError
from ami_migrate.lifecycle.orchestrator import LifecycleOrchestrator
from ami_migrate.lifecycle.waiter import Waiter
from ami_migrate.providers.base import ComputeProvider
from ami_migrate.providers.models import (
    ImageRecord,
    ImageState,
    InstanceRecord,
    InstanceState,
    LaunchTemplate,
    SnapshotRecord,
    SnapshotState,
    VolumeRecord,
    VolumeState,
)


MUTATING_CALLS = {
    'create_image',
    'tag_resource',
    'launch_instance',
    'stop_instance',
    'start_instance',
    'terminate_instance',
    'create_snapshot',
    'create_volume',
    'attach_volume',
}

# Each describe moves a resource one step along these
SETTLING = {
    'instance': {
        InstanceState.PENDING: InstanceState.RUNNING,
        InstanceState.STOPPING: InstanceState.STOPPED,
        InstanceState.SHUTTING_DOWN: InstanceState.TERMINATED,
    },
    'image': {ImageState.PENDING: ImageState.AVAILABLE},
    'snapshot': {SnapshotState.PENDING: SnapshotState.COMPLETED},
    'volume': {VolumeState.CREATING: VolumeState.AVAILABLE},
}


class FakeProvider(ComputeProvider):
    """In-memory provider whose resources settle one state per describe.

    Attributes:
        calls: Every call as (method, args) in order
        failures: method name -> exception raised instead of performing it
        stuck: ids whose state never settles
        settle_to: id -> state the resource moves to instead of the normal one
    """

    def __init__(self):
        self.instances: Dict[str, InstanceRecord] = {}
        self.images: Dict[str, ImageRecord] = {}
        self.snapshots: Dict[str, SnapshotRecord] = {}
        self.volumes: Dict[str, VolumeRecord] = {}
        self.attachments: List[tuple] = []
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.stuck = set()
        self.settle_to: Dict[str, str] = {}
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return 'fake'

    # Test helpers

    def add_instance(self, instance_id='i-original', image_id='ami-old', state=InstanceState.RUNNING,
                     tags=None, **kwargs) -> InstanceRecord:
        record = InstanceRecord(
            instance_id=instance_id,
            image_id=image_id,
            instance_type=kwargs.pop('instance_type', 't3.micro'),
            state=state,
            availability_zone=kwargs.pop('availability_zone', 'us-east-1a'),
            subnet_id=kwargs.pop('subnet_id', 'subnet-123'),
            key_name=kwargs.pop('key_name', 'ops-key'),
            tags=dict(tags or {}),
            **kwargs,
        )
        self.instances[instance_id] = record
        return record

    def add_image(self, image_id='ami-new', state=ImageState.AVAILABLE, tags=None, name=None) -> ImageRecord:
        record = ImageRecord(
            image_id=image_id,
            name=name or f"image-{image_id}",
            state=state,
            tags=dict(tags or {}),
            creation_date="2024-01-05T14:30:22.000Z",
        )
        self.images[image_id] = record
        return record

    def add_snapshot(self, snapshot_id='snap-123', tags=None, state=SnapshotState.COMPLETED) -> SnapshotRecord:
        record = SnapshotRecord(snapshot_id=snapshot_id, volume_id='vol-source', state=state, tags=dict(tags or {}))
        self.snapshots[snapshot_id] = record
        return record

    def mutating_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, args))
        if method in self.failures:
            raise self.failures[method]

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids):08x}"

    def _settle(self, kind: str, record):
        if record is None:
            return None
        rid = getattr(record, f"{kind}_id")
        if rid in self.stuck:
            return record
        if rid in self.settle_to:
            record.state = self.settle_to.pop(rid)
            return record
        record.state = SETTLING[kind].get(record.state, record.state)
        return record

    # ComputeProvider

    def get_instance(self, instance_id: str) -> Optional[InstanceRecord]:
        self._record('get_instance', instance_id)
        return self._settle('instance', self.instances.get(instance_id))

    def list_instances(self, filters=None) -> List[InstanceRecord]:
        self._record('list_instances', filters)
        result = []
        for instance in self.instances.values():
            if self._matches(instance.tags, None, filters):
                result.append(instance)
        return result

    def create_image(self, instance_id: str, name: str, description: Optional[str] = None) -> str:
        self._record('create_image', instance_id, name)
        image_id = self._next_id('ami')
        self.images[image_id] = ImageRecord(image_id=image_id, name=name, state=ImageState.PENDING)
        return image_id

    def get_image(self, image_id: str) -> Optional[ImageRecord]:
        self._record('get_image', image_id)
        return self._settle('image', self.images.get(image_id))

    def find_images(self, filters) -> List[ImageRecord]:
        self._record('find_images', filters)
        return [image for image in self.images.values() if self._matches(image.tags, image.name, filters)]

    def tag_resource(self, resource_id: str, tags: Dict[str, str]) -> None:
        self._record('tag_resource', resource_id, dict(tags))
        for store in (self.instances, self.images, self.snapshots):
            if resource_id in store:
                store[resource_id].tags.update(tags)
                return
        raise ProviderError(f"no such resource {resource_id}", kind=ProviderError.NOT_FOUND)

    def launch_instance(self, image_id: str, template: LaunchTemplate) -> str:
        self._record('launch_instance', image_id, template)
        instance_id = self._next_id('i')
        self.instances[instance_id] = InstanceRecord(
            instance_id=instance_id,
            image_id=image_id,
            instance_type=template.instance_type,
            state=InstanceState.PENDING,
            availability_zone='us-east-1a',
            subnet_id=template.subnet_id,
            key_name=template.key_name,
        )
        return instance_id

    def stop_instance(self, instance_id: str) -> str:
        self._record('stop_instance', instance_id)
        self.instances[instance_id].state = InstanceState.STOPPING
        return InstanceState.STOPPING

    def start_instance(self, instance_id: str) -> str:
        self._record('start_instance', instance_id)
        instance = self.instances[instance_id]
        if instance.state != InstanceState.RUNNING:
            instance.state = InstanceState.PENDING
        return instance.state

    def terminate_instance(self, instance_id: str) -> str:
        self._record('terminate_instance', instance_id)
        self.instances[instance_id].state = InstanceState.SHUTTING_DOWN
        return InstanceState.SHUTTING_DOWN

    def create_snapshot(self, volume_id: str, description: Optional[str] = None) -> str:
        self._record('create_snapshot', volume_id)
        snapshot_id = self._next_id('snap')
        self.snapshots[snapshot_id] = SnapshotRecord(snapshot_id, volume_id, SnapshotState.PENDING)
        return snapshot_id

    def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRecord]:
        self._record('get_snapshot', snapshot_id)
        return self._settle('snapshot', self.snapshots.get(snapshot_id))

    def create_volume(self, snapshot_id: str, availability_zone: str) -> str:
        self._record('create_volume', snapshot_id, availability_zone)
        volume_id = self._next_id('vol')
        self.volumes[volume_id] = VolumeRecord(volume_id, VolumeState.CREATING, availability_zone)
        return volume_id

    def get_volume(self, volume_id: str) -> Optional[VolumeRecord]:
        self._record('get_volume', volume_id)
        return self._settle('volume', self.volumes.get(volume_id))

    def attach_volume(self, instance_id: str, volume_id: str, device: str) -> None:
        self._record('attach_volume', instance_id, volume_id, device)
        self.attachments.append((instance_id, volume_id, device))
        self.volumes[volume_id].state = VolumeState.IN_USE

    @staticmethod
    def _matches(tags: Dict[str, str], name: Optional[str], filters) -> bool:
        for key, values in (filters or {}).items():
            if key.startswith('tag:'):
                if tags.get(key[4:]) not in values:
                    return False
            elif key == 'name':
                if not name or not any(name.startswith(v.rstrip('*')) for v in values):
                    return False
        return True


class FakeClock:
    """Monotonic clock that only moves when slept on."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def wait(self, event: threading.Event, seconds: float) -> bool:
        if event.is_set():
            return True
        self.sleep(seconds)
        return event.is_set()


@pytest.fixture
def fake_provider():
    """Provider with one running, tagged instance and a target image."""
    provider = FakeProvider()
    provider.add_image('ami-old', tags={'OS': 'rhel9'})
    provider.add_image('ami-new', tags={'OS': 'rhel9'})
    provider.add_instance(
        'i-original',
        image_id='ami-old',
        tags={'Name': 'web-1', 'Team': 'platform', 'ami-migrate': 'enabled'},
    )
    return provider


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def waiter(fake_provider, fake_clock):
    return Waiter(fake_provider, poll_interval=1.0, max_wait=30.0, clock=fake_clock, sleep=fake_clock.sleep,
                  wait=fake_clock.wait)


@pytest.fixture
def orchestrator(fake_provider, waiter):
    return LifecycleOrchestrator(
        fake_provider,
        waiter=waiter,
        config=Config(),
        clock=lambda: datetime(2024, 1, 5, 14, 30, 22),
    )


@pytest.fixture
def temp_config_dir(tmp_path):
    """Config manager rooted in a temporary directory."""
    return ConfigManager(config_dir=tmp_path / ".ami-migrate")


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('AWS_PROFILE', raising=False)


@pytest.fixture
def mock_aws_services(aws_credentials):
    """Mock all AWS services used by the application."""
    with mock_aws():
        yield
