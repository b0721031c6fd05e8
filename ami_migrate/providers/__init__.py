"""Compute provider package."""

from .base import ComputeProvider
from .models import (
    BlockDevice,
    ImageRecord,
    ImageState,
    InstanceRecord,
    InstanceState,
    LaunchTemplate,
    ResourceKind,
    SnapshotRecord,
    SnapshotState,
    VolumeRecord,
    VolumeState,
)
from .ec2 import EC2Provider

__all__ = [
    'ComputeProvider',
    'EC2Provider',
    'BlockDevice',
    'ImageRecord',
    'ImageState',
    'InstanceRecord',
    'InstanceState',
    'LaunchTemplate',
    'ResourceKind',
    'SnapshotRecord',
    'SnapshotState',
    'VolumeRecord',
    'VolumeState',
]
