"""
Compute provider capability interface.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import (
    ImageRecord,
    InstanceRecord,
    LaunchTemplate,
    SnapshotRecord,
    VolumeRecord,
)


class ComputeProvider(ABC):
    """Abstract operations the lifecycle orchestrator needs from a compute backend.

    Every method is a single synchronous round trip. None of them waits for
    provider-side settling (image baking, volume provisioning, instance state
    transitions); that is the Waiter's job.

    ``get_*`` methods return None when the resource does not exist. All other
    failures raise ProviderError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider name used in logs (e.g., 'ec2')."""
        pass

    @abstractmethod
    def get_instance(self, instance_id: str) -> Optional[InstanceRecord]:
        """Describe a single instance.

        Args:
            instance_id: Instance to describe

        Returns:
            The instance record, or None if the provider knows no such instance

        Raises:
            ProviderError: If the describe call fails
        """
        pass

    @abstractmethod
    def list_instances(self, filters: Optional[Dict[str, List[str]]] = None) -> List[InstanceRecord]:
        """List instances matching provider filters (e.g., {'tag:ami-migrate': ['enabled']})."""
        pass

    @abstractmethod
    def create_image(self, instance_id: str, name: str, description: Optional[str] = None) -> str:
        """Start capturing an image from an instance and return its id."""
        pass

    @abstractmethod
    def get_image(self, image_id: str) -> Optional[ImageRecord]:
        pass

    @abstractmethod
    def find_images(self, filters: Dict[str, List[str]]) -> List[ImageRecord]:
        pass

    @abstractmethod
    def tag_resource(self, resource_id: str, tags: Dict[str, str]) -> None:
        """Create or overwrite tags on any taggable resource."""
        pass

    @abstractmethod
    def launch_instance(self, image_id: str, template: LaunchTemplate) -> str:
        """Launch exactly one instance from an image and return its id.

        Raises:
            ProviderError: If the launch is rejected or returns no instance
        """
        pass

    @abstractmethod
    def stop_instance(self, instance_id: str) -> str:
        """Request a stop and return the reported transitional state."""
        pass

    @abstractmethod
    def start_instance(self, instance_id: str) -> str:
        """Request a start and return the reported transitional state."""
        pass

    @abstractmethod
    def terminate_instance(self, instance_id: str) -> str:
        """Request termination.

        Returns:
            The provider-reported state ('shutting-down' or 'terminated').
            This is not a guarantee that the instance is already gone.
        """
        pass

    @abstractmethod
    def create_snapshot(self, volume_id: str, description: Optional[str] = None) -> str:
        pass

    @abstractmethod
    def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRecord]:
        pass

    @abstractmethod
    def create_volume(self, snapshot_id: str, availability_zone: str) -> str:
        """Create a volume from a snapshot in the given availability zone."""
        pass

    @abstractmethod
    def get_volume(self, volume_id: str) -> Optional[VolumeRecord]:
        pass

    @abstractmethod
    def attach_volume(self, instance_id: str, volume_id: str, device: str) -> None:
        pass
