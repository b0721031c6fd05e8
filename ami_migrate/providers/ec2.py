"""
EC2 implementation of the compute provider interface.
"""
import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .base import ComputeProvider
from .models import (
    BlockDevice,
    ImageRecord,
    InstanceRecord,
    LaunchTemplate,
    SnapshotRecord,
    VolumeRecord,
    dict_to_tags,
    tags_to_dict,
)
from ..core.exceptions import ProviderError


logger = logging.getLogger(__name__)

UNAUTHORIZED_CODES = {
    'UnauthorizedOperation',
    'AuthFailure',
    'AccessDenied',
    'AccessDeniedException',
    'InvalidClientTokenId',
    'ExpiredToken',
    'SignatureDoesNotMatch',
}

UNAVAILABLE_CODES = {
    'RequestLimitExceeded',
    'Throttling',
    'ThrottlingException',
    'ServiceUnavailable',
    'Unavailable',
    'InternalError',
    'InsufficientInstanceCapacity',
}

INVALID_REQUEST_CODES = {
    'MissingParameter',
    'IncorrectState',
    'IncorrectInstanceState',
    'UnsupportedOperation',
    'DryRunOperation',
}


def classify_error(error: Exception) -> str:
    """Map a boto3/botocore exception onto a ProviderError kind."""
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', '')
        status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0) or 0

        if code.endswith('.NotFound') or code.endswith('NotFound'):
            return ProviderError.NOT_FOUND
        if code in UNAUTHORIZED_CODES:
            return ProviderError.UNAUTHORIZED
        if code in UNAVAILABLE_CODES or status >= 500:
            return ProviderError.PROVIDER_UNAVAILABLE
        if code in INVALID_REQUEST_CODES or code.startswith('Invalid') or code.endswith('.Malformed'):
            return ProviderError.INVALID_REQUEST
        if 400 <= status < 500:
            return ProviderError.INVALID_REQUEST
        return ProviderError.PROVIDER_UNAVAILABLE

    if isinstance(error, NoCredentialsError):
        return ProviderError.UNAUTHORIZED

    return ProviderError.PROVIDER_UNAVAILABLE


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code', '')
    return ''


class EC2Provider(ComputeProvider):
    """Compute provider backed by the EC2 API through boto3."""

    def __init__(self, session: boto3.Session, region: Optional[str] = None):
        """Initialize the provider with an AWS session and region.

        Args:
            session: boto3 session carrying the caller's credentials
            region: AWS region to operate in. Defaults to the session's region.
        """
        self.session = session
        self.region = region or session.region_name or 'us-east-1'
        self._client = None

    @property
    def name(self) -> str:
        return 'ec2'

    @property
    def client(self):
        """Lazy-loaded EC2 client."""
        if self._client is None:
            self._client = self.session.client('ec2', region_name=self.region)
        return self._client

    # Instances

    def get_instance(self, instance_id: str) -> Optional[InstanceRecord]:
        logger.debug(f"Describing instance {instance_id}")
        try:
            response = self.client.describe_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            if _error_code(e) == 'InvalidInstanceID.NotFound':
                return None
            self._handle_aws_error(e, 'describe_instances', instance_id)

        for reservation in response.get('Reservations', []):
            for instance in reservation.get('Instances', []):
                if instance.get('InstanceId') == instance_id:
                    return self._parse_instance(instance)

        logger.debug(f"Instance {instance_id} not present in describe result")
        return None

    def list_instances(self, filters: Optional[Dict[str, List[str]]] = None) -> List[InstanceRecord]:
        kwargs: Dict[str, Any] = {}
        if filters:
            kwargs['Filters'] = [{'Name': k, 'Values': list(v)} for k, v in filters.items()]

        instances = []
        try:
            paginator = self.client.get_paginator('describe_instances')
            for page in paginator.paginate(**kwargs):
                for reservation in page.get('Reservations', []):
                    for instance in reservation.get('Instances', []):
                        instances.append(self._parse_instance(instance))
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'describe_instances')

        return instances

    def launch_instance(self, image_id: str, template: LaunchTemplate) -> str:
        params: Dict[str, Any] = {
            'ImageId': image_id,
            'InstanceType': template.instance_type,
            'MinCount': 1,
            'MaxCount': 1,
        }
        if template.subnet_id:
            params['SubnetId'] = template.subnet_id
        if template.key_name:
            params['KeyName'] = template.key_name
        if template.user_data:
            # boto3 base64-encodes UserData for run_instances
            params['UserData'] = template.user_data

        try:
            response = self.client.run_instances(**params)
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'run_instances', image_id)

        instances = response.get('Instances', [])
        if not instances:
            raise ProviderError(
                f"EC2 run_instances returned no instance for image {image_id}",
                kind=ProviderError.PROVIDER_UNAVAILABLE,
            )
        return instances[0]['InstanceId']

    def stop_instance(self, instance_id: str) -> str:
        try:
            response = self.client.stop_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'stop_instances', instance_id)
        return self._state_change(response.get('StoppingInstances', []), 'stopping')

    def start_instance(self, instance_id: str) -> str:
        try:
            response = self.client.start_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'start_instances', instance_id)
        return self._state_change(response.get('StartingInstances', []), 'pending')

    def terminate_instance(self, instance_id: str) -> str:
        try:
            response = self.client.terminate_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'terminate_instances', instance_id)

        changes = response.get('TerminatingInstances', [])
        if not changes:
            raise ProviderError(
                f"EC2 terminate_instances reported no state change for {instance_id}",
                kind=ProviderError.PROVIDER_UNAVAILABLE,
            )
        return changes[0]['CurrentState']['Name']

    # Images

    def create_image(self, instance_id: str, name: str, description: Optional[str] = None) -> str:
        params = {'InstanceId': instance_id, 'Name': name}
        if description:
            params['Description'] = description

        try:
            response = self.client.create_image(**params)
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'create_image', instance_id)

        image_id = response.get('ImageId')
        if not image_id:
            raise ProviderError(
                f"EC2 create_image returned no image id for {instance_id}",
                kind=ProviderError.PROVIDER_UNAVAILABLE,
            )
        return image_id

    def get_image(self, image_id: str) -> Optional[ImageRecord]:
        try:
            response = self.client.describe_images(ImageIds=[image_id])
        except (ClientError, BotoCoreError) as e:
            if _error_code(e) in ('InvalidAMIID.NotFound', 'InvalidAMIID.Unavailable'):
                return None
            self._handle_aws_error(e, 'describe_images', image_id)

        for image in response.get('Images', []):
            if image.get('ImageId') == image_id:
                return self._parse_image(image)
        return None

    def find_images(self, filters: Dict[str, List[str]]) -> List[ImageRecord]:
        try:
            response = self.client.describe_images(
                Filters=[{'Name': k, 'Values': list(v)} for k, v in filters.items()]
            )
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'describe_images')

        return [self._parse_image(image) for image in response.get('Images', [])]

    def tag_resource(self, resource_id: str, tags: Dict[str, str]) -> None:
        if not tags:
            return
        try:
            self.client.create_tags(Resources=[resource_id], Tags=dict_to_tags(tags))
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'create_tags', resource_id)

    # Snapshots and volumes

    def create_snapshot(self, volume_id: str, description: Optional[str] = None) -> str:
        params = {'VolumeId': volume_id}
        if description:
            params['Description'] = description
        try:
            response = self.client.create_snapshot(**params)
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'create_snapshot', volume_id)
        return response['SnapshotId']

    def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRecord]:
        try:
            response = self.client.describe_snapshots(SnapshotIds=[snapshot_id])
        except (ClientError, BotoCoreError) as e:
            if _error_code(e) == 'InvalidSnapshot.NotFound':
                return None
            self._handle_aws_error(e, 'describe_snapshots', snapshot_id)

        for snapshot in response.get('Snapshots', []):
            if snapshot.get('SnapshotId') == snapshot_id:
                return SnapshotRecord(
                    snapshot_id=snapshot['SnapshotId'],
                    volume_id=snapshot.get('VolumeId'),
                    state=snapshot.get('State', ''),
                    tags=tags_to_dict(snapshot.get('Tags')),
                )
        return None

    def create_volume(self, snapshot_id: str, availability_zone: str) -> str:
        try:
            response = self.client.create_volume(
                SnapshotId=snapshot_id,
                AvailabilityZone=availability_zone,
                VolumeType='gp2',
            )
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'create_volume', snapshot_id)
        return response['VolumeId']

    def get_volume(self, volume_id: str) -> Optional[VolumeRecord]:
        try:
            response = self.client.describe_volumes(VolumeIds=[volume_id])
        except (ClientError, BotoCoreError) as e:
            if _error_code(e) == 'InvalidVolume.NotFound':
                return None
            self._handle_aws_error(e, 'describe_volumes', volume_id)

        for volume in response.get('Volumes', []):
            if volume.get('VolumeId') == volume_id:
                return VolumeRecord(
                    volume_id=volume['VolumeId'],
                    state=volume.get('State', ''),
                    availability_zone=volume.get('AvailabilityZone'),
                )
        return None

    def attach_volume(self, instance_id: str, volume_id: str, device: str) -> None:
        try:
            self.client.attach_volume(Device=device, InstanceId=instance_id, VolumeId=volume_id)
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'attach_volume', volume_id)

    # Helpers

    def _parse_instance(self, instance: Dict[str, Any]) -> InstanceRecord:
        block_devices = []
        for mapping in instance.get('BlockDeviceMappings', []):
            ebs = mapping.get('Ebs') or {}
            if ebs.get('VolumeId'):
                block_devices.append(BlockDevice(
                    device_name=mapping.get('DeviceName', ''),
                    volume_id=ebs['VolumeId'],
                ))

        return InstanceRecord(
            instance_id=instance['InstanceId'],
            image_id=instance.get('ImageId', ''),
            instance_type=instance.get('InstanceType', ''),
            state=instance.get('State', {}).get('Name', ''),
            availability_zone=instance.get('Placement', {}).get('AvailabilityZone'),
            subnet_id=instance.get('SubnetId'),
            key_name=instance.get('KeyName'),
            platform=instance.get('Platform') or instance.get('PlatformDetails'),
            launch_time=instance.get('LaunchTime'),
            private_ip=instance.get('PrivateIpAddress'),
            public_ip=instance.get('PublicIpAddress'),
            tags=tags_to_dict(instance.get('Tags')),
            block_devices=block_devices,
        )

    def _parse_image(self, image: Dict[str, Any]) -> ImageRecord:
        return ImageRecord(
            image_id=image['ImageId'],
            name=image.get('Name'),
            state=image.get('State', ''),
            tags=tags_to_dict(image.get('Tags')),
            creation_date=image.get('CreationDate'),
        )

    def _state_change(self, changes: List[Dict[str, Any]], default: str) -> str:
        if not changes:
            return default
        return changes[0].get('CurrentState', {}).get('Name', default)

    def _handle_aws_error(self, error: Exception, operation: str, resource_id: str = None) -> None:
        """Convert an AWS API error into a classified ProviderError.

        Args:
            error: The original AWS error
            operation: API operation that failed
            resource_id: ID of resource being operated on (if applicable)

        Raises:
            ProviderError: Wrapped error with context; the original is chained
        """
        kind = classify_error(error)
        resource_context = f" for resource {resource_id}" if resource_id else ""
        error_message = f"AWS {self.name} {operation} failed{resource_context}: {error}"
        logger.debug(f"{error_message} (classified as {kind})")
        raise ProviderError(error_message, kind=kind, details=str(error)) from error
