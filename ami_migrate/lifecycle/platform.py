"""
Platform inspection: which OS an instance runs.
"""
import logging

from ..core.exceptions import ProviderError
from ..providers.base import ComputeProvider
from ..providers.models import TAG_OS, InstanceRecord


logger = logging.getLogger(__name__)

DEFAULT_OS = "linux"


class PlatformInspector:
    """Determines an instance's OS.

    The OS tag on the image the instance was launched from wins. Without it,
    the provider-reported platform is used ('windows' or anything else, which
    is treated as linux).
    """

    def __init__(self, provider: ComputeProvider):
        self.provider = provider

    def __call__(self, instance: InstanceRecord) -> str:
        if instance.image_id:
            try:
                image = self.provider.get_image(instance.image_id)
            except ProviderError as e:
                if not e.is_not_found:
                    raise
                image = None

            if image is not None and image.tags.get(TAG_OS):
                return image.tags[TAG_OS]
            logger.debug(f"No OS tag on image {instance.image_id}, falling back to platform")

        platform = (instance.platform or "").lower()
        if "windows" in platform:
            return "windows"
        return DEFAULT_OS
