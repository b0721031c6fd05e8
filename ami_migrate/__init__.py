"""
AMI Migrate - image based lifecycle management for EC2 instances.

Migrates instances onto new AMIs, backs them up to images and restores them
from images or snapshots.
"""

__version__ = "1.0.0"

from ami_migrate.core.exceptions import AMIMigrateError

__all__ = ["AMIMigrateError"]
