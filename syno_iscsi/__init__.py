"""
syno-iscsi: command line administration of Synology iSCSI storage

This package provides the component that runs LUN, target and volume
commands against a DSM appliance, and the storage client it talks through.
"""

from .base_component import BaseComponent
from .errors import ISCSIError

__version__ = "0.2.0"

__all__ = ['BaseComponent', 'ISCSIError', '__version__']
