"""
Components Package for syno-iscsi

This package contains the components that implement the
discovery-processing-housekeeping pattern for appliance commands.
"""

from .iscsi_component import ISCSIComponent

__all__ = ['ISCSIComponent']
