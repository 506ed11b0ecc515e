"""
GeoProfile - network-aware configuration profile manager.

Decides which configuration profiles an MDM service should have installed on
each device, based on the device's observed IP address or explicit
assignment, and reconciles the installed state with the declared policies.
"""

__version__ = "0.1.0"
__author__ = "GeoProfile Contributors"

from geoprofile.config import GeoProfileConfig, load_config

__all__ = ["GeoProfileConfig", "load_config", "__version__"]
