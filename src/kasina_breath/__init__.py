"""
kasina-breath: breath-driven meditation sessions from a Go Direct respiration belt.

Streams force readings over BLE, derives amplitude, phase and breathing rate,
and makes sure finished sessions reach the session API even across crashes.
"""

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

try:
    __version__ = get_version("kasina-breath")
except PackageNotFoundError:
    __version__ = "dev"

__all__ = ["__version__"]
