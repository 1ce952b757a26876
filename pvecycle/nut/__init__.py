"""
UPS power reserve queries through NUT.
"""

from pvecycle.nut.client import NUTClient, NUTConnectionError, UPSPowerSource

__all__ = ["NUTClient", "NUTConnectionError", "UPSPowerSource"]
