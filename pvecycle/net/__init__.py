"""
Network probes and wake signals.
"""

from pvecycle.net.ping import NetworkProbe, PingProbe
from pvecycle.net.wol import WakeOnLan, WakeResult, WakeSender

__all__ = ["NetworkProbe", "PingProbe", "WakeOnLan", "WakeResult", "WakeSender"]
