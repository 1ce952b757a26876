"""
pvecycle: UPS-driven power cycling for Proxmox VE clusters.
"""

__version__ = "0.1.0"
