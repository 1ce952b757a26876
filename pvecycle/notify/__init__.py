"""
Operator notifications: wall broadcasts and email.
"""

from pvecycle.notify.channels import Channel, DeliveryResult, MailChannel, WallChannel
from pvecycle.notify.notifier import Notifier

__all__ = ["Channel", "DeliveryResult", "MailChannel", "Notifier", "WallChannel"]
