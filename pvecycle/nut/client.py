"""
NUT (Network UPS Tools) client wrapper.

This module provides an asynchronous client for the upsd that monitors the
cluster's UPS, using the synchronous python-nut2 library. Blocking I/O runs
in a worker thread via asyncio.to_thread.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol

from pynut2.nut2 import PyNUTClient

from pvecycle.config import Settings
from pvecycle.errors import PowerReserveUnknown

from .models import UPSData

logger = logging.getLogger(__name__)


class NUTError(Exception):
    """Base exception for NUT client errors."""
    pass


class NUTConnectionError(NUTError):
    """Exception for NUT connection errors."""
    pass


class NUTClient:
    """
    An asynchronous client for NUT servers.

    A fresh connection is opened for every query: the UPS host may be the
    only machine left running during an outage and long-lived sockets to it
    tend to go stale.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3493,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 5.0,
    ):
        """
        Initialize the NUT client.

        Args:
            host: The NUT server hostname or IP address.
            port: The NUT server port.
            username: The username for authentication.
            password: The password for authentication.
            timeout: Socket timeout in seconds.
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "NUTClient":
        return cls(
            host=settings.NUT_HOST,
            port=settings.NUT_PORT,
            username=settings.NUT_USERNAME,
            password=settings.NUT_PASSWORD,
        )

    def _connect(self) -> PyNUTClient:
        return PyNUTClient(
            host=self.host,
            port=self.port,
            login=self.username,
            password=self.password,
            debug=False,
            timeout=self.timeout,
        )

    async def get_var(self, ups_name: str, var: str) -> Any:
        """
        Get a single variable for a specific UPS.

        Raises:
            NUTConnectionError: If there is an error communicating with the server.
        """
        try:
            logger.debug("Fetching var '%s' for UPS '%s'", var, ups_name)
            return await asyncio.to_thread(lambda: self._connect().get_var(ups_name, var))
        except Exception as e:
            raise NUTConnectionError(f"Failed to get variable '{var}' for UPS '{ups_name}'") from e


class PowerSource(Protocol):
    async def battery_charge(self) -> float:
        ...


class UPSPowerSource:
    """Reads the stored charge of the configured UPS."""

    def __init__(self, client: NUTClient, ups_name: str):
        self.client = client
        self.ups_name = ups_name

    async def battery_charge(self) -> float:
        """
        Current battery charge in percent.

        Raises:
            PowerReserveUnknown: The UPS could not be queried or reported a
                value that is not a percentage.
        """
        try:
            raw = await self.client.get_var(self.ups_name, "battery.charge")
        except NUTConnectionError as e:
            raise PowerReserveUnknown(str(e)) from e

        data = UPSData.model_validate({"battery.charge": raw})
        if data.battery_charge is None:
            raise PowerReserveUnknown(
                f"UPS '{self.ups_name}' reported unusable battery.charge {raw!r}"
            )
        return data.battery_charge
