"""
Proxmox VE implementation of the cluster gateway.

Talks to ``https://<host>:8006/api2/json`` with an API token using httpx.
Every response is unwrapped from Proxmox's ``{"data": ...}`` envelope; any
transport error, non-2xx status or missing envelope becomes
``GatewayUnavailable``.
"""
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from pvecycle.config import CEPH_HEALING_FLAGS, Settings
from pvecycle.errors import GatewayUnavailable
from pvecycle.utils.retry import async_retry

from .models import Guest, GuestKind, HealingFlagResult, Node

logger = logging.getLogger(__name__)


class ProxmoxGateway:
    """
    Cluster gateway backed by the Proxmox VE REST API.

    Use as an async context manager, or call ``close()`` when done.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.base_url
        self._timeout_s = settings.API_TIMEOUT
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": settings.auth_header,
                "Accept": "application/json",
            },
            verify=settings.VERIFY_TLS,
            timeout=self._timeout_s,
        )
        logger.info(
            "Initialized Proxmox gateway base_url=%s verify_tls=%s token=%s",
            self.base_url, settings.VERIFY_TLS, settings.API_TOKEN_ID,
        )

    async def __aenter__(self) -> "ProxmoxGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if self._client is None:
            raise GatewayUnavailable("Proxmox gateway is closed")

        start_time = time.monotonic()
        try:
            response = await self._client.request(method, path, params=params, data=data)
            latency_ms = int((time.monotonic() - start_time) * 1000)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("HTTP %s %s -> %s", method, path, status)
            if status in (401, 403):
                raise GatewayUnavailable(f"Proxmox API rejected the token ({status})", status) from e
            raise GatewayUnavailable(f"Proxmox API error {status} on {method} {path}", status) from e
        except httpx.RequestError as e:
            logger.debug("HTTP %s %s failed: %s", method, path, e)
            raise GatewayUnavailable(
                f"Proxmox API unreachable at {self.base_url}: {e.__class__.__name__}"
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayUnavailable(f"Malformed response from {method} {path}") from e
        if not isinstance(body, dict) or "data" not in body:
            raise GatewayUnavailable(f"Malformed response from {method} {path}")

        logger.debug("HTTP %s %s -> %s in %dms", method, path, response.status_code, latency_ms)
        return body["data"]

    # ---------- Queries ----------

    async def is_reachable(self) -> bool:
        try:
            await self._call("GET", "/cluster/resources", params={"type": "node"})
        except GatewayUnavailable as e:
            logger.debug("Proxmox API not reachable: %s", e)
            return False
        return True

    async def list_nodes(self) -> List[Node]:
        data = await self._call("GET", "/cluster/resources", params={"type": "node"})
        try:
            return [Node(name=item["node"], status=item.get("status")) for item in data or []]
        except (KeyError, TypeError, AttributeError) as e:
            raise GatewayUnavailable(f"Malformed node list from GET /cluster/resources: {e!r}") from e

    async def list_guests(self, node: str) -> List[Guest]:
        guests: List[Guest] = []
        for kind in GuestKind:
            path = f"/nodes/{node}/{kind.value}"
            data = await self._call("GET", path)
            try:
                for item in data or []:
                    guests.append(
                        Guest(
                            vmid=int(item["vmid"]),
                            kind=kind,
                            node=node,
                            status=item.get("status"),
                            name=item.get("name"),
                        )
                    )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise GatewayUnavailable(f"Malformed guest list from GET {path}: {e!r}") from e
        return guests

    async def count_running_guests(self) -> int:
        data = await self._call("GET", "/cluster/resources", params={"type": "vm"})
        try:
            return sum(1 for item in data or [] if item.get("status") == "running")
        except (TypeError, AttributeError) as e:
            raise GatewayUnavailable(f"Malformed guest list from GET /cluster/resources: {e!r}") from e

    async def cluster_health_ok(self) -> bool:
        data = await self._call("GET", "/cluster/ceph/status")
        health = data.get("health") if isinstance(data, dict) else None
        if not isinstance(health, dict):
            raise GatewayUnavailable("Malformed response from GET /cluster/ceph/status")
        status = health.get("status")
        logger.debug("Ceph health status=%s", status)
        return status == "HEALTH_OK"

    # ---------- Actions ----------

    async def start_guest(self, guest: Guest) -> str:
        path = f"/nodes/{guest.node}/{guest.kind.value}/{guest.vmid}/status/start"
        return await self._call("POST", path)

    async def stop_guest(self, guest: Guest) -> str:
        path = f"/nodes/{guest.node}/{guest.kind.value}/{guest.vmid}/status/shutdown"
        return await self._call("POST", path)

    async def start_all(self, node: str) -> str:
        return await self._call("POST", f"/nodes/{node}/startall")

    async def shutdown_node(self, node: str) -> str:
        return await self._call("POST", f"/nodes/{node}/status", data={"command": "shutdown"})

    async def set_healing_flags(self, enabled: bool) -> HealingFlagResult:
        result = HealingFlagResult(enabled=enabled)
        for flag in CEPH_HEALING_FLAGS:
            try:
                await self._put_flag(flag, enabled)
                result.applied[flag] = True
            except GatewayUnavailable as e:
                result.applied[flag] = False
                result.errors[flag] = str(e)
                logger.error("Failed to %s Ceph flag %s: %s", "set" if enabled else "clear", flag, e)
        return result

    @async_retry(retries=2, delay=1.0, catch_exceptions=GatewayUnavailable)
    async def _put_flag(self, flag: str, enabled: bool) -> None:
        await self._call("PUT", f"/cluster/ceph/flags/{flag}", data={"value": 1 if enabled else 0})
