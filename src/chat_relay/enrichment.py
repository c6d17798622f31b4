"""
Enrichment pipeline — best-effort metadata attached to a message before it is logged.

Every resolver may fail; a failure only costs its own fields, which are set to
NOT_FOUND. The pipeline never raises.
"""

import asyncio
import logging
import re
import socket
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

from chat_relay.errors import EnrichmentError
from chat_relay.models.session import ConnectionInfo

logger = logging.getLogger("chat_relay.enrichment")

NOT_FOUND = "not found"
LOOPBACK_ADDRESSES = {"127.0.0.1", "::1", "::ffff:127.0.0.1", "localhost"}
ARP_TABLE = Path("/proc/net/arp")

# First match wins, so more specific tokens come first.
OS_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("Windows", re.compile(r"Windows NT|Win64|Win32")),
    ("iOS", re.compile(r"iPhone|iPad|iPod")),
    ("macOS", re.compile(r"Mac OS X|Macintosh")),
    ("Android", re.compile(r"Android")),
    ("ChromeOS", re.compile(r"CrOS")),
    ("Linux", re.compile(r"Linux|X11")),
]

BROWSER_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("Edge", re.compile(r"Edg(e|A|iOS)?/")),
    ("Opera", re.compile(r"OPR/|Opera")),
    ("Samsung Internet", re.compile(r"SamsungBrowser/")),
    ("Firefox", re.compile(r"Firefox/|FxiOS/")),
    ("Chrome", re.compile(r"Chrome/|CriOS/")),
    ("Safari", re.compile(r"Safari/")),
    ("curl", re.compile(r"^curl/")),
    ("python", re.compile(r"python-requests|python-httpx|aiohttp|python-socketio", re.I)),
]


def client_address(connection: ConnectionInfo) -> Optional[str]:
    forwarded = connection.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or connection.address
    return connection.address


def classify_user_agent(user_agent: Optional[str]) -> dict[str, str]:
    if not user_agent:
        raise EnrichmentError("No user-agent header", field="user_agent")
    os_name = next((name for name, pattern in OS_PATTERNS if pattern.search(user_agent)), "Other")
    browser = next((name for name, pattern in BROWSER_PATTERNS if pattern.search(user_agent)), "Other")
    return {"os": os_name, "browser": browser}


class Resolver(Protocol):
    fields: tuple[str, ...]

    async def resolve(self, connection: ConnectionInfo) -> dict[str, Any]: ...


class AddressResolver:
    fields = ("address",)

    async def resolve(self, connection: ConnectionInfo) -> dict[str, Any]:
        address = client_address(connection)
        if not address:
            raise EnrichmentError("Client address unknown", field="address")
        return {"address": address}


class HostNameResolver:
    fields = ("host_name",)

    async def resolve(self, connection: ConnectionInfo) -> dict[str, Any]:
        address = client_address(connection)
        if not address:
            raise EnrichmentError("Client address unknown", field="host_name")
        loop = asyncio.get_running_loop()
        try:
            host, _port = await loop.getnameinfo((address, 0), socket.NI_NAMEREQD)
        except (socket.gaierror, OSError) as e:
            raise EnrichmentError(f"Reverse lookup of {address} failed: {e}", field="host_name")
        return {"host_name": host}


class UserAgentResolver:
    fields = ("os", "browser")

    async def resolve(self, connection: ConnectionInfo) -> dict[str, Any]:
        return classify_user_agent(connection.user_agent)


def _format_mac(node: int) -> str:
    return ":".join(f"{(node >> shift) & 0xFF:02x}" for shift in range(40, -8, -8))


def _arp_lookup(address: str, table: Path) -> Optional[str]:
    try:
        lines = table.read_text().splitlines()[1:]
    except OSError:
        return None
    for line in lines:
        parts = line.split()
        if len(parts) >= 4 and parts[0] == address and parts[3] != "00:00:00:00:00:00":
            return parts[3]
    return None


class HardwareIdResolver:
    """MAC address of the peer: the local interface for loopback clients, the ARP table otherwise.

    Only meaningful on a LAN host with a readable ARP table; off unless enabled in config.
    """

    fields = ("hardware_id",)

    def __init__(self, arp_table: Path = ARP_TABLE):
        self._arp_table = arp_table

    async def resolve(self, connection: ConnectionInfo) -> dict[str, Any]:
        address = client_address(connection)
        if not address:
            raise EnrichmentError("Client address unknown", field="hardware_id")
        if address in LOOPBACK_ADDRESSES:
            return {"hardware_id": _format_mac(uuid.getnode())}
        loop = asyncio.get_running_loop()
        mac = await loop.run_in_executor(None, _arp_lookup, address, self._arp_table)
        if mac is None:
            raise EnrichmentError(f"No ARP entry for {address}", field="hardware_id")
        return {"hardware_id": mac}


def default_resolvers(hardware_id: bool = False) -> list[Resolver]:
    resolvers: list[Resolver] = [AddressResolver(), HostNameResolver(), UserAgentResolver()]
    if hardware_id:
        resolvers.append(HardwareIdResolver())
    return resolvers


class EnrichmentPipeline:
    def __init__(self, resolvers: Optional[Sequence[Resolver]] = None, timeout: float = 2.0):
        self._resolvers = list(resolvers) if resolvers is not None else default_resolvers()
        self._timeout = timeout

    async def enrich(self, connection: ConnectionInfo) -> dict[str, Any]:
        results = await asyncio.gather(*(self._run(r, connection) for r in self._resolvers))
        metadata: dict[str, Any] = {}
        for result in results:
            metadata.update(result)
        return metadata

    async def _run(self, resolver: Resolver, connection: ConnectionInfo) -> dict[str, Any]:
        name = type(resolver).__name__
        try:
            return await asyncio.wait_for(resolver.resolve(connection), timeout=self._timeout)
        except EnrichmentError as e:
            logger.warning(f"{name}: {e}")
        except asyncio.TimeoutError:
            logger.warning(f"{name}: timed out after {self._timeout}s")
        except Exception as e:
            logger.error(f"{name} failed unexpectedly: {e!r}")
        return {field: NOT_FOUND for field in resolver.fields}
