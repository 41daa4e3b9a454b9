"""Periodic CoAP resource discovery over UDP."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Callable, Union

from .coap import (
    Code,
    CoapDecodeError,
    CoapMessage,
    CoapOption,
    ContentFormat,
    MessageType,
    OptionNumber,
)

DEFAULT_PORT = 5683
WELL_KNOWN_CORE = "/.well-known/core"

_log = logging.getLogger(__name__)

_INT_RE = re.compile(r"\s*[+-]?\d+\s*")
_UINT_RE = re.compile(r"\s*\+?\d+\s*")

HostLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass
class Resource:
    """A resource announced by a CoAP server in link format."""

    host: str
    path: str = ""
    title: str = ""
    resource_type: str = ""
    interface: str = ""
    maximum_size: int = -1
    content_format: int = 0
    observable: bool = False


@dataclass
class Location:
    """A discovery target and the next message id to use for it."""

    host: str
    port: int
    path: str
    message_id: int


def coap_url(host: str, port: int, path: str = "") -> str:
    """Build a coap:// URL, bracketing IPv6 addresses."""
    shown = f"[{host}]" if ":" in host else host
    return f"coap://{shown}:{port}{path}"


def _to_number(text: str, pattern: re.Pattern[str]) -> int:
    """Convert text to an integer, yielding 0 when it is not one."""
    if pattern.fullmatch(text):
        return int(text.strip())
    return 0


def parse_link_format(data: bytes, host: str) -> list[Resource]:
    """Parse a link-format payload into resources; links without a path are dropped."""
    resources = []
    for link in bytes(data).split(b","):
        resource = Resource(host=host)
        for parameter in link.split(b";"):
            if not parameter:
                continue
            text = parameter.decode("utf-8", errors="replace")
            if parameter.startswith(b"<"):
                resource.path = text[1 : len(text) - 1]
            elif parameter.startswith(b"title="):
                resource.title = text[6:].replace('"', "")
            elif parameter.startswith(b"rt="):
                resource.resource_type = text[3:].replace('"', "")
            elif parameter.startswith(b"if="):
                resource.interface = text[3:].replace('"', "")
            elif parameter.startswith(b"sz="):
                resource.maximum_size = _to_number(text[3:].replace('"', ""), _INT_RE)
            elif parameter.startswith(b"ct="):
                resource.content_format = _to_number(
                    text[3:].replace('"', ""), _UINT_RE
                )
            elif parameter == b"obs":
                resource.observable = True
        if resource.path:
            resources.append(resource)
    return resources


def create_discovery_frame(message_id: int, path: str) -> bytes:
    """Encode a non-confirmable GET for the given path."""
    message = CoapMessage(
        MessageType.NON_CONFIRMABLE, Code.GET, message_id=message_id & 0xFFFF
    )
    for segment in path.split("/"):
        if segment:
            message.add_option(
                CoapOption(OptionNumber.URI_PATH, segment.encode("utf-8"))
            )
    return message.to_bytes()


class _DatagramHandler(asyncio.DatagramProtocol):
    def __init__(self, callback: Callable[[bytes, str, int], object]) -> None:
        self._callback = callback

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._callback(data, addr[0], addr[1])


DiscoveredCallback = Callable[[list[Resource], str, int], object]


class CoapResourceDiscovery:
    """Sends discovery requests to known locations and reports found resources."""

    def __init__(self, on_discovered: DiscoveredCallback) -> None:
        self._on_discovered = on_discovered
        self._locations: dict[str, Location] = {}
        self._transport: asyncio.DatagramTransport | None = None
        self._timer: asyncio.Task | None = None

    @property
    def locations(self) -> list[Location]:
        """The registered discovery targets."""
        return list(self._locations.values())

    def add_location(
        self,
        host: HostLike,
        port: int = DEFAULT_PORT,
        scan_now: bool = False,
        path: str = WELL_KNOWN_CORE,
    ) -> bool:
        """Register a target; returns False if it is already known."""
        try:
            address = ipaddress.ip_address(host)
        except ValueError as exc:
            raise ValueError(f"not a host address: {host!r}") from exc
        host_text = str(address)
        key = coap_url(host_text, port, path)
        if key in self._locations:
            return False
        self._locations[key] = Location(
            host_text, port & 0xFFFF, path, secrets.randbelow(0x10000)
        )
        if scan_now:
            self.scan()
        return True

    async def start(self, interval: int = 1000) -> None:
        """Open the socket, scan at once and then every interval milliseconds."""
        self.stop()
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _DatagramHandler(self.handle_datagram),
            local_addr=("0.0.0.0", 0),
            allow_broadcast=True,
        )
        self.scan()
        self._timer = asyncio.create_task(self._run(interval / 1000))

    async def _run(self, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            self.scan()

    def stop(self) -> None:
        """Stop the periodic scan and close the socket."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def scan(self) -> list[bytes]:
        """Build a discovery frame for every location and send it if the socket is open."""
        frames = []
        for location in self._locations.values():
            frame = create_discovery_frame(location.message_id, location.path)
            location.message_id = (location.message_id + 1) & 0xFFFF
            if self._transport is not None:
                self._transport.sendto(frame, (location.host, location.port))
            frames.append(frame)
        return frames

    def handle_datagram(self, data: bytes, host: str, port: int) -> list[Resource]:
        """Process a received datagram and report any link-format resources in it."""
        try:
            message = CoapMessage.from_bytes(data)
        except CoapDecodeError:
            return []
        if message.type != MessageType.ACKNOWLEDGEMENT:
            return []

        content_format = int(ContentFormat.TEXT_PLAIN)
        for option in message.options:
            if option.number == OptionNumber.CONTENT_FORMAT:
                content_format = int.from_bytes(
                    option.value[:2].ljust(2, b"\0"), "little"
                )
        if content_format != ContentFormat.APP_LINKFORMAT:
            return []

        resources = parse_link_format(message.payload, host)
        if resources:
            self._on_discovered(resources, host, port)
        return resources