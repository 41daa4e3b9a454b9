"""Finds Zero devices by discovering CoAP resources and querying their version."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Callable

from .coap import (
    Code,
    CoapDecodeError,
    CoapMessage,
    CoapOption,
    MessageType,
    OptionNumber,
)
from .config import NANOPB_CONTENT_FORMAT
from .discovery import DEFAULT_PORT, CoapResourceDiscovery, Resource, coap_url

VERSION_PATH = "/version"
TOKEN_LENGTH = 4

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZeroInfo:
    """Identity of a detected Zero."""

    uuid: str
    url: str
    hw_version: str
    mac_address: str
    new_protocol: bool = False


def _is_successful(message: CoapMessage) -> bool:
    return (int(message.code) >> 5) == 2


def parse_version(message: CoapMessage, host: str, port: int) -> ZeroInfo:
    """Extract the Zero identity from a version reply; raises ValueError if invalid."""
    if not _is_successful(message):
        raise ValueError(f"unsuccessful version reply (code {int(message.code):#04x})")

    option = next(
        (o for o in message.options if o.number == OptionNumber.CONTENT_FORMAT), None
    )
    if option is None:
        raise ValueError("version reply carries no content format")

    raw = int.from_bytes(option.value, "big") & 0xFFFFFFFF
    low = raw & 0xFFFF
    # The format number arrives in little-endian byte order.
    content_format = ((low & 0xFF) << 8) | (low >> 8)
    if raw != 0 and content_format != NANOPB_CONTENT_FORMAT:
        raise ValueError(f"invalid content format {content_format}")
    if content_format == NANOPB_CONTENT_FORMAT:
        raise ValueError("protobuf-encoded version replies cannot be decoded")

    values = message.payload.split(b",")
    if len(values) < 5:
        raise ValueError(f"invalid version format {message.payload!r}")

    def text(value: bytes) -> str:
        return value.decode("utf-8", errors="replace")

    return ZeroInfo(
        uuid=text(values[0]),
        url=coap_url(host, port),
        hw_version=".".join(text(v) for v in values[2:5]),
        mac_address=text(values[1]),
        new_protocol=False,
    )


class _ReplyHandler(asyncio.DatagramProtocol):
    def __init__(self, callback: Callable[[bytes, str, int], object]) -> None:
        self._callback = callback

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._callback(data, addr[0], addr[1])


class ZeroCoapScanner:
    """Scans for Zeros and reports each one that answers a version query."""

    def __init__(self, on_new_zero: Callable[[ZeroInfo], object]) -> None:
        self._on_new_zero = on_new_zero
        self.discovery = CoapResourceDiscovery(self.on_discovered)
        self._transport: asyncio.DatagramTransport | None = None
        self._pending: dict[bytes, tuple[str, int]] = {}

    async def start_scanning(self, interval: int = 1000) -> None:
        """Open the query socket and start periodic discovery."""
        if self._transport is None:
            loop = asyncio.get_running_loop()
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: _ReplyHandler(self.handle_version_reply),
                local_addr=("0.0.0.0", 0),
            )
        await self.discovery.start(interval)

    def stop_scanning(self) -> None:
        """Stop discovery and close the query socket."""
        self.discovery.stop()
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def add_scan_target(self, host, port: int = DEFAULT_PORT) -> bool:
        """Add a discovery target and scan it at once."""
        return self.discovery.add_location(host, port, True)

    def on_discovered(
        self, resources: list[Resource], host: str, port: int
    ) -> bytes | None:
        """Query the version resource of a host; returns the request sent."""
        # A lone "/version" entry does not trigger a query.
        if not any(resource.path != VERSION_PATH for resource in resources):
            return None

        token = secrets.token_bytes(TOKEN_LENGTH)
        request = CoapMessage(
            MessageType.CONFIRMABLE,
            Code.GET,
            message_id=secrets.randbelow(0x10000),
            token=token,
            options=[CoapOption(OptionNumber.URI_PATH, VERSION_PATH[1:].encode())],
        )
        frame = request.to_bytes()
        self._pending[token] = (host, port)
        if self._transport is not None:
            self._transport.sendto(frame, (host, port))
        return frame

    def handle_version_reply(
        self, data: bytes, host: str, port: int
    ) -> ZeroInfo | None:
        """Process a reply to a version query; returns the Zero if one was detected."""
        try:
            message = CoapMessage.from_bytes(data)
        except CoapDecodeError:
            _log.warning("Invalid version reply received")
            return None

        if message.type == MessageType.CONFIRMABLE and self._transport is not None:
            ack = CoapMessage(
                MessageType.ACKNOWLEDGEMENT, Code.EMPTY, message_id=message.message_id
            )
            self._transport.sendto(ack.to_bytes(), (host, port))
        if message.type == MessageType.RESET:
            _log.warning("Invalid version reply received")
            return None

        target = self._pending.pop(message.token, None)
        if target is None:
            return None

        try:
            info = parse_version(message, *target)
        except ValueError as exc:
            _log.debug("%s", exc)
            return None
        self._on_new_zero(info)
        return info