import asyncio

import pytest

from zeroctl.coap import Code, CoapMessage, CoapOption, MessageType, OptionNumber
from zeroctl.discovery import (
    CoapResourceDiscovery,
    create_discovery_frame,
    parse_link_format,
)

LINK = b'</version>;rt="zero";title="Ver";if="core.rp";sz=12;ct=0,</live>;obs;ct=60,;rt="x"'


def _decode_request(frame):
    return CoapMessage.from_bytes(frame + b"\xff")


def _link_ack(payload, message_id=0, message_type=MessageType.ACKNOWLEDGEMENT):
    return CoapMessage(
        message_type,
        Code.CONTENT,
        message_id=message_id,
        options=[CoapOption(OptionNumber.CONTENT_FORMAT, bytes([40]))],
        payload=payload,
    ).to_bytes()


def test_parse_link_format_fields():
    resources = parse_link_format(LINK, "192.0.2.7")
    assert [r.path for r in resources] == ["/version", "/live"]
    first = resources[0]
    assert first.host == "192.0.2.7"
    assert first.resource_type == "zero"
    assert first.title == "Ver"
    assert first.interface == "core.rp"
    assert first.maximum_size == 12
    assert first.content_format == 0
    assert first.observable is False
    assert resources[1].observable is True
    assert resources[1].content_format == 60


def test_parse_link_format_invalid_number_gives_zero():
    resources = parse_link_format(b"</a>;sz=abc;ct=-3", "192.0.2.7")
    assert resources[0].maximum_size == 0
    assert resources[0].content_format == 0


def test_parse_link_format_without_paths_is_empty():
    assert parse_link_format(b'rt="x";obs,', "192.0.2.7") == []


def test_discovery_frame_wire_bytes():
    frame = create_discovery_frame(0x1234, "/.well-known/core")
    expected = (
        bytes([0x50, 0x01, 0x12, 0x34, 0xBB]) + b".well-known" + bytes([0x04]) + b"core"
    )
    assert frame == expected


def test_discovery_frame_round_trip():
    message = _decode_request(create_discovery_frame(321, "//a/bc/"))
    assert message.type == MessageType.NON_CONFIRMABLE
    assert message.code == Code.GET
    assert message.message_id == 321
    assert [o.number for o in message.options] == [OptionNumber.URI_PATH] * 2
    assert [o.value for o in message.options] == [b"a", b"bc"]


def test_add_location_rejects_duplicates():
    discovery = CoapResourceDiscovery(lambda *args: None)
    assert discovery.add_location("192.0.2.1") is True
    assert discovery.add_location("192.0.2.1") is False
    assert discovery.add_location("192.0.2.1", path="/other") is True
    assert len(discovery.locations) == 2


def test_add_location_invalid_host():
    discovery = CoapResourceDiscovery(lambda *args: None)
    with pytest.raises(ValueError):
        discovery.add_location("not-an-address")


def test_scan_increments_message_id():
    discovery = CoapResourceDiscovery(lambda *args: None)
    discovery.add_location("192.0.2.1")
    first = _decode_request(discovery.scan()[0])
    second = _decode_request(discovery.scan()[0])
    assert second.message_id == (first.message_id + 1) & 0xFFFF
    assert [o.value for o in first.options] == [b".well-known", b"core"]


def test_handle_datagram_reports_resources():
    calls = []
    discovery = CoapResourceDiscovery(lambda *args: calls.append(args))
    resources = discovery.handle_datagram(_link_ack(LINK), "192.0.2.9", 5683)
    assert [r.path for r in resources] == ["/version", "/live"]
    assert calls == [(resources, "192.0.2.9", 5683)]


def test_handle_datagram_ignores_non_ack():
    calls = []
    discovery = CoapResourceDiscovery(lambda *args: calls.append(args))
    data = _link_ack(LINK, message_type=MessageType.NON_CONFIRMABLE)
    assert discovery.handle_datagram(data, "192.0.2.9", 5683) == []
    assert calls == []


def test_handle_datagram_ignores_other_formats_and_garbage():
    calls = []
    discovery = CoapResourceDiscovery(lambda *args: calls.append(args))
    plain = CoapMessage(
        MessageType.ACKNOWLEDGEMENT, Code.CONTENT, payload=b"</version>"
    ).to_bytes()
    assert discovery.handle_datagram(plain, "192.0.2.9", 5683) == []
    assert discovery.handle_datagram(b"\x01", "192.0.2.9", 5683) == []
    assert calls == []


@pytest.mark.asyncio
async def test_start_discovers_device_on_loopback():
    loop = asyncio.get_running_loop()
    found = loop.create_future()

    class Device(asyncio.DatagramProtocol):
        def connection_made(self, transport):
            self.transport = transport

        def datagram_received(self, data, addr):
            request = _decode_request(data)
            reply = _link_ack(b'</version>;rt="zero"', message_id=request.message_id)
            self.transport.sendto(reply, addr)

    device_transport, _ = await loop.create_datagram_endpoint(
        Device, local_addr=("127.0.0.1", 0)
    )
    device_port = device_transport.get_extra_info("sockname")[1]

    def on_discovered(resources, host, port):
        if not found.done():
            found.set_result((resources, host, port))

    discovery = CoapResourceDiscovery(on_discovered)
    discovery.add_location("127.0.0.1", device_port)
    try:
        await discovery.start(60000)
        resources, host, port = await asyncio.wait_for(found, 5)
    finally:
        discovery.stop()
        device_transport.close()

    assert [r.path for r in resources] == ["/version"]
    assert resources[0].resource_type == "zero"
    assert host == "127.0.0.1"
    assert port == device_port