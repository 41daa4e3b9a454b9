import pytest

from zeroctl.coap import (
    Code,
    CoapDecodeError,
    CoapMessage,
    CoapOption,
    ContentFormat,
    MessageType,
    OptionNumber,
)


def test_encode_header_and_payload():
    msg = CoapMessage(
        MessageType.NON_CONFIRMABLE, Code.GET, message_id=0x1234, payload=b"hi"
    )
    assert msg.to_bytes() == b"\x50\x01\x12\x34\xffhi"


def test_encode_without_payload_omits_marker():
    msg = CoapMessage(MessageType.CONFIRMABLE, Code.GET, token=bytes([1]))
    msg.add_option(CoapOption(OptionNumber.URI_PATH, b"core"))
    encoded = msg.to_bytes()
    assert encoded[:5] == bytes([0x41, Code.GET, 0, 0, 1])
    assert encoded.endswith(b"core")
    assert 0xFF not in encoded


def test_encode_extended_delta():
    msg = CoapMessage(MessageType.CONFIRMABLE, Code.GET)
    msg.add_option(CoapOption(OptionNumber.SIZE1, b"\x05"))
    assert msg.to_bytes()[4:] == b"\xd1\x2f\x05"


def test_decode_uri_path_option():
    msg = CoapMessage.from_bytes(b"\x41\x01\x00\x00\x01\xb4core\xffX")
    assert msg.version == 1
    assert msg.type is MessageType.CONFIRMABLE
    assert msg.code is Code.GET
    assert msg.token == bytes([1])
    assert msg.options == [CoapOption(OptionNumber.URI_PATH, b"core")]
    assert msg.payload == b"X"


def test_round_trip_preserves_fields():
    msg = CoapMessage(
        MessageType.ACKNOWLEDGEMENT,
        Code.CONTENT,
        message_id=0xBEEF,
        token=bytes([0x61, 0x62, 0x63, 0x64]),
        payload=b"</version>",
    )
    msg.add_option(
        CoapOption(OptionNumber.CONTENT_FORMAT, bytes([ContentFormat.APP_LINKFORMAT]))
    )
    msg.add_option(CoapOption(OptionNumber.URI_PATH, b".well-known"))
    msg.add_option(CoapOption(OptionNumber.URI_PATH, b"core"))
    decoded = CoapMessage.from_bytes(msg.to_bytes())
    assert decoded.type is MessageType.ACKNOWLEDGEMENT
    assert decoded.code is Code.CONTENT
    assert decoded.message_id == 0xBEEF
    assert decoded.token == bytes([0x61, 0x62, 0x63, 0x64])
    assert decoded.payload == b"</version>"
    assert [o.number for o in decoded.options] == [
        OptionNumber.URI_PATH,
        OptionNumber.URI_PATH,
        OptionNumber.CONTENT_FORMAT,
    ]
    assert [o.value for o in decoded.options[:2]] == [b".well-known", b"core"]


def test_options_sorted_by_number_on_encode():
    msg = CoapMessage(MessageType.CONFIRMABLE, Code.POST, payload=b"p")
    msg.add_option(CoapOption(OptionNumber.SIZE1, b"\x01"))
    msg.add_option(CoapOption(OptionNumber.IF_MATCH, b"\x02"))
    msg.add_option(CoapOption(OptionNumber.URI_PATH, b"\x03"))
    decoded = CoapMessage.from_bytes(msg.to_bytes())
    numbers = [o.number for o in decoded.options]
    assert numbers == sorted(numbers)
    assert [o.value for o in decoded.options] == [b"\x02", b"\x03", b"\x01"]


@pytest.mark.parametrize("length", [0, 12, 13, 100, 268, 269, 400, 524])
def test_option_length_round_trip(length):
    value = bytes(range(256)) * 3
    value = value[:length]
    msg = CoapMessage(MessageType.CONFIRMABLE, Code.PUT, payload=b"z")
    msg.add_option(CoapOption(OptionNumber.URI_QUERY, value))
    decoded = CoapMessage.from_bytes(msg.to_bytes())
    assert decoded.options == [CoapOption(OptionNumber.URI_QUERY, value)]
    assert decoded.payload == b"z"


def test_option_too_long_rejected():
    msg = CoapMessage(MessageType.CONFIRMABLE, Code.PUT)
    msg.add_option(CoapOption(OptionNumber.URI_QUERY, b"x" * 600))
    with pytest.raises(ValueError):
        msg.to_bytes()


def test_token_too_long_rejected():
    with pytest.raises(ValueError):
        CoapMessage(MessageType.CONFIRMABLE, Code.GET, token=bytes(9))


def test_token_too_long_rejected_at_encode():
    msg = CoapMessage(MessageType.CONFIRMABLE, Code.GET)
    msg.token = bytes(10)
    with pytest.raises(ValueError):
        msg.to_bytes()


def test_decode_too_short():
    with pytest.raises(CoapDecodeError):
        CoapMessage.from_bytes(b"\x40\x01\x00")


def test_decode_truncated_token():
    with pytest.raises(CoapDecodeError):
        CoapMessage.from_bytes(b"\x44\x01\x00\x00\x01\x02")


def test_decode_requires_payload_marker():
    msg = CoapMessage(MessageType.CONFIRMABLE, Code.GET, message_id=7)
    with pytest.raises(CoapDecodeError):
        CoapMessage.from_bytes(msg.to_bytes())


def test_decode_truncated_option_value():
    with pytest.raises(CoapDecodeError):
        CoapMessage.from_bytes(b"\x40\x01\x00\x00\xb4co")


def test_decode_truncated_extended_header():
    with pytest.raises(CoapDecodeError):
        CoapMessage.from_bytes(b"\x40\x01\x00\x00\xd1")


def test_decode_empty_payload_after_marker():
    msg = CoapMessage.from_bytes(b"\x60\x45\x00\x01\xff")
    assert msg.type is MessageType.ACKNOWLEDGEMENT
    assert msg.payload == b""
    assert msg.options == []


def test_decode_overlong_token_is_dropped():
    data = b"\x49\x01\x00\x00" + b"\x00" * 9 + b"\xffX"
    msg = CoapMessage.from_bytes(data)
    assert msg.token == bytes()
    assert msg.payload == b"X"


def test_decode_unknown_numbers_kept_as_int():
    data = b"\x40\x99\x00\x00\x21a\xffP"
    msg = CoapMessage.from_bytes(data)
    assert msg.code == 0x99
    assert not isinstance(msg.code, Code)
    assert msg.options[0].number == 2
    assert not isinstance(msg.options[0].number, OptionNumber)


def test_options_accumulate_deltas():
    msg = CoapMessage(MessageType.RESET, Code.EMPTY, payload=b".")
    for number in (OptionNumber.URI_HOST, OptionNumber.ETAG, OptionNumber.PROXY_URI):
        msg.add_option(CoapOption(number, b"v"))
    decoded = CoapMessage.from_bytes(msg.to_bytes())
    assert decoded.type is MessageType.RESET
    assert [o.number for o in decoded.options] == [
        OptionNumber.URI_HOST,
        OptionNumber.ETAG,
        OptionNumber.PROXY_URI,
    ]