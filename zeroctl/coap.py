"""CoAP message model with encoding to and decoding from the wire format."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

MAX_TOKEN_LENGTH = 8
PAYLOAD_MARKER = 0xFF

# Extended option fields are a single byte on top of the base of 13 or 269.
_MAX_EXTENDED_VALUE = 269 + 0xFF


class OptionNumber(enum.IntEnum):
    """CoAP option numbers."""

    INVALID = 0
    IF_MATCH = 1
    URI_HOST = 3
    ETAG = 4
    IF_NONE_MATCH = 5
    OBSERVE = 6
    URI_PORT = 7
    LOCATION_PATH = 8
    URI_PATH = 11
    CONTENT_FORMAT = 12
    MAX_AGE = 14
    URI_QUERY = 15
    ACCEPT = 17
    LOCATION_QUERY = 20
    BLOCK2 = 23
    BLOCK1 = 27
    SIZE2 = 28
    PROXY_URI = 35
    PROXY_SCHEME = 39
    SIZE1 = 60


class ContentFormat(enum.IntEnum):
    """CoAP content formats."""

    TEXT_PLAIN = 0
    APP_COSE_ENCRYPT0 = 16
    APP_COSE_MAC0 = 17
    APP_COSE_SIGN1 = 18
    APP_LINKFORMAT = 40
    APP_XML = 41
    APP_OCTECT_STREAM = 42
    APP_EXI = 47
    APP_JSON = 50
    APP_JSON_PATCH_JSON = 51
    APP_MERGE_PATCH_JSON = 52
    APP_CBOR = 60
    APP_CWT = 61
    APP_COSE_ENCRYPT = 96
    APP_COSE_MAC = 97
    APP_COSE_SIGN = 98
    APP_COSE_KEY = 101
    APP_COSE_KEY_SET = 102
    APP_COAP_GROUP_JSON = 256
    APP_OMA_TLV_OLD = 1542
    APP_OMA_JSON_OLD = 1543
    APP_VND_OCF_CBOR = 10000
    APP_OMA_TLV = 11542
    APP_OMA_JSON = 11543


class MessageType(enum.IntEnum):
    """CoAP message types."""

    CONFIRMABLE = 0
    NON_CONFIRMABLE = 1
    ACKNOWLEDGEMENT = 2
    RESET = 3


class Code(enum.IntEnum):
    """CoAP method and response codes."""

    EMPTY = 0x00
    GET = 0x01
    POST = 0x02
    PUT = 0x03
    DELETE = 0x04
    LASTMETHOD = 0x1F
    CREATED = 0x41
    DELETED = 0x42
    VALID = 0x43
    CHANGED = 0x44
    CONTENT = 0x45
    BAD_REQUEST = 0x80
    UNAUTHORIZED = 0x81
    BAD_OPTION = 0x82
    FORBIDDEN = 0x83
    NOT_FOUND = 0x84
    METHOD_NOT_ALLOWED = 0x85
    NOT_ACCEPTABLE = 0x86
    PRECONDITION_FAILED = 0x8C
    REQUEST_ENTITY_TOO_LARGE = 0x8D
    UNSUPPORTED_CONTENT_FORMAT = 0x8F
    INTERNAL_SERVER_ERROR = 0xA0
    NOT_IMPLEMENTED = 0xA1
    BAD_GATEWAY = 0xA2
    SERVICE_UNAVAILABLE = 0xA3
    GATEWAY_TIMEOUT = 0xA4
    PROXYING_NOT_SUPPORTED = 0xA5
    UNDEFINED_CODE = 0xFF


class CoapDecodeError(ValueError):
    """Raised when bytes do not form a valid CoAP message."""


def _coerce(enum_cls, value: int):
    """Return the enum member for value, or the plain int if there is none."""
    try:
        return enum_cls(value)
    except ValueError:
        return value


@dataclass
class CoapOption:
    """A single CoAP option: its number and raw value."""

    number: int
    value: bytes = b""


def _encode_extended(value: int, what: str) -> tuple[int, bytes]:
    """Split a delta or length into its 4-bit nibble and extension bytes."""
    if value < 0 or value > _MAX_EXTENDED_VALUE:
        raise ValueError(f"{what} {value} cannot be encoded")
    if value > 268:
        return 14, bytes([value - 269])
    if value > 12:
        return 13, bytes([value - 13])
    return value, b""


def _decode_extended(data: bytes, pos: int, nibble: int) -> tuple[int, int]:
    """Resolve a delta or length nibble, reading its extension byte if any."""
    if nibble not in (13, 14):
        return nibble, pos
    if pos >= len(data):
        raise CoapDecodeError("truncated option header")
    base = 13 if nibble == 13 else 269
    return data[pos] + base, pos + 1


@dataclass
class CoapMessage:
    """A CoAP message."""

    type: MessageType
    code: int
    message_id: int = 0
    token: bytes = b""
    options: list[CoapOption] = field(default_factory=list)
    payload: bytes = b""
    version: int = 1

    def __post_init__(self) -> None:
        self._check_token()

    def _check_token(self) -> None:
        if len(self.token) > MAX_TOKEN_LENGTH:
            raise ValueError(
                f"token of {len(self.token)} bytes exceeds {MAX_TOKEN_LENGTH}"
            )

    def add_option(self, option: CoapOption) -> None:
        """Append an option to the message."""
        self.options.append(option)

    def to_bytes(self) -> bytes:
        """Encode the message; options are written in ascending number order."""
        self._check_token()
        out = bytearray(
            [
                (self.version & 0x03) << 6
                | (int(self.type) & 0x03) << 4
                | (len(self.token) & 0x0F),
                int(self.code) & 0xFF,
                (self.message_id >> 8) & 0xFF,
                self.message_id & 0xFF,
            ]
        )
        out += self.token

        last = int(OptionNumber.INVALID)
        for option in sorted(self.options, key=lambda o: int(o.number)):
            number = int(option.number)
            delta_nibble, delta_ext = _encode_extended(number - last, "option delta")
            length_nibble, length_ext = _encode_extended(
                len(option.value), "option length"
            )
            out.append(delta_nibble << 4 | length_nibble)
            out += delta_ext
            out += length_ext
            out += option.value
            last = number

        if self.payload:
            out.append(PAYLOAD_MARKER)
            out += self.payload
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> CoapMessage:
        """Decode a message; a payload marker is required."""
        data = bytes(data)
        if len(data) < 4:
            raise CoapDecodeError("message shorter than the fixed header")

        first = data[0]
        version = (first >> 6) & 0x03
        message_type = MessageType((first >> 4) & 0x03)
        token_length = first & 0x0F
        code = _coerce(Code, data[1])
        message_id = data[2] << 8 | data[3]

        token_end = 4 + token_length
        if len(data) < token_end:
            raise CoapDecodeError("message shorter than its token")
        # An over-long token is not kept, but its bytes are still skipped.
        token = data[4:token_end] if token_length <= MAX_TOKEN_LENGTH else b""

        message = cls(
            message_type, code, message_id=message_id, token=token, version=version
        )

        pos = token_end
        number = 0
        while pos < len(data) and data[pos] != PAYLOAD_MARKER:
            header = data[pos]
            pos += 1
            delta, pos = _decode_extended(data, pos, (header >> 4) & 0x0F)
            length, pos = _decode_extended(data, pos, header & 0x0F)
            if pos + length > len(data):
                raise CoapDecodeError("truncated option value")
            number += delta
            message.add_option(
                CoapOption(_coerce(OptionNumber, number), data[pos : pos + length])
            )
            pos += length

        if pos >= len(data):
            raise CoapDecodeError("missing payload marker")
        message.payload = data[pos + 1 :]
        return message