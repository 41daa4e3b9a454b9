"""SMP requests and responses with their CBOR payloads."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Iterable

import cbor2

from .constants import ImgMgmtId, MgmtGroupId, MgmtOp, OsMgmtId
from .header import HEADER_SIZE, Header


class SmpDecodeError(ValueError):
    """Raised when a response cannot be decoded."""


def _indefinite_map(items: Iterable[tuple[str, Any]]) -> bytes:
    """Encode key/value pairs as an indefinite-length CBOR map."""
    out = bytearray(b"\xbf")
    for key, value in items:
        out += cbor2.dumps(key)
        out += cbor2.dumps(bytes(value) if isinstance(value, bytearray) else value)
    out.append(0xFF)
    return bytes(out)


def _decode_map(payload: bytes) -> dict[str, Any]:
    try:
        value = cbor2.loads(payload)
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise SmpDecodeError(f"invalid CBOR payload: {exc}") from exc
    if not isinstance(value, dict):
        raise SmpDecodeError("payload is not a map")
    for key in value:
        if not isinstance(key, str):
            raise SmpDecodeError(f"map key {key!r} is not a string")
    return value


def _expect(value: Any, kind: type, key: str) -> Any:
    if kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise SmpDecodeError(f"value of {key!r} is not of type {kind.__name__}")
    return value


class Request:
    """An SMP request: a header and a payload."""

    def __init__(self, op: int, group: int, command_id: int) -> None:
        self.header = Header(op=op, group=group, command_id=command_id)

    def payload(self) -> bytes:
        """The encoded payload of the request."""
        return b""

    def serialize(self) -> bytes:
        """Encode the request: header followed by payload."""
        return self.header.serialize(self.payload())

    def response_header(self) -> Header:
        """The header a matching response is expected to carry."""
        op = MgmtOp.READ_RSP if self.header.op == MgmtOp.READ else MgmtOp.WRITE_RSP
        return Header(
            op=op,
            group=self.header.group,
            seq=self.header.seq,
            command_id=self.header.command_id,
        )


class GetStateOfImagesReq(Request):
    """Asks for the state of the image slots."""

    def __init__(self) -> None:
        super().__init__(MgmtOp.READ, MgmtGroupId.IMAGE, ImgMgmtId.STATE)

    def payload(self) -> bytes:
        # The device expects an empty map as a dummy payload.
        return b"\xa0"


class SetStateOfImagesReq(Request):
    """Confirms an image, optionally selected by its hash."""

    def __init__(self, confirm: bool, hash: bytes = b"") -> None:
        super().__init__(MgmtOp.WRITE, MgmtGroupId.IMAGE, ImgMgmtId.STATE)
        self.confirm = confirm
        self.hash = bytes(hash)

    def payload(self) -> bytes:
        items: list[tuple[str, Any]] = [("confirm", bool(self.confirm))]
        if self.confirm and self.hash:
            items.append(("hash", self.hash))
        return _indefinite_map(items)


class ImageUploadReq(Request):
    """Uploads one chunk of an image; the first chunk also carries length and hash."""

    def __init__(
        self,
        image: int,
        off: int,
        data: bytes,
        sha: bytes = b"",
        length: int = 0,
        upgrade: bool = False,
    ) -> None:
        super().__init__(MgmtOp.WRITE, MgmtGroupId.IMAGE, ImgMgmtId.UPLOAD)
        self.image = image
        self.off = off
        self.data = bytes(data)
        self.sha = bytes(sha)
        self.length = length
        self.upgrade = upgrade

    def payload(self) -> bytes:
        first = self.off == 0
        items: list[tuple[str, Any]] = [("image", self.image)]
        if first:
            items.append(("len", self.length))
        items.append(("off", self.off))
        if first:
            items.append(("sha", self.sha))
        items.append(("data", self.data))
        return _indefinite_map(items)


class ResetReq(Request):
    """Asks the device to reboot."""

    def __init__(self, force: bool = False) -> None:
        super().__init__(MgmtOp.WRITE, MgmtGroupId.OS, OsMgmtId.RESET)
        self.force = force

    def payload(self) -> bytes:
        return _indefinite_map([("force", 1)] if self.force else [])


@dataclass
class ImageSlot:
    """State of one image slot as reported by the device."""

    slot: int = 0
    version: str = ""
    hash: bytes = b""
    bootable: bool = False
    pending: bool = False
    confirmed: bool = False
    active: bool = False
    permanent: bool = False


_SLOT_FIELDS: dict[str, type] = {
    "slot": int,
    "version": str,
    "hash": bytes,
    "bootable": bool,
    "pending": bool,
    "confirmed": bool,
    "active": bool,
    "permanent": bool,
}


def _decode_slot(entry: Any) -> ImageSlot:
    if not isinstance(entry, dict):
        raise SmpDecodeError("image slot is not a map")
    slot = ImageSlot()
    for key, value in entry.items():
        if not isinstance(key, str):
            raise SmpDecodeError(f"map key {key!r} is not a string")
        kind = _SLOT_FIELDS.get(key)
        if kind is not None:
            setattr(slot, key, _expect(value, kind, key))
    return slot


def _decode_images(payload: bytes) -> list[ImageSlot]:
    fields = _decode_map(payload)
    if not fields:
        raise SmpDecodeError("cannot get 'images' key")
    if next(iter(fields)) != "images":
        raise SmpDecodeError("'images' key not present in SMP response")
    images = fields["images"]
    if not isinstance(images, list):
        raise SmpDecodeError("'images' is not an array")
    return [_decode_slot(entry) for entry in images[:2]]


class Response(abc.ABC):
    """An SMP response; decoding happens on construction."""

    def __init__(self, header: Header, payload: bytes) -> None:
        self.header = header
        self._decode(bytes(payload))

    @abc.abstractmethod
    def _decode(self, payload: bytes) -> None:
        """Fill the response from its payload or raise SmpDecodeError."""


class GetStateOfImagesResp(Response):
    """State of up to two image slots."""

    images: list[ImageSlot]

    def _decode(self, payload: bytes) -> None:
        self.images = _decode_images(payload)


class SetStateOfImagesResp(Response):
    """State of the image slots after a state change."""

    images: list[ImageSlot]

    def _decode(self, payload: bytes) -> None:
        self.images = _decode_images(payload)


class ImageUploadResp(Response):
    """Result of an image chunk upload."""

    def _decode(self, payload: bytes) -> None:
        self.off = 0
        self.match = False
        self.rc = 0
        self.rsn = ""
        fields = _decode_map(payload)
        for key, kind in (("rc", int), ("rsn", str), ("off", int), ("match", bool)):
            if key in fields:
                setattr(self, key, _expect(fields[key], kind, key))


class ResetResp(Response):
    """Result of a reset request; an empty map means success."""

    def _decode(self, payload: bytes) -> None:
        self.rc = 0
        fields = _decode_map(payload)
        if not fields:
            return
        key, value = next(iter(fields.items()))
        if key != "rc":
            raise SmpDecodeError("'rc' key not present in SMP response")
        self.rc = _expect(value, int, "rc")


def _msg_type(op: int, group: int, command_id: int) -> int:
    return Header(op=op, group=group, command_id=command_id).msg_type()


_RESPONSE_TYPES: dict[int, type[Response]] = {
    _msg_type(MgmtOp.READ_RSP, MgmtGroupId.IMAGE, ImgMgmtId.STATE): GetStateOfImagesResp,
    _msg_type(MgmtOp.WRITE_RSP, MgmtGroupId.IMAGE, ImgMgmtId.STATE): SetStateOfImagesResp,
    _msg_type(MgmtOp.WRITE_RSP, MgmtGroupId.IMAGE, ImgMgmtId.UPLOAD): ImageUploadResp,
    _msg_type(MgmtOp.WRITE_RSP, MgmtGroupId.OS, OsMgmtId.RESET): ResetResp,
}


def parse_response(data: bytes) -> Response:
    """Decode a received frame into the matching response class."""
    data = bytes(data)
    try:
        header = Header.from_bytes(data)
    except ValueError as exc:
        raise SmpDecodeError(str(exc)) from exc
    response_cls = _RESPONSE_TYPES.get(header.msg_type())
    if response_cls is None:
        raise SmpDecodeError(f"unknown SMP response of type {header.msg_type():#010x}")
    return response_cls(header, data[HEADER_SIZE:])