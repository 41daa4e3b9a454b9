"""The eight-byte header that precedes every SMP message."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

from .constants import MGMT_HDR_SIZE

HEADER_SIZE = MGMT_HDR_SIZE


@dataclass
class Header:
    """An SMP header; length and group are big-endian on the wire."""

    op: int = 0
    reserved: int = 0
    flags: int = 0
    length: int = 0
    group: int = 0
    seq: int = 0
    command_id: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct(">BBHHBB")

    def serialize(self, payload: bytes) -> bytes:
        """Return the header followed by payload; the length is taken from payload."""
        payload = bytes(payload)
        if len(payload) > 0xFFFF:
            raise ValueError(f"payload of {len(payload)} bytes is too long")
        self.length = len(payload)
        head = self._STRUCT.pack(
            (self.op & 0x07) | (self.reserved & 0x1F) << 3,
            self.flags & 0xFF,
            self.length,
            self.group & 0xFFFF,
            self.seq & 0xFF,
            self.command_id & 0xFF,
        )
        return head + payload

    @classmethod
    def from_bytes(cls, data: bytes) -> Header:
        """Decode the header at the start of data; further bytes are ignored."""
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise ValueError(
                f"{len(data)} bytes are too few for a {HEADER_SIZE}-byte header"
            )
        first, flags, length, group, seq, command_id = cls._STRUCT.unpack_from(data)
        return cls(
            op=first & 0x07,
            reserved=first >> 3,
            flags=flags,
            length=length,
            group=group,
            seq=seq,
            command_id=command_id,
        )

    def msg_type(self) -> int:
        """Combine op, group and command id into one message type number."""
        return (self.op << 24) | (self.group << 8) | self.command_id