"""The header at the start of an MCUboot firmware image."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar

IMAGE_MAGIC = 0x96F3B83D
IMAGE_HEADER_SIZE = 32


@dataclass(frozen=True)
class ImageVersion:
    """Version of a firmware image."""

    major: int = 0
    minor: int = 0
    revision: int = 0
    build_num: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.revision}+{self.build_num}"


@dataclass(frozen=True)
class ImageHeader:
    """Image header; all fields are little-endian on disk."""

    magic: int = IMAGE_MAGIC
    load_addr: int = 0
    hdr_size: int = IMAGE_HEADER_SIZE
    protect_tlv_size: int = 0
    img_size: int = 0
    flags: int = 0
    version: ImageVersion = field(default_factory=ImageVersion)
    pad1: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<IIHHIIBBHII")

    @classmethod
    def from_bytes(cls, data: bytes) -> ImageHeader:
        """Decode the header at the start of an image; raises ValueError if invalid."""
        data = bytes(data)
        if len(data) < IMAGE_HEADER_SIZE:
            raise ValueError(
                f"{len(data)} bytes are too few for a {IMAGE_HEADER_SIZE}-byte image header"
            )
        (
            magic,
            load_addr,
            hdr_size,
            protect_tlv_size,
            img_size,
            flags,
            major,
            minor,
            revision,
            build_num,
            pad1,
        ) = cls._STRUCT.unpack_from(data)
        if magic != IMAGE_MAGIC:
            raise ValueError(f"bad image magic {magic:#010x}")
        return cls(
            magic=magic,
            load_addr=load_addr,
            hdr_size=hdr_size,
            protect_tlv_size=protect_tlv_size,
            img_size=img_size,
            flags=flags,
            version=ImageVersion(major, minor, revision, build_num),
            pad1=pad1,
        )

    def to_bytes(self) -> bytes:
        """Encode the header into its 32-byte form."""
        try:
            return self._STRUCT.pack(
                self.magic,
                self.load_addr,
                self.hdr_size,
                self.protect_tlv_size,
                self.img_size,
                self.flags,
                self.version.major,
                self.version.minor,
                self.version.revision,
                self.version.build_num,
                self.pad1,
            )
        except struct.error as exc:
            raise ValueError(str(exc)) from exc