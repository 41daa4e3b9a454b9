"""Operation codes, group ids and command ids of the SMP management protocol."""

from __future__ import annotations

import enum

MGMT_MAX_MTU = 1024
"""MTU for management responses."""

MGMT_HDR_SIZE = 8
"""Size of the management header in bytes."""


class MgmtOp(enum.IntEnum):
    """Opcodes, encoded in the first byte of the header."""

    READ = 0
    READ_RSP = 1
    WRITE = 2
    WRITE_RSP = 3


class MgmtGroupId(enum.IntEnum):
    """Management groups; the first 64 are reserved for system commands."""

    OS = 0
    IMAGE = 1
    STAT = 2
    CONFIG = 3
    LOG = 4
    CRASH = 5
    SPLIT = 6
    RUN = 7
    FS = 8
    SHELL = 9
    PERUSER = 64


class MgmtEventOp(enum.IntEnum):
    """Management event opcodes."""

    CMD_RECV = 0x01
    CMD_STATUS = 0x02
    CMD_DONE = 0x03


class MgmtErrorCode(enum.IntEnum):
    """Error codes returned by the device."""

    EOK = 0
    EUNKNOWN = 1
    ENOMEM = 2
    EINVAL = 3
    ETIMEOUT = 4
    ENOENT = 5
    EBADSTATE = 6
    EMSGSIZE = 7
    ENOTSUP = 8
    ECORRUPT = 9
    EPERUSER = 256


class ImgMgmtId(enum.IntEnum):
    """Command ids of the image management group."""

    STATE = 0
    UPLOAD = 1
    FILE = 2
    CORELIST = 3
    CORELOAD = 4
    ERASE = 5


class OsMgmtId(enum.IntEnum):
    """Command ids of the OS management group."""

    ECHO = 0
    CONS_ECHO_CTRL = 1
    TASKSTAT = 2
    MPSTAT = 3
    DATETIME_STR = 4
    RESET = 5