"""SMP client that uploads firmware images to a device over UDP."""

from __future__ import annotations

import asyncio
import enum
import hashlib
import logging
from typing import Callable, Optional

from .messages import (
    GetStateOfImagesReq,
    GetStateOfImagesResp,
    ImageUploadReq,
    ImageUploadResp,
    Request,
    ResetReq,
    ResetResp,
    Response,
    SetStateOfImagesReq,
    SetStateOfImagesResp,
    SmpDecodeError,
    parse_response,
)

DEFAULT_PORT = 1337
CHUNK_SIZE = 512
RESPONSE_TIMEOUT = 0.5

_log = logging.getLogger(__name__)


class UploadState(enum.Enum):
    """States of the firmware upload procedure."""

    IDLE = "idle"
    INITIAL_REQUEST = "initial_request"
    AWAIT_RESPONSE = "await_response"
    SEND_CHUNK = "send_chunk"
    UPLOAD_COMPLETED = "upload_completed"
    MARK_PERMANENT = "mark_permanent"
    REBOOTING = "rebooting"
    COMPLETED = "completed"
    FAILED = "failed"


_NOT_RUNNING = frozenset({UploadState.IDLE, UploadState.COMPLETED, UploadState.FAILED})


class _Event(enum.Enum):
    CHUNK_SENT = enum.auto()
    CHUNK_WRITTEN = enum.auto()
    LAST_CHUNK_WRITTEN = enum.auto()
    FAILED = enum.auto()
    IMAGE_HASH = enum.auto()
    STATE_SET = enum.auto()
    REBOOTING = enum.auto()
    TIMEOUT = enum.auto()


_S = UploadState
_TRANSITIONS: dict[tuple[UploadState, _Event], UploadState] = {
    (_S.INITIAL_REQUEST, _Event.CHUNK_SENT): _S.AWAIT_RESPONSE,
    (_S.AWAIT_RESPONSE, _Event.CHUNK_WRITTEN): _S.SEND_CHUNK,
    (_S.AWAIT_RESPONSE, _Event.LAST_CHUNK_WRITTEN): _S.UPLOAD_COMPLETED,
    (_S.SEND_CHUNK, _Event.CHUNK_SENT): _S.AWAIT_RESPONSE,
    (_S.UPLOAD_COMPLETED, _Event.IMAGE_HASH): _S.MARK_PERMANENT,
    (_S.MARK_PERMANENT, _Event.STATE_SET): _S.REBOOTING,
    (_S.REBOOTING, _Event.REBOOTING): _S.COMPLETED,
}
for _state in (
    _S.INITIAL_REQUEST,
    _S.AWAIT_RESPONSE,
    _S.SEND_CHUNK,
    _S.UPLOAD_COMPLETED,
    _S.MARK_PERMANENT,
    _S.REBOOTING,
):
    _TRANSITIONS[(_state, _Event.FAILED)] = _S.FAILED
for _state in (_S.AWAIT_RESPONSE, _S.UPLOAD_COMPLETED, _S.MARK_PERMANENT, _S.REBOOTING):
    _TRANSITIONS[(_state, _Event.TIMEOUT)] = _S.FAILED


class _Receiver(asyncio.DatagramProtocol):
    def __init__(self, callback: Callable[[bytes], object]) -> None:
        self._callback = callback

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._callback(data)


class Client:
    """Talks SMP to one device and drives firmware uploads to it."""

    def __init__(self, host: str, port: int = DEFAULT_PORT) -> None:
        self.host = host
        self.port = port
        self.image = 0
        self.chunk_size = CHUNK_SIZE
        self.response_timeout = RESPONSE_TIMEOUT

        self.on_progress: Optional[Callable[[int], object]] = None
        self.on_completed: Optional[Callable[[], object]] = None
        self.on_failed: Optional[Callable[[], object]] = None

        self._seq = 1
        self._transport: asyncio.DatagramTransport | None = None
        self._timer: asyncio.TimerHandle | None = None

        self._state = UploadState.IDLE
        self._firmware = b""
        self._total_size = 0
        self._offset = 0
        self._chunk_percentage = 0.0
        self._chunks_sent = 0
        self._progress = 0
        self._succeeded: Optional[bool] = None
        self._image_hash = b""

    @property
    def state(self) -> UploadState:
        """Current state of the firmware upload."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._transport is not None

    @property
    def is_firmware_update_ongoing(self) -> bool:
        return self._state not in _NOT_RUNNING

    @property
    def update_succeeded(self) -> Optional[bool]:
        """True or False after an update finished, None if none ever ran."""
        return self._succeeded

    @property
    def progress(self) -> int:
        """Upload progress in percent."""
        return self._progress

    async def connect(self) -> None:
        """Open a UDP socket bound to the device; any earlier one is closed."""
        self.disconnect()
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _Receiver(self.handle_datagram),
            remote_addr=(self.host, self.port),
        )
        self._transport = transport

    def disconnect(self) -> None:
        """Close the socket."""
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def send(self, request: Request) -> int:
        """Send a request and return the sequence number it was given."""
        if self._transport is None:
            raise ConnectionError("SMP client is not connected")
        seq = self._seq
        request.header.seq = seq
        self._seq = (seq + 1) & 0xFF
        self._transport.sendto(request.serialize())
        return seq

    def send_firmware_update(self, firmware: bytes) -> bool:
        """Start uploading firmware; returns False if an upload is already running."""
        if self.is_firmware_update_ongoing:
            _log.warning("Firmware upload is in progress. Wait until it is completed.")
            return False
        firmware = bytes(firmware)
        if not firmware:
            raise ValueError("firmware image is empty")
        self._firmware = firmware
        self._total_size = len(firmware)
        self._offset = 0
        self._run_from(UploadState.INITIAL_REQUEST)
        return True

    def handle_datagram(self, data: bytes) -> Response | None:
        """Process a received frame; returns the decoded response, if any."""
        try:
            response = parse_response(data)
        except SmpDecodeError as exc:
            _log.warning("Received an invalid SMP response: %s", exc)
            return None

        if isinstance(response, ImageUploadResp):
            self._on_upload_response(response)
        elif isinstance(response, GetStateOfImagesResp):
            if len(response.images) == 2:
                self._image_hash = response.images[1].hash
                self._fire(_Event.IMAGE_HASH)
        elif isinstance(response, SetStateOfImagesResp):
            self._fire(_Event.STATE_SET)
        elif isinstance(response, ResetResp):
            self._fire(_Event.FAILED if response.rc != 0 else _Event.REBOOTING)
        return response

    def on_timeout(self) -> None:
        """Handle the expiry of the response timer."""
        self._timer = None
        self._fire(_Event.TIMEOUT)

    def _on_upload_response(self, reply: ImageUploadResp) -> None:
        if reply.rc != 0:
            _log.warning("ImageUpload failed with rc %d", reply.rc)
            self._fire(_Event.FAILED)
            return
        _log.debug("Last written offset: %d", reply.off)
        if reply.off == self._total_size:
            self._fire(_Event.LAST_CHUNK_WRITTEN)
            return
        if reply.off > self._offset:
            self._offset = reply.off
            _log.info("Resuming aborted upload")
        self._fire(_Event.CHUNK_WRITTEN)

    def _fire(self, event: _Event) -> None:
        self._run_from(_TRANSITIONS.get((self._state, event)))

    def _run_from(self, state: UploadState | None) -> None:
        while state is not None:
            self._stop_timer()
            self._state = state
            event = self._enter(state)
            state = _TRANSITIONS.get((state, event)) if event is not None else None

    def _enter(self, state: UploadState) -> _Event | None:
        if state is UploadState.INITIAL_REQUEST:
            return self._send_first_chunk()
        if state is UploadState.SEND_CHUNK:
            return self._send_next_chunk()
        if state is UploadState.AWAIT_RESPONSE:
            self._start_timer()
            return None
        if state is UploadState.UPLOAD_COMPLETED:
            _log.info("Firmware upload to %s completed", self.host)
            return self._send_and_wait(GetStateOfImagesReq())
        if state is UploadState.MARK_PERMANENT:
            _log.info("Marking firmware as permanent")
            return self._send_and_wait(SetStateOfImagesReq(True, self._image_hash))
        if state is UploadState.REBOOTING:
            _log.info("Sending reboot command")
            return self._send_and_wait(ResetReq())
        if state is UploadState.COMPLETED:
            _log.info("Firmware update complete")
            self._succeeded = True
            if self.on_completed is not None:
                self.on_completed()
        elif state is UploadState.FAILED:
            _log.warning("Firmware upload to %s could not be completed", self.host)
            self._succeeded = False
            if self.on_failed is not None:
                self.on_failed()
        return None

    def _send_first_chunk(self) -> _Event:
        firmware = self._firmware
        sha = hashlib.sha256(firmware).digest()
        request = ImageUploadReq(
            self.image, 0, firmware[: self.chunk_size], sha, len(firmware)
        )
        self._offset = self.chunk_size
        self._chunk_percentage = 100.0 / len(firmware) * self.chunk_size
        event = self._try_send(request) or _Event.CHUNK_SENT
        self._chunks_sent = 1
        self._report_progress()
        return event

    def _send_next_chunk(self) -> _Event:
        step = min(self.chunk_size, max(0, len(self._firmware) - self._offset))
        chunk = self._firmware[self._offset : self._offset + step]
        request = ImageUploadReq(self.image, self._offset, chunk)
        self._offset += step
        event = self._try_send(request) or _Event.CHUNK_SENT
        self._chunks_sent += 1
        self._report_progress()
        return event

    def _send_and_wait(self, request: Request) -> _Event | None:
        event = self._try_send(request)
        if event is None:
            self._start_timer()
        return event

    def _try_send(self, request: Request) -> _Event | None:
        try:
            self.send(request)
        except (ConnectionError, OSError) as exc:
            _log.warning("Error when sending %s: %s", type(request).__name__, exc)
            return _Event.FAILED
        return None

    def _report_progress(self) -> None:
        self._progress = int(self._chunk_percentage * self._chunks_sent) & 0xFFFF
        _log.debug("Percentage uploaded %.1f", self._chunk_percentage * self._chunks_sent)
        if self.on_progress is not None:
            self.on_progress(self._progress)

    def _start_timer(self) -> None:
        self._stop_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self.response_timeout, self.on_timeout)

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None