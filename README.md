# zeroctl

A library for finding Zero devices on a local network over CoAP and for
updating their firmware over the SMP (mcumgr) management protocol. The network
parts are built on `asyncio`.

## Modules

- `zeroctl.coap`: the CoAP message model. `CoapMessage.to_bytes()` encodes a
  message and writes its options in ascending option-number order, with
  extended deltas and lengths. `CoapMessage.from_bytes(data)` decodes a frame.
  It needs a payload marker (`0xFF`) and raises `CoapDecodeError` otherwise or
  when the frame is truncated. Tokens longer than 8 bytes raise `ValueError`.
  The enums `OptionNumber`, `ContentFormat`, `MessageType` and `Code` name the
  protocol values.
- `zeroctl.discovery`:
  - `parse_link_format(data, host)` turns a link-format payload into `Resource`
    records. Links without a path are dropped.
  - `create_discovery_frame(message_id, path)` builds a non-confirmable GET.
  - `CoapResourceDiscovery(on_discovered)` keeps a set of `Location` targets.
    Add targets with `add_location(host, port=5683, scan_now=False,
    path="/.well-known/core")`; it returns `False` for a target it already
    has. `await start(interval)` sends requests to every target at once and
    then every `interval` milliseconds. `stop()` ends this.
  - Acknowledgements in link format are passed to `on_discovered(resources,
    host, port)`.
- `zeroctl.scanner`: `ZeroCoapScanner(on_new_zero)` runs discovery. When a host
  lists resources, it sends a confirmable GET for `/version`. A reply with the
  comma-separated text format (`uuid,mac,major,minor,patch`) is reported as a
  `ZeroInfo`. `parse_version(message, host, port)` does the parsing and raises
  `ValueError` on bad replies. Replies in content format 30001
  (`zeroctl.config.NANOPB_CONTENT_FORMAT`) are rejected, because that binary
  format is not decoded.
- `zeroctl.config`:
  - `get_conf(config, key)` reads a setting or its default.
  - `parse_args(argv)` turns the options `-c/--config`, `-l/--log-level`,
    `-s/--search-interval` and `-u/--update-interval` into a settings
    dictionary. Only options that were given go into the dictionary.
  - `configure_logging(config)` sets the root logger level from `log/level`.
- `zeroctl.smp.constants`: the SMP opcodes, group ids, command ids and error
  codes.
- `zeroctl.smp.header`: `Header`, the 8-byte SMP header. `serialize(payload)`
  prepends it to a payload. `Header.from_bytes(data)` decodes it, and
  `msg_type()` returns the combined type number.
- `zeroctl.smp.messages`:
  - Requests: `GetStateOfImagesReq`, `SetStateOfImagesReq`, `ImageUploadReq`,
    `ResetReq`. Each has `payload()`, `serialize()` and `response_header()`.
  - Responses: `GetStateOfImagesResp`, `SetStateOfImagesResp`,
    `ImageUploadResp`, `ResetResp`.
  - `parse_response(data)` picks the response class from the header. It raises
    `SmpDecodeError` for unknown or malformed frames.
- `zeroctl.smp.client`: `Client(host, port=1337)` runs the firmware update:
  - upload the image in 512-byte chunks with a SHA-256 of the whole image
  - read the image state, mark the new image permanent, and reset the device

  Each step waits at most 0.5 s for an answer. Its progress is shown by
  `state` (an `UploadState`), `progress` (percent) and `update_succeeded`. You
  can also set the callbacks `on_progress`, `on_completed` and `on_failed`.
- `zeroctl.mcuimage`: `ImageHeader.from_bytes(data)` and `to_bytes()` read and
  write the 32-byte MCUboot image header. A wrong magic number raises
  `ValueError`. `ImageVersion` holds the version fields.
- `zeroctl.zerolist`: `ZeroList` keeps devices in order of arrival, keyed by
  their `uuid`. It has `insert`, `contains`, `get`, `erase`, `index`,
  `notify_updated` and `clear`. `clear` calls `stop()` on every device. It
  reports changes by row index through callbacks such as `on_added` and
  `on_erased`.

## Examples

Decode a CoAP datagram and encode it again:

```python
from zeroctl.coap import CoapMessage, CoapDecodeError

try:
    message = CoapMessage.from_bytes(datagram)
except CoapDecodeError:
    message = None
else:
    frame = message.to_bytes()
```

Scan a subnet for devices for ten seconds:

```python
import asyncio
from zeroctl.scanner import ZeroCoapScanner

async def scan():
    scanner = ZeroCoapScanner(lambda info: print(info.uuid, info.url))
    await scanner.start_scanning(1000)
    scanner.add_scan_target("192.0.2.255")
    await asyncio.sleep(10)
    scanner.stop_scanning()

asyncio.run(scan())
```

Upload new firmware to a device:

```python
import asyncio
from pathlib import Path
from zeroctl.smp.client import Client

async def update(path):
    client = Client("192.0.2.10", 1337)
    await client.connect()
    done = asyncio.Event()
    client.on_completed = done.set
    client.on_failed = done.set
    client.send_firmware_update(Path(path).read_bytes())
    await done.wait()
    client.disconnect()
    return client.update_succeeded

asyncio.run(update("zephyr.signed.bin"))
```

Parse an SMP reply:

```python
from zeroctl.smp.messages import parse_response, SmpDecodeError

try:
    reply = parse_response(datagram)
except SmpDecodeError:
    reply = None
```

Read a setting, using its default when it is missing:

```python
from zeroctl.config import get_conf

interval = get_conf({}, "search/interval")  # 1
```

## Configuration keys

| Key               | Default      | Meaning                                               |
|-------------------|--------------|-------------------------------------------------------|
| `log/level`       | `4`          | 1 fatal, 2 critical, 3 warning, 4 info, 5 debug       |
| `files/config`    | `config.ini` | Configuration file                                    |
| `files/data_dir`  | `data`       | Directory for saved data                              |
| `search/interval` | `1`          | Seconds between network scans                         |
| `update/interval` | `100`        | Milliseconds between status updates from the devices  |

## What it does not do

- It installs no command to run. `parse_args` and `configure_logging` are
  building blocks for one.
- There is no graphical interface.
- There is no live view of device measurements or switch state, and no device
  settings editor. `ZeroList` stores whatever device objects you give it, as
  long as they have a `uuid` and a `stop()` method.
- It does not list network interfaces. You pass the address to scan, for
  example a broadcast address, to `add_scan_target` yourself.
- It does not read the configuration file named by `files/config`.