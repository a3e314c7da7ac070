# iso14229

Building blocks for Unified Diagnostic Services (UDS, ISO 14229) over CAN,
using only the Python standard library.

## Modules

- `iso14229.uds`: service IDs (`ServiceId`), negative response codes
  (`ResponseCode`), session, reset, security-access, communication-control,
  routine-control and DTC-setting types, server event numbers
  (`ServerEvent`), the `UDSErr` result codes and the `UDSError` exception,
  `response_sid_of` / `request_sid_of`, and default timing constants such as
  `CLIENT_DEFAULT_P2_MS` and `SERVER_DEFAULT_P2_MS`.
- `iso14229.util`: `millis()` (wall-clock milliseconds wrapped to 32 bits),
  `time_after(a, b)` (wrap-safe comparison of 32-bit timestamps),
  `ManualClock` (a clock that only moves when `advance(ms)` is called) and
  `security_access_level_is_reserved`.
- `iso14229.isotp_frames`: encoders for ISO-TP single, first, consecutive and
  flow-control frames, `frame_type`, STmin conversion, the `PciType`,
  `FlowStatus`, `SendStatus`, `ReceiveStatus` and `ProtocolResult` enums, and
  the `IsoTpError` exception family (`IsoTpOverflowError`,
  `IsoTpInProgressError`, `IsoTpLengthError`, `IsoTpWrongSequenceError`).
- `iso14229.isotp`: `IsoTpLink`, a poll-driven ISO-TP link that segments
  outgoing messages of up to 4095 bytes, reassembles incoming ones fed to
  `on_can_message`, exchanges flow control and checks timeouts in `poll`.

## Transports

All transports offer `poll()`, `peek()`, `send(data, info=None)` and
`ack_recv()`. `peek()` returns `(data, info)` for a received message, where
`info` is an `Sdu` holding `ta_type`, `ta`, `sa` and `ae`, or `None` when
nothing has arrived. Pass `Sdu(TargetAddressType.FUNCTIONAL)` as `info` to
send a functional request; such requests are limited to 7 bytes.

- `iso14229.isotp_transport.IsoTpTransport`: two `IsoTpLink`s (physical and
  functional) configured with an `IsoTpTransportConfig` that holds the
  addresses and your CAN send callback. Received CAN frames are given to
  `transport.phys_link.on_can_message(...)` or
  `transport.func_link.on_can_message(...)`.
- `iso14229.mock.MockNetwork` / `MockTransport`: an in-memory broadcast
  network for tests and simulation. `new_transport(name, args)` attaches a
  transport, `poll()` delivers messages whose transmit time has passed,
  `log_to_file` / `log_to_stdout` trace traffic, `reset()` clears everything.
  `DEFAULT_CLIENT_ARGS` and `DEFAULT_SERVER_ARGS` give the usual
  0x7E0/0x7E8/0x7DF addressing.
- `iso14229.socketcan.SocketCanIsoTpTransport`: ISO-TP links run in-process
  over a raw Linux SocketCAN socket (`setup_socketcan(ifname)`).
- `iso14229.isotp_sock.IsoTpSocketTransport`: Linux kernel `CAN_ISOTP`
  sockets, opened with `IsoTpSocketTransport.server(...)` or
  `IsoTpSocketTransport.client(...)` (see `bind_isotp_socket`).

The two socket transports need Linux and a CAN interface such as `vcan0`;
both can be used as context managers and close their sockets on exit.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Example: two endpoints on an in-memory network

```python
from iso14229.mock import DEFAULT_CLIENT_ARGS, DEFAULT_SERVER_ARGS, MockNetwork
from iso14229.util import ManualClock

clock = ManualClock(0)
network = MockNetwork(clock)

client = network.new_transport("client", DEFAULT_CLIENT_ARGS)
server = network.new_transport("server", DEFAULT_SERVER_ARGS)

client.send(bytes([0x10, 0x02]))   # DiagnosticSessionControl request
clock.advance(1)
network.poll()

data, info = server.peek()
print(data.hex(), info.ta_type.name)   # 1002 PHYSICAL
server.ack_recv()
```

## Example: an ISO-TP link

```python
from iso14229.isotp import IsoTpLink
from iso14229.util import ManualClock

frames = []
link = IsoTpLink(0x7E0, lambda can_id, frame: frames.append((can_id, frame)), ManualClock(0))
link.send(b"\x22\xF1\x90")
print(frames)   # [(2016, b'\x03"\xf1\x90\x00\x00\x00\x00')]
```

## What this package does not do

It provides UDS definitions and transports only. There is no UDS client or
server: nothing here builds requests, interprets responses, tracks sessions
or security access, or dispatches `ServerEvent`s to a handler. There is also
no command-line tool.