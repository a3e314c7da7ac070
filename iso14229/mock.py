"""In-memory transports joined by a shared broadcast network, for testing."""

from __future__ import annotations

import sys
from dataclasses import dataclass, replace

from .isotp_transport import Sdu, TargetAddressType, TpStatus
from .uds import TP_MTU
from .util import millis, time_after

_U32_MASK = 0xFFFFFFFF

# Address that no transport sends to or listens on.
NOOP_ADDR = 0xFFFFFFFF
MAX_TRANSPORTS = 16
MAX_PENDING_MESSAGES = 8


@dataclass(frozen=True)
class MockTransportArgs:
    """Addresses of a mock transport.

    Physical messages are sent from ``sa_phys`` to ``ta_phys``; functional ones
    from ``sa_func`` to ``ta_func``.
    """

    sa_phys: int
    ta_phys: int
    sa_func: int
    ta_func: int


DEFAULT_CLIENT_ARGS = MockTransportArgs(
    sa_phys=0x7E8, ta_phys=0x7E0, sa_func=NOOP_ADDR, ta_func=0x7DF
)
DEFAULT_SERVER_ARGS = MockTransportArgs(
    sa_phys=0x7E0, ta_phys=0x7E8, sa_func=0x7DF, ta_func=NOOP_ADDR
)


@dataclass
class _Message:
    data: bytes
    info: Sdu
    scheduled_tx_time: int


class MockTransport:
    """A transport attached to a :class:`MockNetwork`; create it with ``new_transport``."""

    def __init__(self, network, name, args):
        self.network = network
        self.name = name
        self.sa_phys = args.sa_phys
        self.ta_phys = args.ta_phys
        self.sa_func = args.sa_func
        self.ta_func = args.ta_func
        self.send_tx_delay_ms = 0
        self._recv_buf = b""
        self._recv_info = Sdu()

    def _deliver(self, data, info):
        if self._recv_buf:
            return False
        self._recv_buf = data
        self._recv_info = replace(info)
        return True

    def peek(self):
        """Return ``(data, info)`` for the received message without consuming it, or None."""
        if not self._recv_buf:
            return None
        return self._recv_buf, replace(self._recv_info)

    def send(self, data, info=None):
        """Queue ``data`` on the network; returns the number of bytes accepted."""
        data = bytes(data)
        if len(data) > TP_MTU:
            raise ValueError(f"message of {len(data)} bytes exceeds MTU of {TP_MTU}")
        self.network._enqueue(self, data, info)
        return len(data)

    def poll(self):
        """Let the network deliver due messages."""
        self.network.poll()
        return TpStatus.IDLE

    def ack_recv(self):
        """Release the received message."""
        self._recv_buf = b""

    def close(self):
        """Detach this transport from its network."""
        self.network.remove(self)


class MockNetwork:
    """A broadcast network joining mock transports, driven by a millisecond clock."""

    def __init__(self, clock=millis):
        self.clock = clock
        self._transports = []
        self._messages = []
        self._log = None
        self._owns_log = False

    @property
    def transports(self):
        return tuple(self._transports)

    def new_transport(self, name, args):
        """Create and attach a transport; ``name`` may be None for a generated one."""
        if len(self._transports) >= MAX_TRANSPORTS:
            raise RuntimeError(f"too many transports ({len(self._transports)})")
        if name is None:
            name = f"TPMock{len(self._transports)}"
        transport = MockTransport(self, name, args)
        self._transports.append(transport)
        return transport

    def remove(self, transport):
        """Detach ``transport``; raises ValueError if it is not attached."""
        for index, attached in enumerate(self._transports):
            if attached is transport:
                del self._transports[index]
                return
        raise ValueError(f"{transport.name} is not attached to this network")

    def _enqueue(self, sender, data, info):
        if len(self._messages) >= MAX_PENDING_MESSAGES:
            raise RuntimeError("too many messages in the queue")
        ta_type = (
            TargetAddressType(info.ta_type) if info is not None else TargetAddressType.PHYSICAL
        )
        if ta_type == TargetAddressType.PHYSICAL:
            ta, sa = sender.ta_phys, sender.sa_phys
        else:
            ta, sa = sender.ta_func, sender.sa_func
        sdu = Sdu(ta_type, ta=ta, sa=sa, ae=info.ae if info is not None else 0)
        scheduled = (self.clock() + sender.send_tx_delay_ms) & _U32_MASK
        self._messages.append(_Message(data, sdu, scheduled))
        self._write_log(sender.name, data, sdu)

    def poll(self):
        """Deliver every message whose transmit time has passed."""
        remaining = []
        for msg in self._messages:
            if not time_after(self.clock(), msg.scheduled_tx_time):
                remaining.append(msg)
                continue
            for transport in self._transports:
                if msg.info.ta in (transport.sa_phys, transport.sa_func):
                    if not transport._deliver(msg.data, msg.info):
                        print(
                            f"TPMock: {transport.name} recv buffer is already full. "
                            "Message dropped",
                            file=sys.stderr,
                        )
            self._write_log("network", msg.data, msg.info)
        self._messages = remaining

    def _write_log(self, prefix, data, info):
        if self._log is None:
            return
        kind = "phys" if info.ta_type == TargetAddressType.PHYSICAL else "func"
        hexed = "".join(f"{byte:02x} " for byte in data)
        self._log.write(f"{self.clock():06d}, {prefix} sends, 0x{info.ta:03x} ({kind}), {hexed}\n")
        self._log.flush()

    def log_to_file(self, filename):
        """Write every message to ``filename``, overwriting it."""
        if self._log is not None:
            raise RuntimeError("log is already open")
        if filename is None:
            raise ValueError("filename is None")
        self._log = open(filename, "w", encoding="utf-8")
        self._owns_log = True

    def log_to_stdout(self):
        """Write every message to standard output unless a log is already open."""
        if self._log is not None:
            return
        self._log = sys.stdout
        self._owns_log = False

    def reset(self):
        """Detach all transports, drop pending messages and close the log."""
        self._transports.clear()
        self._messages.clear()
        if self._owns_log and self._log is not None:
            self._log.close()
        self._log = None
        self._owns_log = False