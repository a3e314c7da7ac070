"""UDS transport over Linux kernel ISO-TP sockets."""

from __future__ import annotations

import errno
import logging
import socket
import struct
from dataclasses import replace

from .isotp_frames import SINGLE_FRAME_MAX_DATA, IsoTpLengthError
from .isotp_transport import Sdu, TargetAddressType, TpStatus
from .uds import ISOTP_MTU
from .util import millis

_log = logging.getLogger(__name__)

AF_CAN = getattr(socket, "AF_CAN", 29)
CAN_ISOTP = getattr(socket, "CAN_ISOTP", 6)
SOL_CAN_BASE = 100
SOL_CAN_ISOTP = SOL_CAN_BASE + CAN_ISOTP
CAN_ISOTP_OPTS = 1
CAN_ISOTP_RECV_FC = 2
CAN_ISOTP_LISTEN_MODE = 0x001
CAN_ISOTP_WAIT_TX_DONE = 0x400

# struct can_isotp_fc_options: bs, stmin, wftmax
_FC_OPTIONS = struct.Struct("=BBB")
# struct can_isotp_options: flags, frame_txtime, ext_address, txpad, rxpad, rx_ext_address
_ISOTP_OPTIONS = struct.Struct("=IIBBBB")

FC_BLOCK_SIZE = 0x10
FC_ST_MIN = 3
FC_WFT_MAX = 0


def bind_isotp_socket(ifname, rx_id, tx_id, functional):
    """Open a non-blocking ISO-TP socket on ``ifname`` receiving ``rx_id``, sending ``tx_id``.

    A functional socket listens only and sends no flow control frames.
    """
    sock = socket.socket(AF_CAN, socket.SOCK_DGRAM, CAN_ISOTP)
    try:
        sock.setblocking(False)
        sock.setsockopt(
            SOL_CAN_ISOTP,
            CAN_ISOTP_RECV_FC,
            _FC_OPTIONS.pack(FC_BLOCK_SIZE, FC_ST_MIN, FC_WFT_MAX),
        )
        # wait for tx completion so flow control timeouts are reported
        flags = CAN_ISOTP_WAIT_TX_DONE
        if functional:
            _log.debug("configuring socket as functional")
            flags |= CAN_ISOTP_LISTEN_MODE
        sock.setsockopt(SOL_CAN_ISOTP, CAN_ISOTP_OPTS, _ISOTP_OPTIONS.pack(flags, 0, 0, 0, 0, 0))
        sock.bind((ifname, rx_id, tx_id))
    except OSError:
        sock.close()
        raise
    return sock


def _recv_once(sock):
    try:
        return sock.recv(ISOTP_MTU)
    except BlockingIOError:
        return b""
    except OSError as exc:
        _log.debug("read failed with errno %s", exc.errno)
        if exc.errno == errno.EILSEQ:
            _log.debug("Perhaps multiple responses were received?")
        raise


class IsoTpSocketTransport:
    """A transport whose segmentation is done by kernel ISO-TP sockets."""

    def __init__(
        self,
        phys_sock,
        func_sock,
        phys_sa,
        phys_ta,
        func_sa,
        func_ta,
        tag="",
        clock=millis,
    ):
        self.phys_sock = phys_sock
        self.func_sock = func_sock
        self.phys_sa = phys_sa
        self.phys_ta = phys_ta
        self.func_sa = func_sa
        self.func_ta = func_ta
        self.tag = tag
        self.clock = clock
        self._recv_data = b""
        self._recv_info = Sdu()

    @classmethod
    def server(cls, ifname, source_addr, target_addr, source_addr_func, tag="server"):
        """Open a server transport that also listens for functional requests."""
        phys = bind_isotp_socket(ifname, source_addr, target_addr, False)
        try:
            func = bind_isotp_socket(ifname, source_addr_func, 0, True)
        except OSError:
            phys.close()
            raise
        _log.debug(
            "%s initialized phys link rx 0x%03x tx 0x%03x func link rx 0x%03x tx 0x%03x",
            tag, source_addr, target_addr, source_addr_func, target_addr,
        )
        return cls(phys, func, source_addr, target_addr, source_addr_func, 0, tag)

    @classmethod
    def client(cls, ifname, source_addr, target_addr, target_addr_func, tag="client"):
        """Open a client transport that can also send functional requests."""
        phys = bind_isotp_socket(ifname, source_addr, target_addr, False)
        try:
            func = bind_isotp_socket(ifname, 0, target_addr_func, True)
        except OSError:
            phys.close()
            raise
        _log.debug(
            "%s initialized phys link rx 0x%03x tx 0x%03x func link rx 0x%03x tx 0x%03x",
            tag, source_addr, target_addr, source_addr, target_addr_func,
        )
        return cls(phys, func, source_addr, target_addr, 0, target_addr_func, tag)

    def _trace(self, line):
        print(line, flush=True)

    def poll(self):
        """The kernel does the protocol work; nothing is ever in progress here."""
        return TpStatus.IDLE

    def peek(self):
        """Return ``(data, info)`` for a received message without consuming it, or None."""
        if self._recv_data:
            return self._recv_data, replace(self._recv_info)
        try:
            data = _recv_once(self.phys_sock)
        except OSError:
            data = b""
        if data:
            info = Sdu(TargetAddressType.PHYSICAL, ta=self.phys_sa, sa=self.phys_ta)
        else:
            data = _recv_once(self.func_sock)
            if not data:
                return None
            info = Sdu(TargetAddressType.FUNCTIONAL, ta=self.func_sa, sa=self.func_ta)
        kind = "phys" if info.ta_type == TargetAddressType.PHYSICAL else "func"
        hexed = "".join(f"{byte:02x} " for byte in data)
        self._trace(f"{self.clock():06d}, {self.tag} recv, 0x{info.ta:03x} ({kind}), {hexed}")
        self._recv_data = bytes(data)
        self._recv_info = info
        return self._recv_data, replace(info)

    def ack_recv(self):
        """Release the message that :meth:`peek` returns."""
        self._recv_data = b""

    def send(self, data, info=None):
        """Write ``data`` to the matching socket and return the number of bytes written."""
        data = bytes(data)
        ta_type = (
            TargetAddressType(info.ta_type) if info is not None else TargetAddressType.PHYSICAL
        )
        if ta_type == TargetAddressType.PHYSICAL:
            sock = self.phys_sock
        else:
            if len(data) > SINGLE_FRAME_MAX_DATA:
                raise IsoTpLengthError("functional request too large")
            sock = self.func_sock
        try:
            return sock.send(data)
        finally:
            kind = "phys" if ta_type == TargetAddressType.PHYSICAL else "func"
            hexed = "".join(f"{byte:02x} " for byte in data)
            self._trace(f"{self.clock():06d}, {self.tag} sends, ({kind}), {hexed}")

    def close(self):
        """Close both sockets."""
        for sock in (self.phys_sock, self.func_sock):
            try:
                sock.close()
            except OSError as exc:
                _log.error("failed to close socket: %s", exc)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()