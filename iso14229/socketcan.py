"""UDS transport that runs ISO-TP links over a raw SocketCAN socket."""

from __future__ import annotations

import logging
import socket
import struct
from dataclasses import replace

from .isotp import IsoTpLink
from .isotp_frames import (
    CAN_FRAME_SIZE,
    SINGLE_FRAME_MAX_DATA,
    IsoTpError,
    IsoTpLengthError,
    ReceiveStatus,
    SendStatus,
)
from .isotp_transport import Sdu, TargetAddressType, TpStatus
from .util import millis

_log = logging.getLogger(__name__)

AF_CAN = getattr(socket, "AF_CAN", 29)
CAN_RAW = getattr(socket, "CAN_RAW", 1)

# struct can_frame: 32-bit id, 8-bit length, 3 bytes padding, 8 data bytes.
CAN_FRAME = struct.Struct("=IB3x8s")


def setup_socketcan(ifname):
    """Open a non-blocking raw CAN socket bound to interface ``ifname``."""
    _log.debug("setting up CAN on %s", ifname)
    sock = socket.socket(AF_CAN, socket.SOCK_RAW, CAN_RAW)
    try:
        sock.setblocking(False)
        sock.bind((ifname,))
    except OSError:
        sock.close()
        raise
    return sock


def _kind(ta_type):
    return "phys" if ta_type == TargetAddressType.PHYSICAL else "func"


class SocketCanIsoTpTransport:
    """ISO-TP segmentation done in-process, with CAN frames sent over SocketCAN.

    Frames received with id ``source_addr`` feed the physical link, frames with
    id ``source_addr_func`` feed the functional link.
    """

    def __init__(
        self,
        ifname,
        source_addr,
        target_addr,
        source_addr_func,
        target_addr_func,
        tag="",
        clock=millis,
        sock=None,
    ):
        self.tag = tag
        self.clock = clock
        self.phys_sa = source_addr
        self.phys_ta = target_addr
        self.func_sa = source_addr_func
        self.func_ta = target_addr_func
        self.sock = sock if sock is not None else setup_socketcan(ifname)
        self.phys_link = IsoTpLink(target_addr, self._send_can, clock)
        self.func_link = IsoTpLink(target_addr_func, self._send_can, clock)

    def _send_can(self, arbitration_id, frame):
        packed = CAN_FRAME.pack(arbitration_id, len(frame), bytes(frame))
        written = self.sock.send(packed)
        if written != len(packed):
            raise IsoTpError(f"wrote {written} of {len(packed)} bytes of a CAN frame")

    def _trace(self, verb, ta, ta_type, data):
        hexed = "".join(f"{byte:02x} " for byte in data)
        print(
            f"{self.clock():06d}, {self.tag} {verb}, 0x{ta:03x} ({_kind(ta_type)}), {hexed}",
            flush=True,
        )

    def _receive_frames(self):
        while True:
            try:
                raw = self.sock.recv(CAN_FRAME.size)
            except BlockingIOError:
                return
            except OSError as exc:
                _log.error("read: %s", exc)
                return
            if not raw:
                return
            if len(raw) < CAN_FRAME.size:
                continue
            can_id, dlc, data = CAN_FRAME.unpack(raw[: CAN_FRAME.size])
            payload = data[: min(dlc, CAN_FRAME_SIZE)]
            if can_id == self.phys_sa:
                _log.debug("phys recvd can: %s", payload.hex(","))
                self.phys_link.on_can_message(payload)
            elif can_id == self.func_sa:
                if self.phys_link.receive_status != ReceiveStatus.IDLE:
                    _log.debug(
                        "func frame received but cannot process because link is not idle"
                    )
                    return
                self.func_link.on_can_message(payload)

    def poll(self):
        """Read pending CAN frames, drive the physical link and report send status."""
        self._receive_frames()
        self.phys_link.poll()
        if self.phys_link.send_status == SendStatus.IN_PROGRESS:
            return TpStatus.SEND_IN_PROGRESS
        return TpStatus.IDLE

    def peek(self):
        """Return ``(data, info)`` for a received message without consuming it, or None."""
        link = self.phys_link
        if link.receive_status == ReceiveStatus.FULL:
            data = bytes(link.receive_buffer[: link.receive_size])
            return data, Sdu(TargetAddressType.PHYSICAL, ta=self.phys_sa, sa=self.phys_ta)
        link = self.func_link
        if link.receive_status == ReceiveStatus.FULL:
            data = bytes(link.receive_buffer[: link.receive_size])
            info = Sdu(TargetAddressType.FUNCTIONAL, ta=self.func_sa, sa=self.func_ta)
            self._trace("recv", info.ta, info.ta_type, data)
            return data, replace(info)
        return None

    def send(self, data, info=None):
        """Send ``data``; functional requests must fit in a single frame.

        Returns the number of bytes accepted.
        """
        data = bytes(data)
        ta_type = (
            TargetAddressType(info.ta_type) if info is not None else TargetAddressType.PHYSICAL
        )
        ta = self.phys_ta if ta_type == TargetAddressType.PHYSICAL else self.func_ta
        try:
            if ta_type == TargetAddressType.PHYSICAL:
                link = self.phys_link
            else:
                if len(data) > SINGLE_FRAME_MAX_DATA:
                    raise IsoTpLengthError(
                        "cannot send more than "
                        f"{SINGLE_FRAME_MAX_DATA} bytes via functional addressing"
                    )
                link = self.func_link
            link.send(data)
            return len(data)
        finally:
            self._trace("sends", ta, ta_type, data)

    def ack_recv(self):
        """Release the message that :meth:`peek` returns."""
        if self.phys_link.receive_status == ReceiveStatus.FULL:
            self.phys_link.receive()
        elif self.func_link.receive_status == ReceiveStatus.FULL:
            self.func_link.receive()

    def close(self):
        """Close the CAN socket."""
        self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()