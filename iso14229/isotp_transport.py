"""UDS transport over a pair of ISO-TP links (physical and functional addressing)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Callable, Optional

from .isotp import IsoTpLink
from .isotp_frames import SINGLE_FRAME_MAX_DATA, IsoTpLengthError, ReceiveStatus, SendStatus
from .uds import ISOTP_MTU
from .util import millis

_log = logging.getLogger(__name__)


class TargetAddressType(IntEnum):
    """How a message is addressed: to one node or to every node."""

    PHYSICAL = 0
    FUNCTIONAL = 1


class TpStatus(IntFlag):
    """Status flags reported by a transport's ``poll``."""

    IDLE = 0
    SEND_IN_PROGRESS = 1


@dataclass
class Sdu:
    """Addressing information that accompanies a service data unit."""

    ta_type: TargetAddressType = TargetAddressType.PHYSICAL
    ta: int = 0
    sa: int = 0
    ae: int = 0


@dataclass
class IsoTpTransportConfig:
    """Addresses and callbacks for an :class:`IsoTpTransport`.

    ``send_can(arbitration_id, frame)`` puts one CAN frame on the bus.
    """

    source_addr: int
    target_addr: int
    source_addr_func: int
    target_addr_func: int
    send_can: Callable[[int, bytes], None]
    clock: Callable[[], int] = millis
    debug: Optional[Callable[[str], None]] = None


def _received(link):
    return bytes(link.receive_buffer[: link.receive_size])


class IsoTpTransport:
    """A UDS transport that segments messages with ISO-TP.

    Received CAN frames are fed to :attr:`phys_link` or :attr:`func_link`
    through their ``on_can_message`` method.
    """

    def __init__(self, config):
        self.config = config
        self.phys_sa = config.source_addr
        self.phys_ta = config.target_addr
        self.func_sa = config.source_addr_func
        self.func_ta = config.target_addr_func
        self.phys_link = IsoTpLink(
            self.phys_ta, config.send_can, config.clock, ISOTP_MTU, ISOTP_MTU, config.debug
        )
        self.func_link = IsoTpLink(
            self.func_ta, config.send_can, config.clock, ISOTP_MTU, ISOTP_MTU, config.debug
        )

    def poll(self):
        """Drive the physical link and report whether a send is still in progress."""
        self.phys_link.poll()
        if self.phys_link.send_status == SendStatus.IN_PROGRESS:
            return TpStatus.SEND_IN_PROGRESS
        return TpStatus.IDLE

    def peek(self):
        """Return ``(data, info)`` for a received message without consuming it, or None."""
        if self.phys_link.receive_status == ReceiveStatus.FULL:
            data = _received(self.phys_link)
            _log.debug("received %d bytes on physical link", len(data))
            return data, Sdu(TargetAddressType.PHYSICAL, ta=self.phys_sa, sa=self.phys_ta)
        if self.func_link.receive_status == ReceiveStatus.FULL:
            data = _received(self.func_link)
            _log.debug("received %d bytes on functional link", len(data))
            return data, Sdu(TargetAddressType.FUNCTIONAL, ta=self.func_sa, sa=self.func_ta)
        return None

    def send(self, data, info=None):
        """Send ``data``; functional requests must fit in a single frame.

        Returns the number of bytes accepted.
        """
        data = bytes(data)
        ta_type = TargetAddressType(info.ta_type) if info is not None else TargetAddressType.PHYSICAL
        if ta_type == TargetAddressType.PHYSICAL:
            link = self.phys_link
        else:
            if len(data) > SINGLE_FRAME_MAX_DATA:
                raise IsoTpLengthError(
                    f"cannot send more than {SINGLE_FRAME_MAX_DATA} bytes via functional addressing"
                )
            link = self.func_link
        link.send(data)
        return len(data)

    def ack_recv(self):
        """Release the message that :meth:`peek` returns."""
        if self.phys_link.receive_status == ReceiveStatus.FULL:
            self.phys_link.receive()
        elif self.func_link.receive_status == ReceiveStatus.FULL:
            self.func_link.receive()