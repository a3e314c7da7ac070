"""ISO-TP (ISO 15765-2) frame layout, status values and frame encoders."""

from __future__ import annotations

from enum import IntEnum

# Max number of consecutive frames the receiver accepts before sending flow control.
DEFAULT_BLOCK_SIZE = 8
# Minimum separation time requested between consecutive frames, in ms.
DEFAULT_ST_MIN = 0
# How many FC.Wait frames may be received in a row.
MAX_WFT_NUMBER = 1
# Timeout while waiting during a multi-frame send or receive, in ms.
DEFAULT_RESPONSE_TIMEOUT = 100
# Whether frames are padded to a full CAN frame by default.
FRAME_PADDING = True

INVALID_BS = 0xFFFF
CAN_FRAME_SIZE = 8
SINGLE_FRAME_MAX_DATA = 7
FIRST_FRAME_DATA = 6
CONSECUTIVE_FRAME_DATA = 7
MAX_MESSAGE_SIZE = 0xFFF


class PciType(IntEnum):
    SINGLE = 0x0
    FIRST_FRAME = 0x1
    CONSECUTIVE_FRAME = 0x2
    FLOW_CONTROL = 0x3


class FlowStatus(IntEnum):
    CONTINUE = 0x0
    WAIT = 0x1
    OVERFLOW = 0x2


class SendStatus(IntEnum):
    IDLE = 0
    IN_PROGRESS = 1
    ERROR = 2


class ReceiveStatus(IntEnum):
    IDLE = 0
    IN_PROGRESS = 1
    FULL = 2


class ProtocolResult(IntEnum):
    OK = 0
    TIMEOUT_A = -1
    TIMEOUT_BS = -2
    TIMEOUT_CR = -3
    WRONG_SN = -4
    INVALID_FS = -5
    UNEXP_PDU = -6
    WFT_OVRN = -7
    BUFFER_OVFLW = -8
    ERROR = -9


class IsoTpError(Exception):
    """Base class of ISO-TP failures."""

    code = -1


class IsoTpInProgressError(IsoTpError):
    """A transmission is already in progress."""

    code = -2


class IsoTpOverflowError(IsoTpError):
    """A message does not fit in the available buffer."""

    code = -3


class IsoTpWrongSequenceError(IsoTpError):
    """A consecutive frame arrived with an unexpected sequence number."""

    code = -4


class IsoTpLengthError(IsoTpError):
    """A frame or payload has an invalid length."""

    code = -7


def ms_to_st_min(ms):
    """Encode a separation time in milliseconds as an STmin byte."""
    return min(ms & 0xFF, 0x7F)


def st_min_to_ms(st_min):
    """Decode an STmin byte to milliseconds (sub-millisecond values round up to 1)."""
    if 0xF1 <= st_min <= 0xF9:
        return 1
    if st_min <= 0x7F:
        return st_min
    return 0


def frame_type(frame):
    """Return the :class:`PciType` of a CAN frame, or None for an unknown type."""
    if not frame:
        raise ValueError("empty frame has no PCI type")
    try:
        return PciType(frame[0] >> 4)
    except ValueError:
        return None


def _finish(frame, padding):
    if padding:
        frame.extend(bytes(CAN_FRAME_SIZE - len(frame)))
    return bytes(frame)


def encode_single_frame(payload, padding=FRAME_PADDING):
    """Build a single frame carrying ``payload`` (at most 7 bytes)."""
    if len(payload) > SINGLE_FRAME_MAX_DATA:
        raise IsoTpLengthError(
            f"single frame holds at most {SINGLE_FRAME_MAX_DATA} bytes, got {len(payload)}"
        )
    frame = bytearray([(PciType.SINGLE << 4) | len(payload)])
    frame.extend(payload)
    return _finish(frame, padding)


def encode_first_frame(total_size, data):
    """Build the first frame of a multi-frame message of ``total_size`` bytes."""
    if not SINGLE_FRAME_MAX_DATA < total_size <= MAX_MESSAGE_SIZE:
        raise IsoTpLengthError(f"invalid multi-frame message size {total_size}")
    if len(data) < FIRST_FRAME_DATA:
        raise IsoTpLengthError(f"first frame needs {FIRST_FRAME_DATA} data bytes")
    frame = bytearray(
        [(PciType.FIRST_FRAME << 4) | ((total_size >> 8) & 0x0F), total_size & 0xFF]
    )
    frame.extend(data[:FIRST_FRAME_DATA])
    return bytes(frame)


def encode_consecutive_frame(sn, data, padding=FRAME_PADDING):
    """Build a consecutive frame with sequence number ``sn`` (taken mod 16)."""
    if len(data) > CONSECUTIVE_FRAME_DATA:
        raise IsoTpLengthError(
            f"consecutive frame holds at most {CONSECUTIVE_FRAME_DATA} bytes, got {len(data)}"
        )
    frame = bytearray([(PciType.CONSECUTIVE_FRAME << 4) | (sn & 0x0F)])
    frame.extend(data)
    return _finish(frame, padding)


def encode_flow_control(flow_status, block_size, st_min, padding=FRAME_PADDING):
    """Build a flow control frame; ``st_min`` is given in milliseconds."""
    frame = bytearray(
        [
            (PciType.FLOW_CONTROL << 4) | (flow_status & 0x0F),
            block_size & 0xFF,
            ms_to_st_min(st_min),
        ]
    )
    return _finish(frame, padding)