"""ISO-TP (ISO 15765-2) link: segmentation, reassembly and flow control over CAN frames."""

from __future__ import annotations

import logging

from .isotp_frames import (
    CONSECUTIVE_FRAME_DATA,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_RESPONSE_TIMEOUT,
    DEFAULT_ST_MIN,
    FIRST_FRAME_DATA,
    FRAME_PADDING,
    INVALID_BS,
    MAX_WFT_NUMBER,
    SINGLE_FRAME_MAX_DATA,
    CAN_FRAME_SIZE,
    FlowStatus,
    IsoTpError,
    IsoTpInProgressError,
    IsoTpLengthError,
    IsoTpOverflowError,
    IsoTpWrongSequenceError,
    PciType,
    ProtocolResult,
    ReceiveStatus,
    SendStatus,
    encode_consecutive_frame,
    encode_first_frame,
    encode_flow_control,
    encode_single_frame,
    st_min_to_ms,
)
from .uds import ISOTP_MTU
from .util import millis, time_after

_U32_MASK = 0xFFFFFFFF

_log = logging.getLogger(__name__)

# Failures a CAN send callback may raise.
_SEND_FAILURES = (IsoTpError, OSError)


class IsoTpLink:
    """One ISO-TP link bound to a CAN send callback and a millisecond clock.

    ``send_can(arbitration_id, frame)`` puts one CAN frame on the bus and raises
    :class:`IsoTpError` or :class:`OSError` if it cannot.
    """

    def __init__(
        self,
        send_id,
        send_can,
        clock=millis,
        send_buf_size=ISOTP_MTU,
        recv_buf_size=ISOTP_MTU,
        debug=None,
    ):
        self.send_arbitration_id = send_id
        self._send_can = send_can
        self._clock = clock
        self._debug = debug if debug is not None else _log.debug

        self.send_buf_size = send_buf_size
        self.send_buffer = b""
        self.send_size = 0
        self.send_offset = 0
        self.send_sn = 0
        self.send_bs_remain = 0
        self.send_st_min = 0
        self.send_wtf_count = 0
        self.send_timer_st = 0
        self.send_timer_bs = 0
        self.send_protocol_result = ProtocolResult.OK
        self.send_status = SendStatus.IDLE

        self.receive_buf_size = recv_buf_size
        self.receive_buffer = bytearray(recv_buf_size)
        self.receive_size = 0
        self.receive_offset = 0
        self.receive_sn = 0
        self.receive_bs_count = 0
        self.receive_timer_cr = 0
        self.receive_protocol_result = ProtocolResult.OK
        self.receive_status = ReceiveStatus.IDLE

    # ------------------------------------------------------------------ helpers

    def _deadline(self, delay):
        return (self._clock() + delay) & _U32_MASK

    def _send_flow_control(self, flow_status, block_size, st_min_ms):
        frame = encode_flow_control(flow_status, block_size, st_min_ms, FRAME_PADDING)
        try:
            self._send_can(self.send_arbitration_id, frame)
        except _SEND_FAILURES as exc:
            self._debug(f"Failed to send flow control frame: {exc}")

    def _send_consecutive_frame(self):
        chunk = self.send_buffer[
            self.send_offset : self.send_offset + CONSECUTIVE_FRAME_DATA
        ]
        frame = encode_consecutive_frame(self.send_sn, chunk, FRAME_PADDING)
        self._send_can(self.send_arbitration_id, frame)
        self.send_offset += len(chunk)
        self.send_sn = (self.send_sn + 1) & 0x0F

    def _receive_single_frame(self, frame, length):
        sf_dl = frame[0] & 0x0F
        if sf_dl == 0 or sf_dl > length - 1:
            self._debug("Single-frame length too small.")
            raise IsoTpLengthError("invalid single frame length")
        self.receive_buffer[:sf_dl] = frame[1 : 1 + sf_dl]
        self.receive_size = sf_dl

    def _receive_first_frame(self, frame, length):
        if length != CAN_FRAME_SIZE:
            self._debug("First frame should be 8 bytes in length.")
            raise IsoTpLengthError("first frame must be 8 bytes")
        payload_length = ((frame[0] & 0x0F) << 8) + frame[1]
        if payload_length <= SINGLE_FRAME_MAX_DATA:
            self._debug("Should not use multiple frame transmission.")
            raise IsoTpLengthError("multi-frame message too short")
        if payload_length > self.receive_buf_size:
            self._debug("Multi-frame response too large for receiving buffer.")
            raise IsoTpOverflowError("multi-frame message too large")
        self.receive_buffer[:FIRST_FRAME_DATA] = frame[2 : 2 + FIRST_FRAME_DATA]
        self.receive_size = payload_length
        self.receive_offset = FIRST_FRAME_DATA
        self.receive_sn = 1

    def _receive_consecutive_frame(self, frame, length):
        if self.receive_sn != frame[0] & 0x0F:
            raise IsoTpWrongSequenceError("unexpected sequence number")
        remaining = min(self.receive_size - self.receive_offset, CONSECUTIVE_FRAME_DATA)
        if remaining > length - 1:
            self._debug("Consecutive frame too short.")
            raise IsoTpLengthError("consecutive frame too short")
        start = self.receive_offset
        self.receive_buffer[start : start + remaining] = frame[1 : 1 + remaining]
        self.receive_offset += remaining
        self.receive_sn = (self.receive_sn + 1) & 0x0F

    def _update_receive_protocol_result(self):
        if self.receive_status == ReceiveStatus.IN_PROGRESS:
            self.receive_protocol_result = ProtocolResult.UNEXP_PDU
        else:
            self.receive_protocol_result = ProtocolResult.OK

    # ------------------------------------------------------------------ public

    def send(self, payload):
        """Send ``payload`` to the link's own arbitration id."""
        self.send_with_id(self.send_arbitration_id, payload)

    def send_with_id(self, arbitration_id, payload):
        """Start sending ``payload``; the first frame goes to ``arbitration_id``.

        Single frames go out at once; further frames of a multi-frame message
        are sent by :meth:`poll`.
        """
        payload = bytes(payload)
        size = len(payload)
        if size > self.send_buf_size:
            self._debug(
                f"Attempted to send {size} bytes; max size is {self.send_buf_size}!"
            )
            raise IsoTpOverflowError(
                f"message of {size} bytes exceeds send buffer of {self.send_buf_size}"
            )
        if self.send_status == SendStatus.IN_PROGRESS:
            self._debug("Abort previous message, transmission in progress.")
            raise IsoTpInProgressError("transmission in progress")

        self.send_buffer = payload
        self.send_size = size
        self.send_offset = 0

        if size <= SINGLE_FRAME_MAX_DATA:
            self._send_can(arbitration_id, encode_single_frame(payload, FRAME_PADDING))
            return

        self._send_can(
            arbitration_id, encode_first_frame(size, payload[:FIRST_FRAME_DATA])
        )
        self.send_offset = FIRST_FRAME_DATA
        self.send_sn = 1
        self.send_bs_remain = 0
        self.send_st_min = 0
        self.send_wtf_count = 0
        self.send_timer_st = self._clock()
        self.send_timer_bs = self._deadline(DEFAULT_RESPONSE_TIMEOUT)
        self.send_protocol_result = ProtocolResult.OK
        self.send_status = SendStatus.IN_PROGRESS

    def on_can_message(self, data):
        """Feed one received CAN frame into the link."""
        length = len(data)
        if length < 2 or length > CAN_FRAME_SIZE:
            return
        frame = bytes(data) + bytes(CAN_FRAME_SIZE - length)
        kind = frame[0] >> 4

        if kind == PciType.SINGLE:
            self._update_receive_protocol_result()
            try:
                self._receive_single_frame(frame, length)
            except IsoTpLengthError:
                return
            self.receive_status = ReceiveStatus.FULL

        elif kind == PciType.FIRST_FRAME:
            self._update_receive_protocol_result()
            try:
                self._receive_first_frame(frame, length)
            except IsoTpOverflowError:
                self.receive_protocol_result = ProtocolResult.BUFFER_OVFLW
                self.receive_status = ReceiveStatus.IDLE
                self._send_flow_control(FlowStatus.OVERFLOW, 0, 0)
                return
            except IsoTpLengthError:
                return
            self.receive_status = ReceiveStatus.IN_PROGRESS
            self.receive_bs_count = DEFAULT_BLOCK_SIZE
            self._send_flow_control(
                FlowStatus.CONTINUE, self.receive_bs_count, DEFAULT_ST_MIN
            )
            self.receive_timer_cr = self._deadline(DEFAULT_RESPONSE_TIMEOUT)

        elif kind == PciType.CONSECUTIVE_FRAME:
            if self.receive_status != ReceiveStatus.IN_PROGRESS:
                self.receive_protocol_result = ProtocolResult.UNEXP_PDU
                return
            try:
                self._receive_consecutive_frame(frame, length)
            except IsoTpWrongSequenceError:
                self.receive_protocol_result = ProtocolResult.WRONG_SN
                self.receive_status = ReceiveStatus.IDLE
                return
            except IsoTpLengthError:
                return
            self.receive_timer_cr = self._deadline(DEFAULT_RESPONSE_TIMEOUT)
            if self.receive_offset >= self.receive_size:
                self.receive_status = ReceiveStatus.FULL
            else:
                self.receive_bs_count = (self.receive_bs_count - 1) & 0xFF
                if self.receive_bs_count == 0:
                    self.receive_bs_count = DEFAULT_BLOCK_SIZE
                    self._send_flow_control(
                        FlowStatus.CONTINUE, self.receive_bs_count, DEFAULT_ST_MIN
                    )

        elif kind == PciType.FLOW_CONTROL:
            if self.send_status != SendStatus.IN_PROGRESS:
                return
            if length < 3:
                self._debug("Flow control frame too short.")
                return
            self.send_timer_bs = self._deadline(DEFAULT_RESPONSE_TIMEOUT)
            flow_status = frame[0] & 0x0F
            if flow_status == FlowStatus.OVERFLOW:
                self.send_protocol_result = ProtocolResult.BUFFER_OVFLW
                self.send_status = SendStatus.ERROR
            elif flow_status == FlowStatus.WAIT:
                self.send_wtf_count += 1
                if self.send_wtf_count > MAX_WFT_NUMBER:
                    self.send_protocol_result = ProtocolResult.WFT_OVRN
                    self.send_status = SendStatus.ERROR
            elif flow_status == FlowStatus.CONTINUE:
                block_size = frame[1]
                self.send_bs_remain = INVALID_BS if block_size == 0 else block_size
                self.send_st_min = st_min_to_ms(frame[2])
                self.send_wtf_count = 0

    def receive(self, max_size=None):
        """Return a completely received message and free the link, or None if none is ready.

        At most ``max_size`` bytes are returned when it is given.
        """
        if self.receive_status != ReceiveStatus.FULL:
            return None
        size = self.receive_size if max_size is None else min(self.receive_size, max_size)
        payload = bytes(self.receive_buffer[:size])
        self.receive_status = ReceiveStatus.IDLE
        return payload

    def poll(self):
        """Send pending consecutive frames and check timeouts; call periodically."""
        if self.send_status == SendStatus.IN_PROGRESS:
            may_send = self.send_bs_remain == INVALID_BS or self.send_bs_remain > 0
            interval_ok = self.send_st_min == 0 or time_after(
                self._clock(), self.send_timer_st
            )
            if may_send and interval_ok:
                try:
                    self._send_consecutive_frame()
                except _SEND_FAILURES:
                    self.send_status = SendStatus.ERROR
                else:
                    if self.send_bs_remain != INVALID_BS:
                        self.send_bs_remain -= 1
                    self.send_timer_bs = self._deadline(DEFAULT_RESPONSE_TIMEOUT)
                    self.send_timer_st = self._deadline(self.send_st_min)
                    if self.send_offset >= self.send_size:
                        self.send_status = SendStatus.IDLE

            if time_after(self._clock(), self.send_timer_bs):
                self.send_protocol_result = ProtocolResult.TIMEOUT_BS
                self.send_status = SendStatus.ERROR

        if self.receive_status == ReceiveStatus.IN_PROGRESS:
            if time_after(self._clock(), self.receive_timer_cr):
                self.receive_protocol_result = ProtocolResult.TIMEOUT_CR
                self.receive_status = ReceiveStatus.IDLE