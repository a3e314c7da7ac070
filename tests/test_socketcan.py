import struct
from unittest import mock

import pytest

from iso14229.isotp import IsoTpLink
from iso14229.isotp_frames import IsoTpError, IsoTpLengthError
from iso14229.isotp_transport import Sdu, TargetAddressType, TpStatus
from iso14229.socketcan import AF_CAN, CAN_FRAME, CAN_RAW, SocketCanIsoTpTransport, setup_socketcan
from iso14229.util import ManualClock

SRC = 0x7E0
TGT = 0x7E8
SRC_FUNC = 0x7DF
TGT_FUNC = 0x7DF


class FakeCanSocket:
    def __init__(self):
        self.incoming = []
        self.sent = []
        self.closed = False
        self.short_write = False

    def recv(self, size):
        if not self.incoming:
            raise BlockingIOError
        return self.incoming.pop(0)

    def send(self, data):
        self.sent.append(bytes(data))
        return len(data) - 1 if self.short_write else len(data)

    def close(self):
        self.closed = True


def can_frame(can_id, data):
    return struct.pack("=IB3x8s", can_id, len(data), bytes(data))


def unpack(raw):
    can_id, dlc, data = struct.unpack("=IB3x8s", raw)
    return can_id, data[:dlc]


@pytest.fixture
def sock():
    return FakeCanSocket()


@pytest.fixture
def tp(sock):
    return SocketCanIsoTpTransport(
        "vcan0", SRC, TGT, SRC_FUNC, TGT_FUNC, tag="client", clock=ManualClock(), sock=sock
    )


def test_single_frame_wire_bytes(tp, sock):
    assert tp.send(b"\x10\x02") == 2
    can_id, data = unpack(sock.sent[0])
    assert can_id == TGT
    assert data == b"\x02\x10\x02\x00\x00\x00\x00\x00"


def test_receive_physical_single_frame(tp, sock):
    sock.incoming.append(can_frame(SRC, b"\x02\x10\x02"))
    assert tp.poll() == TpStatus.IDLE
    data, info = tp.peek()
    assert data == b"\x10\x02"
    assert info.ta_type == TargetAddressType.PHYSICAL
    assert (info.ta, info.sa) == (SRC, TGT)
    assert tp.peek()[0] == b"\x10\x02"
    tp.ack_recv()
    assert tp.peek() is None


def test_receive_functional_single_frame(tp, sock):
    sock.incoming.append(can_frame(SRC_FUNC, b"\x02\x3e\x00"))
    tp.poll()
    data, info = tp.peek()
    assert data == b"\x3e\x00"
    assert info.ta_type == TargetAddressType.FUNCTIONAL
    assert (info.ta, info.sa) == (SRC_FUNC, TGT_FUNC)
    tp.ack_recv()
    assert tp.peek() is None


def test_frames_for_other_ids_are_ignored(tp, sock):
    sock.incoming.append(can_frame(0x123, b"\x02\x10\x02"))
    tp.poll()
    assert tp.peek() is None
    assert sock.incoming == []


def test_functional_frame_dropped_while_physical_receive_in_progress(tp, sock):
    sock.incoming.append(can_frame(SRC, b"\x10\x14\x01\x02\x03\x04\x05\x06"))
    sock.incoming.append(can_frame(SRC_FUNC, b"\x02\x3e\x00"))
    tp.poll()
    assert tp.peek() is None
    can_id, data = unpack(sock.sent[0])
    assert can_id == TGT
    assert data[0] >> 4 == 3


def test_functional_send_too_long_raises(tp, sock):
    with pytest.raises(IsoTpLengthError):
        tp.send(bytes(8), Sdu(TargetAddressType.FUNCTIONAL))
    assert sock.sent == []


def test_functional_send_uses_functional_id(tp, sock):
    assert tp.send(b"\x3e\x00", Sdu(TargetAddressType.FUNCTIONAL)) == 2
    can_id, data = unpack(sock.sent[0])
    assert can_id == TGT_FUNC
    assert data[:3] == b"\x02\x3e\x00"


def test_multi_frame_send_round_trip(tp, sock):
    payload = bytes(range(20))
    tp.send(payload)
    assert tp.poll() == TpStatus.SEND_IN_PROGRESS
    sock.incoming.append(can_frame(SRC, b"\x30\x00\x00"))
    for _ in range(5):
        if tp.poll() == TpStatus.IDLE:
            break
    assert tp.poll() == TpStatus.IDLE
    receiver = IsoTpLink(0x123, lambda arbitration_id, frame: None, ManualClock())
    for raw in sock.sent:
        can_id, data = unpack(raw)
        assert can_id == TGT
        receiver.on_can_message(data)
    assert receiver.receive() == payload


def test_short_write_raises(tp, sock):
    sock.short_write = True
    with pytest.raises(IsoTpError):
        tp.send(b"\x10\x02")


def test_send_trace_format(tp, capsys):
    tp.send(b"\x3e\x00")
    out = capsys.readouterr().out
    assert "client sends, 0x7e8 (phys), 3e 00" in out


def test_context_manager_closes_socket(sock):
    with SocketCanIsoTpTransport(
        "vcan0", SRC, TGT, SRC_FUNC, TGT_FUNC, clock=ManualClock(), sock=sock
    ) as transport:
        assert transport.sock is sock
    assert sock.closed is True


def test_setup_socketcan_binds_interface():
    fake = mock.MagicMock()
    with mock.patch("socket.socket", return_value=fake) as factory:
        result = setup_socketcan("vcan0")
    assert result is fake
    assert factory.call_args[0][0] == AF_CAN
    assert factory.call_args[0][2] == CAN_RAW
    fake.bind.assert_called_once_with(("vcan0",))
    fake.setblocking.assert_called_once_with(False)


def test_sent_frames_have_can_frame_size(tp, sock):
    assert tp.send(b"\x10\x02") == 2
    assert len(sock.sent[0]) == CAN_FRAME.size == 16