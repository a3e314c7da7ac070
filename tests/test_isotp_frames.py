import pytest

from iso14229.isotp_frames import (
    CAN_FRAME_SIZE,
    FlowStatus,
    IsoTpError,
    IsoTpLengthError,
    PciType,
    encode_consecutive_frame,
    encode_first_frame,
    encode_flow_control,
    encode_single_frame,
    frame_type,
    ms_to_st_min,
    st_min_to_ms,
)


def test_ms_to_st_min_caps_at_0x7f():
    assert ms_to_st_min(200) == 0x7F
    assert ms_to_st_min(10) == 10


@pytest.mark.parametrize("st_min", [0xF1, 0xF5, 0xF9])
def test_st_min_sub_millisecond_rounds_to_one(st_min):
    assert st_min_to_ms(st_min) == 1


def test_st_min_reserved_values_decode_to_zero():
    assert st_min_to_ms(0x80) == 0
    assert st_min_to_ms(0xFA) == 0


@pytest.mark.parametrize("ms", [0, 1, 20, 0x7F])
def test_st_min_round_trip(ms):
    assert st_min_to_ms(ms_to_st_min(ms)) == ms


def test_single_frame_unpadded_bytes():
    payload = bytes([0x10, 0x02])
    frame = encode_single_frame(payload, padding=False)
    assert len(frame) == len(payload) + 1
    assert frame[0] == len(payload)
    assert frame[1:] == payload


def test_single_frame_padded_to_can_size():
    payload = bytes([0x3E, 0x80])
    frame = encode_single_frame(payload)
    assert len(frame) == CAN_FRAME_SIZE
    assert frame[1 : 1 + len(payload)] == payload
    assert frame[1 + len(payload) :] == bytes(CAN_FRAME_SIZE - 1 - len(payload))
    assert frame_type(frame) is PciType.SINGLE


def test_single_frame_too_long():
    with pytest.raises(IsoTpLengthError):
        encode_single_frame(bytes(range(1, 9)))


def test_first_frame_carries_size_and_six_bytes():
    data = bytes(range(1, 9))
    frame = encode_first_frame(4095, data)
    assert len(frame) == CAN_FRAME_SIZE
    assert frame_type(frame) is PciType.FIRST_FRAME
    assert ((frame[0] & 0x0F) << 8) | frame[1] == 4095
    assert frame[2:] == data[:6]


@pytest.mark.parametrize("size", [7, 4096])
def test_first_frame_rejects_bad_size(size):
    with pytest.raises(IsoTpLengthError):
        encode_first_frame(size, bytes(8))


def test_first_frame_rejects_short_data():
    with pytest.raises(IsoTpLengthError):
        encode_first_frame(8, bytes(3))


def test_consecutive_frame_sequence_number_wraps():
    frame = encode_consecutive_frame(17, bytes([1, 2, 3]), padding=False)
    assert frame_type(frame) is PciType.CONSECUTIVE_FRAME
    assert frame[0] & 0x0F == 17 & 0x0F
    assert frame[1:] == bytes([1, 2, 3])


def test_consecutive_frame_too_long():
    with pytest.raises(IsoTpLengthError):
        encode_consecutive_frame(1, bytes(8))


def test_flow_control_fields():
    frame = encode_flow_control(FlowStatus.WAIT, 8, 200, padding=False)
    assert len(frame) == 3
    assert frame_type(frame) is PciType.FLOW_CONTROL
    assert frame[0] & 0x0F == FlowStatus.WAIT
    assert frame[1] == 8
    assert frame[2] == 0x7F


def test_flow_control_padded():
    frame = encode_flow_control(FlowStatus.OVERFLOW, 0, 0)
    assert len(frame) == CAN_FRAME_SIZE
    assert frame[3:] == bytes(5)


def test_frame_type_unknown_and_empty():
    assert frame_type(b"\x40\x00") is None
    with pytest.raises(ValueError):
        frame_type(b"")


def test_length_error_is_isotp_error_with_code():
    with pytest.raises(IsoTpError) as info:
        encode_single_frame(bytes(9))
    assert info.value.code == -7