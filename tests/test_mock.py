import pytest

from iso14229.isotp_transport import Sdu, TargetAddressType, TpStatus
from iso14229.mock import (
    DEFAULT_CLIENT_ARGS,
    DEFAULT_SERVER_ARGS,
    MAX_PENDING_MESSAGES,
    MAX_TRANSPORTS,
    MockNetwork,
)
from iso14229.util import ManualClock


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def network(clock):
    net = MockNetwork(clock)
    yield net
    net.reset()


@pytest.fixture
def pair(network):
    server = network.new_transport("server", DEFAULT_SERVER_ARGS)
    client = network.new_transport("client", DEFAULT_CLIENT_ARGS)
    return server, client


def test_send_recv(network, clock, pair):
    server, client = pair
    msg = bytes([0x10, 0x02])
    assert client.send(msg) == len(msg)
    network.poll()
    assert server.peek() is None
    clock.advance(1)
    network.poll()
    data, info = server.peek()
    assert data == msg
    assert info.ta_type == TargetAddressType.PHYSICAL


def test_send_recv_functional(network, clock, pair):
    server, client = pair
    msg = bytes([0x10, 0x02])
    client.send(msg, Sdu(ta_type=TargetAddressType.FUNCTIONAL))
    clock.advance(1)
    assert client.poll() == TpStatus.IDLE
    data, info = server.peek()
    assert data == msg
    assert info.ta_type == TargetAddressType.FUNCTIONAL
    assert info.ta == 0x7DF
    assert info.sa == DEFAULT_CLIENT_ARGS.sa_func


def test_physical_addresses(network, clock, pair):
    server, client = pair
    client.send(b"\x3e\x00")
    clock.advance(1)
    network.poll()
    _, info = server.peek()
    assert info.ta == 0x7E0
    assert info.sa == 0x7E8


def test_response_reaches_client(network, clock, pair):
    server, client = pair
    server.send(b"\x7f\x10\x11")
    clock.advance(1)
    network.poll()
    assert client.peek()[0] == b"\x7f\x10\x11"
    assert server.peek() is None


def test_ack_recv_clears(network, clock, pair):
    server, client = pair
    client.send(b"\x10\x02")
    clock.advance(1)
    network.poll()
    server.ack_recv()
    assert server.peek() is None


def test_full_receive_buffer_drops_message(network, clock, pair, capsys):
    server, client = pair
    client.send(b"\x10\x01")
    client.send(b"\x10\x02")
    clock.advance(1)
    network.poll()
    assert server.peek()[0] == b"\x10\x01"
    assert "Message dropped" in capsys.readouterr().err
    server.ack_recv()
    network.poll()
    assert server.peek() is None


def test_send_delay(network, clock, pair):
    server, client = pair
    client.send_tx_delay_ms = 10
    client.send(b"\x10\x02")
    clock.advance(10)
    network.poll()
    assert server.peek() is None
    clock.advance(1)
    network.poll()
    assert server.peek()[0] == b"\x10\x02"


def test_address_extension_is_carried(network, clock, pair):
    server, client = pair
    client.send(b"\x10\x02", Sdu(ae=5))
    clock.advance(1)
    network.poll()
    assert server.peek()[1].ae == 5


def test_queue_limit(network, pair):
    _, client = pair
    for _ in range(MAX_PENDING_MESSAGES):
        client.send(b"\x3e\x00")
    with pytest.raises(RuntimeError):
        client.send(b"\x3e\x00")


def test_message_too_large(network, pair):
    _, client = pair
    with pytest.raises(ValueError):
        client.send(bytes(4096))


def test_default_name(network):
    transport = network.new_transport(None, DEFAULT_CLIENT_ARGS)
    assert transport.name == "TPMock0"


def test_transport_limit(network):
    for _ in range(MAX_TRANSPORTS):
        network.new_transport(None, DEFAULT_CLIENT_ARGS)
    with pytest.raises(RuntimeError):
        network.new_transport(None, DEFAULT_CLIENT_ARGS)


def test_close_detaches(network, clock, pair):
    server, client = pair
    server.close()
    assert network.transports == (client,)
    client.send(b"\x10\x02")
    clock.advance(1)
    network.poll()
    assert server.peek() is None
    with pytest.raises(ValueError):
        network.remove(server)


def test_log_to_file(network, clock, pair, tmp_path):
    _, client = pair
    path = tmp_path / "log.txt"
    network.log_to_file(path)
    client.send(b"\x10\x02")
    clock.advance(1)
    network.poll()
    network.reset()
    assert path.read_text().splitlines() == [
        "000000, client sends, 0x7e0 (phys), 10 02 ",
        "000001, network sends, 0x7e0 (phys), 10 02 ",
    ]


def test_log_to_file_twice_raises(network, tmp_path):
    network.log_to_file(tmp_path / "a.txt")
    with pytest.raises(RuntimeError):
        network.log_to_file(tmp_path / "b.txt")


def test_log_to_stdout(network, pair, capsys):
    _, client = pair
    network.log_to_stdout()
    client.send(b"\x10\x02", Sdu(ta_type=TargetAddressType.FUNCTIONAL))
    assert capsys.readouterr().out == "000000, client sends, 0x7df (func), 10 02 \n"


def test_reset_clears_transports(network, pair):
    network.reset()
    assert network.transports == ()