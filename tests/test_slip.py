import pytest

from serialflasher import slip
from serialflasher.errors import InvalidResponseError, LoaderTimeoutError


class FakePort:
    def __init__(self, incoming=b""):
        self.incoming = bytearray(incoming)
        self.written = bytearray()
        self.timeouts = []

    def remaining_time(self):
        return 500

    def write(self, data, timeout):
        self.written += data
        self.timeouts.append(timeout)

    def read(self, size, timeout):
        if len(self.incoming) < size:
            raise LoaderTimeoutError("no data")
        chunk = bytes(self.incoming[:size])
        del self.incoming[:size]
        return chunk


def test_encode_special_bytes():
    assert slip.encode(b"\xc0") == b"\xdb\xdc"
    assert slip.encode(b"\xdb") == b"\xdb\xdd"


def test_encode_plain_unchanged():
    data = b"hello world"
    assert slip.encode(data) == data


def test_encoded_has_no_delimiter():
    data = bytes(range(256)) * 2
    assert 0xC0 not in slip.encode(data)


def test_send_writes_encoded_with_remaining_time():
    port = FakePort()
    slip.send(port, b"a\xc0b\xdbc")
    assert bytes(port.written) == slip.encode(b"a\xc0b\xdbc")
    assert port.timeouts == [500]


def test_send_empty_writes_nothing():
    port = FakePort()
    slip.send(port, b"")
    assert port.written == b""


def test_send_delimiter():
    port = FakePort()
    slip.send_delimiter(port)
    assert bytes(port.written) == b"\xc0"


def test_receive_data_round_trip():
    data = bytes(range(256))
    port = FakePort(slip.encode(data) + b"tail")
    assert slip.receive_data(port, len(data)) == data
    assert bytes(port.incoming) == b"tail"


def test_receive_data_bad_escape():
    port = FakePort(b"\xdb\x01")
    with pytest.raises(InvalidResponseError):
        slip.receive_data(port, 1)


def test_receive_data_timeout_propagates():
    port = FakePort(b"ab")
    with pytest.raises(LoaderTimeoutError):
        slip.receive_data(port, 3)


def test_receive_packet_skips_noise_and_extra_delimiters():
    payload = b"\x01\x0a\xc0\xdb\x00"
    stream = b"junk\xc0\xc0\xc0" + slip.encode(payload) + b"\xc0rest"
    port = FakePort(stream)
    assert slip.receive_packet(port, len(payload)) == payload
    assert bytes(port.incoming) == b"rest"


def test_receive_packet_round_trip_via_send():
    payload = bytes([1, 8, 2, 0, 0xC0, 0xDB, 0, 0, 0, 0])
    out = FakePort()
    slip.send_delimiter(out)
    slip.send(out, payload)
    slip.send_delimiter(out)
    port = FakePort(bytes(out.written))
    assert slip.receive_packet(port, len(payload)) == payload
    assert port.incoming == b""


def test_receive_packet_without_closing_delimiter_times_out():
    port = FakePort(b"\xc0\x01\x02")
    with pytest.raises(LoaderTimeoutError):
        slip.receive_packet(port, 2)