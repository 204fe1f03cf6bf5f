import struct

import pytest

from serialflasher import slip
from serialflasher.errors import InvalidResponseError, LoaderFailError, LoaderTimeoutError
from serialflasher.port import Port
from serialflasher.protocol import Command, CommandBuilder
from serialflasher.uart_transport import UartTransport


class FakePort(Port):
    def __init__(self, rx=b"", timeouts=0, fail=False):
        super().__init__(sleep=lambda s: self.delays.append(s))
        self.delays = []
        self.tx = bytearray()
        self.rx = bytearray(rx)
        self.timeouts = timeouts
        self.fail = fail
        self.messages = []

    def write(self, data, timeout):
        self.tx += data

    def read(self, size, timeout):
        if self.fail:
            raise LoaderFailError("broken")
        if self.timeouts > 0:
            self.timeouts -= 1
            raise LoaderTimeoutError("no data")
        if len(self.rx) < size:
            raise LoaderTimeoutError("no data")
        out = bytes(self.rx[:size])
        del self.rx[:size]
        return out

    def set_boot_pin(self, level):
        pass

    def set_reset_pin(self, level):
        pass

    def change_transmission_rate(self, rate):
        pass

    def debug_print(self, message):
        self.messages.append(message)


def frame(command, value=0, failed=0, error=0, direction=1):
    raw = struct.pack("<BBHIBB", direction, int(command), 2, value, failed, error)
    return b"\xc0" + slip.encode(raw) + b"\xc0"


def md5_frame(command, digest):
    raw = struct.pack("<BBHI32sBB", 1, int(command), 34, 0, digest, 0, 0)
    return b"\xc0" + slip.encode(raw) + b"\xc0"


def test_read_reg_returns_value_and_frames_request():
    builder = CommandBuilder()
    packet = builder.read_reg(0x40001000)
    port = FakePort(frame(Command.READ_REG, 0x00F01D83))
    transport = UartTransport(port, builder)
    assert transport.send_command(packet) == 0x00F01D83
    assert bytes(port.tx) == b"\xc0" + slip.encode(packet.to_bytes()) + b"\xc0"


def test_value_with_escaped_bytes_is_decoded():
    port = FakePort(frame(Command.READ_REG, 0xC0DBC0DB))
    transport = UartTransport(port)
    assert transport.send_command(transport.builder.read_reg(0)) == 0xC0DBC0DB


def test_replies_to_other_commands_are_skipped():
    rx = frame(Command.SYNC, 1) + frame(Command.READ_REG, 5, direction=0) + frame(
        Command.READ_REG, 7
    )
    port = FakePort(rx)
    transport = UartTransport(port)
    assert transport.send_command(transport.builder.read_reg(0)) == 7
    assert port.rx == b""


def test_failed_reply_raises_with_error_code():
    port = FakePort(frame(Command.WRITE_REG, failed=1, error=0x07))
    transport = UartTransport(port)
    with pytest.raises(InvalidResponseError) as info:
        transport.send_command(transport.builder.write_reg(1, 2, 0xFFFFFFFF, 0))
    assert info.value.error_code == 0x07
    assert port.messages == ["Error: INVALID_CRC"]


def test_data_packet_is_sent_with_payload():
    builder = CommandBuilder()
    packet = builder.flash_data(b"\xc0\x01")
    port = FakePort(frame(Command.FLASH_DATA))
    UartTransport(port, builder).send_command(packet)
    assert bytes(port.tx).endswith(slip.encode(b"\xc0\x01") + b"\xc0")


def test_md5_reply_returns_digest():
    digest = b"0123456789abcdef0123456789abcdef"
    port = FakePort(md5_frame(Command.SPI_FLASH_MD5, digest))
    transport = UartTransport(port)
    assert transport.send_command_md5(transport.builder.spi_flash_md5(0, 4096)) == digest


def test_initialize_connection_retries_after_timeout():
    port = FakePort(frame(Command.SYNC), timeouts=1)
    transport = UartTransport(port)
    transport.initialize_connection(trials=3, sync_timeout=100)
    sync_bytes = b"\xc0" + slip.encode(transport.builder.sync().to_bytes()) + b"\xc0"
    assert bytes(port.tx) == sync_bytes * 2
    assert port.delays == [0.1]


def test_initialize_connection_gives_up_after_trials():
    port = FakePort()
    transport = UartTransport(port)
    with pytest.raises(LoaderTimeoutError):
        transport.initialize_connection(trials=3, sync_timeout=100)
    sync_bytes = b"\xc0" + slip.encode(transport.builder.sync().to_bytes()) + b"\xc0"
    assert bytes(port.tx) == sync_bytes * 3
    assert port.delays == [0.1, 0.1]


def test_initialize_connection_does_not_retry_other_errors():
    port = FakePort(fail=True)
    transport = UartTransport(port)
    with pytest.raises(LoaderFailError):
        transport.initialize_connection(trials=5, sync_timeout=100)
    assert port.delays == []