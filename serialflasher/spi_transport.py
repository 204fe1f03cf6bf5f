"""Command exchange with the ROM loader over the SPI slave protocol."""

from __future__ import annotations

from contextlib import contextmanager
from enum import IntEnum

from .errors import InvalidParamError, InvalidResponseError, describe_error
from .protocol import READ_DIRECTION, RESPONSE_SIZE, CommandBuilder, parse_response

_STATUS_TOGGLE_BIT = 0x01
_STATUS_INIT_BIT = 0x02
_STATUS_BUF_LENGTH_POS = 2

_STATE_INIT = _STATUS_TOGGLE_BIT | _STATUS_INIT_BIT
_STATE_FIRST_PACKET = _STATUS_INIT_BIT

_WAIT_DELAY_MS = 100


class TransactionCommand(IntEnum):
    WRBUF = 0x01
    RDBUF = 0x02
    WRDMA = 0x03
    RDDMA = 0x04
    SEG_DONE = 0x05
    ENQPI = 0x06
    WR_DONE = 0x07
    CMD8 = 0x08
    CMD9 = 0x09
    CMDA = 0x0A
    EXQPI = 0xDD


class SlaveRegister(IntEnum):
    VER = 0
    RXSTA = 4
    TXSTA = 8
    CMD = 12


class SlaveCommand(IntEnum):
    IDLE = 0xAA
    READY = 0xA5
    REBOOT = 0xFE
    COMM_REINIT = 0x5A
    DONE = 0x55


def _preamble(command, address=0):
    return bytes([int(command), int(address), 0])


class SpiTransport:
    """Sends command packets through the slave's DMA buffers and reads the replies."""

    def __init__(self, port, builder=None):
        self.port = port
        self.builder = builder if builder is not None else CommandBuilder()
        self._sequence = {SlaveRegister.RXSTA: 0, SlaveRegister.TXSTA: 0}

    @contextmanager
    def _selected(self):
        self.port.set_cs(0)
        try:
            yield
        finally:
            self.port.set_cs(1)

    def _write(self, data):
        self.port.write(data, self.port.remaining_time())

    def _read(self, size):
        return self.port.read(size, self.port.remaining_time())

    def _read_slave_reg(self, address, size):
        with self._selected():
            self._write(_preamble(TransactionCommand.RDBUF, address))
            return self._read(size)

    def _write_slave_reg(self, address, data):
        with self._selected():
            self._write(_preamble(TransactionCommand.WRBUF, address))
            self._write(data)

    def _wait_for_slave(self, register):
        """Poll a status register until the slave has a buffer; return its size."""
        while True:
            status = int.from_bytes(self._read_slave_reg(register, 4), "little")
            state = status & (_STATUS_TOGGLE_BIT | _STATUS_INIT_BIT)
            if state == _STATE_INIT:
                self._write_slave_reg(register, bytes(4))
            elif state == _STATE_FIRST_PACKET:
                self._sequence[register] = state & _STATUS_TOGGLE_BIT
                return status >> _STATUS_BUF_LENGTH_POS
            else:
                new_seq = state & _STATUS_TOGGLE_BIT
                if new_seq != self._sequence[register]:
                    self._sequence[register] = new_seq
                    return status >> _STATUS_BUF_LENGTH_POS

    def _wait_for_flag(self, expected, message, trials):
        for _ in range(trials):
            flag = self._read_slave_reg(SlaveRegister.CMD, 1)[0]
            if flag == expected:
                return
            self.port.debug_print(message)
            self.port.delay_ms(_WAIT_DELAY_MS)

    def initialize_connection(self, trials, sync_timeout):
        """Hand the slave the READY flag once it is idle.

        sync_timeout is accepted for a common interface with the UART link and is
        not used by the SPI handshake.
        """
        self._wait_for_flag(SlaveCommand.IDLE, "Waiting for Slave to be idle...\n", trials)
        self._write_slave_reg(SlaveRegister.CMD, bytes([SlaveCommand.READY]))
        self._wait_for_flag(SlaveCommand.READY, "Waiting for Slave to be ready...\n", trials)

    def send_command(self, packet):
        """Send a packet and return the value field of the loader's reply."""
        buf_size = self._wait_for_slave(SlaveRegister.RXSTA)
        raw = packet.to_bytes()
        if len(raw) > buf_size:
            raise InvalidParamError(
                f"command of {len(raw)} bytes does not fit the slave buffer of {buf_size}"
            )
        command_part = raw[: len(raw) - len(packet.data)]

        with self._selected():
            self._write(_preamble(TransactionCommand.WRDMA))
            self._write(command_part)
            if packet.data:
                self._write(packet.data)

        with self._selected():
            self._write(_preamble(TransactionCommand.WR_DONE))

        return self._check_response(packet.command)

    def _check_response(self, command):
        buf_size = self._wait_for_slave(SlaveRegister.TXSTA)
        if RESPONSE_SIZE > buf_size:
            raise InvalidParamError(
                f"response of {RESPONSE_SIZE} bytes does not fit the slave buffer of {buf_size}"
            )

        with self._selected():
            self._write(_preamble(TransactionCommand.RDDMA))
            raw = self._read(RESPONSE_SIZE)

        with self._selected():
            self._write(_preamble(TransactionCommand.CMD8))

        response = parse_response(raw, False)
        if response.direction != READ_DIRECTION or response.command != int(command):
            raise InvalidResponseError("unexpected reply from target")
        if response.failed:
            self.port.debug_print(f"Error: {describe_error(response.error)}")
            raise InvalidResponseError("command failed", error_code=response.error)
        return response.value