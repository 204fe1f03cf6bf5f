"""Command packets and responses of the ROM loader protocol."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from .errors import InvalidResponseError

READ_DIRECTION = 1
WRITE_DIRECTION = 0

MD5_SIZE = 32

_HEADER = struct.Struct("<BBHI")
HEADER_SIZE = _HEADER.size

_RESPONSE = struct.Struct("<BBHIBB")
_MD5_RESPONSE = struct.Struct(f"<BBHI{MD5_SIZE}sBB")
RESPONSE_SIZE = _RESPONSE.size
MD5_RESPONSE_SIZE = _MD5_RESPONSE.size

_SYNC_SEQUENCE = bytes([0x07, 0x07, 0x12, 0x20]) + bytes([0x55]) * 32


class Command(IntEnum):
    FLASH_BEGIN = 0x02
    FLASH_DATA = 0x03
    FLASH_END = 0x04
    MEM_BEGIN = 0x05
    MEM_END = 0x06
    MEM_DATA = 0x07
    SYNC = 0x08
    WRITE_REG = 0x09
    READ_REG = 0x0A
    SPI_SET_PARAMS = 0x0B
    SPI_ATTACH = 0x0D
    CHANGE_BAUDRATE = 0x0F
    FLASH_DEFL_BEGIN = 0x10
    FLASH_DEFL_DATA = 0x11
    FLASH_DEFL_END = 0x12
    SPI_FLASH_MD5 = 0x13


class ErrorCode(IntEnum):
    RESPONSE_OK = 0x00
    INVALID_COMMAND = 0x05
    COMMAND_FAILED = 0x06
    INVALID_CRC = 0x07
    FLASH_WRITE_ERR = 0x08
    FLASH_READ_ERR = 0x09
    READ_LENGTH_ERR = 0x0A
    DEFLATE_ERROR = 0x0B


def compute_checksum(data):
    """XOR checksum of a data block, seeded with 0xEF."""
    checksum = 0xEF
    for byte in data:
        checksum ^= byte
    return checksum


def _words(*values):
    return struct.pack(f"<{len(values)}I", *values)


@dataclass(frozen=True)
class CommandPacket:
    """A command header with its fixed fields and optional trailing data."""

    command: Command
    body: bytes = b""
    data: bytes = b""
    checksum: int = 0
    direction: int = WRITE_DIRECTION

    @property
    def size(self):
        return len(self.body) + len(self.data)

    def to_bytes(self):
        header = _HEADER.pack(self.direction, int(self.command), self.size, self.checksum)
        return header + self.body + self.data


@dataclass(frozen=True)
class Response:
    """A reply sent by the ROM loader."""

    direction: int
    command: int
    size: int
    value: int
    failed: bool
    error: int
    md5: bytes | None = None


def parse_response(raw, with_md5):
    """Decode a raw reply; with_md5 selects the longer SPI_FLASH_MD5 layout."""
    layout = _MD5_RESPONSE if with_md5 else _RESPONSE
    raw = bytes(raw)
    if len(raw) != layout.size:
        raise InvalidResponseError(
            f"response of {len(raw)} bytes, expected {layout.size}"
        )
    if with_md5:
        direction, command, size, value, md5, failed, error = layout.unpack(raw)
    else:
        direction, command, size, value, failed, error = layout.unpack(raw)
        md5 = None
    return Response(direction, command, size, value, bool(failed), error, md5)


class CommandBuilder:
    """Builds command packets and keeps the data block sequence number."""

    def __init__(self):
        self.sequence_number = 0

    def flash_begin(self, offset, erase_size, block_size, blocks_to_write, encryption):
        body = _words(erase_size, blocks_to_write, block_size, offset, 0)
        if encryption:
            # Chips that take this flag expect the command without the trailing field.
            body = body[:-4]
        self.sequence_number = 0
        return CommandPacket(Command.FLASH_BEGIN, body)

    def _data_packet(self, command, data):
        data = bytes(data)
        body = _words(len(data), self.sequence_number, 0, 0)
        self.sequence_number += 1
        return CommandPacket(command, body, data, compute_checksum(data))

    def flash_data(self, data):
        return self._data_packet(Command.FLASH_DATA, data)

    def flash_end(self, stay_in_loader):
        return CommandPacket(Command.FLASH_END, _words(int(bool(stay_in_loader))))

    def mem_begin(self, offset, size, blocks_to_write, block_size):
        self.sequence_number = 0
        return CommandPacket(
            Command.MEM_BEGIN, _words(size, blocks_to_write, block_size, offset)
        )

    def mem_data(self, data):
        return self._data_packet(Command.MEM_DATA, data)

    def mem_end(self, entrypoint):
        return CommandPacket(Command.MEM_END, _words(int(entrypoint == 0), entrypoint))

    def sync(self):
        return CommandPacket(Command.SYNC, _SYNC_SEQUENCE)

    def write_reg(self, address, value, mask, delay_us):
        return CommandPacket(Command.WRITE_REG, _words(address, value, mask, delay_us))

    def read_reg(self, address):
        return CommandPacket(Command.READ_REG, _words(address))

    def spi_attach(self, config):
        return CommandPacket(Command.SPI_ATTACH, _words(config, 0))

    def change_baudrate(self, baudrate):
        return CommandPacket(Command.CHANGE_BAUDRATE, _words(baudrate, 0))

    def spi_flash_md5(self, address, size):
        return CommandPacket(Command.SPI_FLASH_MD5, _words(address, size, 0, 0))

    def spi_set_params(self, total_size):
        body = _words(0, total_size, 64 * 1024, 4 * 1024, 0x100, 0xFFFF)
        return CommandPacket(Command.SPI_SET_PARAMS, body)