"""High-level operations on the target's ROM loader: connect, flash, RAM load."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass

from .errors import (
    ImageSizeError,
    InvalidMd5Error,
    InvalidParamError,
    LoaderError,
    LoaderTimeoutError,
    UnsupportedChipError,
    UnsupportedFuncError,
)
from .protocol import MD5_SIZE
from .targets import TargetChip, detect_chip, encryption_in_begin_flash_cmd
from .uart_transport import UartTransport

DEFAULT_TIMEOUT = 1000
DEFAULT_FLASH_TIMEOUT = 3000
LOAD_RAM_TIMEOUT_PER_MB = 2_000_000
MD5_TIMEOUT_PER_MB = 800
ERASE_REGION_TIMEOUT_PER_MB = 10_000

SPI_FLASH_READ_ID = 0x9F

_SPI_USR_CMD = 1 << 31
_SPI_USR_MISO = 1 << 28
_SPI_USR_MOSI = 1 << 27
_SPI_CMD_USR = 1 << 18
_CMD_LEN_SHIFT = 28
_SPI_CMD_POLL_TRIALS = 10

_MIN_FLASH_SIZE_ID = 0x12
_MAX_FLASH_SIZE_ID = 0x18

_PADDING_BYTE = 0xFF


def timeout_per_mb(size_bytes, time_per_mb):
    """Timeout in milliseconds scaled by size, never below the default flash timeout."""
    timeout = int(time_per_mb * (size_bytes / 1e6))
    return max(timeout, DEFAULT_FLASH_TIMEOUT)


def calc_erase_size(target, offset, image_size):
    """Size to ask the loader to erase; works around an ESP8266 ROM bug."""
    if target != TargetChip.ESP8266:
        return image_size

    sectors_per_block = 16
    sector_size = 4096

    num_sectors = (image_size + sector_size - 1) // sector_size
    start_sector = offset // sector_size
    head_sectors = sectors_per_block - (start_sector % sectors_per_block)

    # The ROM erases extra num_sectors without crossing a block boundary,
    # and extra head_sectors when it does cross one.
    if num_sectors <= head_sectors:
        return ((num_sectors + 1) // 2) * sector_size
    return (num_sectors - head_sectors) * sector_size


@dataclass
class ConnectArgs:
    """Parameters of the initial handshake with the ROM loader."""

    sync_timeout: int = 100
    trials: int = 10


class EspLoader:
    """Drives the ROM loader of a connected chip through a port and a transport."""

    def __init__(self, port, transport, uart=None):
        self.port = port
        self.transport = transport
        self.builder = transport.builder
        self.uart = isinstance(transport, UartTransport) if uart is None else uart
        self.target = None
        self.registers = None
        self._flash_write_size = 0
        self._md5 = hashlib.md5(usedforsecurity=False)
        self._start_address = 0
        self._image_size = 0

    # -- connection -------------------------------------------------------

    def connect(self, args=None):
        """Put the target into its loader, sync, identify it and attach its flash."""
        args = args if args is not None else ConnectArgs()
        self.port.enter_bootloader()
        self.transport.initialize_connection(args.trials, args.sync_timeout)

        target = detect_chip(self.read_register)
        self.target = target.chip
        self.registers = target.regs

        if self.uart:
            if self.target == TargetChip.ESP8266:
                self.transport.send_command(self.builder.flash_begin(0, 0, 0, 0, False))
            else:
                spi_config = target.read_spi_config(self.read_register)
                self.port.start_timer(DEFAULT_TIMEOUT)
                self.transport.send_command(self.builder.spi_attach(spi_config))
        return self.target

    def _require_uart(self, operation):
        if not self.uart:
            raise UnsupportedFuncError(f"{operation} is only available over UART")

    # -- SPI flash commands run through the target's SPI controller -------

    def _set_data_lengths(self, mosi_bits, miso_bits):
        regs = self.registers
        if self.target == TargetChip.ESP8266:
            mosi_mask = mosi_bits - 1 if mosi_bits else 0
            miso_mask = miso_bits - 1 if miso_bits else 0
            self.write_register(regs.usr1, (miso_mask << 8) | (mosi_mask << 17))
            return
        if mosi_bits > 0:
            self.write_register(regs.mosi_dlen, mosi_bits - 1)
        if miso_bits > 0:
            self.write_register(regs.miso_dlen, miso_bits - 1)

    def _spi_flash_command(self, command, data_tx=b"", tx_bits=0, rx_bits=0):
        if rx_bits > 32:
            raise InvalidParamError("cannot read more than 32 bits from a flash command")
        if tx_bits > 64:
            raise InvalidParamError("cannot write more than 64 bits with one flash command")

        regs = self.registers
        old_usr = self.read_register(regs.usr)
        old_usr2 = self.read_register(regs.usr2)

        self._set_data_lengths(tx_bits, rx_bits)

        usr_reg = _SPI_USR_CMD
        if rx_bits > 0:
            usr_reg |= _SPI_USR_MISO
        if tx_bits > 0:
            usr_reg |= _SPI_USR_MOSI
        usr_reg2 = (7 << _CMD_LEN_SHIFT) | command

        self.write_register(regs.usr, usr_reg)
        self.write_register(regs.usr2, usr_reg2)

        if tx_bits == 0:
            # Clear the data register before it is read back.
            self.write_register(regs.w0, 0)
        else:
            words = (tx_bits + 31) // 32
            data = bytes(data_tx).ljust(words * 4, b"\0")[: words * 4]
            for index, (word,) in enumerate(struct.iter_unpack("<I", data)):
                self.write_register(regs.w0 + 4 * index, word)

        self.write_register(regs.cmd, _SPI_CMD_USR)

        for _ in range(_SPI_CMD_POLL_TRIALS):
            if self.read_register(regs.cmd) & _SPI_CMD_USR == 0:
                break
        else:
            raise LoaderTimeoutError("SPI flash command did not complete")

        value = self.read_register(regs.w0)

        self.write_register(regs.usr, old_usr)
        self.write_register(regs.usr2, old_usr2)
        return value

    def _detect_flash_size(self):
        flash_id = self._spi_flash_command(SPI_FLASH_READ_ID, rx_bits=24)
        size_id = flash_id >> 16
        if not _MIN_FLASH_SIZE_ID <= size_id <= _MAX_FLASH_SIZE_ID:
            raise UnsupportedChipError(f"unknown flash size id 0x{size_id:x}")
        return 1 << size_id

    # -- flash ------------------------------------------------------------

    def flash_start(self, offset, image_size, block_size):
        """Begin writing an image of image_size bytes at offset in block_size blocks."""
        self._require_uart("flash_start")
        self._flash_write_size = block_size

        try:
            flash_size = self._detect_flash_size()
        except LoaderError:
            self.port.debug_print("Flash size detection failed, falling back to default")
        else:
            if image_size > flash_size:
                raise ImageSizeError(
                    f"image of {image_size} bytes exceeds flash of {flash_size} bytes"
                )
            self.port.start_timer(DEFAULT_TIMEOUT)
            self.transport.send_command(self.builder.spi_set_params(flash_size))

        self._start_address = offset
        self._image_size = image_size
        self._md5 = hashlib.md5(usedforsecurity=False)

        encryption = encryption_in_begin_flash_cmd(self.target)
        erase_size = calc_erase_size(self.target, offset, image_size)
        blocks_to_write = (image_size + block_size - 1) // block_size

        self.port.start_timer(timeout_per_mb(erase_size, ERASE_REGION_TIMEOUT_PER_MB))
        self.transport.send_command(
            self.builder.flash_begin(offset, erase_size, block_size, blocks_to_write, encryption)
        )

    def flash_write(self, payload):
        """Write one block; short blocks are padded with 0xFF to the block size."""
        self._require_uart("flash_write")
        payload = bytes(payload)
        size = len(payload)
        if size > self._flash_write_size:
            raise InvalidParamError(
                f"block of {size} bytes exceeds block size {self._flash_write_size}"
            )
        block = payload + bytes([_PADDING_BYTE]) * (self._flash_write_size - size)
        self._md5.update(block[: (size + 3) & ~3])

        self.port.start_timer(DEFAULT_TIMEOUT)
        self.transport.send_command(self.builder.flash_data(block))

    def flash_finish(self, reboot):
        """End flashing; the target leaves the loader if reboot is true."""
        self._require_uart("flash_finish")
        self.port.start_timer(DEFAULT_TIMEOUT)
        self.transport.send_command(self.builder.flash_end(not reboot))

    def flash_verify(self):
        """Compare the MD5 of the written region with the data sent."""
        self._require_uart("flash_verify")
        if self.target == TargetChip.ESP8266:
            raise UnsupportedFuncError("ESP8266 does not support MD5 verification")

        expected = self._md5.hexdigest().encode("ascii")

        self.port.start_timer(timeout_per_mb(self._image_size, MD5_TIMEOUT_PER_MB))
        received = bytes(
            self.transport.send_command_md5(
                self.builder.spi_flash_md5(self._start_address, self._image_size)
            )
        )[:MD5_SIZE]

        if received != expected:
            self.port.debug_print("Error: MD5 checksum does not match:\n")
            self.port.debug_print("Expected:\n")
            self.port.debug_print(received.decode("ascii", "replace") + "\n")
            self.port.debug_print("Actual:\n")
            self.port.debug_print(expected.decode("ascii") + "\n")
            raise InvalidMd5Error("MD5 checksum does not match")

    # -- RAM --------------------------------------------------------------

    def mem_start(self, offset, size, block_size):
        """Begin loading size bytes into RAM at offset in block_size blocks."""
        blocks_to_write = -(-size // block_size)
        self.port.start_timer(timeout_per_mb(size, LOAD_RAM_TIMEOUT_PER_MB))
        self.transport.send_command(
            self.builder.mem_begin(offset, size, blocks_to_write, block_size)
        )

    def mem_write(self, payload):
        payload = bytes(payload)
        self.port.start_timer(timeout_per_mb(len(payload), LOAD_RAM_TIMEOUT_PER_MB))
        self.transport.send_command(self.builder.mem_data(payload))

    def mem_finish(self, entrypoint):
        """End the RAM load; a nonzero entrypoint makes the target jump there."""
        self.port.start_timer(DEFAULT_TIMEOUT)
        self.transport.send_command(self.builder.mem_end(entrypoint))

    # -- registers and misc -----------------------------------------------

    def read_register(self, address):
        self.port.start_timer(DEFAULT_TIMEOUT)
        return self.transport.send_command(self.builder.read_reg(address))

    def write_register(self, address, value):
        self.port.start_timer(DEFAULT_TIMEOUT)
        self.transport.send_command(self.builder.write_reg(address, value, 0xFFFFFFFF, 0))

    def change_transmission_rate(self, rate):
        """Ask the loader to switch its side of the link to rate."""
        if self.target == TargetChip.ESP8266:
            raise UnsupportedFuncError("ESP8266 cannot change its transmission rate")
        self.port.start_timer(DEFAULT_TIMEOUT)
        self.transport.send_command(self.builder.change_baudrate(rate))

    def reset_target(self):
        self.port.reset_target()