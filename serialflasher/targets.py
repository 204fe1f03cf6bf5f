"""Chip models, their SPI register maps and detection."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Optional

from .errors import InvalidTargetError, UnsupportedFuncError

# This ROM address holds a different value on each chip model.
CHIP_DETECT_MAGIC_REG_ADDR = 0x40001000

_ESP8266_SPI_REG_BASE = 0x60000200
_ESP32S2_SPI_REG_BASE = 0x3F402000
_ESP32XX_SPI_REG_BASE = 0x60002000
_ESP32_SPI_REG_BASE = 0x3FF42000


class TargetChip(IntEnum):
    ESP8266 = 0
    ESP32 = 1
    ESP32S2 = 2
    ESP32C3 = 3
    ESP32S3 = 4
    ESP32C2 = 5
    ESP32H4 = 6
    ESP32H2 = 7
    ESP32C6 = 8


@dataclass(frozen=True)
class TargetRegisters:
    """Addresses of the SPI controller registers used to run flash commands."""

    cmd: int
    usr: int
    usr1: int
    usr2: int
    w0: int
    mosi_dlen: int
    miso_dlen: int


def _efuse_word_addr(efuse_base, n):
    return efuse_base + n * 4


def _adjust_pin_number(num):
    # eFuse values 30 and 31 stand for GPIO32 and GPIO33.
    return num + 2 if num >= 30 else num


def _spi_config_esp32(efuse_base, read_register):
    reg5 = read_register(_efuse_word_addr(efuse_base, 5))
    reg3 = read_register(_efuse_word_addr(efuse_base, 3))

    pins = reg5 & 0xFFFFF
    if pins in (0, 0xFFFFF):
        return 0

    clk = _adjust_pin_number(pins & 0x1F)
    q = _adjust_pin_number((pins >> 5) & 0x1F)
    d = _adjust_pin_number((pins >> 10) & 0x1F)
    cs = _adjust_pin_number((pins >> 15) & 0x1F)
    hd = _adjust_pin_number((reg3 >> 4) & 0x1F)

    if clk in (cs, d, q) or q in (cs, d):
        return 0

    return (hd << 24) | (cs << 18) | (d << 12) | (q << 6) | clk


def _spi_config_esp32xx(efuse_base, read_register):
    reg1 = read_register(_efuse_word_addr(efuse_base, 18))
    reg2 = read_register(_efuse_word_addr(efuse_base, 19))

    pins = ((reg1 >> 16) | ((reg2 & 0xFFFFF) << 16)) & 0x3FFFFFFF
    if pins in (0, 0xFFFFFFFF):
        return 0
    return pins


SpiConfigReader = Callable[[int, Callable[[int], int]], int]


@dataclass(frozen=True)
class Target:
    """Everything the loader needs to know about one chip model."""

    chip: TargetChip
    regs: TargetRegisters
    efuse_base: int
    magic_values: tuple
    spi_config_reader: Optional[SpiConfigReader] = field(default=None, repr=False)

    def read_spi_config(self, read_register):
        """Read the flash pin configuration from the chip's eFuses."""
        if self.spi_config_reader is None:
            raise UnsupportedFuncError(f"{self.chip.name} has no SPI pin configuration")
        return self.spi_config_reader(self.efuse_base, read_register)


def _regs(base, usr, w0, mosi_dlen, miso_dlen):
    return TargetRegisters(
        cmd=base,
        usr=base + usr,
        usr1=base + usr + 4,
        usr2=base + usr + 8,
        w0=base + w0,
        mosi_dlen=base + mosi_dlen if mosi_dlen else 0,
        miso_dlen=base + miso_dlen if miso_dlen else 0,
    )


def _esp32xx_regs(base):
    return _regs(base, 0x18, 0x58, 0x24, 0x28)


_TARGETS = {
    TargetChip.ESP8266: Target(
        TargetChip.ESP8266,
        _regs(_ESP8266_SPI_REG_BASE, 0x1C, 0x40, 0, 0),
        0,
        (0xFFF0C101, 0),
    ),
    TargetChip.ESP32: Target(
        TargetChip.ESP32,
        _regs(_ESP32_SPI_REG_BASE, 0x1C, 0x80, 0x28, 0x2C),
        0x3FF5A000,
        (0x00F01D83, 0),
        _spi_config_esp32,
    ),
    TargetChip.ESP32S2: Target(
        TargetChip.ESP32S2,
        _esp32xx_regs(_ESP32S2_SPI_REG_BASE),
        0x3F41A000,
        (0x000007C6, 0),
        _spi_config_esp32xx,
    ),
    TargetChip.ESP32C3: Target(
        TargetChip.ESP32C3,
        _esp32xx_regs(_ESP32XX_SPI_REG_BASE),
        0x60008800,
        (0x6921506F, 0x1B31506F),
        _spi_config_esp32xx,
    ),
    TargetChip.ESP32S3: Target(
        TargetChip.ESP32S3,
        _esp32xx_regs(_ESP32XX_SPI_REG_BASE),
        0x60007000,
        (0x00000009, 0),
        _spi_config_esp32xx,
    ),
    TargetChip.ESP32C2: Target(
        TargetChip.ESP32C2,
        _esp32xx_regs(_ESP32XX_SPI_REG_BASE),
        0x60008800,
        (0x6F51306F, 0x7C41A06F),
        _spi_config_esp32xx,
    ),
    TargetChip.ESP32H4: Target(
        TargetChip.ESP32H4,
        _esp32xx_regs(_ESP32XX_SPI_REG_BASE),
        0x6001A000,
        (0xCA26CC22, 0x6881B06F),
        _spi_config_esp32xx,
    ),
    TargetChip.ESP32H2: Target(
        TargetChip.ESP32H2,
        _esp32xx_regs(_ESP32XX_SPI_REG_BASE),
        0x6001A000,
        (0xD7B73E80, 0),
        _spi_config_esp32xx,
    ),
    TargetChip.ESP32C6: Target(
        TargetChip.ESP32C6,
        _esp32xx_regs(_ESP32XX_SPI_REG_BASE),
        0x6001A000,
        (0x0DA1806F, 0x2CE0806F),
        _spi_config_esp32xx,
    ),
}


def target_info(chip):
    """Return the description of a chip model."""
    return _TARGETS[TargetChip(chip)]


def detect_chip(read_register):
    """Identify the connected chip from its magic ROM value.

    read_register is called with an address and returns the register's value.
    """
    magic = read_register(CHIP_DETECT_MAGIC_REG_ADDR)
    for target in _TARGETS.values():
        if magic in target.magic_values:
            return target
    raise InvalidTargetError(f"unknown chip magic value 0x{magic:08x}")


def read_spi_config(chip, read_register):
    """Read the flash pin configuration of a chip from its eFuses."""
    return target_info(chip).read_spi_config(read_register)


def encryption_in_begin_flash_cmd(chip):
    """True if the chip's FLASH_BEGIN command is sent without the encryption field."""
    return chip in (TargetChip.ESP32, TargetChip.ESP8266)