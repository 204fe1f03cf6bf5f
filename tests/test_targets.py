import pytest

from serialflasher.errors import InvalidTargetError, UnsupportedFuncError
from serialflasher.targets import (
    CHIP_DETECT_MAGIC_REG_ADDR,
    TargetChip,
    detect_chip,
    encryption_in_begin_flash_cmd,
    read_spi_config,
    target_info,
)


def registers(values):
    read = []

    def read_register(address):
        read.append(address)
        return values.get(address, 0)

    return read_register, read


def esp32_efuses(clk, q, d, cs, hd):
    base = target_info(TargetChip.ESP32).efuse_base
    pins = clk | (q << 5) | (d << 10) | (cs << 15)
    return {base + 5 * 4: pins, base + 3 * 4: hd << 4}


def decode(config):
    return {
        "clk": config & 0x3F,
        "q": (config >> 6) & 0x3F,
        "d": (config >> 12) & 0x3F,
        "cs": (config >> 18) & 0x3F,
        "hd": (config >> 24) & 0x3F,
    }


def test_detect_esp32_by_magic():
    read_register, read = registers({CHIP_DETECT_MAGIC_REG_ADDR: 0x00F01D83})
    assert detect_chip(read_register).chip == TargetChip.ESP32
    assert read == [0x40001000]


@pytest.mark.parametrize("chip", list(TargetChip))
def test_every_magic_value_detects_its_chip(chip):
    for magic in target_info(chip).magic_values:
        if magic:
            assert detect_chip(lambda address, m=magic: m).chip == chip


def test_unknown_magic_raises():
    with pytest.raises(InvalidTargetError):
        detect_chip(lambda address: 0x12345678)


def test_register_map_of_esp32():
    regs = target_info(TargetChip.ESP32).regs
    assert regs.w0 == 0x3FF42000 + 0x80
    assert regs.usr1 - regs.usr == 4
    assert regs.usr2 - regs.usr == 8


def test_esp8266_has_no_data_length_registers():
    regs = target_info(TargetChip.ESP8266).regs
    assert (regs.mosi_dlen, regs.miso_dlen) == (0, 0)


def test_esp32xx_chips_share_register_map():
    maps = {target_info(chip).regs for chip in TargetChip if chip >= TargetChip.ESP32C3}
    assert len(maps) == 1


def test_esp32_spi_config_round_trip():
    read_register, read = registers(esp32_efuses(clk=6, q=17, d=8, cs=11, hd=9))
    config = read_spi_config(TargetChip.ESP32, read_register)
    assert decode(config) == {"clk": 6, "q": 17, "d": 8, "cs": 11, "hd": 9}
    base = target_info(TargetChip.ESP32).efuse_base
    assert read == [base + 20, base + 12]


def test_esp32_spi_config_adjusts_high_pins():
    read_register, _ = registers(esp32_efuses(clk=30, q=31, d=8, cs=11, hd=31))
    fields = decode(read_spi_config(TargetChip.ESP32, read_register))
    assert (fields["clk"], fields["q"], fields["hd"]) == (32, 33, 33)


@pytest.mark.parametrize("pins", [0, 0xFFFFF])
def test_esp32_spi_config_default_pins(pins):
    base = target_info(TargetChip.ESP32).efuse_base
    read_register, _ = registers({base + 20: pins, base + 12: 0xFF})
    assert read_spi_config(TargetChip.ESP32, read_register) == 0


def test_esp32_spi_config_rejects_duplicate_pins():
    read_register, _ = registers(esp32_efuses(clk=6, q=6, d=8, cs=11, hd=9))
    assert read_spi_config(TargetChip.ESP32, read_register) == 0


@pytest.mark.parametrize(
    "chip", [TargetChip.ESP32S2, TargetChip.ESP32C3, TargetChip.ESP32S3, TargetChip.ESP32C6]
)
def test_esp32xx_spi_config_round_trip(chip):
    pins = 0x12345678 & 0x3FFFFFFF
    base = target_info(chip).efuse_base
    read_register, read = registers(
        {base + 18 * 4: (pins & 0xFFFF) << 16, base + 19 * 4: pins >> 16}
    )
    assert read_spi_config(chip, read_register) == pins
    assert read == [base + 18 * 4, base + 19 * 4]


def test_esp32xx_spi_config_default_pins():
    read_register, _ = registers({})
    assert read_spi_config(TargetChip.ESP32C3, read_register) == 0


def test_esp8266_has_no_spi_config():
    with pytest.raises(UnsupportedFuncError):
        read_spi_config(TargetChip.ESP8266, lambda address: 0)


@pytest.mark.parametrize("chip", list(TargetChip))
def test_encryption_in_begin_flash_cmd(chip):
    expected = chip in (TargetChip.ESP32, TargetChip.ESP8266)
    assert encryption_in_begin_flash_cmd(chip) is expected


def test_target_info_accepts_plain_integers():
    assert target_info(1) == target_info(TargetChip.ESP32)
    with pytest.raises(ValueError):
        target_info(99)