# serialflasher

A Python library for the ROM bootloader of Espressif chips: ESP8266,
ESP32, ESP32-S2, ESP32-S3, ESP32-C2, ESP32-C3, ESP32-C6, ESP32-H2 and
ESP32-H4. With it you can:

- put the target into its bootloader and synchronise with it
- detect the chip model
- write images to SPI flash and check them with MD5
- load code into RAM and start it
- read and write registers
- change the transmission rate

## Installation

```
pip install serialflasher
```

## Ports

A `serialflasher.port.Port` moves the bytes and drives the target's boot
(GPIO0) and reset lines. It also keeps the countdown timer that limits
each exchange:

- `start_timer(ms)` starts the countdown.
- `remaining_time()` returns the milliseconds left, never less than zero.

`enter_bootloader()` holds the boot pin low across a reset pulse.
`reset_target()` pulses only the reset pin. Both hold times default to
50 ms and are set with the `boot_hold_time_ms` and `reset_hold_time_ms`
arguments.

`serialflasher.port.SerialPort` is a ready-made port over a serial
device, opened through pyserial as 8N1 raw with DTR and RTS raised. The
supported baud rates are the standard ones from 50 to 4000000. You can
check a rate with `check_baudrate`, which raises `InvalidParamError` for
any other value.

The reset and boot lines are host GPIO pins. By default they are driven
through the kernel's sysfs interface under `/sys/class/gpio`. To drive
them another way, pass `gpio=` an object with `setup_output(pin)` and
`write(pin, level)` methods. `SerialPort` is also a context manager that
opens and closes the line.

For other hardware, subclass `Port` and provide `write`, `read`,
`set_boot_pin`, `set_reset_pin` and `change_transmission_rate`. For an
SPI link, subclass `SpiPort`, which also needs `set_cs`.

## Transports

A transport sends command packets through a port and checks the replies:

- `serialflasher.uart_transport.UartTransport` frames commands with SLIP
  over a serial line. It synchronises by sending SYNC and retrying on
  timeouts.
- `serialflasher.spi_transport.SpiTransport` speaks the SPI slave
  protocol of the target through an `SpiPort`.

## Flashing an image

```python
from serialflasher.port import SerialPort
from serialflasher.uart_transport import UartTransport
from serialflasher.loader import EspLoader, ConnectArgs

with open("app.bin", "rb") as fh:
    image = fh.read()

with SerialPort("/dev/ttyUSB0", 115200,
                reset_trigger_pin=3, gpio0_trigger_pin=2) as port:
    loader = EspLoader(port, UartTransport(port))
    chip = loader.connect(ConnectArgs(sync_timeout=100, trials=10))
    print("Connected to", chip.name)

    block_size = 1024
    loader.flash_start(0x10000, len(image), block_size)
    for start in range(0, len(image), block_size):
        loader.flash_write(image[start:start + block_size])
    loader.flash_verify()
    loader.flash_finish(reboot=False)
    loader.reset_target()
```

`connect` returns a `serialflasher.targets.TargetChip`. Over UART it also
attaches the SPI flash. `flash_start` tries to detect the flash size and
raises `ImageSizeError` if the image does not fit. `flash_write` pads
each block with `0xFF` up to the block size given to `flash_start`.
`flash_verify` compares the MD5 of the data sent with the digest that the
chip computes, and raises `InvalidMd5Error` on a mismatch. The flash
operations are only available over UART, and `flash_verify` is not
available on the ESP8266.

## Loading into RAM

```python
loader.mem_start(0x40080000, len(segment), 1024)
for start in range(0, len(segment), 1024):
    loader.mem_write(segment[start:start + 1024])
loader.mem_finish(entrypoint)
```

A nonzero `entrypoint` makes the target jump there. Zero keeps it in the
bootloader.

## Registers and transmission rate

```python
value = loader.read_register(0x40001000)
loader.write_register(0x3FF42000, 0x1)
loader.change_transmission_rate(921600)
port.change_transmission_rate(921600)
```

`EspLoader.change_transmission_rate` asks the chip to switch its own side
of the link. The port must then be switched too. The ESP8266 does not
support this.

## Errors

Every failure is raised as a subclass of
`serialflasher.errors.LoaderError`:

- `LoaderFailError`
- `LoaderTimeoutError`
- `InvalidResponseError`, which carries the chip's `error_code` when the
  chip reported one
- `InvalidParamError`
- `InvalidTargetError`
- `UnsupportedChipError`
- `UnsupportedFuncError`
- `ImageSizeError`
- `InvalidMd5Error`

`describe_error(code)` names an error code sent by the bootloader.

## Lower layers

- `serialflasher.slip` encodes data (`encode`), sends it (`send`,
  `send_delimiter`) and receives it (`receive_data`, `receive_packet`)
  in SLIP framing.
- `serialflasher.protocol` builds command packets with `CommandBuilder`,
  computes data checksums with `compute_checksum`, and decodes replies
  with `parse_response`.
- `serialflasher.targets` holds the per-chip register maps and eFuse
  bases (`target_info`). It also provides `detect_chip`,
  `read_spi_config` and `encryption_in_begin_flash_cmd`.

## What it does not do

This is a library only. It has no command-line tool. It cannot read flash
back, and it does not support compressed flashing. The only ready-made
port is the serial one: an SPI link needs your own `SpiPort` subclass.