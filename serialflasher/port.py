"""Peripheral ports that carry the loader protocol to the target chip."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from pathlib import Path

import serial

from .errors import InvalidParamError, LoaderFailError, LoaderTimeoutError

SUPPORTED_BAUDRATES = frozenset(
    {
        50, 75, 110, 134, 150, 200, 300, 600, 1200, 1800, 2400, 4800, 9600,
        19200, 38400, 57600, 115200, 230400, 460800, 500000, 576000, 921600,
        1000000, 1152000, 1500000, 2000000, 2500000, 3000000, 3500000, 4000000,
    }
)

DEFAULT_BOOT_HOLD_TIME_MS = 50
DEFAULT_RESET_HOLD_TIME_MS = 50


def check_baudrate(baudrate):
    """Return baudrate if the serial line supports it, else raise InvalidParamError."""
    if baudrate not in SUPPORTED_BAUDRATES:
        raise InvalidParamError(f"invalid baudrate: {baudrate}")
    return baudrate


class Port(ABC):
    """A link to the target: data transfer, strapping pins and a countdown timer."""

    def __init__(
        self,
        boot_hold_time_ms=DEFAULT_BOOT_HOLD_TIME_MS,
        reset_hold_time_ms=DEFAULT_RESET_HOLD_TIME_MS,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        self.boot_hold_time_ms = boot_hold_time_ms
        self.reset_hold_time_ms = reset_hold_time_ms
        self._clock = clock
        self._sleep = sleep
        self._time_end = clock()

    @abstractmethod
    def write(self, data, timeout):
        """Send all of data within timeout milliseconds."""

    @abstractmethod
    def read(self, size, timeout):
        """Receive exactly size bytes within timeout milliseconds and return them."""

    @abstractmethod
    def set_boot_pin(self, level):
        """Drive the target's boot strapping pin (GPIO0) to level."""

    @abstractmethod
    def set_reset_pin(self, level):
        """Drive the target's reset pin to level."""

    @abstractmethod
    def change_transmission_rate(self, rate):
        """Switch the link to a new baud rate or clock frequency."""

    def enter_bootloader(self):
        """Hold the boot pin low across a reset so the target starts its ROM loader."""
        self.set_boot_pin(0)
        self.reset_target()
        self.delay_ms(self.boot_hold_time_ms)
        self.set_boot_pin(1)

    def reset_target(self):
        """Pulse the reset pin low."""
        self.set_reset_pin(0)
        self.delay_ms(self.reset_hold_time_ms)
        self.set_reset_pin(1)

    def delay_ms(self, ms):
        self._sleep(ms / 1000)

    def start_timer(self, ms):
        """Start the countdown used by remaining_time."""
        self._time_end = self._clock() + ms / 1000

    def remaining_time(self):
        """Milliseconds left on the countdown, never negative."""
        remaining = int((self._time_end - self._clock()) * 1000)
        return max(remaining, 0)

    def debug_print(self, message):
        print(f"DEBUG: {message}")


class SpiPort(Port):
    """A port on an SPI bus whose chip select is driven by hand."""

    @abstractmethod
    def set_cs(self, level):
        """Drive the chip select line to level."""


class _SysfsGpio:
    """Output pins driven through the kernel's sysfs GPIO interface."""

    def __init__(self, root="/sys/class/gpio"):
        self._root = Path(root)

    def setup_output(self, pin):
        pin_dir = self._root / f"gpio{pin}"
        try:
            if not pin_dir.exists():
                (self._root / "export").write_text(str(pin))
            (pin_dir / "direction").write_text("out")
        except OSError as exc:
            raise LoaderFailError(f"GPIO initialisation failed for pin {pin}") from exc

    def write(self, pin, level):
        try:
            (self._root / f"gpio{pin}" / "value").write_text("1" if level else "0")
        except OSError as exc:
            raise LoaderFailError(f"cannot set GPIO pin {pin}") from exc


class SerialPort(Port):
    """A UART link with reset and boot pins on GPIO lines of the host."""

    def __init__(
        self,
        device,
        baudrate,
        reset_trigger_pin,
        gpio0_trigger_pin,
        gpio=None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.device = device
        self.baudrate = baudrate
        self.reset_trigger_pin = reset_trigger_pin
        self.gpio0_trigger_pin = gpio0_trigger_pin
        self._gpio = gpio if gpio is not None else _SysfsGpio()
        self._serial = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_open(self):
        return self._serial is not None

    def open(self):
        """Open the serial line as 8N1 raw, raise DTR and RTS, and set up the pins."""
        check_baudrate(self.baudrate)
        try:
            link = serial.serial_for_url(self.device, do_not_open=True)
            link.baudrate = self.baudrate
            link.bytesize = serial.EIGHTBITS
            link.parity = serial.PARITY_NONE
            link.stopbits = serial.STOPBITS_ONE
            link.xonxoff = False
            link.rtscts = False
            link.timeout = 1.0
            link.open()
            link.dtr = True
            link.rts = True
        except (serial.SerialException, ValueError, OSError) as exc:
            raise LoaderFailError(f"serial port {self.device} could not be opened") from exc
        self._serial = link
        self.delay_ms(10)

        self._gpio.setup_output(self.reset_trigger_pin)
        self._gpio.setup_output(self.gpio0_trigger_pin)

    def close(self):
        if self._serial is not None:
            self._serial.close()
            self._serial = None

    def _link(self):
        if self._serial is None:
            raise LoaderFailError("serial port is not open")
        return self._serial

    def write(self, data, timeout):
        link = self._link()
        data = bytes(data)
        try:
            written = link.write(data)
        except serial.SerialTimeoutException as exc:
            raise LoaderTimeoutError("serial write timed out") from exc
        except serial.SerialException as exc:
            raise LoaderFailError("serial write failed") from exc
        if written is not None and written < len(data):
            raise LoaderTimeoutError(f"wrote {written} of {len(data)} bytes")

    def read(self, size, timeout):
        """Read byte by byte, each bounded by the time left on the port's timer."""
        link = self._link()
        out = bytearray()
        for _ in range(size):
            deciseconds = max(self.remaining_time() // 100, 1)
            try:
                link.timeout = deciseconds / 10
                chunk = link.read(1)
            except serial.SerialException as exc:
                raise LoaderFailError("serial read failed") from exc
            if not chunk:
                raise LoaderTimeoutError("serial read timed out")
            out += chunk
        return bytes(out)

    def set_boot_pin(self, level):
        self._gpio.write(self.gpio0_trigger_pin, level)

    def set_reset_pin(self, level):
        self._gpio.write(self.reset_trigger_pin, level)

    def change_transmission_rate(self, rate):
        check_baudrate(rate)
        link = self._link()
        try:
            link.baudrate = rate
        except (serial.SerialException, ValueError) as exc:
            raise LoaderFailError(f"cannot switch to {rate} baud") from exc
        self.baudrate = rate