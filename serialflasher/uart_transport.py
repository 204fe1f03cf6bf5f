"""Command exchange with the ROM loader over a SLIP-framed UART link."""

from __future__ import annotations

from . import slip
from .errors import InvalidResponseError, LoaderTimeoutError, describe_error
from .protocol import (
    MD5_RESPONSE_SIZE,
    READ_DIRECTION,
    RESPONSE_SIZE,
    CommandBuilder,
    parse_response,
)

_SYNC_RETRY_DELAY_MS = 100


class UartTransport:
    """Sends command packets and waits for the matching replies."""

    def __init__(self, port, builder=None):
        self.port = port
        self.builder = builder if builder is not None else CommandBuilder()

    def initialize_connection(self, trials, sync_timeout):
        """Send SYNC until the loader answers, retrying only on timeouts."""
        remaining = trials
        while True:
            self.port.start_timer(sync_timeout)
            try:
                self.send_command(self.builder.sync())
            except LoaderTimeoutError:
                remaining -= 1
                if remaining == 0:
                    raise
                self.port.delay_ms(_SYNC_RETRY_DELAY_MS)
            else:
                return

    def _send(self, packet):
        slip.send_delimiter(self.port)
        slip.send(self.port, packet.to_bytes())
        slip.send_delimiter(self.port)

    def _check_response(self, command, size, with_md5):
        while True:
            response = parse_response(slip.receive_packet(self.port, size), with_md5)
            if response.direction == READ_DIRECTION and response.command == int(command):
                break
        if response.failed:
            self.port.debug_print(f"Error: {describe_error(response.error)}")
            raise InvalidResponseError("command failed", error_code=response.error)
        return response

    def send_command(self, packet):
        """Send a packet and return the value field of the loader's reply."""
        self._send(packet)
        return self._check_response(packet.command, RESPONSE_SIZE, False).value

    def send_command_md5(self, packet):
        """Send an SPI_FLASH_MD5 packet and return the hex digest the loader sent."""
        self._send(packet)
        return self._check_response(packet.command, MD5_RESPONSE_SIZE, True).md5