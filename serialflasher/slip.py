"""SLIP framing over a port that offers write, read and remaining_time."""

from .errors import InvalidResponseError

DELIMITER = 0xC0
ESCAPE = 0xDB
ESCAPED_DELIMITER = 0xDC
ESCAPED_ESCAPE = 0xDD

_ENCODING = {
    DELIMITER: bytes([ESCAPE, ESCAPED_DELIMITER]),
    ESCAPE: bytes([ESCAPE, ESCAPED_ESCAPE]),
}
_DECODING = {ESCAPED_DELIMITER: DELIMITER, ESCAPED_ESCAPE: ESCAPE}


def encode(data):
    """Escape delimiter and escape bytes; the frame delimiters are not added."""
    return b"".join(_ENCODING.get(byte, bytes([byte])) for byte in data)


def _read_byte(port):
    return port.read(1, port.remaining_time())[0]


def send(port, data):
    """Write data to the port, escaped."""
    encoded = encode(data)
    if encoded:
        port.write(encoded, port.remaining_time())


def send_delimiter(port):
    """Write a frame delimiter."""
    port.write(bytes([DELIMITER]), port.remaining_time())


def receive_data(port, size):
    """Read and unescape size bytes from the port."""
    out = bytearray()
    for _ in range(size):
        byte = _read_byte(port)
        if byte == ESCAPE:
            escaped = _read_byte(port)
            try:
                byte = _DECODING[escaped]
            except KeyError:
                raise InvalidResponseError(
                    f"invalid SLIP escape sequence 0xdb 0x{escaped:02x}"
                ) from None
        out.append(byte)
    return bytes(out)


def receive_packet(port, size):
    """Read one framed packet of size bytes, skipping anything before it."""
    while _read_byte(port) != DELIMITER:
        pass
    # The bootloader may send extra delimiters after a baud rate change.
    first = _read_byte(port)
    while first == DELIMITER:
        first = _read_byte(port)
    payload = bytes([first]) + receive_data(port, size - 1)
    while _read_byte(port) != DELIMITER:
        pass
    return payload