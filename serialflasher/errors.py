"""Exceptions raised while talking to the target's ROM loader."""

_LOADER_ERROR_NAMES = {
    0x05: "INVALID_COMMAND",
    0x06: "COMMAND_FAILED",
    0x07: "INVALID_CRC",
    0x08: "FLASH_WRITE_ERR",
    0x09: "FLASH_READ_ERR",
    0x0A: "READ_LENGTH_ERR",
    0x0B: "DEFLATE_ERROR",
}


def describe_error(code):
    """Return the name of an error code reported by the ROM loader."""
    return _LOADER_ERROR_NAMES.get(int(code), "UNKNOWN ERROR")


class LoaderError(Exception):
    """Base class of every error raised by the flasher."""


class LoaderFailError(LoaderError):
    """The peripheral or the target failed to carry out an operation."""


class LoaderTimeoutError(LoaderError, TimeoutError):
    """The target did not answer in time."""


class InvalidResponseError(LoaderError):
    """The target sent a malformed reply or reported a failure."""

    def __init__(self, message="invalid response from target", error_code=None):
        self.error_code = error_code
        if error_code is not None:
            message = f"{message}: {describe_error(error_code)}"
        super().__init__(message)


class InvalidParamError(LoaderError, ValueError):
    """An argument is out of the range the loader accepts."""


class InvalidTargetError(LoaderError):
    """The connected chip could not be identified."""


class UnsupportedChipError(LoaderError):
    """The connected chip or its flash is not supported."""


class UnsupportedFuncError(LoaderError):
    """The requested operation is not available on the connected chip."""


class ImageSizeError(LoaderError):
    """The image does not fit into the target's flash."""


class InvalidMd5Error(LoaderError):
    """The MD5 digest of written flash does not match the image."""