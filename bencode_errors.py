"""Exceptions raised while decoding Bencoded data."""


class BencodeDecodeError(ValueError):
    """Base class for every decode failure.

    `offset` is the byte position in the input where the problem was found,
    when it is known.
    """

    def __init__(self, message, offset=None):
        if offset is not None:
            message = f"{message} (at byte {offset})"
        super().__init__(message)
        self.offset = offset


class InvalidIntegerError(BencodeDecodeError):
    """Malformed digits or sign: 'ie', 'i01e', 'i-0e', or a zero-padded length."""


class InvalidByteStringError(BencodeDecodeError):
    """The length prefix of a byte string is not followed by ':'."""


class UnexpectedCharacterError(BencodeDecodeError):
    """A byte that cannot start any token."""


class UnexpectedTokenError(BencodeDecodeError):
    """A valid token of the wrong kind for the requested shape."""


class UnexpectedEndError(BencodeDecodeError):
    """Input ran out, or a container closed, before the value was complete."""


class MissingFieldError(BencodeDecodeError):
    """A required record field was not present in the dictionary."""

    def __init__(self, field):
        super().__init__(f"Missing required field {field!r}")
        self.field = field


class AllocatorRequiredError(BencodeDecodeError):
    """An owned value was requested but no allocator was supplied."""


class IntegerRangeError(BencodeDecodeError):
    """An integer does not fit the requested width or signedness."""


class DepthLimitError(BencodeDecodeError):
    """Containers are nested deeper than the tokenizer allows."""
