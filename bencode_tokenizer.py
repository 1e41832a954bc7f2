"""
Splits Bencoded bytes into a flat stream of tokens.

Tokens never copy the input: integers and byte strings are reported as
(offset, length) spans into the original buffer, and `Token.slice` turns
a span into a memoryview on demand.
"""
import enum
import logging
from typing import NamedTuple

from bencode_errors import (
    DepthLimitError,
    InvalidByteStringError,
    InvalidIntegerError,
    UnexpectedCharacterError,
    UnexpectedEndError,
)

logger = logging.getLogger(__name__)

# --- GRAMMAR CONSTANTS ---

TOKEN_INTEGER = ord('i')
TOKEN_LIST = ord('l')
TOKEN_DICT = ord('d')
TOKEN_END = ord('e')
TOKEN_STRING_SEPARATOR = ord(':')
TOKEN_MINUS = ord('-')
DIGIT_ZERO = ord('0')
DIGIT_NINE = ord('9')

# Deepest list/dictionary nesting accepted before giving up.
MAX_DEPTH = 256


class TokenKind(enum.Enum):
    INTEGER = 'integer'
    BYTE_STRING = 'byte string'
    LIST_BEGIN = 'list begin'
    DICT_BEGIN = 'dictionary begin'
    END = 'end'


class Token(NamedTuple):
    """One structural unit. Scalars carry a span into the input buffer."""
    kind: TokenKind
    offset: int = 0
    length: int = 0

    def slice(self, data) -> memoryview:
        """Returns the token's span of `data` without copying."""
        return memoryview(data).cast('B')[self.offset:self.offset + self.length]


LIST_BEGIN = Token(TokenKind.LIST_BEGIN)
DICT_BEGIN = Token(TokenKind.DICT_BEGIN)
END = Token(TokenKind.END)


def _is_digit(byte):
    return DIGIT_ZERO <= byte <= DIGIT_NINE


class Tokenizer:
    """
    Reads tokens from an in-memory buffer, one at a time.

    `depth` counts open lists and dictionaries. It is updated as each
    container token is produced, so it can drop below zero on a stray 'e';
    callers treat that as malformed input.
    """

    def __init__(self, data, max_depth=MAX_DEPTH):
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Bencoded input must be bytes, not {type(data).__name__}")
        self.data = data
        self._view = memoryview(data).cast('B')
        self.pos = 0
        self.depth = 0
        self.max_depth = max_depth

    def __iter__(self):
        return self

    def __next__(self):
        token = self.next()
        if token is None:
            raise StopIteration
        return token

    def next(self):
        """Returns the next Token, or None once the input is exhausted."""
        if self.pos >= len(self._view):
            return None

        c = self._view[self.pos]
        if c == TOKEN_INTEGER:
            return self._next_integer()
        elif _is_digit(c):
            return self._next_byte_string()
        elif c == TOKEN_LIST:
            self.pos += 1
            self._enter()
            return LIST_BEGIN
        elif c == TOKEN_DICT:
            self.pos += 1
            self._enter()
            return DICT_BEGIN
        elif c == TOKEN_END:
            self.pos += 1
            self.depth -= 1
            return END
        raise UnexpectedCharacterError(f"Unexpected character {chr(c)!r}", self.pos)

    def _enter(self):
        self.depth += 1
        if self.depth > self.max_depth:
            raise DepthLimitError(f"Nesting deeper than {self.max_depth} levels", self.pos - 1)

    def _peek(self):
        if self.pos >= len(self._view):
            raise UnexpectedEndError("Input ended inside a token", self.pos)
        return self._view[self.pos]

    def _next_integer(self):
        """Scans i<digits>e. The span covers the sign and digits only."""
        start = self.pos
        self.pos += 1  # Skip 'i'
        begin = self.pos
        negative = self._peek() == TOKEN_MINUS
        if negative:
            self.pos += 1
        digits_begin = self.pos

        while self.pos < len(self._view):
            c = self._view[self.pos]
            if _is_digit(c):
                self.pos += 1
                continue
            if c != TOKEN_END:
                raise InvalidIntegerError(f"Invalid character {chr(c)!r} in integer", self.pos)

            digits = self.pos - digits_begin
            if digits == 0:
                raise InvalidIntegerError("Integer has no digits", start)
            if self._view[digits_begin] == DIGIT_ZERO and (negative or digits > 1):
                raise InvalidIntegerError("Integer has a leading zero", start)
            self.pos += 1  # Skip 'e'
            return Token(TokenKind.INTEGER, begin, self.pos - begin - 1)

        raise UnexpectedEndError("Integer is missing its closing 'e'", start)

    def _next_byte_string(self):
        """Scans <length>:<bytes>. The span covers the payload only."""
        start = self.pos
        while self.pos < len(self._view) and _is_digit(self._view[self.pos]):
            self.pos += 1
        if self.pos >= len(self._view):
            raise UnexpectedEndError("Byte string length is missing its ':'", start)
        if self._view[self.pos] != TOKEN_STRING_SEPARATOR:
            raise InvalidByteStringError("Byte string length must be followed by ':'", self.pos)
        if self.pos - start > 1 and self._view[start] == DIGIT_ZERO:
            raise InvalidIntegerError("Byte string length has a leading zero", start)
        # A length with more digits than the input's own size cannot fit.
        if self.pos - start > len(str(len(self._view))):
            raise UnexpectedEndError("Byte string length is longer than the input", start)

        length = int(self._view[start:self.pos].tobytes())
        self.pos += 1  # Skip ':'
        begin = self.pos
        if begin + length > len(self._view):
            raise UnexpectedEndError(
                f"Byte string claims {length} bytes but only {len(self._view) - begin} remain", start)
        self.pos += length
        return Token(TokenKind.BYTE_STRING, begin, length)


def tokenize(data, max_depth=MAX_DEPTH):
    """Returns every token in `data` as a list. Mostly useful for debugging."""
    tokens = list(Tokenizer(data, max_depth))
    logger.debug("Tokenized %d bytes into %d tokens", len(data), len(tokens))
    return tokens
