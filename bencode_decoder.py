import contextlib
import logging

from bencode_errors import (
    AllocatorRequiredError,
    IntegerRangeError,
    MissingFieldError,
    UnexpectedEndError,
    UnexpectedTokenError,
)
from bencode_memory import Allocator, release
from bencode_schema import (
    Any,
    Bytes,
    DynamicList,
    FixedBytes,
    FixedList,
    Integer,
    Optional,
    Record,
)
from bencode_tokenizer import MAX_DEPTH, Tokenizer, TokenKind

logger = logging.getLogger(__name__)

# int() refuses longer digit strings on current interpreters.
INT_CHUNK_DIGITS = 4000


def _parse_int(digits):
    """Converts an ASCII digit run, with optional leading '-', of any length."""
    negative = digits[:1] == b'-'
    if negative:
        digits = digits[1:]
    value = 0
    for i in range(0, len(digits), INT_CHUNK_DIGITS):
        chunk = digits[i:i + INT_CHUNK_DIGITS]
        value = value * 10 ** len(chunk) + int(chunk)
    return -value if negative else value


class BencodeDecoder:
    """
    Decodes BitTorrent's Bencode format into the value described by a shape.

    The decoder pulls tokens from a Tokenizer and recurses through the
    shape. Borrowed byte strings are memoryviews into `data`, so the input
    must outlive them. Owned values come from `allocator`; if decoding fails
    part way, everything already allocated is released again before the
    error propagates.
    """

    def __init__(self, data, allocator=None, max_depth=MAX_DEPTH):
        self.tokens = Tokenizer(data, max_depth)
        self.data = self.tokens.data
        self.allocator = allocator

    def decode(self, shape):
        """Decodes the first value of the input."""
        token = self.tokens.next()
        if token is None:
            raise UnexpectedEndError("Input is empty", 0)
        return self.decode_value(shape, token)

    def decode_value(self, shape, token):
        """Decodes one value that starts with `token`."""
        if isinstance(shape, Integer):
            return self._decode_int(shape, token)
        elif isinstance(shape, FixedBytes):
            return self._decode_fixed_bytes(shape, token)
        elif isinstance(shape, Bytes):
            return self._decode_bytes(shape.owned, token)
        elif isinstance(shape, FixedList):
            return self._decode_fixed_list(shape, token)
        elif isinstance(shape, DynamicList):
            return self._decode_list(shape, token)
        elif isinstance(shape, Record):
            return self._decode_record(shape, token)
        elif isinstance(shape, Optional):
            # Presence is decided by the enclosing record.
            return self.decode_value(shape.inner, token)
        elif isinstance(shape, Any):
            return self._decode_any(shape, token)
        raise TypeError(f"Unable to decode into shape {shape!r}")

    def skip_value(self):
        """
        Consumes one whole value without building it.

        Works purely on the tokenizer's depth: a scalar leaves the depth
        unchanged, a container is read until the depth comes back down.
        """
        start = self.tokens.depth
        if self.tokens.next() is None:
            raise UnexpectedEndError("Input ended before a value", self.tokens.pos)
        if self.tokens.depth < start:
            raise UnexpectedEndError("Container closed where a value was expected", self.tokens.pos)
        while self.tokens.depth > start:
            if self.tokens.next() is None:
                raise UnexpectedEndError("Input ended inside a skipped value", self.tokens.pos)

    # --- Helpers ---

    def _next_token(self):
        token = self.tokens.next()
        if token is None:
            raise UnexpectedEndError("Input ended inside a container", self.tokens.pos)
        return token

    def _expect(self, token, kind):
        if token.kind is not kind:
            raise UnexpectedTokenError(
                f"Expected {kind.value}, found {token.kind.value}", self.tokens.pos)

    def _require_allocator(self):
        if self.allocator is None:
            raise AllocatorRequiredError("Owned value requested without an allocator", self.tokens.pos)
        return self.allocator

    @contextlib.contextmanager
    def _rollback(self, cleanup):
        """Runs `cleanup` if the body raises, then lets the error through."""
        try:
            yield
        except Exception:
            logger.debug("Decode failed near byte %d, releasing partial value", self.tokens.pos)
            cleanup()
            raise

    def _release_all(self, shape, items):
        for item in reversed(items):
            release(shape, item, self.allocator)

    # --- Scalars ---

    def _decode_int(self, shape, token):
        """Format: i<integer>e"""
        self._expect(token, TokenKind.INTEGER)
        digits = token.slice(self.data).tobytes()
        bounds = shape.bounds
        if bounds is None:
            return _parse_int(digits)

        kind = 'signed' if shape.signed else 'unsigned'
        widest = max(len(str(bounds[0])), len(str(bounds[1])))
        if len(digits) > widest:
            raise IntegerRangeError(
                f"{len(digits)}-character integer does not fit in a {shape.bits}-bit {kind} integer",
                token.offset)
        value = _parse_int(digits)
        if not bounds[0] <= value <= bounds[1]:
            raise IntegerRangeError(
                f"{value} does not fit in a {shape.bits}-bit {kind} integer", token.offset)
        return value

    def _decode_fixed_bytes(self, shape, token):
        """Format: <length>:<bytes>, where length must equal the shape's size."""
        self._expect(token, TokenKind.BYTE_STRING)
        if token.length != shape.size:
            raise UnexpectedTokenError(
                f"Expected exactly {shape.size} bytes, found {token.length}", token.offset)
        return token.slice(self.data).tobytes()

    def _decode_bytes(self, owned, token):
        """Format: <length>:<bytes>"""
        allocator = self._require_allocator() if owned else None
        self._expect(token, TokenKind.BYTE_STRING)
        view = token.slice(self.data)
        if owned:
            return allocator.alloc_bytes(view)
        return view

    # --- Containers ---

    def _decode_fixed_list(self, shape, token):
        """Format: l<item1>...<itemN>e with exactly N items."""
        self._expect(token, TokenKind.LIST_BEGIN)
        items = []
        with self._rollback(lambda: self._release_all(shape.element, items)):
            while len(items) < shape.size:
                token = self._next_token()
                if token.kind is TokenKind.END:
                    raise UnexpectedEndError(
                        f"List closed after {len(items)} of {shape.size} items", self.tokens.pos)
                items.append(self.decode_value(shape.element, token))
            token = self._next_token()
            if token.kind is not TokenKind.END:
                raise UnexpectedTokenError(
                    f"List has more than {shape.size} items", self.tokens.pos)
        return tuple(items)

    def _decode_list(self, shape, token):
        """Format: l<item1><item2>...e"""
        allocator = self._require_allocator()
        self._expect(token, TokenKind.LIST_BEGIN)
        result = allocator.alloc_list()
        with self._rollback(lambda: release(shape, result, allocator)):
            token = self._next_token()
            while token.kind is not TokenKind.END:
                result.append(self.decode_value(shape.element, token))
                token = self._next_token()
        return result

    def _decode_record(self, shape, token):
        """
        Format: d<key1><value1>...e

        Keys are matched against the record's fields; unknown keys are
        skipped. A key seen twice keeps its last value.
        """
        self._expect(token, TokenKind.DICT_BEGIN)
        values = {}
        with self._rollback(lambda: self._release_fields(shape, values)):
            while True:
                token = self._next_token()
                if token.kind is TokenKind.END:
                    break
                if token.kind is not TokenKind.BYTE_STRING:
                    raise UnexpectedTokenError(
                        f"Dictionary key must be a byte string, found {token.kind.value}",
                        self.tokens.pos)

                field = shape.field_for(token.slice(self.data))
                if field is None:
                    logger.debug("Skipping unknown key %r", token.slice(self.data).tobytes())
                    self.skip_value()
                    continue
                token = self._next_token()
                if token.kind is TokenKind.END:
                    raise UnexpectedEndError(
                        f"Dictionary closed before the value of {field.name!r}", self.tokens.pos)
                if field.name in values:
                    release(field.shape, values.pop(field.name), self.allocator)
                values[field.name] = self.decode_value(field.shape, token)

            for field in shape.fields:
                if field.name in values:
                    continue
                if field.has_default:
                    values[field.name] = self._copy_default(field.shape, field.default)
                elif isinstance(field.shape, Optional):
                    values[field.name] = None
                else:
                    raise MissingFieldError(field.name)
            return shape.build(values)

    def _release_fields(self, shape, values):
        for field in reversed(shape.fields):
            if field.name in values:
                release(field.shape, values[field.name], self.allocator)

    def _copy_default(self, shape, default):
        """
        Builds a fresh value equal to a field default.

        Owned parts are taken from the allocator so the copy is released
        like any decoded value, and callers never share the schema's object.
        """
        if isinstance(shape, Bytes):
            if shape.owned:
                return self._require_allocator().alloc_bytes(default)
            return default
        elif isinstance(shape, FixedList):
            items = []
            with self._rollback(lambda: self._release_all(shape.element, items)):
                for item in default:
                    items.append(self._copy_default(shape.element, item))
            return tuple(items)
        elif isinstance(shape, DynamicList):
            result = self._require_allocator().alloc_list()
            with self._rollback(lambda: release(shape, result, self.allocator)):
                for item in default:
                    result.append(self._copy_default(shape.element, item))
            return result
        elif isinstance(shape, Record):
            values = {}
            with self._rollback(lambda: self._release_fields(shape, values)):
                for field in shape.fields:
                    values[field.name] = self._copy_default(field.shape, shape.get(default, field))
                return shape.build(values)
        elif isinstance(shape, Optional):
            if default is None:
                return None
            return self._copy_default(shape.inner, default)
        elif isinstance(shape, Any):
            return self._copy_any(shape, default)
        return default

    def _copy_any(self, shape, default):
        if isinstance(default, list):
            result = self._require_allocator().alloc_list()
            with self._rollback(lambda: release(shape, result, self.allocator)):
                for item in default:
                    result.append(self._copy_any(shape, item))
            return result
        elif isinstance(default, dict):
            result = self._require_allocator().alloc_dict()
            with self._rollback(lambda: release(shape, result, self.allocator)):
                for key, item in default.items():
                    result[bytes(key)] = self._copy_any(shape, item)
            return result
        elif isinstance(default, (bytes, bytearray, memoryview)) and shape.owned:
            return self._require_allocator().alloc_bytes(default)
        return default

    def _decode_any(self, shape, token):
        """Decodes any value: int, byte string, list, or dict keyed by bytes."""
        kind = token.kind
        if kind is TokenKind.INTEGER:
            return _parse_int(token.slice(self.data).tobytes())
        elif kind is TokenKind.BYTE_STRING:
            return self._decode_bytes(shape.owned, token)
        elif kind is TokenKind.LIST_BEGIN:
            result = self._require_allocator().alloc_list()
            with self._rollback(lambda: release(shape, result, self.allocator)):
                token = self._next_token()
                while token.kind is not TokenKind.END:
                    result.append(self._decode_any(shape, token))
                    token = self._next_token()
            return result
        elif kind is TokenKind.DICT_BEGIN:
            result = self._require_allocator().alloc_dict()
            with self._rollback(lambda: release(shape, result, self.allocator)):
                token = self._next_token()
                while token.kind is not TokenKind.END:
                    self._expect(token, TokenKind.BYTE_STRING)
                    key = token.slice(self.data).tobytes()
                    if key in result:
                        release(shape, result.pop(key), self.allocator)
                    result[key] = self._decode_any(shape, self._next_token())
                    token = self._next_token()
            return result
        raise UnexpectedTokenError(f"Unexpected {kind.value}", self.tokens.pos)


def decode(shape, data, allocator=None, max_depth=MAX_DEPTH):
    """
    Decodes `data` into a value of the given shape.

    An allocator is needed whenever the shape holds owned nodes (owned
    Bytes, DynamicList, Any). On success the caller owns the result and
    should hand it to `release` when done; on failure nothing is left
    allocated.
    """
    decoder = BencodeDecoder(data, allocator, max_depth)
    logger.debug("Decoding %d bytes as %r", len(data), shape)
    value = decoder.decode(shape)
    if allocator is not None:
        logger.debug("Decoded value holds %d live allocations", allocator.live)
    return value


def loads(data, max_depth=MAX_DEPTH):
    """Decodes any Bencoded value into plain Python objects."""
    return decode(Any(owned=True), data, Allocator(), max_depth)
