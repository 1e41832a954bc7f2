"""
Shapes describing what a Bencoded value should decode into.

A shape is a small immutable tree built from the classes below, e.g. the
dictionary d3:fooi42e3:bar4:spame is described by

    Record([Field('foo', Integer()), Field('bar', Bytes())])

The decoder walks this tree alongside the token stream, and `release`
walks it again to hand owned values back to the allocator.
"""
from dataclasses import dataclass, field as dataclass_field


class _Required:
    """Marker for a record field with no default."""

    def __repr__(self):
        return 'REQUIRED'


REQUIRED = _Required()


class Shape:
    """Base class of all shapes."""

    # True when decoding this shape may need an allocator.
    @property
    def needs_allocator(self) -> bool:
        return False


@dataclass(frozen=True)
class Integer(Shape):
    """An integer of `bits` width. bits=None accepts any size."""
    bits: int = 64
    signed: bool = True

    def __post_init__(self):
        if self.bits is not None and self.bits < 1:
            raise ValueError(f"Integer width must be positive, got {self.bits}")

    @property
    def bounds(self):
        """(lowest, highest) accepted value, or None when unbounded."""
        if self.bits is None:
            return None
        if self.signed:
            return -(1 << (self.bits - 1)), (1 << (self.bits - 1)) - 1
        return 0, (1 << self.bits) - 1


@dataclass(frozen=True)
class FixedBytes(Shape):
    """Exactly `size` bytes, returned as an immutable copy."""
    size: int


@dataclass(frozen=True)
class Bytes(Shape):
    """
    A byte string of any length.

    Borrowed (the default) decodes to a memoryview into the input, which
    stays valid only while the input buffer is kept alive and unmodified.
    Owned decodes to a bytearray taken from the allocator.
    """
    owned: bool = False

    @property
    def needs_allocator(self):
        return self.owned


@dataclass(frozen=True)
class FixedList(Shape):
    """Exactly `size` elements, decoded into a tuple."""
    size: int
    element: Shape

    @property
    def needs_allocator(self):
        return self.element.needs_allocator


@dataclass(frozen=True)
class DynamicList(Shape):
    """Any number of elements, decoded into an allocator-owned list."""
    element: Shape

    @property
    def needs_allocator(self):
        return True


@dataclass(frozen=True)
class Optional(Shape):
    """A record field that may be absent. Absent fields decode to None."""
    inner: Shape

    @property
    def needs_allocator(self):
        return self.inner.needs_allocator


@dataclass(frozen=True)
class Any(Shape):
    """
    Whatever value comes next, without a schema.

    Lists and dictionaries are taken from the allocator; dictionary keys
    are bytes. `owned` applies to byte strings as for Bytes.
    """
    owned: bool = True

    @property
    def needs_allocator(self):
        return True


@dataclass(frozen=True)
class Field:
    """
    One entry of a Record.

    `key` is the dictionary key matched byte-for-byte; it defaults to the
    UTF-8 encoding of `name`.
    """
    name: str
    shape: Shape
    default: object = REQUIRED
    key: bytes = None

    def __post_init__(self):
        if self.key is None:
            object.__setattr__(self, 'key', self.name.encode('utf-8'))

    @property
    def has_default(self):
        return self.default is not REQUIRED


@dataclass(frozen=True)
class Record(Shape):
    """
    A dictionary mapped onto named fields.

    Decodes to a dict keyed by field name, or to `factory(**fields)` when
    a factory (a dataclass, a named tuple, ...) is given.
    """
    fields: tuple
    factory: object = None
    _by_key: dict = dataclass_field(init=False, repr=False, compare=False)

    def __post_init__(self):
        fields = tuple(self.fields)
        by_key = {}
        for f in fields:
            if f.key in by_key:
                raise ValueError(f"Duplicate record key {f.key!r}")
            by_key[f.key] = f
        object.__setattr__(self, 'fields', fields)
        object.__setattr__(self, '_by_key', by_key)

    def field_for(self, key):
        """Returns the Field whose key equals `key`, or None."""
        return self._by_key.get(bytes(key))

    def build(self, values):
        """Turns a {name: value} dict into the record's Python value."""
        if self.factory is None:
            return values
        return self.factory(**values)

    def get(self, value, field):
        """Reads one field back out of a value built by `build`."""
        if self.factory is None:
            return value[field.name]
        return getattr(value, field.name)

    @property
    def needs_allocator(self):
        return any(f.shape.needs_allocator for f in self.fields)
