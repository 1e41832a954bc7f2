from collections import namedtuple

import pytest

from bencode_decoder import BencodeDecoder, decode, loads
from bencode_errors import (
    AllocatorRequiredError,
    DepthLimitError,
    IntegerRangeError,
    InvalidIntegerError,
    MissingFieldError,
    UnexpectedEndError,
    UnexpectedTokenError,
)
from bencode_memory import Allocator
from bencode_schema import (
    Any,
    Bytes,
    DynamicList,
    Field,
    FixedBytes,
    FixedList,
    Integer,
    Optional,
    Record,
)

FOO_BAR_BAZ = b'd3:bar4:spam3:fooi42e3:bazli1ei2eee'


@pytest.fixture
def allocator():
    return Allocator()


# --- Integers ---

@pytest.mark.parametrize('n', [0, 1, 7, 255, 1024, 2**40, 2**63 - 1])
def test_decode_non_negative_integer(n):
    assert decode(Integer(), f'i{n}e'.encode()) == n


@pytest.mark.parametrize('n', [-1, -127, -2**40, -2**63])
def test_decode_negative_integer(n):
    assert decode(Integer(), f'i{n}e'.encode()) == n


def test_decode_small_widths():
    assert decode(Integer(8, signed=False), b'i255e') == 255
    assert decode(Integer(8), b'i-127e') == -127
    assert decode(Integer(8), b'i-128e') == -128


def test_unbounded_integer():
    assert decode(Integer(bits=None), b'i123456789012345678901234567890e') == 123456789012345678901234567890


@pytest.mark.parametrize('shape, data', [
    (Integer(8, signed=False), b'i256e'),
    (Integer(8, signed=False), b'i-1e'),
    (Integer(8), b'i128e'),
    (Integer(), b'i9223372036854775808e'),
])
def test_integer_out_of_range(shape, data):
    with pytest.raises(IntegerRangeError):
        decode(shape, data)


@pytest.mark.parametrize('data', [b'ie', b'i01e', b'i-0e', b'i-e'])
def test_invalid_integer(data):
    with pytest.raises(InvalidIntegerError):
        decode(Integer(), data)


def test_unterminated_integer():
    with pytest.raises(UnexpectedEndError):
        decode(Integer(), b'i1')


def test_empty_input():
    with pytest.raises(UnexpectedEndError):
        decode(Integer(), b'')


def test_integer_from_byte_string_is_wrong_token():
    with pytest.raises(UnexpectedTokenError):
        decode(Integer(), b'4:spam')


# --- Byte strings ---

@pytest.mark.parametrize('payload', [b'', b'spam', b'\x00\xff:e', b'x' * 300])
def test_decode_bytes(payload, allocator):
    data = str(len(payload)).encode() + b':' + payload
    assert decode(Bytes(), data) == payload
    assert decode(Bytes(owned=True), data, allocator) == payload


def test_borrowed_bytes_share_the_input():
    data = bytearray(b'4:spam')
    value = decode(Bytes(), data)
    assert isinstance(value, memoryview)
    data[2] = ord('S')
    assert value == b'Spam'


def test_owned_bytes_are_a_copy(allocator):
    data = bytearray(b'4:spam')
    value = decode(Bytes(owned=True), data, allocator)
    assert isinstance(value, bytearray)
    data[2] = ord('S')
    assert value == b'spam'
    assert allocator.live == 1


def test_owned_bytes_need_an_allocator():
    with pytest.raises(AllocatorRequiredError):
        decode(Bytes(owned=True), b'4:spam')


def test_bytes_claiming_too_much():
    with pytest.raises(UnexpectedEndError):
        decode(Bytes(), b'1:')


def test_zero_padded_length():
    with pytest.raises(InvalidIntegerError):
        decode(Bytes(), b'01:spam')


def test_fixed_bytes():
    value = decode(FixedBytes(4), b'4:spam')
    assert value == b'spam'
    assert isinstance(value, bytes)


@pytest.mark.parametrize('data', [b'3:egg', b'5:spams'])
def test_fixed_bytes_length_mismatch(data):
    with pytest.raises(UnexpectedTokenError):
        decode(FixedBytes(4), data)


# --- Lists ---

def test_empty_dynamic_list(allocator):
    assert decode(DynamicList(Integer()), b'le', allocator) == []


def test_dynamic_list_of_integers(allocator):
    assert decode(DynamicList(Integer()), b'li0ei255ee', allocator) == [0, 255]


def test_dynamic_list_of_bytes(allocator):
    assert decode(DynamicList(Bytes()), b'l4:spam3:egge', allocator) == [b'spam', b'egg']


def test_dynamic_list_needs_an_allocator():
    with pytest.raises(AllocatorRequiredError):
        decode(DynamicList(Integer()), b'le')


def test_nested_dynamic_lists(allocator):
    value = decode(DynamicList(DynamicList(Integer())), b'lleli1eeli2ei3eee', allocator)
    assert value == [[], [1], [2, 3]]


def test_fixed_list():
    assert decode(FixedList(2, Integer()), b'li0ei255ee') == (0, 255)


@pytest.mark.parametrize('data', [b'l', b'li', b'li0ei255e', b'li0ee'])
def test_fixed_list_unterminated(data):
    with pytest.raises(UnexpectedEndError):
        decode(FixedList(2, Integer()), data)


def test_fixed_list_too_long():
    with pytest.raises(UnexpectedTokenError):
        decode(FixedList(2, Integer()), b'li0ei1ei2ee')


def test_list_shape_on_integer():
    with pytest.raises(UnexpectedTokenError):
        decode(FixedList(0, Integer()), b'i1e')


# --- Records ---

FOO_BAR_BAZ_SHAPE = Record([
    Field('foo', Integer()),
    Field('bar', Bytes()),
    Field('baz', DynamicList(Integer())),
])


def test_empty_record():
    assert decode(Record([]), b'de') == {}


def test_record(allocator):
    value = decode(FOO_BAR_BAZ_SHAPE, FOO_BAR_BAZ, allocator)
    assert value == {'foo': 42, 'bar': b'spam', 'baz': [1, 2]}


def test_record_ignores_key_order(allocator):
    value = decode(FOO_BAR_BAZ_SHAPE, b'd3:bazli1ei2ee3:fooi42e3:bar4:spame', allocator)
    assert value == {'foo': 42, 'bar': b'spam', 'baz': [1, 2]}


def test_record_skips_unknown_keys():
    shape = Record([Field('foo', Integer()), Field('bar', Bytes())])
    assert decode(shape, FOO_BAR_BAZ) == {'foo': 42, 'bar': b'spam'}


def test_record_skips_deeply_nested_values():
    shape = Record([Field('foo', Integer())])
    data = b'd3:xxxld1:ald1:bleeeee3:fooi7e3:yyyi1ee'
    assert decode(shape, data) == {'foo': 7}


def test_record_optional_fields(allocator):
    shape = Record([
        Field('foo', Optional(Integer())),
        Field('bar', Optional(Bytes())),
        Field('baz', DynamicList(Integer())),
    ])
    value = decode(shape, b'd3:bar4:spam3:bazli1ei2eee', allocator)
    assert value == {'foo': None, 'bar': b'spam', 'baz': [1, 2]}


def test_record_default():
    shape = Record([Field('foo', Integer()), Field('bar', Integer(), default=2)])
    assert decode(shape, b'd3:fooi1ee') == {'foo': 1, 'bar': 2}


def test_record_missing_field(allocator):
    with pytest.raises(MissingFieldError) as excinfo:
        decode(FOO_BAR_BAZ_SHAPE, b'd3:fooi42e3:bazli1ei2eee', allocator)
    assert excinfo.value.field == 'bar'
    assert allocator.live == 0


@pytest.mark.parametrize('data', [b'd', b'd3:bar4:spam3:fooi42e3:bazli1ei2ee'])
def test_truncated_record(data, allocator):
    with pytest.raises(UnexpectedEndError):
        decode(FOO_BAR_BAZ_SHAPE, data, allocator)
    assert allocator.live == 0


def test_unknown_key_without_value():
    with pytest.raises(UnexpectedEndError):
        decode(Record([]), b'd3:fooe')


def test_record_key_must_be_a_byte_string():
    with pytest.raises(UnexpectedTokenError):
        decode(Record([]), b'di1ei2ee')


def test_record_key_that_is_not_an_identifier():
    shape = Record([Field('piece_length', Integer(), key=b'piece length')])
    assert decode(shape, b'd12:piece lengthi16384ee') == {'piece_length': 16384}


def test_record_factory():
    Point = namedtuple('Point', 'x y')
    shape = Record([Field('x', Integer()), Field('y', Integer(), default=0)], factory=Point)
    assert decode(shape, b'd1:xi3ee') == Point(3, 0)


def test_duplicate_key_keeps_last_value(allocator):
    shape = Record([Field('foo', Bytes(owned=True))])
    value = decode(shape, b'd3:foo1:a3:foo1:be', allocator)
    assert value == {'foo': b'b'}
    assert allocator.live == 1


def test_top_level_optional_is_its_inner_shape():
    assert decode(Optional(Integer()), b'i5e') == 5


def test_trailing_bytes_are_ignored():
    assert decode(Integer(), b'i1ei2e') == 1


def test_depth_limit(allocator):
    shape = DynamicList(Any())
    data = b'l' * 10 + b'e' * 10
    with pytest.raises(DepthLimitError):
        decode(shape, data, allocator, max_depth=5)
    assert allocator.live == 0


def test_depth_limit_while_skipping():
    with pytest.raises(DepthLimitError):
        decode(Record([]), b'd3:foo' + b'l' * 10 + b'e' * 11, max_depth=5)


# --- Any ---

def test_loads():
    value = loads(b'd4:infod6:lengthi123456e4:name8:test.txte4:listl1:ai-1eee')
    assert value == {
        b'info': {b'length': 123456, b'name': b'test.txt'},
        b'list': [b'a', -1],
    }


def test_any_borrowed_strings(allocator):
    value = decode(Any(owned=False), b'l4:spame', allocator)
    assert isinstance(value[0], memoryview)
    assert value == [b'spam']


def test_any_scalar_needs_no_allocator():
    assert decode(Any(), b'i3e') == 3


def test_any_rejects_stray_end():
    with pytest.raises(UnexpectedTokenError):
        loads(b'e')


# --- Skip engine ---

def test_skip_value_leaves_cursor_after_value():
    decoder = BencodeDecoder(b'li1eld1:xi2eeei3ee')
    decoder.tokens.next()  # outer 'l'
    decoder.skip_value()
    decoder.skip_value()
    assert decoder.decode_value(Integer(), decoder.tokens.next()) == 3
    assert decoder.tokens.depth == 1


def test_skip_value_unterminated():
    decoder = BencodeDecoder(b'lli1e')
    with pytest.raises(UnexpectedEndError):
        decoder.skip_value()


# --- Long digit runs ---

LONG_DIGITS = b'1' * 5000
LONG_VALUE = (10 ** 5000 - 1) // 9


def test_unbounded_integer_with_thousands_of_digits():
    assert decode(Integer(bits=None), b'i' + LONG_DIGITS + b'e') == LONG_VALUE
    assert decode(Integer(bits=None), b'i-' + LONG_DIGITS + b'e') == -LONG_VALUE


def test_loads_integer_with_thousands_of_digits():
    assert loads(b'li' + LONG_DIGITS + b'ee') == [LONG_VALUE]


@pytest.mark.parametrize('shape', [Integer(), Integer(8, signed=False), Integer(512)])
def test_bounded_integer_with_thousands_of_digits(shape):
    with pytest.raises(IntegerRangeError):
        decode(shape, b'i' + LONG_DIGITS + b'e')


def test_byte_string_length_with_thousands_of_digits():
    with pytest.raises(UnexpectedEndError):
        decode(Bytes(), LONG_DIGITS + b':x')


# --- Record edge cases ---

def test_known_key_without_value():
    with pytest.raises(UnexpectedEndError):
        decode(Record([Field('foo', Integer())]), b'd3:fooe')


def test_rejects_non_bytes_input():
    with pytest.raises(TypeError, match='must be bytes'):
        decode(Integer(), 5)
