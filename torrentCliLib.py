"""Shape of a .torrent metainfo file and its conversion to JSON-ready objects."""
from bencode_schema import Bytes, DynamicList, Field, Integer, Optional, Record

# Sizes and counts in metainfo files are unsigned 64-bit.
SIZE = Integer(bits=64, signed=False)

TORRENT_FILE = Record([
    Field('length', SIZE),
    Field('path', DynamicList(Bytes())),
])

TORRENT_INFO = Record([
    Field('files', DynamicList(TORRENT_FILE)),
    Field('length', Optional(SIZE)),
    Field('name', Optional(Bytes())),
    Field('piece length', SIZE),
    Field('pieces', Bytes()),
])

TORRENT = Record([
    Field('announce', Bytes()),
    Field('info', TORRENT_INFO),
])


def bytes_to_text(data):
    """UTF-8 text where possible; binary data such as piece hashes becomes hex."""
    data = bytes(data)
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError:
        return data.hex()


def to_jsonable(value):
    """Recursively converts a decoded value into objects json.dump accepts."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes_to_text(value)
    elif isinstance(value, dict):
        return {
            bytes_to_text(k) if isinstance(k, bytes) else k: to_jsonable(v)
            for k, v in value.items()
        }
    elif isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value
