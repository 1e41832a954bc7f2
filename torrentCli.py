import json
import logging
import os
import sys

from bencode_decoder import decode
from bencode_errors import BencodeDecodeError
from bencode_memory import Allocator, release
from bencode_tokenizer import MAX_DEPTH
from torrentCliLib import TORRENT, to_jsonable

# --- GLOBAL CONSTANTS ---

# Largest torrent file read into memory (bytes).
MAX_TORRENT_SIZE = 32 * 1024

logger = logging.getLogger(__name__)


def _env_int(name, default):
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, value)
        return default


def read_torrent_file(filepath, max_size=MAX_TORRENT_SIZE):
    """Reads the whole torrent file, or returns None after reporting the problem."""
    try:
        with open(filepath, 'rb') as f:
            contents = f.read(max_size + 1)
    except OSError as e:
        print(f"Error: Cannot read torrent file {filepath}: {e.strerror}", file=sys.stderr)
        return None

    if len(contents) > max_size:
        print(f"Error: Torrent file {filepath} is larger than {max_size} bytes", file=sys.stderr)
        return None
    logger.debug("Read %d bytes from %s", len(contents), filepath)
    return contents


def parse_torrent_file(filepath, allocator, max_size=MAX_TORRENT_SIZE, max_depth=MAX_DEPTH):
    """Reads and decodes a .torrent file into the TORRENT shape. Returns None on failure."""
    contents = read_torrent_file(filepath, max_size)
    if contents is None:
        return None

    try:
        return decode(TORRENT, contents, allocator, max_depth)
    except BencodeDecodeError as e:
        print(f"Error decoding Bencode data: {e}", file=sys.stderr)
        return None


def main(argv=None):
    argv = sys.argv if argv is None else argv
    logging.basicConfig(
        level=os.environ.get('BENCODE_LOG_LEVEL', 'WARNING').upper(),
        stream=sys.stderr,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if len(argv) != 2:
        print(f"Usage: {os.path.basename(argv[0])} <path_to_torrent_file.torrent>", file=sys.stderr)
        return 1

    allocator = Allocator()
    torrent = parse_torrent_file(
        argv[1],
        allocator,
        max_size=_env_int('TORRENT_MAX_SIZE', MAX_TORRENT_SIZE),
        max_depth=_env_int('BENCODE_MAX_DEPTH', MAX_DEPTH),
    )
    if torrent is None:
        return 1

    try:
        json.dump(to_jsonable(torrent), sys.stdout)
        sys.stdout.write('\n')
    finally:
        release(TORRENT, torrent, allocator)
    return 0


if __name__ == '__main__':
    sys.exit(main())
