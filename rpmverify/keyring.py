"""Load the trusted public keys from a key file, or a directory of them."""
import logging
import os
import struct

from . import util
from .errors import EmptyKeyringError, KeyringParseError, KeyringReadError
from .gpg import decode

log = logging.getLogger(__name__)


def find_key_files(directory, suffix):
    """Recursively list the files below `directory` ending with `suffix`."""
    def _raise(error):
        raise KeyringReadError('Error reading keyring directory: {}'.format(
            error)) from error

    result = []
    for root, dirs, files in os.walk(directory, onerror=_raise):
        dirs.sort()  # deterministic walk order
        for name in sorted(files):
            path = os.path.join(root, name)
            if name.endswith(suffix) and os.path.isfile(path):
                result.append(path)
    log.debug('found %d key files under %s', len(result), directory)
    return result


def load_key_file(path):
    """Read and parse a single (binary or armored) key file."""
    try:
        with open(path, 'rb') as f:
            blob = f.read()
    except OSError as e:
        raise KeyringReadError('Error reading keyring file {}: {}'.format(
            path, e)) from e

    try:
        entities = decode.parse_keyring(blob)
    except (ValueError, EOFError, struct.error) as e:
        raise KeyringParseError('Error loading keyring file {}: {}'.format(
            path, e)) from e

    for entity in entities:
        log.debug('loaded key %s "%s" from %s',
                  util.hexlify(entity.key_id), entity.identity, path)
    return entities


def load_keyring(source, suffix='.gpg'):
    """
    Load all keys out of `source` (a key file, or a directory of key files).

    Any unreadable or malformed key file fails the whole keyring; an empty
    keyring is an error as well.
    """
    if os.path.isdir(source):
        keyring = []
        for path in find_key_files(source, suffix):
            keyring.extend(load_key_file(path))
    else:
        keyring = load_key_file(source)

    if not keyring:
        raise EmptyKeyringError('no keys loaded from {}'.format(source))
    log.debug('loaded %d keys from %s', len(keyring), source)
    return keyring
