"""Turn the result of a detached signature check into a trust decision."""
import collections
import logging
import struct

from . import util
from .gpg import decode

log = logging.getLogger(__name__)


class Trusted(collections.namedtuple('Trusted', ['identity', 'key_id'])):
    """The signature was made by a key from the keyring."""

    trusted = True

    def __str__(self):
        return 'Signed by: {} (0x{})'.format(self.identity, self.key_id)


class Untrusted(collections.namedtuple('Untrusted', ['reason'])):
    """No key from the keyring made a valid signature."""

    trusted = False

    def __str__(self):
        return 'Not trusted: {}'.format(self.reason)


def check_signature(keyring, payload, signature):
    """
    Verify `signature` (a detached OpenPGP signature) of the `payload` stream.

    A missing, malformed or non-matching signature is not an error: it just
    results in an Untrusted decision. When several user IDs are attached to
    the signing key, the first one (in key file order) is reported.
    """
    if not signature:
        return Untrusted('missing signature')

    try:
        entity, key = decode.check_detached_signature(
            keyring=keyring, stream=payload, signature_blob=signature)
    except (ValueError, EOFError, struct.error) as e:
        log.debug('signature check failed: %r', e)
        return Untrusted(str(e) or 'malformed signature')

    log.debug('signed using key %s', util.hexlify(key['key_id']))
    return Trusted(identity=entity.identity,
                   key_id=util.hexlify(entity.key_id))
