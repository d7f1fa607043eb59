"""Decoders for OpenPGP public keys and detached signatures."""
import hashlib
import io
import logging
import struct

import ecdsa
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils

from .. import util

log = logging.getLogger(__name__)

BUFSIZE = 64 << 10


class UnsupportedError(ValueError):
    """Valid OpenPGP data that this decoder does not handle."""


class SignatureError(ValueError):
    """A detached signature does not verify."""


class UnknownIssuerError(SignatureError):
    """No key in the keyring matches the signature's issuer."""


class BadSignatureError(SignatureError):
    """The signature value does not match the signed data."""


def parse_subpackets(s):
    """See https://tools.ietf.org/html/rfc4880#section-5.2.3.1 for details."""
    subpackets = []
    total_size = s.readfmt('>H')
    data = s.read(total_size)
    s = util.Reader(io.BytesIO(data))

    while True:
        try:
            first = s.readfmt('B')
        except EOFError:
            break

        if first < 192:
            subpacket_len = first
        elif first < 255:
            subpacket_len = ((first - 192) << 8) + s.readfmt('B') + 192
        else:  # first == 255
            subpacket_len = s.readfmt('>L')

        subpackets.append(s.read(subpacket_len))

    return subpackets


def find_subpacket(subpackets, subpacket_type):
    """Return the body of the first subpacket of the given type (or None)."""
    for subpacket in subpackets:
        # the high bit marks "critical" subpackets
        if subpacket and util.low_bits(subpacket[0], 7) == subpacket_type:
            return subpacket[1:]
    return None


def parse_mpi(s):
    """See https://tools.ietf.org/html/rfc4880#section-3.2 for details."""
    bits = s.readfmt('>H')
    blob = bytearray(s.read(int((bits + 7) // 8)))
    return sum(v << (8 * i) for i, v in enumerate(reversed(blob)))


def parse_mpis(s, n):
    """Parse multiple MPIs from stream."""
    return [parse_mpi(s) for _ in range(n)]


def _ecdsa_verifier(curve):
    def _parse(mpi):
        size = curve.baselen * 8
        prefix, x, y = util.split_bits(mpi, 8, size, size)
        if prefix != 4:
            raise UnsupportedError('compressed EC points are not supported')
        try:
            point = ecdsa.ellipticcurve.Point(curve.curve, x, y)
            vk = ecdsa.VerifyingKey.from_public_point(
                point=point, curve=curve, validate_point=True)
        except (ecdsa.MalformedPointError, AssertionError) as e:
            raise ValueError('invalid EC point') from e

        def _ecdsa_verify(signature, digest, _hash_name):
            result = vk.verify_digest(signature=signature,
                                      digest=digest,
                                      sigdecode=lambda rs, order: rs,
                                      allow_truncate=True)
            log.debug('%s ECDSA signature is OK (%s)', curve.name, result)
        return _ecdsa_verify
    return _parse


def _parse_ed25519_verifier(mpi):
    prefix, value = util.split_bits(mpi, 8, 256)
    if prefix != 0x40:
        raise UnsupportedError('unsupported Ed25519 point encoding')
    try:
        vk = ecdsa.VerifyingKey.from_string(util.num2bytes(value, size=32),
                                            curve=ecdsa.Ed25519)
    except (ecdsa.MalformedPointError, AssertionError) as e:
        raise ValueError('invalid EC point') from e

    def _ed25519_verify(signature, digest, _hash_name):
        sig = b''.join(util.num2bytes(val, size=32)
                       for val in signature)
        result = vk.verify(sig, digest)
        log.debug('ed25519 EdDSA signature is OK (%s)', result)
    return _ed25519_verify


RSA_HASHES = {
    'md5': hashes.MD5,
    'sha1': hashes.SHA1,
    'sha224': hashes.SHA224,
    'sha256': hashes.SHA256,
    'sha384': hashes.SHA384,
    'sha512': hashes.SHA512,
}


def _rsa_verifier(n, e):
    key = rsa.RSAPublicNumbers(e=e, n=n).public_key()
    size = (n.bit_length() + 7) // 8

    def _rsa_verify(signature, digest, hash_name):
        algorithm = RSA_HASHES.get(hash_name)
        if algorithm is None:
            raise UnsupportedError('RSA with {} is not supported'.format(
                hash_name))
        key.verify(util.num2bytes(signature[0], size=size), digest,
                   padding.PKCS1v15(), utils.Prehashed(algorithm()))
        log.debug('RSA-%d signature is OK', n.bit_length())
    return _rsa_verify


SUPPORTED_CURVES = {
    b'\x2A\x86\x48\xCE\x3D\x03\x01\x07': _ecdsa_verifier(ecdsa.NIST256p),
    b'\x2B\x81\x04\x00\x22': _ecdsa_verifier(ecdsa.NIST384p),
    b'\x2B\x81\x04\x00\x23': _ecdsa_verifier(ecdsa.NIST521p),
    b'\x2B\x06\x01\x04\x01\xDA\x47\x0F\x01': _parse_ed25519_verifier,
}

RSA_ALGO_IDS = {1, 2, 3}
ELGAMAL_ALGO_IDS = {16, 20}
DSA_ALGO_ID = 17
ECDH_ALGO_ID = 18
ECDSA_ALGO_ID = 19
EDDSA_ALGO_ID = 22

BINARY_SIGNATURE = 0x00
CERTIFICATION_SIGNATURES = {0x10, 0x11, 0x12, 0x13}
SUBKEY_BINDING_SIGNATURE = 0x18

ISSUER_SUBPACKET = 16
KEY_FLAGS_SUBPACKET = 27
ISSUER_FINGERPRINT_SUBPACKET = 33
KEY_FLAG_SIGN = 0x02


def _parse_signature(stream):
    """See https://tools.ietf.org/html/rfc4880#section-5.2 for details."""
    p = {'type': 'signature'}
    p['version'] = stream.readfmt('B')

    if p['version'] == 3:
        # https://tools.ietf.org/html/rfc4880#section-5.2.2
        if stream.readfmt('B') != 5:
            raise ValueError('invalid v3 signature hashed length')
        p['_to_hash'] = stream.read(5)
        p['sig_type'], p['created'] = struct.unpack('>BL', p['_to_hash'])
        p['issuer'] = stream.read(8)
        p['pubkey_alg'] = stream.readfmt('B')
        p['hash_alg'] = stream.readfmt('B')
    elif p['version'] == 4:
        to_hash = io.BytesIO()
        to_hash.write(b'\x04')
        with stream.capture(to_hash):
            p['sig_type'] = stream.readfmt('B')
            p['pubkey_alg'] = stream.readfmt('B')
            p['hash_alg'] = stream.readfmt('B')
            p['hashed_subpackets'] = parse_subpackets(stream)

        # https://tools.ietf.org/html/rfc4880#section-5.2.4
        tail_to_hash = b'\x04\xff' + struct.pack('>L', to_hash.tell())
        p['_to_hash'] = to_hash.getvalue() + tail_to_hash

        p['unhashed_subpackets'] = parse_subpackets(stream)
        p['issuer'] = _find_issuer(p['hashed_subpackets'] +
                                   p['unhashed_subpackets'])
        flags = find_subpacket(p['hashed_subpackets'], KEY_FLAGS_SUBPACKET)
        p['key_flags'] = flags[0] if flags else None
    else:
        raise UnsupportedError('unsupported signature version: {}'.format(
            p['version']))

    p['hash_prefix'] = stream.readfmt('2s')
    if p['pubkey_alg'] in RSA_ALGO_IDS:
        p['sig'] = (parse_mpi(stream),)
    elif p['pubkey_alg'] in {DSA_ALGO_ID, ECDSA_ALGO_ID, EDDSA_ALGO_ID}:
        p['sig'] = (parse_mpi(stream), parse_mpi(stream))
    else:
        raise UnsupportedError('unsupported public key algo: {}'.format(
            p['pubkey_alg']))

    if stream.read():
        raise ValueError('trailing data after signature')
    return p


def _find_issuer(subpackets):
    issuer = find_subpacket(subpackets, ISSUER_SUBPACKET)
    if issuer is not None and len(issuer) == 8:
        return issuer
    fingerprint = find_subpacket(subpackets, ISSUER_FINGERPRINT_SUBPACKET)
    if fingerprint is not None and len(fingerprint) == 21:
        return fingerprint[-8:]  # v4 key ID is the fingerprint's suffix
    return None


def _parse_pubkey(stream, packet_type='pubkey'):
    """See https://tools.ietf.org/html/rfc4880#section-5.5 for details."""
    p = {'type': packet_type, 'verifier': None, 'key_flags': None}
    packet = io.BytesIO()
    with stream.capture(packet):
        p['version'] = stream.readfmt('B')
        if p['version'] != 4:
            raise UnsupportedError('unsupported key version: {}'.format(
                p['version']))
        p['created'] = stream.readfmt('>L')
        p['algo'] = stream.readfmt('B')
        if p['algo'] in RSA_ALGO_IDS:
            n, e = parse_mpis(stream, n=2)
            p['verifier'] = _rsa_verifier(n=n, e=e)
        elif p['algo'] in {ECDSA_ALGO_ID, EDDSA_ALGO_ID}:
            log.debug('parsing elliptic curve key')
            # https://tools.ietf.org/html/rfc6637#section-11
            oid_size = stream.readfmt('B')
            oid = stream.read(oid_size)
            if oid not in SUPPORTED_CURVES:
                raise UnsupportedError('unsupported curve: {}'.format(
                    util.hexlify(oid)))
            p['curve_oid'] = oid
            mpi = parse_mpi(stream)
            log.debug('mpi: %x (%d bits)', mpi, mpi.bit_length())
            p['verifier'] = SUPPORTED_CURVES[oid](mpi)
        elif p['algo'] == ECDH_ALGO_ID:
            oid_size = stream.readfmt('B')
            p['curve_oid'] = stream.read(oid_size)
            parse_mpi(stream)
            # https://tools.ietf.org/html/rfc6637#section-9
            size = stream.readfmt('B')
            p['kdf'] = stream.read(size)
        elif p['algo'] == DSA_ALGO_ID:
            log.warning('DSA signatures are not verified')
            parse_mpis(stream, n=4)
        elif p['algo'] in ELGAMAL_ALGO_IDS:
            parse_mpis(stream, n=3)
        else:
            raise UnsupportedError('unsupported public key algo: {}'.format(
                p['algo']))
        if stream.read():
            raise ValueError('trailing data after public key')

    # https://tools.ietf.org/html/rfc4880#section-12.2
    packet_data = packet.getvalue()
    data_to_hash = (b'\x99' + struct.pack('>H', len(packet_data)) +
                    packet_data)
    p['fingerprint'] = hashlib.sha1(data_to_hash).digest()
    p['key_id'] = p['fingerprint'][-8:]
    p['_to_hash'] = data_to_hash
    log.debug('key ID: %s', util.hexlify(p['key_id']))
    return p


def _parse_subkey(stream):
    return _parse_pubkey(stream, packet_type='subkey')


def _parse_user_id(stream, packet_type='user_id'):
    """See https://tools.ietf.org/html/rfc4880#section-5.11 for details."""
    value = stream.read()
    to_hash = b'\xb4' + util.prefix_len('>L', value)
    return {'type': packet_type, 'value': value, '_to_hash': to_hash}


def _parse_attribute(stream):
    # User attribute is handled as an opaque user ID
    return _parse_user_id(stream, packet_type='user_attribute')


PACKET_TYPES = {
    2: _parse_signature,
    6: _parse_pubkey,
    13: _parse_user_id,
    14: _parse_subkey,
    17: _parse_attribute,
}


def parse_packets(stream):
    """
    Support iterative parsing of available GPG packets.

    See https://tools.ietf.org/html/rfc4880#section-4.2 for details.
    """
    reader = util.Reader(stream)
    while True:
        try:
            value = reader.readfmt('B')
        except EOFError:
            return

        log.debug('prefix byte: %s', bin(value))
        if util.bit(value, 7) != 1:
            raise ValueError('invalid packet tag byte: {:#x}'.format(value))

        tag = util.low_bits(value, 6)
        if util.bit(value, 6) == 0:
            length_type = util.low_bits(tag, 2)
            tag = tag >> 2
            if length_type == 3:  # indeterminate length
                packet_size = None
            else:
                fmt = {0: '>B', 1: '>H', 2: '>L'}[length_type]
                packet_size = reader.readfmt(fmt)
        else:
            first = reader.readfmt('B')
            if first < 192:
                packet_size = first
            elif first < 224:
                packet_size = ((first - 192) << 8) + reader.readfmt('B') + 192
            elif first == 255:
                packet_size = reader.readfmt('>L')
            else:
                raise UnsupportedError('Partial Body Lengths unsupported')

        log.debug('packet length: %s', packet_size)
        packet_data = reader.read(packet_size)
        packet_type = PACKET_TYPES.get(tag)

        if packet_type is not None:
            try:
                p = packet_type(util.Reader(io.BytesIO(packet_data)))
            except UnsupportedError as e:
                log.warning('skipping packet %d: %s', tag, e)
                p = {'type': 'unsupported', 'reason': str(e)}
            p['tag'] = tag
        else:
            p = {'type': 'unknown', 'tag': tag, 'raw': packet_data}

        log.debug('packet "%s": %s', p['type'], p)
        yield p


HASH_ALGORITHMS = {
    1: 'md5',
    2: 'sha1',
    3: 'ripemd160',
    8: 'sha256',
    9: 'sha384',
    10: 'sha512',
    11: 'sha224',
}


def _hasher(signature):
    name = HASH_ALGORITHMS.get(signature['hash_alg'])
    if name is None:
        raise UnsupportedError('unsupported hash algo: {}'.format(
            signature['hash_alg']))
    try:
        return hashlib.new(name)
    except ValueError as e:
        raise UnsupportedError('{} is not available'.format(name)) from e


def digest_stream(stream, signature):
    """Hash all of `stream`, followed by the signature's own trailer."""
    hasher = _hasher(signature)
    total = 0
    for chunk in iter(lambda: stream.read(BUFSIZE), b''):
        hasher.update(chunk)
        total += len(chunk)
    hasher.update(signature['_to_hash'])
    log.debug('hashed %d bytes using %s', total, hasher.name)
    return hasher.digest()


def digest_packets(packets, signature):
    """Compute digest on specified packets, according to '_to_hash' field."""
    data_to_hash = io.BytesIO()
    for p in packets:
        data_to_hash.write(p['_to_hash'])
    return digest_stream(io.BytesIO(data_to_hash.getvalue()), signature)


def verify_digest(pubkey, digest, signature, label):
    """Verify a digest signature from a specified public key."""
    if signature['hash_prefix'] != digest[:2]:
        log.debug('%s digest prefix mismatch', label)
        raise BadSignatureError('Bad {} (digest mismatch)'.format(label))

    verifier = pubkey['verifier']
    if verifier is None:
        raise UnsupportedError('key {} cannot verify {}'.format(
            util.hexlify(pubkey['key_id']), label))
    if pubkey['algo'] != signature['pubkey_alg']:
        raise BadSignatureError('Bad {} (algorithm mismatch)'.format(label))
    try:
        verifier(signature['sig'], digest,
                 HASH_ALGORITHMS[signature['hash_alg']])
        log.debug('%s is OK', label)
    except UnsupportedError:
        raise
    except (ecdsa.BadSignatureError, ecdsa.BadDigestError,
            InvalidSignature, ValueError) as e:
        log.debug('Bad %s: %r', label, e)
        raise BadSignatureError('Bad {}'.format(label)) from e


def can_sign(key):
    """Keys without usage flags are allowed to sign."""
    return key['key_flags'] is None or bool(key['key_flags'] & KEY_FLAG_SIGN)


class Entity:
    """A primary public key, with its user IDs and subkeys."""

    def __init__(self, primary):
        self.primary = primary
        self.uids = []
        self.subkeys = []

    @property
    def user_ids(self):
        return [u['value'].decode('utf-8', 'replace') for u in self.uids]

    @property
    def identity(self):
        """The first user ID, in key file order, names the entity."""
        return self.user_ids[0]

    @property
    def key_id(self):
        return self.primary['key_id']

    def keys(self):
        yield self.primary
        for subkey in self.subkeys:
            yield subkey

    def __repr__(self):
        return '<Entity {} {!r}>'.format(util.hexlify(self.key_id),
                                         self.identity)


def _self_signatures(entity, packet):
    return [s for s in packet.get('signatures', [])
            if s.get('issuer') == entity.key_id]


def _check_user_id(entity, uid):
    """User IDs are kept even without self-signature, but not with a bad one."""
    for sig in _self_signatures(entity, uid):
        if sig['sig_type'] not in CERTIFICATION_SIGNATURES:
            continue
        if sig['version'] == 3:
            uid_to_hash = {'_to_hash': uid['value']}
        else:
            uid_to_hash = uid
        label = 'self-signature of "{}"'.format(uid['value'])
        if entity.primary['verifier'] is None:
            log.warning('%s is not verified!', label)
            continue
        digest = digest_packets([entity.primary, uid_to_hash], sig)
        try:
            verify_digest(entity.primary, digest, sig, label)
        except BadSignatureError as e:
            raise ValueError('user ID self-signature invalid') from e
        if sig.get('key_flags') is not None:
            entity.primary['key_flags'] = sig['key_flags']


def _check_subkey(entity, subkey):
    """Returns whether `subkey` is bound to the entity's primary key."""
    bindings = [s for s in _self_signatures(entity, subkey)
                if s['sig_type'] == SUBKEY_BINDING_SIGNATURE]
    if not bindings:
        log.warning('subkey %s has no binding signature, ignoring it',
                    util.hexlify(subkey['key_id']))
        return False
    sig = bindings[0]
    subkey['key_flags'] = sig.get('key_flags')
    if entity.primary['verifier'] is None:
        log.warning('binding of subkey %s is not verified!',
                    util.hexlify(subkey['key_id']))
        return True
    digest = digest_packets([entity.primary, subkey], sig)
    try:
        verify_digest(entity.primary, digest, sig, 'subkey binding')
    except BadSignatureError as e:
        raise ValueError('subkey signature invalid') from e
    return True


def _finish(entity):
    if not entity.uids:
        raise ValueError('entity {} without any identities'.format(
            util.hexlify(entity.key_id)))
    for uid in entity.uids:
        _check_user_id(entity, uid)
    entity.subkeys = [k for k in entity.subkeys if _check_subkey(entity, k)]
    log.debug('loaded %s with %d subkeys', entity, len(entity.subkeys))
    return entity


def parse_keyring(blob):
    """Parse binary (or ASCII-armored) public keys into a list of entities."""
    if util.is_armored(blob):
        blob = util.remove_armor(blob)

    entities = []
    entity = None
    current = None  # the packet that following signatures refer to
    skipping = False
    for p in parse_packets(io.BytesIO(blob)):
        if p['type'] == 'pubkey':
            entity = Entity(p)
            entities.append(entity)
            current, skipping = None, False
        elif p['type'] == 'unsupported' and p['tag'] == 6:
            log.warning('skipping unsupported public key: %s', p['reason'])
            entity, current, skipping = None, None, True
        elif entity is None:
            if not skipping:
                raise ValueError('key data must start with a public key')
        elif p['type'] == 'user_id':
            entity.uids.append(p)
            current = p
        elif p['type'] == 'subkey':
            entity.subkeys.append(p)
            current = p
        elif p['type'] == 'signature':
            if current is not None:
                current.setdefault('signatures', []).append(p)
        elif p['type'] == 'unsupported' and p['tag'] == 2:
            pass
        else:
            # user attributes, trust packets and unsupported subkeys
            current = None

    return [_finish(e) for e in entities]


def load_signature(blob):
    """Load the first signature packet out of a detached signature blob."""
    for p in parse_packets(io.BytesIO(blob)):
        if p['type'] == 'signature':
            return p
        if p['type'] == 'unsupported' and p['tag'] == 2:
            raise UnsupportedError(p['reason'])
    raise SignatureError('no signature packet found')


def check_detached_signature(keyring, stream, signature_blob):
    """
    Check a binary detached signature of `stream` against the keyring.

    Returns the (entity, key) pair whose key made the signature, or raises
    SignatureError (or UnsupportedError) when there is none.
    The stream is only read once a candidate key is found.
    """
    signature = load_signature(signature_blob)
    if signature['sig_type'] != BINARY_SIGNATURE:
        raise UnsupportedError('unsupported signature type: {:#x}'.format(
            signature['sig_type']))

    issuer = signature['issuer']
    if issuer is None:
        raise SignatureError('signature has no issuer key ID')
    log.debug('signature issuer: %s', util.hexlify(issuer))

    candidates = [(entity, key)
                  for entity in keyring
                  for key in entity.keys()
                  if key['key_id'] == issuer and can_sign(key)]
    if not candidates:
        raise UnknownIssuerError('unknown issuer: {}'.format(
            util.hexlify(issuer)))

    digest = digest_stream(stream, signature)
    error = None
    for entity, key in candidates:
        try:
            verify_digest(pubkey=key, digest=digest, signature=signature,
                          label='package signature')
            return entity, key
        except (BadSignatureError, UnsupportedError) as e:
            error = e
    raise error
