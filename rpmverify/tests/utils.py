"""Build OpenPGP keys, detached signatures and RPM packages for tests."""
import base64
import collections
import functools
import hashlib
import struct

import ecdsa
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils

from .. import rpm, util

ED25519_OID = b'\x2B\x06\x01\x04\x01\xDA\x47\x0F\x01'
NIST256_OID = b'\x2A\x86\x48\xCE\x3D\x03\x01\x07'


def packet(tag, blob):
    """Create small GPG packet."""
    if len(blob) < 2**8:
        length_type = 0
    elif len(blob) < 2**16:
        length_type = 1
    else:
        length_type = 2

    fmt = ['>B', '>H', '>L'][length_type]
    leading_byte = 0x80 | (tag << 2) | (length_type)
    return struct.pack('>B', leading_byte) + util.prefix_len(fmt, blob)


def subpacket(subpacket_type, fmt, *values):
    """Create GPG subpacket."""
    blob = struct.pack(fmt, *values) if values else fmt
    return struct.pack('>B', subpacket_type) + blob


def subpackets(*items):
    """Serialize several (short) GPG subpackets."""
    prefixed = [struct.pack('B', len(item)) + item for item in items]
    return util.prefix_len('>H', b''.join(prefixed))


def mpi(value):
    """Serialize multipresicion integer using GPG format."""
    bits = value.bit_length()
    return struct.pack('>H', bits) + util.num2bytes(value, (bits + 7) // 8)


def armor(blob, type_str):
    """See https://tools.ietf.org/html/rfc4880#section-6 for details."""
    head = '-----BEGIN PGP {}-----\nVersion: GnuPG v2\n\n'.format(type_str)
    body = base64.b64encode(blob).decode('ascii')
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    checksum = base64.b64encode(util.crc24(blob)).decode('ascii')
    tail = '={}\n-----END PGP {}-----\n'.format(checksum, type_str)
    return head + '\n'.join(lines) + '\n' + tail


class Ed25519Key:
    algo_id = 22

    def __init__(self, seed):
        self.sk = ecdsa.SigningKey.from_string(seed, curve=ecdsa.Ed25519)
        vk = self.sk.get_verifying_key().to_string()
        self.material = (util.prefix_len('B', ED25519_OID) +
                         mpi((0x40 << 256) | util.bytes2num(vk)))

    def sign(self, digest):
        sig = self.sk.sign(digest)
        return (util.bytes2num(sig[:32]), util.bytes2num(sig[32:]))


class Nist256Key:
    algo_id = 19

    def __init__(self, secexp):
        self.sk = ecdsa.SigningKey.from_secret_exponent(
            secexp, curve=ecdsa.NIST256p, hashfunc=hashlib.sha256)
        point = self.sk.get_verifying_key().pubkey.point
        self.material = (util.prefix_len('B', NIST256_OID) +
                         mpi((4 << 512) | (point.x() << 256) | point.y()))

    def sign(self, digest):
        return self.sk.sign_digest_deterministic(
            digest, hashfunc=hashlib.sha256,
            sigencode=lambda r, s, order: (r, s))


class RSAKey:
    algo_id = 1

    def __init__(self):
        self.sk = rsa.generate_private_key(public_exponent=65537,
                                           key_size=2048)
        numbers = self.sk.public_key().public_numbers()
        self.material = mpi(numbers.n) + mpi(numbers.e)

    def sign(self, digest):
        sig = self.sk.sign(digest, padding.PKCS1v15(),
                           utils.Prehashed(hashes.SHA256()))
        return (util.bytes2num(sig),)


RawKey = collections.namedtuple('RawKey', ['algo_id', 'material'])


class PublicKey:
    """A v4 OpenPGP public key (or subkey), able to sign SHA256 digests."""

    def __init__(self, key, created=1600000000):
        self.key = key
        self.created = created
        self.body = (struct.pack('>BLB', 4, created, key.algo_id) +
                     key.material)

    def data_to_hash(self):
        return b'\x99' + util.prefix_len('>H', self.body)

    def key_id(self):
        return hashlib.sha1(self.data_to_hash()).digest()[-8:]

    def sign(self, digest):
        return self.key.sign(digest)


def make_signature(signer, data_to_sign, sig_type=0x00, hashed_subpackets=(),
                   unhashed_subpackets=(), created=1600000000):
    """Create a v4 signature packet body (SHA256)."""
    header = struct.pack('>BBBB', 4, sig_type, signer.key.algo_id, 8)
    hashed = subpackets(subpacket(2, '>L', created), *hashed_subpackets)
    unhashed = subpackets(*unhashed_subpackets)
    tail = b'\x04\xff' + struct.pack('>L', len(header) + len(hashed))
    digest = hashlib.sha256(data_to_sign + header + hashed + tail).digest()
    params = signer.sign(digest)
    return (header + hashed + unhashed + digest[:2] +
            b''.join(mpi(p) for p in params))


def make_v3_signature(signer, data_to_sign, sig_type=0x00,
                      created=1600000000):
    """Create a v3 signature packet body (SHA256)."""
    hashed = struct.pack('>BL', sig_type, created)
    digest = hashlib.sha256(data_to_sign + hashed).digest()
    params = signer.sign(digest)
    return (b'\x03\x05' + hashed + signer.key_id() +
            struct.pack('>BB', signer.key.algo_id, 8) + digest[:2] +
            b''.join(mpi(p) for p in params))


def issuer(signer):
    return subpacket(16, signer.key_id())


def sign_detached(signer, data, version=4, issuer_signer=None):
    """Detached binary signature packet of `data`."""
    if version == 3:
        return packet(2, make_v3_signature(signer, data))
    body = make_signature(signer, data,
                          unhashed_subpackets=[issuer(issuer_signer or signer)])
    return packet(2, body)


def export_public_key(primary, user_ids, subkeys=(), flags=0x03):
    """Serialize a transferable public key, with self-signed user IDs."""
    result = [packet(6, primary.body)]
    for user_id in user_ids:
        user_id = user_id.encode('utf-8')
        result.append(packet(13, user_id))
        data_to_sign = (primary.data_to_hash() + b'\xb4' +
                        util.prefix_len('>L', user_id))
        sig = make_signature(primary, data_to_sign, sig_type=0x13,
                             hashed_subpackets=[subpacket(27, '>B', flags)],
                             unhashed_subpackets=[issuer(primary)])
        result.append(packet(2, sig))
    for subkey, subkey_flags in subkeys:
        result.append(packet(14, subkey.body))
        data_to_sign = primary.data_to_hash() + subkey.data_to_hash()
        sig = make_signature(primary, data_to_sign, sig_type=0x18,
                             hashed_subpackets=[subpacket(27, '>B',
                                                          subkey_flags)],
                             unhashed_subpackets=[issuer(primary)])
        result.append(packet(2, sig))
    return b''.join(result)


@functools.lru_cache(maxsize=None)
def ed25519_key(index=0):
    return PublicKey(Ed25519Key(bytes([index + 1]) * 32))


@functools.lru_cache(maxsize=None)
def nist256_key(index=0):
    return PublicKey(Nist256Key(secexp=0x1234567 + index))


@functools.lru_cache(maxsize=None)
def rsa_key(index=0):  # pylint: disable=unused-argument
    return PublicKey(RSAKey())


def lead(signature_type=5, name=b'test-1.0-1'):
    return struct.pack(rpm.LEAD_FORMAT, rpm.LEAD_MAGIC, 3, 0, 0, 1,
                       name, 1, signature_type, b'\x00' * 16)


def header(tags):
    """Serialize a header section out of (tag, type, count, value) tuples."""
    entries = []
    store = b''
    for tag, type_, count, value in tags:
        entries.append(struct.pack(rpm.INDEX_ENTRY_FORMAT,
                                   tag, type_, len(store), count))
        store += value
    return (struct.pack(rpm.HEADER_FORMAT, rpm.HEADER_MAGIC,
                        rpm.HEADER_VERSION, b'\x00' * 4,
                        len(entries), len(store)) +
            b''.join(entries) + store)


def string_tag(tag, value):
    return (tag, rpm.STRING_TYPE, 1, value + b'\x00')


def int32_tag(tag, *values):
    return (tag, rpm.INT32_TYPE, len(values),
            struct.pack('>{}L'.format(len(values)), *values))


def bin_tag(tag, value, count=None):
    return (tag, rpm.BIN_TYPE, len(value) if count is None else count, value)


Package = collections.namedtuple('Package', [
    'data', 'signed_offset', 'payload_offset'])


def package(signer=None, signature=None, build_time=None, payload=None,
            signature_tags=(), main_tags=None, signature_type=5,
            signature_version=4):
    """
    Build an RPM package: lead, signature header (with padding), main header
    and payload. The signature (when `signer` is set) covers the main header
    and the payload.
    """
    if payload is None:
        payload = bytes(range(256)) * 40
    if main_tags is None:
        main_tags = [string_tag(rpm.RPMTAG_NAME, b'test'),
                     string_tag(rpm.RPMTAG_VERSION, b'1.0'),
                     string_tag(rpm.RPMTAG_RELEASE, b'1')]
        if build_time is not None:
            main_tags.append(int32_tag(rpm.RPMTAG_BUILDTIME, build_time))
    main = header(main_tags)

    if signer is not None:
        signature = sign_detached(signer, main + payload,
                                  version=signature_version)
    sig_tags = [int32_tag(rpm.RPMSIGTAG_SIZE, len(main) + len(payload))]
    if signature is not None:
        sig_tags.append(bin_tag(rpm.RPMSIGTAG_PGP, signature))
    sig_tags.extend(signature_tags)

    data = lead(signature_type=signature_type) + header(sig_tags)
    signed_offset = rpm.align(len(data))
    data += b'\x00' * (signed_offset - len(data))
    return Package(data=data + main + payload, signed_offset=signed_offset,
                   payload_offset=signed_offset + len(main))


class OnePassStream:
    """Pipe-like stream: reads only, no seeking, short reads."""

    def __init__(self, data, chunk=1000):
        self.data = data
        self.offset = 0
        self.chunk = chunk

    def read(self, size=-1):
        if size is None or size < 0:
            size = len(self.data)
        size = min(size, self.chunk)
        result = self.data[self.offset:self.offset + size]
        self.offset += len(result)
        return result

    def seekable(self):
        return False

    def close(self):
        pass
