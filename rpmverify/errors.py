"""Errors raised while verifying a package signature."""


class VerifyError(Exception):
    """Base class for all fatal verification errors."""


class KeyringReadError(VerifyError):
    """A key source cannot be read."""


class KeyringParseError(VerifyError):
    """A key file does not decode as OpenPGP public keys."""


class EmptyKeyringError(VerifyError):
    """No keys were loaded from the key source."""


class UnsupportedSignatureTypeError(VerifyError):
    """The package lead declares an unsupported signature type."""

    def __init__(self, signature_type):
        super().__init__('Unknown signature type: {}'.format(signature_type))
        self.signature_type = signature_type


class FormatError(VerifyError):
    """The package (or a signature packet) is malformed or truncated."""
