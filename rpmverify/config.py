"""Configuration class."""


class Configuration:
    keyring = 'keys/'  # keyring file, or a directory of key files
    key_suffix = '.gpg'  # key files to load from a keyring directory

    # package format
    header_sections = 2  # signature header + main header
    supported_signature_type = 5  # header-style signature section

    # output
    log_prefix = 'rpm-verify: '
    verbosity = 0
    apply_build_time = True

    def __init__(self, package=None, **kwargs):
        self.__dict__.update(**kwargs)
        self.package = package
        assert self.header_sections >= 1
        assert self.key_suffix

    @property
    def use_stdin(self):
        return self.package == '-'

    def __repr__(self):
        return '<Configuration package={!r} keyring={!r}>'.format(
            self.package, self.keyring)
