"""
Exceptions for the trezcrypt core module
Everything derives from TrezCryptError so callers have one general catcher
"""


class TrezCryptError(Exception):
    # general container for errors
    pass


class ConfigurationError(TrezCryptError, TypeError):
    # raised for a missing collaborator or a wrongly typed parameter, before any I/O
    pass


class FormatError(TrezCryptError, ValueError):
    # raised when a buffer does not hold a well formed envelope header
    pass


class DecryptionError(TrezCryptError):
    # raised when authenticated decryption of the payload fails
    pass


class DeviceError(TrezCryptError):
    # raised by key wrappers when the device refuses or is unavailable
    pass


class InvariantError(TrezCryptError):
    # raised on an internal consistency failure (e.g. a secret of the wrong size)
    pass
