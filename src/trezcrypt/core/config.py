"""Configuration objects for envelope encryption and the command line tool."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Callable, List, Mapping, Optional

from trezcrypt.core.exceptions import ConfigurationError


DEFAULT_TREZOR_MSG = "Trez Cypher"
IV_SIZE = 16

# camelCase option names accepted by EnvelopeConfig.from_mapping
_OPTION_NAMES = {
    "address": "address",
    "trezorMsg": "trezor_msg",
    "askOnEncrypt": "ask_on_encrypt",
    "askOnDecrypt": "ask_on_decrypt",
    "entropy": "entropy",
    "iv": "iv",
}


def _to_binary(data: Any, message: str) -> bytes:
    if isinstance(data, str):
        try:
            return bytes.fromhex(data)
        except ValueError as e:
            raise ConfigurationError(message) from e
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    raise ConfigurationError(message)


@dataclass
class EnvelopeConfig:
    """Options for :func:`trezcrypt.core.envelope.encrypt`.

    ``entropy`` is an optional zero-argument callable returning 32 bytes that
    are hashed together with the fresh secret. ``iv`` is forwarded to the
    device and may be given as 16 bytes or as a hex string.
    """

    address: List[int] = field(default_factory=lambda: [0])
    trezor_msg: str = DEFAULT_TREZOR_MSG
    ask_on_encrypt: bool = False
    ask_on_decrypt: bool = True
    entropy: Optional[Callable[[], bytes]] = None
    iv: Optional[bytes] = None

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]]) -> "EnvelopeConfig":
        if options is None:
            return cls()
        kwargs = {}
        for key, value in options.items():
            name = _OPTION_NAMES.get(key, key)
            if name not in _OPTION_NAMES.values():
                raise ConfigurationError(f"unknown encryption option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    def validate(self) -> "EnvelopeConfig":
        """Return a normalised copy or raise :class:`ConfigurationError`."""
        if not isinstance(self.address, (list, tuple)):
            raise ConfigurationError("address should be a list of path indices")
        for index in self.address:
            if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < 2**32:
                raise ConfigurationError(f"invalid address index: {index!r}")
        if not isinstance(self.trezor_msg, str):
            raise ConfigurationError("trezorMsg should be a string")
        if not isinstance(self.ask_on_encrypt, bool) or not isinstance(self.ask_on_decrypt, bool):
            raise ConfigurationError("askOnEncrypt and askOnDecrypt should be booleans")
        if self.entropy is not None and not callable(self.entropy):
            raise ConfigurationError("entropy parameter should be function that returns bytes")

        iv = self.iv
        if iv:
            iv = _to_binary(iv, "iv needs to be a hex string or bytes")
            if len(iv) != IV_SIZE:
                raise ConfigurationError(f"iv needs to be {IV_SIZE} bytes, instead got {len(iv)}")
        else:
            iv = None
        return replace(self, address=list(self.address), iv=iv)


@dataclass
class CliSettings:
    """Settings for the command line tool, read from the environment.

    - ``TREZCRYPT_SOFTWARE_SEED``: hex seed selecting the in-memory key wrapper
      instead of a hardware device (development only)
    - ``TREZCRYPT_LOG_LEVEL``: logging level name (default ``INFO``)
    - ``TREZCRYPT_CLIPBOARD_POLL``: clipboard polling interval in seconds
    """

    software_seed: Optional[bytes] = None
    log_level: int = logging.INFO
    clipboard_poll: float = 0.3

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CliSettings":
        env = os.environ if environ is None else environ

        seed = env.get("TREZCRYPT_SOFTWARE_SEED")
        software_seed = _to_binary(seed, "TREZCRYPT_SOFTWARE_SEED must be hex") if seed else None

        level_name = env.get("TREZCRYPT_LOG_LEVEL", "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ConfigurationError(f"unknown log level: {level_name}")

        try:
            poll = float(env.get("TREZCRYPT_CLIPBOARD_POLL", "0.3"))
        except ValueError as e:
            raise ConfigurationError("TREZCRYPT_CLIPBOARD_POLL must be a number") from e

        return cls(software_seed=software_seed, log_level=level, clipboard_poll=poll)
