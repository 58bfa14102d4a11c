"""Envelope format: a device-wrapped secret plus a SecretBox-encrypted payload.

Only a 32-byte secret is sent to the device; the payload itself is encrypted
locally with that secret. This keeps the device workload small and
predictable, allows quick integrity checks without the device, and lets the
key be changed by re-wrapping the secret alone.

Layout::

    UTF8(pretty JSON header) + "\\n" + nonce || ciphertext

The header ends at the first ``"\\n}\\n"``; the ciphertext starts right after it.
Header fields::

    address               path indices of the device key
    trezorMsg             label bound into the wrap operation
    encSecret             hex of the wrapped secret
    askOnEncrypt          device confirmation policy
    askOnDecrypt
    iv                    hex, optional
    encryptedDataSha256   sha256 of the ciphertext region
    headerParamsSha256    sha256 of the fields above it (iv included when present)

``headerParamsSha256`` is computed before either hash field exists, so the
header is built in two phases and serialised once.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, NamedTuple, Optional, Union

import nacl.exceptions

from trezcrypt.core.config import EnvelopeConfig
from trezcrypt.core.exceptions import (
    ConfigurationError,
    DecryptionError,
    FormatError,
    InvariantError,
)
from trezcrypt.core.hashing import calculate_sha256_bytes, calculate_sha256_json
from trezcrypt.security.device import KeyWrapper, response_value
from trezcrypt.security.secretbox import KEY_SIZE, generate_secret, open_box, seal


logger = logging.getLogger(__name__)

HEADER_END = b"\n}\n"
# offset from the start of HEADER_END to the first ciphertext byte
PAYLOAD_SKIP = len(HEADER_END)

# integrity keys written by early releases
_LEGACY_DATA_KEY = "encrypedDataSha256"
_LEGACY_PARAMS_KEY = "trezorParamsSha256"

PayloadSource = Callable[[], Union[bytes, Awaitable[bytes]]]


@dataclass(frozen=True)
class EnvelopeHeader:
    address: List[int]
    trezor_msg: str
    enc_secret: str
    ask_on_encrypt: bool
    ask_on_decrypt: bool
    iv: Optional[str] = None
    encrypted_data_sha256: Optional[str] = None
    header_params_sha256: Optional[str] = None

    def params(self) -> Dict[str, Any]:
        """Header fields covered by ``headerParamsSha256``, in their fixed order."""
        params: Dict[str, Any] = {
            "address": list(self.address),
            "trezorMsg": self.trezor_msg,
            "encSecret": self.enc_secret,
            "askOnEncrypt": self.ask_on_encrypt,
            "askOnDecrypt": self.ask_on_decrypt,
        }
        if self.iv is not None:
            params["iv"] = self.iv
        return params

    def params_sha256(self) -> str:
        return calculate_sha256_json(self.params())

    def with_hashes(self, encrypted_data: bytes) -> "EnvelopeHeader":
        return replace(
            self,
            encrypted_data_sha256=calculate_sha256_bytes(encrypted_data),
            header_params_sha256=self.params_sha256(),
        )

    def to_dict(self) -> Dict[str, Any]:
        obj = self.params()
        if self.encrypted_data_sha256 is not None:
            obj["encryptedDataSha256"] = self.encrypted_data_sha256
        if self.header_params_sha256 is not None:
            obj["headerParamsSha256"] = self.header_params_sha256
        return obj

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "EnvelopeHeader":
        """Build a header from parsed JSON, raising ``ValueError`` naming the bad field."""
        if not isinstance(obj, dict):
            raise ValueError("header is not a JSON object")

        address = obj.get("address")
        if not isinstance(address, list):
            raise ValueError("address")
        for index in address:
            if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < 2**32:
                raise ValueError("address")
        for name in ("trezorMsg", "encSecret"):
            if not isinstance(obj.get(name), str):
                raise ValueError(name)
        for name in ("askOnDecrypt", "askOnEncrypt"):
            if not isinstance(obj.get(name), bool):
                raise ValueError(name)
        iv = obj.get("iv")
        if iv is not None and not isinstance(iv, str):
            raise ValueError("iv")

        return cls(
            address=address,
            trezor_msg=obj["trezorMsg"],
            enc_secret=obj["encSecret"],
            ask_on_encrypt=obj["askOnEncrypt"],
            ask_on_decrypt=obj["askOnDecrypt"],
            iv=iv,
            encrypted_data_sha256=_optional_str(obj, "encryptedDataSha256", _LEGACY_DATA_KEY),
            header_params_sha256=_optional_str(obj, "headerParamsSha256", _LEGACY_PARAMS_KEY),
        )

    def serialize(self) -> bytes:
        return (json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def _optional_str(obj: Mapping[str, Any], key: str, legacy_key: str) -> Optional[str]:
    value = obj.get(key, obj.get(legacy_key))
    return value if isinstance(value, str) else None


class DissectedEnvelope(NamedTuple):
    header: EnvelopeHeader
    payload_offset: int


class CheckResult(NamedTuple):
    valid_data: bool
    valid_header: bool

    def to_dict(self) -> Dict[str, bool]:
        return {"validData": self.valid_data, "validHeader": self.valid_header}


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _require_wrapper(wrapper: Any) -> None:
    if wrapper is None or not callable(getattr(wrapper, "cipher_key_value", None)):
        raise ConfigurationError("wrapper parameter is a required key wrapper (cipher_key_value)")


def _require_source(data: Any) -> None:
    if not callable(data):
        raise ConfigurationError("data parameter should be a function")


def _require_bytes(value: Any) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise ConfigurationError("data function parameter should return bytes or an awaitable of bytes")
    return bytes(value)


def _check_secret(value: bytes, what: str) -> None:
    if len(value) != KEY_SIZE:
        raise InvariantError(f"invalid {what} length: {len(value)}")


async def encrypt_async(
    wrapper: KeyWrapper,
    data: PayloadSource,
    config: Union[EnvelopeConfig, Mapping[str, Any], None] = None,
) -> bytes:
    """Encrypt the bytes returned by ``data()`` and return the full envelope.

    ``data`` is only invoked after all parameters are validated, so any PIN or
    confirmation prompt comes after configuration errors would have surfaced.
    Errors raised by the wrapper propagate unchanged.
    """
    _require_wrapper(wrapper)
    _require_source(data)
    if not isinstance(config, EnvelopeConfig):
        config = EnvelopeConfig.from_mapping(config)
    config = config.validate()

    # A 256 bit secret matches the strength of the device's private key.
    secret = generate_secret()
    _check_secret(secret, "secret")

    payload = _require_bytes(await _resolve(data()))

    if config.entropy is not None:
        extra = await _resolve(config.entropy())
        if not isinstance(extra, (bytes, bytearray)) or len(extra) != KEY_SIZE:
            raise ConfigurationError(f"entropy parameter should return {KEY_SIZE} bytes")
        secret = hashlib.sha256(secret + bytes(extra)).digest()
        _check_secret(secret, "secret")

    response = await _resolve(
        wrapper.cipher_key_value(
            config.address,
            config.trezor_msg,
            secret,
            True,
            config.ask_on_encrypt,
            config.ask_on_decrypt,
            config.iv,
        )
    )
    wrapped = response_value(response)
    _check_secret(wrapped, "wrapped secret")

    encrypted = seal(payload, secret)
    header = EnvelopeHeader(
        address=config.address,
        trezor_msg=config.trezor_msg,
        enc_secret=wrapped.hex(),
        ask_on_encrypt=config.ask_on_encrypt,
        ask_on_decrypt=config.ask_on_decrypt,
        iv=config.iv.hex() if config.iv else None,
    ).with_hashes(encrypted)
    logger.debug("encrypted %d bytes into %d byte envelope", len(payload), len(encrypted))
    return header.serialize() + encrypted


def dissect(data: bytes) -> DissectedEnvelope:
    """Parse the header of an envelope without decrypting anything.

    Raises :class:`FormatError` for anything that is not an envelope, which is
    also how plaintext input is told apart from encrypted input.
    """
    try:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"expecting bytes, got {type(data).__name__}")
        data = bytes(data)
        end = data.find(HEADER_END)
        if end < 0:
            raise ValueError("header terminator not found")
        header = EnvelopeHeader.from_dict(json.loads(data[: end + 2].decode("utf-8")))
    except (TypeError, ValueError, RecursionError) as e:
        raise FormatError(f"This is not a valid trez file format: {e}") from e
    return DissectedEnvelope(header, end + PAYLOAD_SKIP)


def is_envelope(data: bytes) -> bool:
    try:
        dissect(data)
    except FormatError:
        return False
    return True


def check(data: bytes) -> CheckResult:
    """Recompute both integrity hashes; needs neither a device nor the secret."""
    try:
        header, offset = dissect(data)
    except FormatError:
        return CheckResult(valid_data=False, valid_header=False)

    valid_header = header.header_params_sha256 == header.params_sha256()
    valid_data = header.encrypted_data_sha256 == calculate_sha256_bytes(bytes(data[offset:]))
    return CheckResult(valid_data=valid_data, valid_header=valid_header)


async def decrypt_async(wrapper: KeyWrapper, data: PayloadSource) -> bytes:
    """Decrypt the envelope returned by ``data()`` and return the plaintext."""
    _require_wrapper(wrapper)
    _require_source(data)

    envelope = _require_bytes(await _resolve(data()))
    header, offset = dissect(envelope)
    try:
        enc_secret = bytes.fromhex(header.enc_secret)
        iv = bytes.fromhex(header.iv) if header.iv else None
    except ValueError as e:
        raise FormatError(f"This is not a valid trez file format: {e}") from e
    _check_secret(enc_secret, "wrapped secret")

    response = await _resolve(
        wrapper.cipher_key_value(
            header.address,
            header.trezor_msg,
            enc_secret,
            False,
            header.ask_on_encrypt,
            header.ask_on_decrypt,
            iv,
        )
    )
    secret = response_value(response)
    _check_secret(secret, "secret")

    try:
        return open_box(envelope[offset:], secret)
    except nacl.exceptions.CryptoError as e:
        raise DecryptionError(f"Decryption Failed {e}") from e


def encrypt(
    wrapper: KeyWrapper,
    data: PayloadSource,
    config: Union[EnvelopeConfig, Mapping[str, Any], None] = None,
) -> bytes:
    """Blocking form of :func:`encrypt_async`; not for use inside a running event loop."""
    return asyncio.run(encrypt_async(wrapper, data, config))


def decrypt(wrapper: KeyWrapper, data: PayloadSource) -> bytes:
    """Blocking form of :func:`decrypt_async`."""
    return asyncio.run(decrypt_async(wrapper, data))
