"""Key wrapping collaborators: the only place a hardware device is touched.

The envelope codec talks to a device through a single operation modelled on
Trezor's ``CipherKeyValue`` message::

    cipher_key_value(address, label, value, encrypt, ask_on_encrypt, ask_on_decrypt, iv=None)
        -> {"message": {"value": "<hex>"}}

``encrypt=True`` wraps a 32-byte secret under the key held at ``address``;
``encrypt=False`` unwraps it again. Implementations may return the response
directly or as an awaitable.

Two implementations are provided:

- :class:`TrezorKeyWrapper` drives a real device through ``trezorlib``.
- :class:`SoftwareKeyWrapper` reproduces the same construction from a seed held
  in memory. It offers none of the protection of a device and exists for
  development and tests.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from trezcrypt.core.exceptions import DeviceError

try:
    from trezorlib import misc as trezor_misc
    from trezorlib.client import get_default_client
except Exception:
    trezor_misc = None
    get_default_client = None


logger = logging.getLogger(__name__)

CipherKeyValueResponse = Dict[str, Dict[str, str]]


class KeyWrapper(Protocol):
    def cipher_key_value(
        self,
        address: Sequence[int],
        label: str,
        value: bytes,
        encrypt: bool,
        ask_on_encrypt: bool,
        ask_on_decrypt: bool,
        iv: Optional[bytes] = None,
    ) -> Any:
        ...


def _response(value: bytes) -> CipherKeyValueResponse:
    return {"message": {"value": value.hex()}}


def response_value(response: Any) -> bytes:
    """Extract the binary value from a ``{"message": {"value": hex}}`` response."""
    try:
        value = response["message"]["value"]
        return bytes.fromhex(value)
    except (KeyError, TypeError, ValueError) as e:
        raise DeviceError(f"unexpected response from key wrapper: {response!r}") from e


def _require_trezorlib():
    if trezor_misc is None:
        raise DeviceError("trezorlib is not available; install trezor to use a hardware device")


class TrezorKeyWrapper:
    """Wrap secrets with a Trezor device via ``trezorlib``.

    The client is opened lazily on first use so that constructing the wrapper
    never touches USB. PIN and confirmation prompts are handled by trezorlib.
    """

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            _require_trezorlib()
            logger.info("Connecting to Trezor device")
            self._client = get_default_client()
        return self._client

    def cipher_key_value(
        self,
        address: Sequence[int],
        label: str,
        value: bytes,
        encrypt: bool,
        ask_on_encrypt: bool,
        ask_on_decrypt: bool,
        iv: Optional[bytes] = None,
    ) -> CipherKeyValueResponse:
        _require_trezorlib()
        operation = trezor_misc.encrypt_keyvalue if encrypt else trezor_misc.decrypt_keyvalue
        result = operation(
            self.client,
            list(address),
            label,
            value,
            ask_on_encrypt=ask_on_encrypt,
            ask_on_decrypt=ask_on_decrypt,
            iv=iv or b"",
        )
        return _response(bytes(result))

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None


class SoftwareKeyWrapper:
    """In-memory stand-in for a device, using the device's own construction.

    For a path the node key is an HMAC-SHA256 chain over the indices, starting
    from the seed. The cipher key is ``HMAC-SHA512(node, label + E? + D?)``
    where the suffixes encode the confirmation flags, so an envelope only opens
    with the same label and flags it was written with. The value is then
    AES-256-CBC encrypted without padding; the IV is the supplied one or bytes
    32..48 of the HMAC output.

    ``confirm`` is called with a prompt when the operation's ``ask`` flag is
    set; a falsy return cancels the operation.
    """

    def __init__(self, seed: bytes, confirm: Optional[Callable[[str], bool]] = None):
        if not isinstance(seed, (bytes, bytearray)) or len(seed) < 16:
            raise DeviceError("software key wrapper seed must be at least 16 bytes")
        self._seed = bytes(seed)
        self.confirm = confirm

    def _node_key(self, address: Sequence[int]) -> bytes:
        node = hmac.new(self._seed, b"trezcrypt-node", hashlib.sha256).digest()
        for index in address:
            node = hmac.new(node, int(index).to_bytes(4, "big"), hashlib.sha256).digest()
        return node

    def cipher_key_value(
        self,
        address: Sequence[int],
        label: str,
        value: bytes,
        encrypt: bool,
        ask_on_encrypt: bool,
        ask_on_decrypt: bool,
        iv: Optional[bytes] = None,
    ) -> CipherKeyValueResponse:
        if len(value) % 16 != 0:
            raise DeviceError("Value length must be a multiple of 16")

        ask = ask_on_encrypt if encrypt else ask_on_decrypt
        if ask and self.confirm is not None:
            action = "Encrypt" if encrypt else "Decrypt"
            if not self.confirm(f"{action} value of \"{label}\"?"):
                raise DeviceError("Action cancelled by user")

        suffix = ("E1" if ask_on_encrypt else "E0") + ("D1" if ask_on_decrypt else "D0")
        material = hmac.new(
            self._node_key(address), (label + suffix).encode("utf-8"), hashlib.sha512
        ).digest()
        key = material[:32]
        if not iv:
            iv = material[32:48]
        elif len(iv) != 16:
            raise DeviceError("IV must be 16 bytes")

        cipher = Cipher(algorithms.AES(key), modes.CBC(bytes(iv)))
        ctx = cipher.encryptor() if encrypt else cipher.decryptor()
        return _response(ctx.update(bytes(value)) + ctx.finalize())

    def close(self) -> None:
        pass
