"""Security helpers: entropy hardening, SecretBox encryption and device key wrapping.

- EntropyPool / EntropyCollector for hardening fresh secrets
- XSalsa20-Poly1305 sealing of whole payloads
- Key wrappers that delegate only the 32-byte secret to a device
"""

from .entropy import EntropyPool, EntropyCollector, add_entropy, get_pool, random_32_byte_buffer
from .secretbox import generate_secret, seal, open_box
from .device import KeyWrapper, SoftwareKeyWrapper, TrezorKeyWrapper, response_value

__all__ = [
    "EntropyPool",
    "EntropyCollector",
    "add_entropy",
    "get_pool",
    "random_32_byte_buffer",
    "generate_secret",
    "seal",
    "open_box",
    "KeyWrapper",
    "SoftwareKeyWrapper",
    "TrezorKeyWrapper",
    "response_value",
]
