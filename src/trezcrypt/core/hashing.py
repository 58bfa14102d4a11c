""" Utility for SHA-256 hashing operations. """

import hashlib
import json


def calculate_sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def calculate_sha256_json(obj) -> str:
    # Compact, order-preserving rendering; must stay stable across releases.
    rendered = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    return calculate_sha256_bytes(rendered.encode("utf-8"))
