"""Entropy hardening for secret generation.

A 32-byte seed is produced by absorbing, in order, into one SHA-256 state:

1. output of the operating system's secure RNG
2. CPU timing jitter measured over fixed-length floating point work windows
3. the contents of an :class:`EntropyPool` fed by external events
4. best-effort environment noise, re-hashed for a fixed diffusion window

Even if one of the sources is weak the remaining ones keep the seed usable.
CPU jitter collection is based on keybase's more-entropy generator and takes
just under a second regardless of host speed.
"""
from __future__ import annotations

import collections.abc
import hashlib
import locale
import logging
import math
import mimetypes
import os
import secrets
import shutil
import struct
import sys
import time
from typing import Iterable, List, Optional


logger = logging.getLogger(__name__)

POOL_SIZE = 101
MAX_SAMPLE_VALUE = 2**53 - 1


class EntropyPool:
    """Fixed-size accumulator of externally supplied entropy events.

    Callers feed integers (mouse coordinates, key timings, ...) with
    :meth:`add`; each integer lands in the next slot of a rotating index.
    The pool is read, never cleared, whenever a seed is collected.
    No locking is done: a racing add only changes which slot gets a value.
    """

    def __init__(self):
        self._slots: List[int] = [secrets.randbits(53) for _ in range(POOL_SIZE)]
        self._position = 0
        self._count = 0

    def add(self, *ints: int) -> None:
        self._count += 1
        for value in ints:
            try:
                value = int(value)
            except (TypeError, ValueError, OverflowError):
                # not a number; nothing to mix in
                continue
            pos = self._position % POOL_SIZE
            self._position += 1
            total = self._slots[pos] + value
            if total > MAX_SAMPLE_VALUE or total < 0:
                total = 0
            self._slots[pos] = total

    def add_sample(self, ints: Iterable[int]) -> None:
        if isinstance(ints, (str, bytes)) or not isinstance(ints, collections.abc.Iterable):
            ints = (ints,)
        self.add(*ints)

    @property
    def count(self) -> int:
        """Number of events submitted since the last :meth:`reset_count`."""
        return self._count

    def reset_count(self) -> int:
        count = self._count
        self._count = 0
        return count

    def snapshot(self) -> List[int]:
        return list(self._slots)

    def to_bytes(self) -> bytes:
        return struct.pack(f">{POOL_SIZE}Q", *self._slots)


def floating_point_count(window: float = 0.007) -> int:
    """Count chained floating point operations completed within ``window`` seconds.

    A fixed duration keeps the total runtime predictable; the variation in the
    count between windows is the entropy.
    """
    deadline = time.monotonic() + window + 0.001
    i = 0
    x = 0.0
    while time.monotonic() < deadline:
        i += 1
        x = math.sin(math.sqrt(math.log(i + x)))
    return i


def cpu_entropy(samples: int = 128, window: float = 0.007) -> List[int]:
    """Collect ``samples`` deltas between consecutive floating point counts.

    A delta is kept only if it carries at least 4 bits; discarded deltas do
    not advance the reference count.
    """
    collected: List[int] = []
    last_count: Optional[int] = None
    low_entropy_samples = 0
    while len(collected) < samples:
        count = floating_point_count(window)
        if last_count is not None:
            delta = count - last_count
            if abs(delta) < 1:
                low_entropy_samples += 1
                continue
            bits = math.floor(math.log2(abs(delta)) + 1)
            if bits < 4:
                low_entropy_samples += 1
                continue
            collected.append(delta)
        last_count = count

    if low_entropy_samples > 10:
        pct = low_entropy_samples / samples * 100
        logger.warning("%.2f%% low CPU entropy re-sampled", pct)
    return collected


def _describe_environment() -> str:
    parts = [time.ctime()]

    size = shutil.get_terminal_size()
    parts.append(f"{size.lines} {size.columns}")
    parts.append(" ".join(str(item) for item in locale.getlocale()))

    readline = sys.modules.get("readline")
    if readline is not None:
        parts.append(str(readline.get_current_history_length()))

    mimetypes.init()
    for suffix, mime_type in sorted(mimetypes.types_map.items()):
        parts.append(f"{mime_type} {suffix}")
    return " ".join(parts)


def environment_entropy(diffusion: float = 0.25) -> bytes:
    """Hash host/environment details, then re-hash for ``diffusion`` seconds.

    Returns 32 bytes.
    """
    entropy = secrets.token_bytes(POOL_SIZE).hex()
    try:
        entropy += _describe_environment()
    except Exception as error:
        logger.debug("environment details unavailable: %s", error)
        entropy += hashlib.sha256(time.ctime().encode("utf-8")).hexdigest()
    entropy += " " + time.ctime()

    digest = entropy.encode("utf-8")
    start = time.monotonic()
    while True:
        digest = hashlib.sha256(digest).digest()
        if time.monotonic() - start >= diffusion:
            break
    return digest


class EntropyCollector:
    """Produce 32-byte seeds from the RNG, CPU jitter, a pool and the environment."""

    def __init__(
        self,
        pool: Optional[EntropyPool] = None,
        samples: int = 128,
        window: float = 0.007,
        diffusion: float = 0.25,
    ):
        self.pool = pool if pool is not None else EntropyPool()
        self.samples = samples
        self.window = window
        self.diffusion = diffusion

    def collect_seed(self) -> bytes:
        events = self.pool.reset_count()
        if events > 0:
            logger.info("Additional private key entropy: %d events", events)

        h = hashlib.sha256()
        h.update(os.urandom(32))
        jitter = cpu_entropy(self.samples, self.window)
        h.update(struct.pack(f">{len(jitter)}q", *jitter))
        h.update(self.pool.to_bytes())
        h.update(environment_entropy(self.diffusion))
        return h.digest()

    __call__ = collect_seed


# module-level default pool, fed by UI event handlers
_default_pool = EntropyPool()


def get_pool() -> EntropyPool:
    return _default_pool


def add_entropy(*ints: int) -> None:
    get_pool().add(*ints)


def random_32_byte_buffer() -> bytes:
    return EntropyCollector(get_pool()).collect_seed()
