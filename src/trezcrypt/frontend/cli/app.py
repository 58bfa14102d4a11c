"""trezcrypt command line tool: encrypt files or clipboard text with a Trezor.

Examples::

    trezcrypt myfile.txt                      # encrypt to myfile.txt.trez
    trezcrypt myfile.txt.trez                 # decrypt to myfile.txt
    trezcrypt myfile.txt.trez -               # decrypt to standard out
    trezcrypt myfile.txt.trez /safe/myfile.txt
    trezcrypt --clipboard-save [myfile.txt.trez]
    trezcrypt --clipboard-load myfile.txt.trez
    trezcrypt --check myfile.txt.trez
"""

from __future__ import annotations

import argparse
import logging
import sys
import uuid
from pathlib import Path
from typing import Callable, List, Optional

from trezcrypt.core import envelope
from trezcrypt.core.config import CliSettings, EnvelopeConfig
from trezcrypt.core.exceptions import ConfigurationError
from trezcrypt.frontend.cli.clipboard import ClipboardWatcher, copy_to_clipboard
from trezcrypt.frontend.cli.logging_config import configure_logging
from trezcrypt.security.device import KeyWrapper, SoftwareKeyWrapper, TrezorKeyWrapper
from trezcrypt.security.entropy import random_32_byte_buffer


logger = logging.getLogger(__name__)

SUFFIX = ".trez"


class UsageError(Exception):
    # bad combination of arguments; reported without a traceback
    pass


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trezcrypt",
        description="File encryption program making use of Trezor hardware wallet security.",
    )
    parser.add_argument("files", nargs="*", help="Input file, optionally followed by the output file ('-' for stdout)")
    parser.add_argument(
        "-s",
        "--clipboard-save",
        nargs="?",
        const="",
        default=None,
        help="Save next clipboard copy to an encrypted file (clears the clipboard).",
    )
    parser.add_argument(
        "-l",
        "--clipboard-load",
        default=None,
        help="Load the clipboard with decrypted data.",
    )
    parser.add_argument("--force", action="store_true", help="Force overwrite file")
    parser.add_argument("--check", action="store_true", help="Verify envelope integrity without a device")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def make_wrapper(settings: CliSettings) -> KeyWrapper:
    if settings.software_seed is not None:
        logger.warning("Using software key wrapper; this offers no hardware protection")
        return SoftwareKeyWrapper(settings.software_seed)
    return TrezorKeyWrapper()


def _status(message: str) -> None:
    print(message, file=sys.stderr)


def _random_name() -> str:
    return f"{uuid.uuid4()}{SUFFIX}"


def _ensure_writable(path: str, force: bool) -> None:
    if path.strip() != "-" and Path(path).exists() and not force:
        raise UsageError(f"File exist, use --force to overwrite: {path}")


def save_file_or_stdout(path: str) -> Callable[[bytes], None]:
    def save(buf: bytes) -> None:
        if path.strip() == "-":
            sys.stdout.buffer.write(buf)
            sys.stdout.buffer.flush()
            return
        _status(f"Writing {path}")
        Path(path).write_bytes(buf)

    return save


def _check_file(files: List[str]) -> int:
    if len(files) != 1:
        raise UsageError("--check expects exactly one file")
    path = Path(files[0])
    if not path.exists():
        raise UsageError(f"File does not exist: {path}")
    result = envelope.check(path.read_bytes())
    print(f"validHeader: {result.valid_header}")
    print(f"validData: {result.valid_data}")
    return 0 if result.valid_header and result.valid_data else 1


class Job:
    """One unit of work: where the input comes from and where the output goes."""

    def __init__(self):
        self.read_plain_text: Optional[Callable[[], bytes]] = None
        self.read_cipher_text: Optional[Callable[[], bytes]] = None
        self.save: Optional[Callable[[bytes], None]] = None
        self.on_success: Callable[[], None] = lambda: None

    def run(self, wrapper: KeyWrapper) -> None:
        if self.read_plain_text is not None:
            def entropy() -> bytes:
                _status("Gathering entropy..")
                return random_32_byte_buffer()

            config = EnvelopeConfig(entropy=entropy)
            output = envelope.encrypt(wrapper, self.read_plain_text, config)
        else:
            output = envelope.decrypt(wrapper, self.read_cipher_text)
        self.save(output)
        self.on_success()


def plan(args: argparse.Namespace, settings: CliSettings) -> Job:
    files = args.files
    job = Job()

    if files and (args.clipboard_save is not None or args.clipboard_load is not None):
        raise UsageError("Please work with files or the clipboard but not both")
    if len(files) > 2:
        raise UsageError(f"Expecting only 2 files, instead got {len(files)}")

    if files:
        source = files[0]
        target = files[1] if len(files) > 1 else None
        if not Path(source).exists():
            raise UsageError(f"File does not exist: {source}")

        data = Path(source).read_bytes()
        is_encrypted = envelope.is_envelope(data)
        if target is None:
            if is_encrypted:
                target = source[: -len(SUFFIX)] if source.endswith(SUFFIX) else _random_name()
            else:
                target = source + SUFFIX
        _ensure_writable(target, args.force)

        if is_encrypted:
            job.read_cipher_text = lambda: data
        else:
            job.read_plain_text = lambda: data
        job.save = save_file_or_stdout(target)

    if args.clipboard_save is not None:
        target = args.clipboard_save.strip() or _random_name()
        _ensure_writable(target, args.force)
        watcher = ClipboardWatcher(poll_interval=settings.clipboard_poll)

        def read_clipboard() -> bytes:
            _status("Checking clipboard for new data.  Copy it but do not paste.  I'll encrypt, save, then erase..")
            return watcher.next_clip().encode("utf-8")

        def erase() -> None:
            _status("Erasing clipboard")
            watcher.clear_captured()

        job.read_plain_text = read_clipboard
        job.save = save_file_or_stdout(target)
        job.on_success = erase

    if args.clipboard_load is not None:
        source = args.clipboard_load.strip()
        if source in ("", "-"):
            raise UsageError("--clipboard-load requires a file name")
        if not Path(source).exists():
            raise UsageError(f"File does not exist: {source}")
        job.read_cipher_text = lambda: Path(source).read_bytes()
        job.save = lambda buf: copy_to_clipboard(buf.decode("utf-8"))

    if job.read_plain_text is None and job.read_cipher_text is None:
        raise UsageError("Nothing to do.\nTry -h for help")
    return job


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        settings = CliSettings.from_env()
    except ConfigurationError as e:
        _status(str(e))
        return 1
    configure_logging(logging.DEBUG if args.verbose else settings.log_level)

    try:
        if args.check:
            return _check_file(args.files)
        job = plan(args, settings)
    except UsageError as e:
        _status(str(e))
        return 1

    wrapper = None
    try:
        wrapper = make_wrapper(settings)
        job.run(wrapper)
    except Exception as e:
        logger.debug("operation failed", exc_info=True)
        _status(f"Error: {e}")
        return 1
    finally:
        if wrapper is not None:
            wrapper.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
