"""
Unit tests for the trezcrypt command line tool.
"""

import pytest
from unittest.mock import MagicMock, patch

from trezcrypt.core import envelope
from trezcrypt.frontend.cli import app
from trezcrypt.security.device import SoftwareKeyWrapper, TrezorKeyWrapper


SEED_HEX = "11" * 32


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture(autouse=True)
def software_device(monkeypatch):
    """Run every CLI test against the in-memory key wrapper with fast entropy."""
    monkeypatch.setenv("TREZCRYPT_SOFTWARE_SEED", SEED_HEX)
    monkeypatch.setenv("TREZCRYPT_CLIPBOARD_POLL", "0")
    monkeypatch.setattr(app, "random_32_byte_buffer", lambda: b"\x07" * 32)
    monkeypatch.setattr(app, "configure_logging", lambda level: None)


@pytest.fixture
def wrapper():
    return SoftwareKeyWrapper(bytes.fromhex(SEED_HEX))


@pytest.fixture
def plain_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"meet at noon")
    return path


@pytest.fixture
def fake_pyperclip():
    with patch("trezcrypt.frontend.cli.clipboard.pyperclip.copy") as mock_copy, \
            patch("trezcrypt.frontend.cli.clipboard.pyperclip.paste") as mock_paste:
        yield {"copy": mock_copy, "paste": mock_paste}


# ==============================================================================
# Tests: Files
# ==============================================================================

def test_encrypt_file_default_target(plain_file, wrapper):
    assert app.main([str(plain_file)]) == 0

    target = plain_file.with_name("notes.txt.trez")
    env = target.read_bytes()
    assert envelope.check(env) == envelope.CheckResult(True, True)
    assert envelope.decrypt(wrapper, lambda: env) == b"meet at noon"


def test_decrypt_file_default_target(plain_file):
    assert app.main([str(plain_file)]) == 0
    plain_file.unlink()

    assert app.main([str(plain_file) + ".trez"]) == 0
    assert plain_file.read_bytes() == b"meet at noon"


def test_decrypt_without_suffix_uses_random_name(tmp_path, wrapper, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "mystery"
    source.write_bytes(envelope.encrypt(wrapper, lambda: b"payload"))

    with patch("trezcrypt.frontend.cli.app.uuid.uuid4", return_value="fixed-name"):
        assert app.main([str(source)]) == 0

    assert (tmp_path / "fixed-name.trez").read_bytes() == b"payload"


def test_explicit_target(plain_file, tmp_path):
    target = tmp_path / "out.bin"
    assert app.main([str(plain_file), str(target)]) == 0
    assert envelope.is_envelope(target.read_bytes())


def test_decrypt_to_stdout(plain_file, capsysbinary):
    assert app.main([str(plain_file)]) == 0
    capsysbinary.readouterr()

    assert app.main([str(plain_file) + ".trez", "-"]) == 0
    assert capsysbinary.readouterr().out == b"meet at noon"


def test_refuses_overwrite_without_force(plain_file, capsys):
    target = plain_file.with_name("notes.txt.trez")
    target.write_bytes(b"existing")

    assert app.main([str(plain_file)]) == 1
    assert "use --force" in capsys.readouterr().err
    assert target.read_bytes() == b"existing"

    assert app.main([str(plain_file), "--force"]) == 0
    assert envelope.is_envelope(target.read_bytes())


def test_missing_input_file(tmp_path, capsys):
    assert app.main([str(tmp_path / "nope.txt")]) == 1
    assert "File does not exist" in capsys.readouterr().err


def test_too_many_files(tmp_path, capsys):
    assert app.main(["a", "b", "c"]) == 1
    assert "Expecting only 2 files" in capsys.readouterr().err


def test_files_and_clipboard_conflict(plain_file, capsys):
    assert app.main([str(plain_file), "--clipboard-load", "x.trez"]) == 1
    assert "not both" in capsys.readouterr().err


def test_nothing_to_do(capsys):
    assert app.main([]) == 1
    assert "Nothing to do." in capsys.readouterr().err


def test_tampered_file_fails(plain_file, capsys):
    assert app.main([str(plain_file)]) == 0
    target = plain_file.with_name("notes.txt.trez")
    data = bytearray(target.read_bytes())
    data[-1] ^= 0x01
    target.write_bytes(bytes(data))
    plain_file.unlink()

    assert app.main([str(target)]) == 1
    assert "Decryption Failed" in capsys.readouterr().err
    assert not plain_file.exists()


# ==============================================================================
# Tests: Check
# ==============================================================================

def test_check_valid(plain_file, capsys):
    app.main([str(plain_file)])
    capsys.readouterr()

    assert app.main(["--check", str(plain_file) + ".trez"]) == 0
    out = capsys.readouterr().out
    assert "validHeader: True" in out
    assert "validData: True" in out


def test_check_plaintext(plain_file, capsys):
    assert app.main(["--check", str(plain_file)]) == 1
    assert "validData: False" in capsys.readouterr().out


def test_check_deeply_nested_file(tmp_path, capsys):
    path = tmp_path / "nested.trez"
    path.write_bytes(b"[" * 200000 + b"\n}\n")
    assert app.main(["--check", str(path)]) == 1
    assert "validHeader: False" in capsys.readouterr().out


def test_check_needs_one_file(capsys):
    assert app.main(["--check"]) == 1
    assert "exactly one file" in capsys.readouterr().err


def test_check_does_not_touch_device(plain_file):
    app.main([str(plain_file)])
    with patch("trezcrypt.frontend.cli.app.make_wrapper") as mock_make:
        app.main(["--check", str(plain_file) + ".trez"])
    mock_make.assert_not_called()


# ==============================================================================
# Tests: Clipboard
# ==============================================================================

def test_clipboard_save(tmp_path, fake_pyperclip, wrapper):
    fake_pyperclip["paste"].side_effect = ["old", "old", "secret text", "secret text"]
    target = tmp_path / "clip.trez"

    assert app.main(["--clipboard-save", str(target)]) == 0

    env = target.read_bytes()
    assert envelope.decrypt(wrapper, lambda: env) == b"secret text"
    fake_pyperclip["copy"].assert_called_once_with("")


def test_clipboard_save_random_name(tmp_path, fake_pyperclip, monkeypatch):
    monkeypatch.chdir(tmp_path)
    fake_pyperclip["paste"].side_effect = ["", "secret", "changed"]

    with patch("trezcrypt.frontend.cli.app.uuid.uuid4", return_value="generated"):
        assert app.main(["-s"]) == 0

    assert envelope.is_envelope((tmp_path / "generated.trez").read_bytes())
    fake_pyperclip["copy"].assert_not_called()


def test_clipboard_load(tmp_path, fake_pyperclip, wrapper):
    source = tmp_path / "clip.trez"
    source.write_bytes(envelope.encrypt(wrapper, lambda: "héllo".encode("utf-8")))

    assert app.main(["--clipboard-load", str(source)]) == 0
    fake_pyperclip["copy"].assert_called_once_with("héllo")


@pytest.mark.parametrize("name", ["", "-"])
def test_clipboard_load_requires_name(name, capsys):
    assert app.main(["--clipboard-load", name]) == 1
    assert "requires a file name" in capsys.readouterr().err


# ==============================================================================
# Tests: Device selection & errors
# ==============================================================================

def test_make_wrapper_software():
    settings = app.CliSettings(software_seed=b"\x11" * 32)
    assert isinstance(app.make_wrapper(settings), SoftwareKeyWrapper)


def test_make_wrapper_trezor():
    assert isinstance(app.make_wrapper(app.CliSettings()), TrezorKeyWrapper)


def test_device_failure_reported(plain_file, capsys):
    failing = MagicMock()
    failing.cipher_key_value.side_effect = RuntimeError("device unplugged")

    with patch("trezcrypt.frontend.cli.app.make_wrapper", return_value=failing):
        assert app.main([str(plain_file)]) == 1

    assert "device unplugged" in capsys.readouterr().err
    failing.close.assert_called_once()
    assert not plain_file.with_name("notes.txt.trez").exists()


def test_bad_environment(monkeypatch, plain_file, capsys):
    monkeypatch.setenv("TREZCRYPT_SOFTWARE_SEED", "not-hex")
    assert app.main([str(plain_file)]) == 1
    assert "TREZCRYPT_SOFTWARE_SEED" in capsys.readouterr().err
