from pathlib import Path

import pytest

import main

ROOT = Path(main.__file__).resolve().parent


def test_validate_environment_returns_values(monkeypatch):
    monkeypatch.setenv("WALLET_KEY", "0xabc")
    monkeypatch.setenv("XMTP_ENV", " dev ")
    assert main.validate_environment(["WALLET_KEY", "XMTP_ENV"]) == {
        "WALLET_KEY": "0xabc",
        "XMTP_ENV": "dev",
    }


def test_validate_environment_exits_on_missing(monkeypatch, caplog):
    monkeypatch.setenv("WALLET_KEY", "0xabc")
    monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
    with pytest.raises(SystemExit):
        main.validate_environment(["WALLET_KEY", "ENCRYPTION_KEY"])
    assert "ENCRYPTION_KEY" in caplog.text


def test_call_timeout(monkeypatch):
    monkeypatch.setenv("COLLABORATOR_TIMEOUT", "12.5")
    assert main._call_timeout() == 12.5
    monkeypatch.setenv("COLLABORATOR_TIMEOUT", "-3")
    assert main._call_timeout() == 0.0
    monkeypatch.setenv("COLLABORATOR_TIMEOUT", "soon")
    with pytest.raises(SystemExit):
        main._call_timeout()


def test_source_packages_are_plain_namespace_directories():
    for package in ("core", "transports"):
        assert not (ROOT / package / "__init__.py").exists()
    sources = [ROOT / "main.py", *ROOT.glob("core/*.py"), *ROOT.glob("transports/*.py")]
    assert len(sources) > 5
    for path in sources:
        assert "from __future__" not in path.read_text(encoding="utf-8"), path.name
