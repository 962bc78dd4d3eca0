import importlib
from pathlib import Path
import yaml
import pytest


def _create_basic_config(path: Path) -> None:
    cfg = {
        "service": {"port": 4321},
        "upstream": {"base_url": "https://example.com/api"},
    }
    path.write_text(yaml.dump(cfg))


def _run_cli(monkeypatch: pytest.MonkeyPatch, argv: list[str]) -> dict:
    called: dict = {}

    def dummy_run(*args: object, **kwargs: object) -> None:
        called.update(kwargs)

    cli = importlib.import_module("heck_passage.cli")
    monkeypatch.setattr(cli.uvicorn, "run", dummy_run)
    monkeypatch.setattr("sys.argv", ["prog", *argv])  # clear pytest args

    cli.main()
    return called


def test_cli_https_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    cfg = tmp_path / ".heck-passage.yaml"
    _create_basic_config(cfg)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("HECK_PASSAGE_CERTFILE", "/c.pem")
    monkeypatch.setenv("HECK_PASSAGE_KEYFILE", "/k.pem")
    monkeypatch.setenv("HECK_PASSAGE_CA_CERTS", "/ca.pem")

    called = _run_cli(monkeypatch, [])

    assert called.get("ssl_certfile") == "/c.pem"
    assert called.get("ssl_keyfile") == "/k.pem"
    assert called.get("ssl_ca_certs") == "/ca.pem"


def test_cli_no_https(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    cfg = tmp_path / ".heck-passage.yaml"
    _create_basic_config(cfg)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("HECK_PASSAGE_CERTFILE", raising=False)
    monkeypatch.delenv("HECK_PASSAGE_KEYFILE", raising=False)
    monkeypatch.delenv("HECK_PASSAGE_CA_CERTS", raising=False)

    called = _run_cli(monkeypatch, [])

    assert "ssl_certfile" not in called
    assert "ssl_keyfile" not in called
    assert "ssl_ca_certs" not in called


def test_cli_port_from_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _create_basic_config(tmp_path / ".heck-passage.yaml")
    monkeypatch.setenv("HOME", str(tmp_path))

    called = _run_cli(monkeypatch, [])

    assert called["port"] == 4321
    assert called["host"] == "0.0.0.0"


def test_cli_port_env_and_flag(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _create_basic_config(tmp_path / ".heck-passage.yaml")
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("PORT", "5000")

    assert _run_cli(monkeypatch, [])["port"] == 5000
    called = _run_cli(monkeypatch, ["--port", "6000", "--host", "127.0.0.1"])
    assert called["port"] == 6000
    assert called["host"] == "127.0.0.1"


def test_cli_default_port_without_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))

    assert _run_cli(monkeypatch, [])["port"] == 3000
