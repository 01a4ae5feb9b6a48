from __future__ import annotations

from pathlib import Path

from invokelauncher.config import LauncherConfig, load_config, remember_running_endpoint, save_config


def test_load_defaults_when_config_missing(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "config.toml")

    assert cfg.install_dir == ""
    assert cfg.server_mode is False
    assert cfg.history_size == 1000
    assert cfg.console_history_size == 2000
    assert cfg.app_package == "invokeai"
    assert cfg.kill_timeout_seconds == 5.0


def test_config_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.toml"
    original = LauncherConfig(
        install_dir="/srv/invoke",
        server_mode=True,
        enable_partial_loading=True,
        history_size=500,
        metrics_interval_seconds=10,
        uv_path='C:\\tools\\"uv".exe',
    )

    save_config(original, path)
    loaded = load_config(path)

    assert loaded.install_dir == "/srv/invoke"
    assert loaded.server_mode is True
    assert loaded.enable_partial_loading is True
    assert loaded.history_size == 500
    assert loaded.metrics_interval_seconds == 10.0
    assert loaded.uv_path == 'C:\\tools\\"uv".exe'


def test_corrupt_toml_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("not = [valid", encoding="utf-8")

    cfg = load_config(path)

    assert cfg.install_dir == ""
    assert cfg.history_size == 1000


def test_invalid_fields_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "\n".join(
            [
                "history_size = 0",
                'server_mode = "yes"',
                'app_package = "two words"',
                "kill_timeout_seconds = true",
                "status_poll_interval_seconds = 2",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    loaded = load_config(path)

    assert loaded.history_size == 1000
    assert loaded.server_mode is False
    assert loaded.app_package == "invokeai"
    assert loaded.kill_timeout_seconds == 5.0
    assert loaded.status_poll_interval_seconds == 2.0


def test_env_uv_path_overrides_config_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "config.toml"
    path.write_text('uv_path = "/opt/uv"\n', encoding="utf-8")
    monkeypatch.setenv("INVOKELAUNCHER_UV", "/usr/local/bin/uv")

    assert load_config(path).uv_path == "/usr/local/bin/uv"


def test_unknown_keys_are_not_rewritten(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text('legacy_mode = "wizard"\n', encoding="utf-8")

    save_config(load_config(path), path)

    assert "legacy_mode" not in path.read_text(encoding="utf-8")


def test_remember_running_endpoint_persists_urls(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    save_config(LauncherConfig(install_dir="/srv/invoke"), path)

    remember_running_endpoint(
        "http://0.0.0.0:9090",
        "http://127.0.0.1:9090",
        "http://192.168.1.20:9090",
        path=path,
    )
    loaded = load_config(path)

    assert loaded.install_dir == "/srv/invoke"
    assert loaded.last_running_url == "http://0.0.0.0:9090"
    assert loaded.last_loopback_url == "http://127.0.0.1:9090"
    assert loaded.last_lan_url == "http://192.168.1.20:9090"
