from __future__ import annotations

import json
from urllib.error import URLError

import pytest

from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.host import HostOS
from invokelauncher.install.pins import fetch_pins, parse_pins, pin_urls, version_tag
from invokelauncher.install.policy import TorchPlatform

_PAYLOAD = json.dumps(
    {
        "python": "3.12",
        "torchIndexUrl": {
            "win32": {"cuda": "https://download.pytorch.org/whl/cu128"},
            "linux": {
                "cuda": "https://download.pytorch.org/whl/cu128",
                "cpu": "https://download.pytorch.org/whl/cpu",
                "rocm": "https://download.pytorch.org/whl/rocm6.2.4",
            },
            "darwin": {},
        },
        "unused": True,
    }
).encode("utf-8")


def test_version_tag_adds_leading_v() -> None:
    assert version_tag("5.10.0") == "v5.10.0"
    assert version_tag("v5.10.0") == "v5.10.0"


def test_pin_urls_prefer_raw_github_then_cdn() -> None:
    assert pin_urls("5.10.0") == [
        "https://raw.githubusercontent.com/invoke-ai/InvokeAI/v5.10.0/pins.json",
        "https://cdn.jsdelivr.net/gh/invoke-ai/InvokeAI@v5.10.0/pins.json",
    ]


def test_parse_pins_resolves_index_per_platform() -> None:
    pins = parse_pins(_PAYLOAD)

    assert pins.python == "3.12"
    assert pins.index_url(HostOS.LINUX, TorchPlatform.ROCM) == "https://download.pytorch.org/whl/rocm6.2.4"
    assert pins.index_url(HostOS.WINDOWS, TorchPlatform.CPU) is None
    assert pins.index_url(HostOS.MACOS, TorchPlatform.CPU) is None


def test_fetch_pins_uses_first_mirror_when_available() -> None:
    seen: list[tuple[str, float]] = []

    def fetcher(url: str, timeout: float) -> bytes:
        seen.append((url, timeout))
        return _PAYLOAD

    pins = fetch_pins("v5.10.0", fetcher=fetcher, timeout=3.0)

    assert pins.python == "3.12"
    assert seen == [("https://raw.githubusercontent.com/invoke-ai/InvokeAI/v5.10.0/pins.json", 3.0)]


def test_fetch_pins_falls_back_to_mirror() -> None:
    seen: list[str] = []

    def fetcher(url: str, _timeout: float) -> bytes:
        seen.append(url)
        if "githubusercontent" in url:
            raise URLError("unreachable")
        return _PAYLOAD

    assert fetch_pins("v5.10.0", fetcher=fetcher).python == "3.12"
    assert len(seen) == 2


def test_invalid_payload_counts_as_failed_mirror() -> None:
    def fetcher(url: str, _timeout: float) -> bytes:
        if "githubusercontent" in url:
            return b'{"python": 3}'
        return _PAYLOAD

    assert fetch_pins("v5.10.0", fetcher=fetcher).python == "3.12"


def test_fetch_pins_raises_when_every_mirror_fails() -> None:
    def fetcher(_url: str, _timeout: float) -> bytes:
        raise OSError("offline")

    with pytest.raises(LauncherError) as exc:
        fetch_pins("5.10.0", fetcher=fetcher)

    assert exc.value.code == ExitCode.INSTALL_ERROR
    assert exc.value.message == "Failed to fetch pins for version v5.10.0"
