from __future__ import annotations

import pytest

from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.host import HostOS, HostPlatform
from invokelauncher.install.policy import GpuType, PackageSelection, TorchPlatform, parse_gpu_type, select_package

_LINUX = HostPlatform(HostOS.LINUX, "x64")
_WINDOWS = HostPlatform(HostOS.WINDOWS, "x64")
_MACOS = HostPlatform(HostOS.MACOS, "arm64")


@pytest.mark.parametrize(
    ("gpu_type", "platform", "extras"),
    [
        ("nvidia<30xx", TorchPlatform.CUDA, ("xformers",)),
        ("nvidia>=30xx", TorchPlatform.CUDA, ()),
        ("amd", TorchPlatform.ROCM, ()),
        ("nogpu", TorchPlatform.CPU, ()),
        (None, TorchPlatform.CUDA, ()),
    ],
)
def test_gpu_type_selects_torch_platform(
    gpu_type: str | None,
    platform: TorchPlatform,
    extras: tuple[str, ...],
) -> None:
    selection = select_package(_LINUX, gpu_type)

    assert selection == PackageSelection(platform, extras)


def test_windows_uses_the_same_table() -> None:
    assert select_package(_WINDOWS, GpuType.NVIDIA_LEGACY).extras == ("xformers",)


@pytest.mark.parametrize("gpu_type", ["nvidia<30xx", "amd", None])
def test_macos_always_uses_cpu_without_extras(gpu_type: str | None) -> None:
    assert select_package(_MACOS, gpu_type) == PackageSelection(TorchPlatform.CPU)


def test_unknown_gpu_type_is_invalid_argument() -> None:
    with pytest.raises(LauncherError) as exc:
        parse_gpu_type("quantum")

    assert exc.value.code == ExitCode.INVALID_ARGS
    assert "nvidia<30xx" in exc.value.hint


def test_blank_gpu_type_means_default() -> None:
    assert parse_gpu_type("  ") is None


def test_specifier_pins_version_without_leading_v() -> None:
    assert PackageSelection(TorchPlatform.CUDA, ("xformers",)).specifier("invokeai", "v5.10.0") == (
        "invokeai[xformers]==5.10.0"
    )
    assert PackageSelection(TorchPlatform.CPU).specifier("invokeai", "5.10.0") == "invokeai==5.10.0"
    assert PackageSelection(TorchPlatform.CPU).specifier("invokeai") == "invokeai"
