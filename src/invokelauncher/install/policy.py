"""GPU type to package index and package variant selection."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.host import HostOS, HostPlatform


class GpuType(str, Enum):
    NVIDIA_LEGACY = "nvidia<30xx"
    NVIDIA = "nvidia>=30xx"
    AMD = "amd"
    NONE = "nogpu"


class TorchPlatform(str, Enum):
    CUDA = "cuda"
    ROCM = "rocm"
    CPU = "cpu"


@dataclass(frozen=True)
class PackageSelection:
    torch_platform: TorchPlatform
    extras: tuple[str, ...] = ()

    def specifier(self, package: str, version: str | None = None) -> str:
        name = f"{package}[{','.join(self.extras)}]" if self.extras else package
        if version:
            return f"{name}=={version.lstrip('v')}"
        return name


# Unspecified GPU type falls back to the NVIDIA row, the most common setup.
_GPU_TABLE: dict[GpuType | None, PackageSelection] = {
    GpuType.NVIDIA_LEGACY: PackageSelection(TorchPlatform.CUDA, extras=("xformers",)),
    GpuType.NVIDIA: PackageSelection(TorchPlatform.CUDA),
    GpuType.AMD: PackageSelection(TorchPlatform.ROCM),
    GpuType.NONE: PackageSelection(TorchPlatform.CPU),
    None: PackageSelection(TorchPlatform.CUDA),
}

_MACOS_SELECTION = PackageSelection(TorchPlatform.CPU)


def parse_gpu_type(value: str | GpuType | None) -> GpuType | None:
    if value is None or isinstance(value, GpuType):
        return value
    cleaned = value.strip()
    if not cleaned:
        return None
    try:
        return GpuType(cleaned)
    except ValueError as exc:
        choices = ", ".join(item.value for item in GpuType)
        raise LauncherError(
            f"Unknown GPU type: {value}",
            code=ExitCode.INVALID_ARGS,
            hint=f"Choose one of: {choices}.",
        ) from exc


def select_package(host: HostPlatform, gpu_type: str | GpuType | None) -> PackageSelection:
    resolved = parse_gpu_type(gpu_type)
    if host.os == HostOS.MACOS:
        return _MACOS_SELECTION
    return _GPU_TABLE[resolved]
