"""Platform and OS detection utilities."""

import platform
import shutil
from typing import Literal

PlatformOS = Literal["windows", "linux", "macos"]
PlatformArch = Literal["x64", "arm64", "arm", "x86"]

_OS_NAMES: dict[str, PlatformOS] = {"darwin": "macos", "windows": "windows"}
_ARCH_NAMES: dict[str, PlatformArch] = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
}


def get_os() -> PlatformOS:
    """Get the current operating system, treating anything unknown as linux."""
    return _OS_NAMES.get(platform.system().lower(), "linux")


def get_arch() -> PlatformArch:
    """Get the current CPU architecture, defaulting to x64."""
    machine = platform.machine().lower()
    if machine in _ARCH_NAMES:
        return _ARCH_NAMES[machine]
    if machine.startswith("arm"):
        return "arm"
    return "x64"


def describe_platform() -> str:
    """Short description shown by the status command, e.g. "linux/x64"."""
    return f"{get_os()}/{get_arch()}"


def find_executable(name: str) -> str | None:
    """Locate an executable on PATH."""
    return shutil.which(name)
