"""Package managers that can install the Docker credential helpers."""

from __future__ import annotations

# Detection order matters: dnf hosts usually also ship a yum shim.
LINUX_PACKAGE_MANAGERS = ["apt-get", "dnf", "yum", "pacman", "zypper", "emerge"]

HELPER_PACKAGES = {
    "apt-get": "golang-docker-credential-helpers",
    "dnf": "docker-credential-helpers",
    "yum": "docker-credential-helpers",
    "pacman": "docker-credential-secretservice",
    "zypper": "docker-credential-helpers",
    "emerge": "app-containers/docker-credential-helpers",
    "brew": "docker-credential-helper",
}

# Helpers each package ships, in order of preference.
PACKAGE_HELPERS = {
    "apt-get": ["secretservice", "pass"],
    "dnf": ["secretservice", "pass"],
    "yum": ["secretservice", "pass"],
    "pacman": ["secretservice"],
    "zypper": ["secretservice", "pass"],
    "emerge": ["secretservice", "pass"],
    "brew": ["osxkeychain", "pass"],
}

SOURCE_INSTALL = "go install github.com/docker/docker-credential-helpers/secretservice/cmd@latest"


def helper_package(manager: str, override: str = "") -> str | None:
    return override or HELPER_PACKAGES.get(manager)


def packaged_helpers(manager: str | None) -> list[str]:
    return list(PACKAGE_HELPERS.get(manager or "", []))


def install_command(manager: str | None, override: str = "") -> list[str] | None:
    """Non-interactive install command for the helper package, if known."""
    if not manager:
        return None
    package = helper_package(manager, override)
    if package is None:
        return None
    if manager == "brew":
        return ["brew", "install", package]
    if manager == "apt-get":
        return ["sudo", "apt-get", "install", "-y", package]
    if manager in ("dnf", "yum"):
        return ["sudo", manager, "install", "-y", package]
    if manager == "pacman":
        return ["sudo", "pacman", "-S", "--noconfirm", package]
    if manager == "zypper":
        return ["sudo", "zypper", "--non-interactive", "install", package]
    if manager == "emerge":
        return ["sudo", "emerge", package]
    return None


def availability_command(manager: str, package: str) -> list[str] | None:
    """Command that exits 0 when the package repository offers ``package``."""
    if manager == "apt-get":
        return ["apt-cache", "show", package]
    if manager in ("dnf", "yum", "zypper"):
        return [manager, "info", package]
    if manager == "pacman":
        return ["pacman", "-Si", package]
    if manager == "emerge":
        return ["emerge", "--search", package.split("/")[-1]]
    if manager == "brew":
        return ["brew", "info", package]
    return None
