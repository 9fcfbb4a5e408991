"""Platform-specific probe sets, selected once from the detected OS family."""

from __future__ import annotations

from credfix.core.models import OSFamily
from credfix.diagnostics.probes.base import BaseProbeSet, ConfigOnlyProbeSet
from credfix.diagnostics.probes.linux import LinuxProbeSet
from credfix.diagnostics.probes.macos import MacOSProbeSet
from credfix.diagnostics.probes.windows import WindowsProbeSet

PROBE_SETS: dict[OSFamily, type[BaseProbeSet]] = {
    OSFamily.LINUX: LinuxProbeSet,
    OSFamily.MACOS: MacOSProbeSet,
    OSFamily.WINDOWS: WindowsProbeSet,
    OSFamily.UNKNOWN: ConfigOnlyProbeSet,
}


def select_probe_set(os_family: OSFamily, runner, **kwargs) -> BaseProbeSet:
    return PROBE_SETS[os_family](runner, **kwargs)


__all__ = [
    "BaseProbeSet",
    "ConfigOnlyProbeSet",
    "LinuxProbeSet",
    "MacOSProbeSet",
    "WindowsProbeSet",
    "PROBE_SETS",
    "select_probe_set",
]
