"""credfix: diagnose and repair Docker credential helper setups."""

from credfix._version import __version__

__all__ = ["__version__"]
