"""Pack and push a core NuGet package with its RID-specific native packages."""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
