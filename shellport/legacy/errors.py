from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ShellImportError(Exception):
    message: str
    path: str | None = None
    detail: str | None = None

    def __str__(self) -> str:  # pragma: no cover - formatting
        loc = f" ({self.path})" if self.path else ""
        ctx = f"\n  >> {self.detail}" if self.detail else ""
        return f"{self.message}{loc}{ctx}"


@dataclass
class ArchiveError(ShellImportError):
    """Archive missing or unreadable."""


@dataclass
class NeutralSurfaceMissingError(ShellImportError):
    """Surface 0 is not defined by the shell."""


@dataclass
class CompositionError(ShellImportError):
    """None of the layers resolved to an image on disk."""


@dataclass
class CacheMissingError(ShellImportError):
    """surfaces.json is gone; the bundle must be re-imported."""
