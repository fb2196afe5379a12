"""
Rendered file model — output of the config templates.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel


class RenderedFile(BaseModel):
    """A config file the provisioner owns on the host.

    Attributes:
        path:    Absolute destination.
        content: Full file content.
        mode:    Permission bits applied after writing.
        reason:  What the file is for (shown in debug logs).
    """

    path: Path
    content: str
    mode: int = 0o644
    reason: str = ""

    def is_current(self) -> bool:
        """True when the file on disk has exactly this content and mode."""
        try:
            if (self.path.stat().st_mode & 0o777) != self.mode:
                return False
            return self.path.read_text(encoding="utf-8") == self.content
        except OSError:
            return False
