"""
Generated file model — build recipes and manifests written to the
project tree by ``kubeship render`` and ``kubeship init``.
"""

from __future__ import annotations

from pydantic import BaseModel


class GeneratedFile(BaseModel):
    """An artifact produced from a profile, image, and deploy spec.

    Attributes:
        path:      Path relative to the project root.
        content:   Full file content.
        overwrite: Replace an existing file at ``path``.
        reason:    Short description shown to the user.
    """

    path: str
    content: str
    overwrite: bool = False
    reason: str = ""
