"""
Backends that carry out the external build and packaging steps.
"""

from nimrelease.backends.archive import TarXzArchiver
from nimrelease.backends.shell import (
    CsourcesBuilder,
    KochDocGenerator,
    NimMetadataProbe,
    WinReleaseTool,
)

__all__ = [
    "CsourcesBuilder",
    "KochDocGenerator",
    "NimMetadataProbe",
    "TarXzArchiver",
    "WinReleaseTool",
]
