"""
Archive backend: tar the release tree, then xz it in place.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import lzma
from pathlib import Path
import shutil
import tarfile

from nimrelease.context import ReleaseContext
from nimrelease.types import StepError

logger = logging.getLogger(__name__)

# Equivalent of `xz -9e`.
XZ_PRESET = 9 | lzma.PRESET_EXTREME


def xz_compress(path: Path, preset: int = XZ_PRESET) -> Path:
    """Compress ``path`` to ``path.xz`` and remove the original, like ``xz``."""
    target = path.with_name(path.name + ".xz")
    with open(path, "rb") as src, lzma.open(target, "wb", preset=preset) as dst:
        shutil.copyfileobj(src, dst)
    path.unlink()
    return target


@dataclass
class TarXzArchiver:
    """Write ``<destination>`` as an uncompressed tar, then compress it to ``.tar.xz``.

    Symlinks are followed so the archive holds real files even when
    ``directory`` is itself a symlink to the source tree.
    """

    preset: int = XZ_PRESET

    def run(self, context: ReleaseContext, directory: Path, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Archiving {directory} into {destination}")
        try:
            with tarfile.open(destination, "w", dereference=True) as tar:
                tar.add(str(directory), arcname=directory.name)
            return xz_compress(destination, self.preset)
        except (OSError, tarfile.TarError, lzma.LZMAError) as e:
            raise StepError("Create release archive", reason=str(e)) from e
