"""Removal of the store root on shutdown."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class StoreCleaner:
    """Deletes the store root when the application stops.

    Attributes:
        root: The store root directory.
        retain_files_on_exit: Keep everything on disk when True.
    """

    def __init__(self, root: Path, retain_files_on_exit: bool = False) -> None:
        self.root = root
        self.retain_files_on_exit = retain_files_on_exit

    def cleanup(self) -> bool:
        """Remove the root directory unless files are retained.

        Returns:
            True if the directory was removed.
        """
        if self.retain_files_on_exit:
            logger.info("Retaining store files in %s", self.root)
            return False
        if not self.root.exists():
            return False
        try:
            shutil.rmtree(self.root)
        except OSError:
            logger.warning("Failed to remove store root %s", self.root, exc_info=True)
            return False
        logger.info("Removed store root %s", self.root)
        return True
