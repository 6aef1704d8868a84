"""tagl Artifact Store

Filesystem persistence for compiled templates in the compile directory.
"""

from __future__ import annotations

import logging
import os
import tempfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Optional

from tagl.exceptions import StoreIOError

log = logging.getLogger(__name__)


class ArtifactStore:
    """Filesystem-based store of compiled template modules.

    Directory structure:
        <compile_dir>/
          <basename>.<crc32>.<length>.py   # one module per (name, options)

    The crc32 and length are taken over ``"<name>:<options>"``, so the same
    template compiled with different options gets a different file.
    """

    EXTENSION = ".py"

    def __init__(self, directory: Path | str):
        """Initialize the store.

        Args:
            directory: Compile directory. Created on first write.
        """
        self.directory = Path(directory)

    @classmethod
    def record_name(cls, name: str, options: int) -> str:
        """Get the file name of the record for (name, options)."""
        key = f"{name}:{int(options)}"
        digest = zlib.crc32(key.encode("utf-8"))
        return f"{PurePosixPath(name).name}.{digest}.{len(key)}{cls.EXTENSION}"

    def path_for(self, name: str, options: int) -> Path:
        return self.directory / self.record_name(name, options)

    def exists(self, name: str, options: int) -> bool:
        return self.path_for(name, options).is_file()

    def read(self, name: str, options: int) -> Optional[str]:
        """Read a record.

        Returns:
            The compiled module source, or None if there is no record.
        """
        try:
            return self.path_for(name, options).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, name: str, options: int, code: str) -> Path:
        """Write a record atomically: temporary file, then rename over the target.

        Args:
            name: Template identifier.
            options: Option mask the code was compiled with.
            code: Compiled module source.

        Returns:
            Path of the written record.

        Raises:
            StoreIOError: If the directory or either file can not be written.
        """
        target = self.path_for(name, options)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self.directory, prefix=target.name + ".", suffix=".tmp"
            )
        except OSError as e:
            raise StoreIOError("Can not create temporary file", str(self.directory)) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(code)
            os.replace(tmp, target)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise StoreIOError(
                f"Can not move {tmp} to {target}", str(self.directory)
            ) from e

        log.debug(f"Stored compiled {name} at {target}")
        return target

    def delete(self, name: str, options: int) -> bool:
        """Remove a record. Removing a missing record is not an error.

        Returns:
            True if a record was removed.
        """
        try:
            self.path_for(name, options).unlink()
        except FileNotFoundError:
            return False
        log.debug(f"Removed compiled {name}")
        return True

    def clear(self) -> None:
        raise NotImplementedError("Clearing all compiled templates is not supported")
