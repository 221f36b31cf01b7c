"""Local filesystem access used by the fetcher, metadata store and caches."""

import os
import shutil
import tempfile
from pathlib import Path


class FileSystem:
    """Thin wrapper over pathlib so storage failures can be simulated in tests.

    All methods raise ``OSError`` on failure, except ``delete`` which treats a
    missing target as success.
    """

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def mkdir(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def write_file(self, path: Path, data: bytes) -> None:
        """Write bytes, creating parent directories and replacing any old file."""
        path = Path(path)
        self.mkdir(path.parent)
        path.write_bytes(data)

    def write_text(self, path: Path, text: str) -> None:
        """Write text through a temp file so readers never see a partial file."""
        path = Path(path)
        self.mkdir(path.parent)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def read_file(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def read_text(self, path: Path) -> str:
        return Path(path).read_text(encoding="utf-8")

    def delete(self, path: Path) -> bool:
        """Remove a file or directory tree. Returns False if nothing was there."""
        path = Path(path)
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
            return True
        if path.exists() or path.is_symlink():
            path.unlink()
            return True
        return False
