"""
Local filesystem object storage.

Object paths are relative to a root directory; ``file://`` URIs and absolute
paths inside the root are accepted too. Paths that escape the root are
rejected.
"""

from pathlib import Path
from typing import Union
from urllib.parse import unquote, urlparse

from sensorlog.shared.errors import StorageDownloadError
from sensorlog.shared.observability import get_logger

logger = get_logger(__name__)


class LocalObjectStorage:
    """ObjectStorage reading objects from a local directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser().resolve()

    def resolve(self, path: str) -> Path:
        """
        Map an object path to a file under the root.

        Raises:
            StorageDownloadError: If the path is empty or escapes the root
        """
        if not path:
            raise StorageDownloadError(path, "empty object path")

        if path.startswith("file://"):
            path = unquote(urlparse(path).path)

        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        candidate = candidate.resolve()

        if candidate != self.root and self.root not in candidate.parents:
            raise StorageDownloadError(path, "path is outside the storage root")
        return candidate

    def download(self, path: str) -> bytes:
        target = self.resolve(path)
        try:
            data = target.read_bytes()
        except OSError as e:
            raise StorageDownloadError(path, str(e)) from e

        logger.debug("object_downloaded", path=path, size=len(data))
        return data
