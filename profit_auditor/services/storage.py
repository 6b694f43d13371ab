import logging
import uuid
from pathlib import Path

from profit_auditor.config import settings
from profit_auditor.spreadsheet.reader import file_extension

logger = logging.getLogger(__name__)


class BlobStorage:
    """Spreadsheet blobs stored on disk under ``{user_id}/{uuid}{ext}``"""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def save(self, user_id: str, filename: str, content: bytes) -> str:
        safe_user = "".join(c for c in str(user_id) if c.isalnum() or c in "-_") or "anonymous"
        key = f"{safe_user}/{uuid.uuid4()}{file_extension(filename)}"
        path = self._resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info(f"Stored {filename} as {key} ({len(content)} bytes)")
        return key

    def read(self, key: str) -> bytes:
        path = self._resolve(key)
        if not path.exists():
            raise FileNotFoundError(f"File not found in storage: {key}")
        return path.read_bytes()

    def delete(self, key: str):
        path = self._resolve(key)
        if path.exists():
            path.unlink()
            logger.info(f"Removed {key} from storage")


_storage = None


def get_storage() -> BlobStorage:
    global _storage
    if _storage is None:
        _storage = BlobStorage(settings.UPLOAD_DIR)
    return _storage
