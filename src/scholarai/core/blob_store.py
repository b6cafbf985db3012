"""Content-addressed storage for source binaries referenced by notes."""

import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def calculate_sha256(data: bytes) -> str:
    """Calculate SHA256 hash of a binary."""
    return hashlib.sha256(data).hexdigest()


def save_to_object_store(data: bytes, extension: str, object_store_dir: Path) -> Path:
    """Save a binary to the object store using its SHA256 as filename."""
    object_store_dir.mkdir(parents=True, exist_ok=True)

    # Use SHA256 as filename to avoid duplicates
    dest_path = object_store_dir / f"{calculate_sha256(data)}.{extension.lstrip('.')}"

    if not dest_path.exists():
        dest_path.write_bytes(data)
        logger.info(f"Saved binary to object store: {dest_path}")
    else:
        logger.info(f"Binary already exists in object store: {dest_path}")

    return dest_path


class ObjectStore:
    """Blob sink for the orchestrator: stores bytes, returns a reference."""

    def __init__(self, object_store_dir: Path):
        self.object_store_dir = Path(object_store_dir)

    def __call__(self, data: bytes, extension: str) -> str:
        return str(save_to_object_store(data, extension, self.object_store_dir))
