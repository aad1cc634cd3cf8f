import os
from pathlib import Path
from typing import Protocol

STORAGE_DIR = os.getenv("STORAGE_DIR", "/var/data/fitchat-storage")
STORAGE_MOUNT_PATH = "/storage"
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", f"http://localhost:8000{STORAGE_MOUNT_PATH}")
FOOD_IMAGES_BUCKET = "food-images"


class ObjectStorage(Protocol):
    def upload(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        ...


class LocalObjectStorage:
    """Filesystem-backed bucket store. Returns the public URL for the written object."""

    def __init__(self, root: str = STORAGE_DIR, public_url: str = STORAGE_PUBLIC_URL) -> None:
        self.root = Path(root).expanduser().resolve()
        self.public_url = public_url.rstrip("/")

    def upload(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        if not data:
            raise ValueError("Refusing to upload an empty object")
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise ValueError(f"Object path escapes storage root: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"{self.public_url}/{path}"


def food_image_path(user_id: str, object_id: str) -> str:
    return f"{FOOD_IMAGES_BUCKET}/{user_id}/{object_id}.png"


def get_object_storage() -> ObjectStorage:
    return LocalObjectStorage()
