from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from loguru import logger
from PIL import Image, UnidentifiedImageError

from researchloop.config import settings

THUMBNAIL_SUFFIX = "_thumb"


class StorageError(RuntimeError):
    """An image could not be persisted."""


@dataclass(frozen=True, slots=True)
class StoredArtifact:
    image_locator: str
    thumbnail_locator: str
    width: int
    height: int
    byte_size: int
    image_path: str
    thumbnail_path: str
    image_format: str
    stored_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {units[index]}"


class ArtifactStore:
    """Writes screenshots plus thumbnails under ``<base>/YYYY/MM/``."""

    def __init__(
        self,
        base_dir: str | None = None,
        *,
        public_prefix: str | None = None,
        max_bytes: int | None = None,
        max_pixels: int | None = None,
        thumbnail_size: tuple[int, int] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.base_dir = Path(base_dir or settings.artifacts_dir)
        self.public_prefix = (public_prefix or settings.artifacts_public_prefix).rstrip("/")
        self.max_bytes = max_bytes or settings.artifact_max_bytes
        self.max_pixels = max_pixels or settings.artifact_max_pixels
        self.thumbnail_size = thumbnail_size or (
            settings.thumbnail_width,
            settings.thumbnail_height,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def store(
        self, data: bytes, name_hint: str, metadata: dict[str, Any] | None = None
    ) -> StoredArtifact:
        # Pillow and disk writes block, keep them off the event loop
        return await asyncio.to_thread(self._store_sync, data, name_hint, metadata or {})

    def _store_sync(
        self, data: bytes, name_hint: str, metadata: dict[str, Any]
    ) -> StoredArtifact:
        if len(data) > self.max_bytes:
            raise StorageError(f"Image size exceeds limit: {len(data)} bytes")

        now = self._clock()
        relative_dir = Path(f"{now:%Y}") / f"{now:%m}"
        stamp = now.strftime("%Y%m%d-%H%M%S%f")
        image_name = f"{name_hint}-{stamp}.png"
        thumb_name = f"{name_hint}{THUMBNAIL_SUFFIX}-{stamp}.png"
        target_dir = self.base_dir / relative_dir
        image_path = target_dir / image_name
        thumb_path = target_dir / thumb_name

        try:
            with Image.open(io.BytesIO(data)) as image:
                width, height = image.size
                if width * height > self.max_pixels:
                    raise StorageError(f"Image dimensions exceed limit: {width}x{height}")
                image.load()
                source_format = (image.format or "png").lower()
                target_dir.mkdir(parents=True, exist_ok=True)
                image.save(image_path, format="PNG", optimize=True)
                thumb = image.copy()
                # thumbnail() fits inside the box and never enlarges
                thumb.thumbnail(self.thumbnail_size)
                thumb.save(thumb_path, format="PNG", optimize=True)
        except UnidentifiedImageError as exc:
            raise StorageError("Data is not a decodable image") from exc
        except (Image.DecompressionBombError, ValueError) as exc:
            raise StorageError(f"Image rejected: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"Image storage failed: {exc}") from exc

        byte_size = image_path.stat().st_size
        relative_image = (relative_dir / image_name).as_posix()
        relative_thumb = (relative_dir / thumb_name).as_posix()
        artifact = StoredArtifact(
            image_locator=f"{self.public_prefix}/{relative_image}",
            thumbnail_locator=f"{self.public_prefix}/{relative_thumb}",
            width=width,
            height=height,
            byte_size=byte_size,
            image_path=str(image_path),
            thumbnail_path=str(thumb_path),
            image_format=source_format,
            stored_at=now,
            metadata={
                **metadata,
                "original_size": len(data),
                "thumbnail_size": thumb_path.stat().st_size,
            },
        )
        logger.info(f"Screenshot saved: {artifact.image_locator}")
        return artifact

    def stats(self) -> dict[str, Any]:
        """Total stored bytes and files, overall and per ``YYYY-MM``."""
        by_month: dict[str, dict[str, Any]] = {}
        total_size = 0
        total_files = 0
        if self.base_dir.exists():
            for month_dir in sorted(self.base_dir.glob("[0-9][0-9][0-9][0-9]/[0-9][0-9]")):
                files = [p for p in month_dir.iterdir() if p.is_file()]
                size = sum(p.stat().st_size for p in files)
                key = f"{month_dir.parent.name}-{month_dir.name}"
                by_month[key] = {
                    "size": size,
                    "files": len(files),
                    "size_formatted": format_bytes(size),
                }
                total_size += size
                total_files += len(files)
        return {
            "by_month": by_month,
            "total": {
                "size": total_size,
                "files": total_files,
                "size_formatted": format_bytes(total_size),
            },
        }

    def _resolve(self, locator: str) -> Path:
        relative = locator.strip()
        if relative.startswith(self.public_prefix + "/"):
            relative = relative[len(self.public_prefix) + 1 :]
        base = self.base_dir.resolve()
        path = (base / relative.lstrip("/")).resolve()
        if base not in path.parents:
            raise StorageError(f"Path outside the artifact directory: {locator}")
        return path

    def delete(self, image_locator: str, thumbnail_locator: str | None = None) -> None:
        """Remove a stored image; a missing thumbnail only logs a warning."""
        image_path = self._resolve(image_locator)
        try:
            image_path.unlink()
        except OSError as exc:
            raise StorageError(f"Image deletion failed: {exc}") from exc
        if thumbnail_locator:
            try:
                self._resolve(thumbnail_locator).unlink()
            except (OSError, StorageError) as exc:
                logger.warning(f"Failed to delete thumbnail {thumbnail_locator}: {exc}")
        logger.info(f"Image deleted: {image_locator}")

    def cleanup(self, days_old: int | None = None) -> dict[str, Any]:
        """Delete stored files last modified more than ``days_old`` days ago."""
        days = settings.artifact_retention_days if days_old is None else days_old
        cutoff = (self._clock() - timedelta(days=days)).timestamp()
        deleted: list[str] = []
        errors: list[dict[str, str]] = []
        if self.base_dir.exists():
            for month_dir in sorted(self.base_dir.glob("[0-9][0-9][0-9][0-9]/[0-9][0-9]")):
                for path in sorted(p for p in month_dir.iterdir() if p.is_file()):
                    relative = path.relative_to(self.base_dir).as_posix()
                    try:
                        if path.stat().st_mtime < cutoff:
                            path.unlink()
                            deleted.append(relative)
                    except OSError as exc:
                        errors.append({"file": relative, "error": str(exc)})
        logger.info(f"Cleanup completed: {len(deleted)} files deleted, {len(errors)} errors")
        return {"deleted": deleted, "errors": errors, "cutoff_days": days}
