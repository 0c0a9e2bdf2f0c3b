"""
File-backed storage for the cache record.

The record survives process restarts as a single JSON file:

    {"lastCacheUpdateTime": <epoch ms>, "data": <payload>}

Writes go to a temporary file in the same directory which is then renamed
over the target, so a concurrent reader sees either the old or the new
record, never a partial one.
"""
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .core import CacheRecord, DurableLoad, LoadStatus
from .errors import DurableReadError, DurableWriteError

logger = logging.getLogger("cache.durable")


class DurableStore:
    """Reads and writes the single persisted cache record."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> DurableLoad:
        """
        Read the persisted record.

        Never raises. A missing file is NOT_FOUND, a file that cannot be read
        (permissions, a directory in its place) is UNREADABLE, and content that
        does not parse as a cache record is CORRUPT. Callers treat all three
        as a cache miss; only CORRUPT content is safe to move aside.
        """
        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"Cache file not found: {self.path}")
            return DurableLoad(
                status=LoadStatus.NOT_FOUND,
                error=DurableReadError(f"{self.path} does not exist"),
            )
        except UnicodeDecodeError as e:
            logger.error(f"Cache file {self.path} is not valid UTF-8: {e}")
            return DurableLoad(status=LoadStatus.CORRUPT, error=DurableReadError(str(e)))
        except OSError as e:
            logger.error(f"Error reading cache file {self.path}: {e}")
            return DurableLoad(status=LoadStatus.UNREADABLE, error=DurableReadError(str(e)))

        try:
            record = CacheRecord.from_dict(json.loads(raw_text))
        except json.JSONDecodeError as e:
            logger.error(f"Cache file {self.path} is not valid JSON: {e}")
            return DurableLoad(status=LoadStatus.CORRUPT, error=DurableReadError(str(e)))
        except DurableReadError as e:
            logger.error(f"Cache file {self.path} is not a cache record: {e}")
            return DurableLoad(status=LoadStatus.CORRUPT, error=e)

        return DurableLoad(status=LoadStatus.FOUND, record=record)

    def save(self, record: CacheRecord) -> None:
        """
        Atomically persist a record.

        Raises:
            DurableWriteError: If the record could not be written
        """
        try:
            content = json.dumps(record.to_dict(), indent=2)
        except (TypeError, ValueError) as e:
            raise DurableWriteError(f"Payload is not JSON serializable: {e}") from e

        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            raise DurableWriteError(f"Could not write {self.path}: {e}") from e

        logger.info(
            f"Cache file written: {self.path} "
            f"(last update {record.updated_at.isoformat()})"
        )

    def quarantine(self) -> Optional[Path]:
        """
        Move a corrupt cache file aside for later inspection.

        Returns:
            The new path, or None if the file could not be moved
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        target = self.path.with_name(f"{self.path.stem}.corrupted.{timestamp}.json")
        try:
            self.path.rename(target)
        except OSError as e:
            logger.warning(f"Could not quarantine corrupt cache file {self.path}: {e}")
            return None
        logger.warning(f"Corrupt cache file moved to {target}")
        return target

    def last_modified(self) -> Optional[datetime]:
        """On-disk modification time of the cache file, if it exists."""
        try:
            mtime = self.path.stat().st_mtime
        except OSError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)
