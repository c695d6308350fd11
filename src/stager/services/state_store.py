"""JSON-file state store shared by the lock, failure marker and stage records."""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from stager.exceptions import StateCorruptedError

ModelT = TypeVar("ModelT", bound=BaseModel)


class StateStore:
    """Persists pydantic records as JSON files inside ``state_dir``.

    Writes go to a temporary file that is atomically renamed into place, so a
    reader in another process sees either the old record or the new one.
    Records are never cached in memory: every process reads the disk.
    """

    def __init__(self, state_dir: Path):
        """Initialize state store.

        Args:
            state_dir: Directory holding the record files (created if missing)
        """
        self.logger = logging.getLogger("stager.state_store")
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def load(self, key: str, model: Type[ModelT]) -> Optional[ModelT]:
        """Load a record.

        Args:
            key: Record name (file stem)
            model: Pydantic model to validate against

        Returns:
            The record, or None if the file does not exist

        Raises:
            StateCorruptedError: If the file exists but is corrupted. Corrupted
                lock or marker files must be looked at by an operator, so they
                are never silently deleted.
        """
        path = self.path_for(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            self.logger.error(f"Corrupted state file {path}: {e}")
            raise StateCorruptedError(f"Corrupted state file {path}: {e}") from e

        try:
            return model(**data)
        except (ValidationError, TypeError) as e:
            self.logger.error(f"Invalid record in {path}: {e}")
            raise StateCorruptedError(f"Invalid record in {path}: {e}") from e

    def save(self, key: str, record: BaseModel) -> None:
        """Atomically write a record (temp file + rename)."""
        path = self.path_for(key)
        tmp_path = self._write_temp(path, record)
        try:
            tmp_path.replace(path)
            self.logger.debug(f"Saved state record: {key}")
        except Exception as e:
            tmp_path.unlink(missing_ok=True)
            self.logger.error(f"Failed to save state record {key}: {e}", exc_info=True)
            raise

    def create_exclusive(self, key: str, record: BaseModel) -> bool:
        """Write a record only if none exists, atomically across processes.

        The complete record is written to a temporary file which is then
        hard-linked to the final name. ``link`` fails if the name exists, so
        readers never observe a partially written record.

        Returns:
            True if this call created the record, False if it already existed
        """
        path = self.path_for(key)
        tmp_path = self._write_temp(path, record)
        try:
            os.link(tmp_path, path)
        except FileExistsError:
            return False
        finally:
            tmp_path.unlink(missing_ok=True)
        self.logger.debug(f"Created state record exclusively: {key}")
        return True

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            path.unlink()
            self.logger.debug(f"Deleted state record: {key}")

    def _write_temp(self, path: Path, record: BaseModel) -> Path:
        tmp_path = path.parent / f".{path.name}.tmp.{os.getpid()}.{id(record)}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(record.model_dump(mode="json"), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
        except Exception as e:
            tmp_path.unlink(missing_ok=True)
            self.logger.error(f"Failed to write {tmp_path}: {e}", exc_info=True)
            raise
        return tmp_path
