"""Read and write state snapshots on disk."""

import json
import os
import tempfile
import uuid
from pathlib import Path
from pydantic import ValidationError
from .models import StateSnapshot
from ..utils.errors import StateError
from ..utils.logging import get_logger

logger = get_logger("state.store")


class StateStore:
    """JSON file store for StateSnapshot with atomic replacement on write."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> StateSnapshot:
        """
        Load the snapshot, or an empty one if no state file exists yet.

        Raises:
            StateError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            logger.debug(f"No state file at {self.path}, starting from empty snapshot")
            return StateSnapshot()

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"Invalid JSON in state file {self.path}: {e}")
        except OSError as e:
            raise StateError(f"Error reading state file {self.path}: {e}")

        try:
            snapshot = StateSnapshot(**data)
        except (ValidationError, TypeError) as e:
            raise StateError(f"State file {self.path} is not a valid snapshot: {e}")

        logger.info(f"Loaded state from {self.path} (serial {snapshot.serial}, {len(snapshot.resources)} resources)")
        return snapshot

    def save(self, snapshot: StateSnapshot) -> StateSnapshot:
        """
        Persist a snapshot, bumping its serial and assigning a lineage on first write.

        Returns:
            The snapshot as written
        """
        snapshot = snapshot.model_copy(deep=True)
        snapshot.serial += 1
        if snapshot.lineage is None:
            snapshot.lineage = str(uuid.uuid4())
        snapshot.touch()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=self.path.parent)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(snapshot.model_dump_json(indent=2))
            os.replace(tmp_name, self.path)
        except OSError as e:
            raise StateError(f"Failed to write state file {self.path}: {e}")

        logger.info(f"Saved state to {self.path} (serial {snapshot.serial})")
        return snapshot
