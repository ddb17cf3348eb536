"""
Stage-boundary session persistence.

Append-only JSON files holding Captured-Data Store snapshots, written each
time a stage is closed with 'proceed'.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from coach.contracts import Stage, STAGE_ORDER
from coach.config import DEFAULT_PERSISTENCE_DIR

logger = logging.getLogger(__name__)


class SessionPersistence:
    """
    Persistence Adapter for one authoring session.

    Layout:
        outputs/sessions/SESSION-abc123/
            SESSION-abc123_01_IDEATION.json
            SESSION-abc123_02_JOURNEY.json
            SESSION-abc123_03_DELIVERABLES.json

    Design:
    - Append-only (never overwrite)
    - One file per completed stage
    - Each file holds the full store at that boundary, so the latest
      file alone is enough to restore a session
    """

    def __init__(self, session_id: str, base_dir: str = DEFAULT_PERSISTENCE_DIR):
        """
        Args:
            session_id: Session identifier (see helpers.generate_session_id)
            base_dir: Base directory for all sessions

        Raises:
            ValueError: If session_id is empty
        """
        if not session_id:
            raise ValueError("session_id must be a non-empty string")

        self.session_id = session_id
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"SessionPersistence initialized: {self.base_dir} (session {session_id})")

    def _session_dir(self, session_id: Optional[str] = None) -> Path:
        return self.base_dir / f"SESSION-{session_id or self.session_id}"

    def save(self, captured_snapshot: Mapping[str, Any], stage: Stage) -> str:
        """
        Save a store snapshot for a completed stage.

        Args:
            captured_snapshot: Captured-Data Store snapshot
            stage: Stage that was just closed

        Returns:
            str: Absolute path to saved file

        Raises:
            FileExistsError: If this stage was already saved (double-submit)
        """
        stage = Stage(stage)
        session_dir = self._session_dir()
        session_dir.mkdir(exist_ok=True)

        ordinal = STAGE_ORDER.index(stage) + 1
        filename = f"SESSION-{self.session_id}_{ordinal:02d}_{stage.value}.json"
        filepath = session_dir / filename

        if filepath.exists():
            raise FileExistsError(
                f"Stage file already exists: {filepath}. "
                f"This indicates a double-submit of 'proceed'."
            )

        record = {
            'session_id': self.session_id,
            'stage': stage.value,
            'saved_at': datetime.now(timezone.utc).isoformat(),
            'captured_data': dict(captured_snapshot)
        }

        with open(filepath, 'w') as f:
            json.dump(record, f, indent=2, ensure_ascii=False)

        abs_path = str(filepath.absolute())
        logger.info(f"Saved {stage.value} snapshot for {self.session_id}: {filename}")

        return abs_path

    def list_snapshots(self, session_id: Optional[str] = None) -> List[str]:
        """
        Saved snapshot files for a session, oldest stage first.

        Returns:
            list: Absolute paths (empty if the session has none)
        """
        session_id = session_id or self.session_id
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return []

        pattern = f"SESSION-{session_id}_*.json"
        return [str(p.absolute()) for p in sorted(session_dir.glob(pattern), key=lambda p: p.name)]

    def load_latest(self, session_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Load the most recent store snapshot for a session.

        Args:
            session_id: Session to load (default: this adapter's session)

        Returns:
            dict: Captured-data snapshot, or None if nothing was saved
        """
        session_id = session_id or self.session_id
        files = self.list_snapshots(session_id)

        if not files:
            logger.warning(f"No stage snapshots found for {session_id}")
            return None

        latest_file = files[-1]
        logger.info(f"Loading latest snapshot for {session_id}: {Path(latest_file).name}")

        with open(latest_file, 'r') as f:
            data = json.load(f)

        return data['captured_data']

    def session_exists(self, session_id: Optional[str] = None) -> bool:
        return bool(self.list_snapshots(session_id))
