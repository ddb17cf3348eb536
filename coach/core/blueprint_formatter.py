"""
Blueprint Formatter - JSON export of an authoring session's plan

Responsibilities:
- Transform a ConversationStateSnapshot into a JSON-serializable blueprint
- Add metadata (session_id, generated_at, schema_version, completion)
- Group captured values by stage, in curriculum order, with step labels
- Log captured keys outside the curriculum (permissive acceptance)

Design principles:
- Pure serialization (no business logic)
- Partial sessions export too; missing values are null
- Extra captured keys are carried under 'extra_data', never dropped
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from coach.contracts import SeedData, STAGE_ORDER, STEPS_PER_STAGE, TOTAL_STEPS
from coach.core.conversation_state import ConversationStateSnapshot
from coach.core.stage_catalog import StageCatalog

logger = logging.getLogger(__name__)


class BlueprintFormatter:
    """Serialization layer for finished (or in-progress) blueprints"""

    def __init__(self, schema_version: str = "1.0.0", catalog: Optional[StageCatalog] = None):
        self.schema_version = schema_version
        self.catalog = catalog or StageCatalog()
        logger.info(f"Blueprint formatter initialized (schema_version={schema_version})")

    def format(self, snapshot: ConversationStateSnapshot, session_id: str,
               seed: Optional[SeedData] = None) -> dict:
        """
        Build the blueprint document.

        Args:
            snapshot: Engine state (ConversationEngine.get_state())
            session_id: Session identifier
            seed: Wizard intake data, echoed into the document

        Returns:
            dict: schema_version, metadata, seed, stages, extra_data

        Raises:
            ValueError: If session_id is empty or snapshot has the wrong type

        Example:
            >>> output = BlueprintFormatter().format(engine.get_state(), "abc123")
            >>> output['metadata']['session_id']
            'abc123'
        """
        if not isinstance(snapshot, ConversationStateSnapshot):
            raise ValueError(f"snapshot must be ConversationStateSnapshot, got {type(snapshot).__name__}")
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValueError("session_id must be non-empty string")

        captured = snapshot.captured_data
        known_keys = set(self.catalog.all_keys())

        stages = []
        for stage in STAGE_ORDER:
            fields = []
            for step in range(1, STEPS_PER_STAGE + 1):
                key = self.catalog.canonical_key_for(stage, step)
                fields.append({
                    'step': step,
                    'key': key,
                    'label': self.catalog.label_for(stage, step),
                    'value': captured.get(key)
                })
            stages.append({
                'stage': stage.value,
                'label': self.catalog.stage_label(stage),
                'fields': fields
            })

        extra = {key: value for key, value in captured.items() if key not in known_keys}
        if extra:
            logger.warning(f"Unexpected captured keys: {sorted(extra)} - serializing anyway")

        output = {
            'schema_version': self.schema_version,
            'metadata': self._generate_metadata(session_id, snapshot),
            'seed': (seed or self.catalog.seed).to_json(),
            'stages': stages,
            'extra_data': extra
        }

        logger.info(
            f"Formatted blueprint {session_id}: "
            f"{len(snapshot.completed_steps)}/{TOTAL_STEPS} steps"
        )
        return output

    def _generate_metadata(self, session_id: str, snapshot: ConversationStateSnapshot) -> Dict[str, Any]:
        timestamp = datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
        return {
            'session_id': session_id,
            'generated_at': timestamp,
            'completed_steps': len(snapshot.completed_steps),
            'total_steps': TOTAL_STEPS,
            'is_complete': snapshot.is_complete
        }

    @staticmethod
    def save_to_file(data_dict: dict, file_path: str) -> str:
        """
        Save a formatted blueprint to a JSON file.

        Returns:
            str: Absolute path to saved file

        Raises:
            TypeError: If data_dict is not JSON-serializable
            OSError: If file cannot be written
        """
        output_file = Path(file_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        with open(output_file, 'w') as f:
            json.dump(data_dict, f, indent=2, ensure_ascii=False)

        abs_path = str(output_file.absolute())
        logger.info(f"Blueprint saved to {abs_path}")
        return abs_path
