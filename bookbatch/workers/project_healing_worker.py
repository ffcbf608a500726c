"""
Re-runs the auto-healer over every stored translation of a project's latest run.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bookbatch.core.healing.auto_healer import AutoHealer
from bookbatch.core.markup.placeholder_codec import PlaceholderCodec
from bookbatch.persistence.checkpoint_manager import (
    BLOCK_HEALING_FAILED,
    BLOCK_TRANSLATED,
    CheckpointManager,
)
from bookbatch.workers.outcomes import Done, Outcome
from bookbatch.workers.translation_group_worker import HEALING_FAILED, HEALING_OK

logger = logging.getLogger(__name__)


class ProjectHealingWorker:
    """
    Heals persisted block translations in place.

    Text that heals cleanly is rewritten only when healing changed it, or
    when the block was flagged ``healing_failed`` before and now passes.
    Blocks that still need forged tags keep their text and are flagged
    ``healing_failed`` for review.
    """

    name = "project_healing"

    def __init__(self, checkpoint: CheckpointManager, healer: Optional[AutoHealer] = None,
                 codec: Optional[PlaceholderCodec] = None):
        self.checkpoint = checkpoint
        self.healer = healer or AutoHealer()
        self.codec = codec or PlaceholderCodec()

    async def perform(self, args: Dict[str, Any]) -> Outcome:
        project_id = args["project_id"]
        self.checkpoint.get_project(project_id)

        run = self.checkpoint.latest_run(project_id)
        if run is None:
            logger.warning(f"No translation run found for project {project_id}")
            return Done({"healed": 0, "failed": 0})

        logger.info(f"Starting auto-healing for project {project_id}, run {run['id']}")
        counts = {"healed": 0, "failed": 0, "unchanged": 0}

        with self.checkpoint.transaction():
            for block in self.checkpoint.list_block_translations(run["id"]):
                counts[self._heal_block(block)] += 1

        logger.info(f"Finished auto-healing run {run['id']}: {counts['healed']} healed, "
                    f"{counts['failed']} failed")
        return Done(counts)

    def _heal_block(self, block: Dict[str, Any]) -> str:
        result = self.healer.heal(block["protected_text"], block["translated_text"])
        if result.is_ok():
            healed = result.unwrap()
            if healed == block["translated_text"] and block["status"] != BLOCK_HEALING_FAILED:
                return "unchanged"
            self._update(block, healed, HEALING_OK, BLOCK_TRANSLATED)
            return "healed"

        logger.debug(f"Keeping unhealed text for block {block['id']}: {result.error}")
        self._update(block, block["translated_text"] or "", HEALING_FAILED, BLOCK_HEALING_FAILED)
        return "failed"

    def _update(self, block: Dict[str, Any], text: str, healing_status: str, status: str):
        metadata = dict(block["metadata"] or {})
        metadata["healing_status"] = healing_status
        metadata["healed_at"] = datetime.now(timezone.utc).isoformat()
        self.checkpoint.update_block_translation(
            block["id"],
            text,
            self.codec.restore(text, block["placeholder_map"]),
            status,
            metadata,
        )
