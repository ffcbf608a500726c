"""
Marks units dirty when their translation is too close to the source.
"""
import logging
from typing import Any, Dict, List, Optional

from bookbatch.core.similarity_guard import SimilarityGuard
from bookbatch.persistence.checkpoint_manager import CheckpointManager
from bookbatch.workers.outcomes import Done, Outcome

logger = logging.getLogger(__name__)


def translations_for_scan(checkpoint: CheckpointManager, project_id: int,
                          search: Optional[str] = None) -> List[Dict[str, Any]]:
    """Latest-run translations of a project, optionally filtered by source text."""
    run = checkpoint.latest_run(project_id)
    if run is None:
        return []
    blocks = checkpoint.list_block_translations(run["id"])
    if search:
        needle = search.lower()
        blocks = [block for block in blocks if needle in (block["protected_text"] or "").lower()]
    return blocks


class SimilarityDirtyWorker:
    name = "similarity_dirty"

    def __init__(self, checkpoint: CheckpointManager, guard: Optional[SimilarityGuard] = None):
        self.checkpoint = checkpoint
        self.guard = guard or SimilarityGuard()

    async def perform(self, args: Dict[str, Any]) -> Outcome:
        blocks = translations_for_scan(self.checkpoint, args["project_id"], args.get("search"))
        dirty_ids = [
            block["unit_id"] for block in blocks
            if self.guard.check(block["protected_text"], block["translated_text"]).is_err()
        ]
        count = self.checkpoint.mark_units_dirty(dirty_ids)
        logger.info(f"Similarity dirty scan complete: {count} of {len(blocks)} unit(s) marked")
        return Done({"dirty_count": count, "scanned": len(blocks)})
