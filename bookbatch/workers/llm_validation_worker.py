"""
Second-opinion scan: asks the model whether suspicious translations are real.

Only translations the similarity guard rates medium or high are sent to
the model, and a unit is marked dirty only on a "not_translated" verdict.
"""
import logging
from typing import Any, Dict, Optional

from bookbatch.common.placeholder_format import DEFAULT_FORMAT
from bookbatch.core.exceptions import NotFoundError
from bookbatch.core.llm.model_client import VERDICT_NOT_TRANSLATED, ModelClient
from bookbatch.core.llm.selector import resolve_config
from bookbatch.core.similarity_guard import LEVEL_LOW, SimilarityGuard
from bookbatch.persistence.checkpoint_manager import CheckpointManager
from bookbatch.workers.outcomes import Done, Outcome
from bookbatch.workers.similarity_dirty_worker import translations_for_scan

logger = logging.getLogger(__name__)


def scrub_placeholders(text: Optional[str]) -> str:
    """Remove placeholder tokens so the model only judges prose."""
    return DEFAULT_FORMAT.strip_tokens(text).strip()


class LlmValidationWorker:
    name = "llm_validation"

    def __init__(self, checkpoint: CheckpointManager, model_client: ModelClient,
                 guard: Optional[SimilarityGuard] = None):
        self.checkpoint = checkpoint
        self.model_client = model_client
        self.guard = guard or SimilarityGuard()

    async def perform(self, args: Dict[str, Any]) -> Outcome:
        """
        Raises:
            NotFoundError: If the project has no translation run yet
        """
        project_id = args["project_id"]
        run = self.checkpoint.latest_run(project_id)
        if run is None:
            raise NotFoundError(f"Project {project_id} has no translation run")

        project = self.checkpoint.get_project(project_id)
        endpoint_config = resolve_config(run["llm_config"], "validation")
        dirty_ids = []
        checked = 0

        for block in translations_for_scan(self.checkpoint, project_id, args.get("search")):
            _, level = self.guard.classify(block["protected_text"], block["translated_text"])
            if level == LEVEL_LOW:
                continue

            checked += 1
            verdict = await self.model_client.classify(
                endpoint_config,
                scrub_placeholders(block["protected_text"]),
                scrub_placeholders(block["translated_text"]),
                target_language=project["target_language"],
            )
            if verdict.is_err():
                logger.warning(f"Validation of unit {block['unit_key']} skipped: {verdict.error.message}")
                continue
            if verdict.unwrap() == VERDICT_NOT_TRANSLATED:
                dirty_ids.append(block["unit_id"])

        count = self.checkpoint.mark_units_dirty(dirty_ids)
        logger.info(f"LLM validation scan complete: {count} of {checked} suspicious unit(s) marked dirty")
        return Done({"dirty_count": count, "checked": checked})
