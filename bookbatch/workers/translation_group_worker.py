"""
Batch worker: translates one group, in position order, from its cursor.

One step handles at most ``batch_size`` units. Each unit is committed in
its own transaction (block upsert, unit status, context summary and cursor
advance together), so a crash loses at most the unit in flight and a
restart resumes exactly at the cursor.
"""
import logging
from typing import Any, Dict, Optional

from bookbatch.config import BATCH_SIZE, PAUSE_SNOOZE_SECONDS, PENDING_UNIT_STATUSES
from bookbatch.core.exceptions import NotFoundError
from bookbatch.core.healing.auto_healer import AutoHealer
from bookbatch.core.llm.model_client import ModelClient, TranslationResult
from bookbatch.core.llm.selector import EndpointConfig, resolve_config
from bookbatch.core.markup.placeholder_codec import PlaceholderCodec
from bookbatch.persistence.checkpoint_manager import (
    BLOCK_HEALING_FAILED,
    BLOCK_TRANSLATED,
    STATUS_PAUSED,
    STATUS_PENDING,
    STATUS_READY,
    STATUS_RUNNING,
    STATUS_SUPERSEDED,
    UNIT_PENDING,
    UNIT_TRANSLATED,
    UNIT_TRANSLATING,
    CheckpointManager,
)
from bookbatch.workers.outcomes import Continue, Done, Outcome, Snooze

logger = logging.getLogger(__name__)

TRANSLATION_STRATEGY = "llm"
HEALING_OK = "ok"
HEALING_FAILED = "healing_failed"


def run_job_prefix(run_id: int) -> str:
    """Key prefix shared by every group job of a run."""
    return f"group:{run_id}:"


def group_job_key(run_id: int, group_id: int) -> str:
    """Unique key allowing one in-flight job per (run, group)."""
    return f"{run_job_prefix(run_id)}{group_id}"


class TranslationGroupWorker:
    """
    Processes a translation group unit by unit.

    Args:
        checkpoint: Pipeline state
        model_client: Client used for every translate call
        healer: Auto-healer applied to each model answer
        codec: Codec restoring placeholders into markup
        batch_size: Units handled per step before the job is continued
        pause_snooze_seconds: Delay before a paused group is looked at again
    """

    name = "translation_group"

    def __init__(self, checkpoint: CheckpointManager, model_client: ModelClient,
                 healer: Optional[AutoHealer] = None,
                 codec: Optional[PlaceholderCodec] = None,
                 batch_size: int = BATCH_SIZE,
                 pause_snooze_seconds: float = PAUSE_SNOOZE_SECONDS):
        self.checkpoint = checkpoint
        self.model_client = model_client
        self.healer = healer or AutoHealer()
        self.codec = codec or PlaceholderCodec()
        self.batch_size = max(1, batch_size)
        self.pause_snooze_seconds = pause_snooze_seconds

    async def perform(self, args: Dict[str, Any]) -> Outcome:
        """
        Run one step for ``args = {"run_id": ..., "group_id": ...}``.

        Returns:
            Snooze when the run or project is not running, Continue when
            eligible units remain after this batch, Done otherwise

        Raises:
            ModelCallError: When no endpoint answered; the unit stays pending
                and the job is retried by the runner
        """
        run_id, group_id = args["run_id"], args["group_id"]
        try:
            run, group, project = self._load_state(run_id, group_id)
        except NotFoundError as e:
            logger.warning(f"Dropping job for group {group_id}: {e.message}")
            return Done({"skipped": "not_found"})

        if run["status"] == STATUS_SUPERSEDED:
            return self._superseded(run_id, group)
        if not self._is_active(run, project):
            return self._pause(group)

        if group["status"] in (STATUS_PENDING, STATUS_PAUSED):
            self.checkpoint.set_group_status(group_id, STATUS_RUNNING)

        units = self.checkpoint.fetch_pending_units(group_id, group["cursor"], self.batch_size,
                                                    PENDING_UNIT_STATUSES)
        if not units:
            return self._finalize(group_id)

        logger.info(f"[Batch] Group {group['group_key']}: {len(units)} unit(s) from cursor {group['cursor']}")
        endpoint_config = resolve_config(run["llm_config"], "translate")
        summary = group["context_summary"]
        processed = 0

        for unit in units:
            # Pause is cooperative: checked between units, never inside one
            if processed:
                run, group, project = self._load_state(run_id, group_id)
                if run["status"] == STATUS_SUPERSEDED:
                    return self._superseded(run_id, group)
                if not self._is_active(run, project):
                    self.checkpoint.update_group_progress(group_id)
                    return self._pause(group)

            self.checkpoint.set_unit_status(unit["id"], UNIT_TRANSLATING)
            result = await self.model_client.translate(
                endpoint_config, unit["protected_text"],
                previous_summary=summary,
                target_language=project["target_language"],
                source_language=project["source_language"],
            )
            if result.is_err():
                self.checkpoint.set_unit_status(unit["id"], UNIT_PENDING)
                self.checkpoint.update_group_progress(group_id)
                logger.error(f"Unit {unit['unit_key']} of group {group['group_key']} failed: {result.error.message}")
                raise result.error

            translation = result.unwrap()
            if self.commit_unit(run_id, unit, translation, advance=True) is None:
                return self._superseded(run_id, group)
            summary = translation.context_summary
            processed += 1

        progress = self.checkpoint.update_group_progress(group_id)
        if self.checkpoint.fetch_pending_units(group_id, 0, 1, PENDING_UNIT_STATUSES):
            logger.info(f"[Batch] Group {group['group_key']} at {progress}%, continuing")
            return Continue(f"{processed} unit(s) translated")
        return self._finalize(group_id)

    def commit_unit(self, run_id: int, unit: Dict[str, Any], translation: TranslationResult,
                    advance: bool = True) -> int:
        """
        Heal, restore and persist one translated unit atomically.

        Returns:
            The group cursor after the commit, or None when the run was
            superseded and nothing was written
        """
        healed = self.healer.heal(unit["protected_text"], translation.translated_text)
        if healed.is_ok():
            text, healing_status, status = healed.unwrap(), HEALING_OK, BLOCK_TRANSLATED
        else:
            text, healing_status, status = healed.error.text, HEALING_FAILED, BLOCK_HEALING_FAILED
            logger.warning(f"Unit {unit['unit_key']} stored with forged tags: "
                           f"{', '.join(healed.error.forged_tags)}")

        markup = self.codec.restore(text, unit["placeholder_map"])
        metadata = {
            "strategy": TRANSLATION_STRATEGY,
            "source_hash": unit["content_hash"],
            "healing_status": healing_status,
            "mode": translation.mode,
        }

        with self.checkpoint.transaction():
            if self.checkpoint.get_run(run_id)["status"] == STATUS_SUPERSEDED:
                return None
            self.checkpoint.upsert_block_translation(
                run_id, unit["id"], text, markup,
                raw_response=translation.raw_response,
                status=status,
                metadata=metadata,
            ).unwrap()
            self.checkpoint.set_unit_status(unit["id"], UNIT_TRANSLATED)
            if translation.context_summary:
                self.checkpoint.set_group_context(unit["group_id"], translation.context_summary)
            if advance:
                return self.checkpoint.advance_cursor(unit["group_id"], unit["position"])
            self.checkpoint.set_unit_dirty(unit["id"], False)
            return self.checkpoint.get_group(unit["group_id"])["cursor"]

    async def retranslate_dirty(self, project_id: int) -> Dict[str, int]:
        """
        Re-translate every dirty unit of a project against its latest run.

        The cursor does not move. A unit's dirty flag is cleared only once
        its new translation is committed.
        """
        run = self.checkpoint.latest_run(project_id)
        if run is None:
            raise NotFoundError(f"Project {project_id} has no translation run")

        project = self.checkpoint.get_project(project_id)
        endpoint_config = resolve_config(run["llm_config"], "translate")
        counts = {"retranslated": 0, "failed": 0}

        for unit in self.checkpoint.list_dirty_units(project_id):
            outcome = await self._retranslate(run["id"], unit, project, endpoint_config)
            counts["retranslated" if outcome else "failed"] += 1

        logger.info(f"Re-translated {counts['retranslated']} dirty unit(s), {counts['failed']} failed")
        return counts

    async def _retranslate(self, run_id: int, unit: Dict[str, Any], project: Dict[str, Any],
                           endpoint_config: EndpointConfig) -> bool:
        group = self.checkpoint.get_group(unit["group_id"])
        result = await self.model_client.translate(
            endpoint_config, unit["protected_text"],
            previous_summary=group["context_summary"],
            target_language=project["target_language"],
            source_language=project["source_language"],
        )
        if result.is_err():
            logger.error(f"Re-translation of unit {unit['unit_key']} failed: {result.error.message}")
            return False
        self.commit_unit(run_id, unit, result.unwrap(), advance=False)
        return True

    def on_discard(self, args: Dict[str, Any]):
        """Leave the group paused once its job runs out of attempts."""
        try:
            self.checkpoint.set_group_status(args["group_id"], STATUS_PAUSED)
        except KeyError:
            logger.error(f"Discarded job has no group_id: {args}")

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _load_state(self, run_id: int, group_id: int):
        run = self.checkpoint.get_run(run_id)
        group = self.checkpoint.get_group(group_id)
        if run["project_id"] != group["project_id"]:
            raise NotFoundError(f"Group {group_id} does not belong to run {run_id}")
        project = self.checkpoint.get_project(group["project_id"])
        return run, group, project

    @staticmethod
    def _is_active(run: Dict[str, Any], project: Dict[str, Any]) -> bool:
        return run["status"] == STATUS_RUNNING and project["status"] == STATUS_RUNNING

    def _pause(self, group: Dict[str, Any]) -> Snooze:
        if group["status"] != STATUS_PAUSED:
            self.checkpoint.set_group_status(group["id"], STATUS_PAUSED)
            logger.info(f"Group {group['group_key']} paused")
        return Snooze(self.pause_snooze_seconds)

    @staticmethod
    def _superseded(run_id: int, group: Dict[str, Any]) -> Done:
        logger.info(f"Run {run_id} was superseded, leaving group {group['group_key']} to the new run")
        return Done({"skipped": "superseded"})

    def _finalize(self, group_id: int) -> Done:
        self.checkpoint.set_group_status(group_id, STATUS_READY, progress=100)
        logger.info(f"Group {group_id} ready")
        return Done({"group_id": group_id, "status": STATUS_READY})


class DirtyRetranslationWorker:
    """Job wrapper around :meth:`TranslationGroupWorker.retranslate_dirty`."""

    name = "retranslate_dirty"

    def __init__(self, group_worker: TranslationGroupWorker):
        self.group_worker = group_worker

    async def perform(self, args: Dict[str, Any]) -> Outcome:
        return Done(await self.group_worker.retranslate_dirty(args["project_id"]))
