"""
Project lifecycle: prepare, start, pause, inspect and export translations.

The service owns no background work itself. ``start`` and the quality
commands only enqueue jobs; a :class:`~bookbatch.workers.runner.JobRunner`
built with :meth:`ProjectService.build_runner` executes them.
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from bookbatch import config
from bookbatch.config import BatchConfig
from bookbatch.core.exceptions import NotFoundError
from bookbatch.core.llm.model_client import ModelClient
from bookbatch.core.llm.selector import build_snapshot
from bookbatch.core.markup.assembler import assemble_markup, resolve_replacements
from bookbatch.core.markup.segmenter import STRATEGY_FILE, Segmenter
from bookbatch.core.markup.tag_classifier import TagClassifier
from bookbatch.documents.store import DocumentStore
from bookbatch.persistence.checkpoint_manager import (
    STATUS_PAUSED,
    STATUS_READY,
    STATUS_RUNNING,
    STATUS_SUPERSEDED,
    CheckpointManager,
)
from bookbatch.persistence.job_queue import JobQueue
from bookbatch.workers.llm_validation_worker import LlmValidationWorker
from bookbatch.workers.project_healing_worker import ProjectHealingWorker
from bookbatch.workers.runner import JobRunner
from bookbatch.workers.similarity_dirty_worker import SimilarityDirtyWorker
from bookbatch.workers.translation_group_worker import (
    DirtyRetranslationWorker,
    TranslationGroupWorker,
    group_job_key,
    run_job_prefix,
)

logger = logging.getLogger(__name__)


class ProjectService:
    """
    Entry point used by the CLI.

    Args:
        checkpoint: Pipeline state
        queue: Job queue sharing the checkpoint's database
        store: Document store (directory based by default)
        segmenter: Segmenter used by :meth:`prepare`
        classifier: Tag classifier shared by segmentation and export
    """

    def __init__(self, checkpoint: CheckpointManager, queue: Optional[JobQueue] = None,
                 store: Optional[DocumentStore] = None,
                 segmenter: Optional[Segmenter] = None,
                 classifier: Optional[TagClassifier] = None):
        self.checkpoint = checkpoint
        self.queue = queue or JobQueue(checkpoint.db)
        self.store = store or DocumentStore()
        self.classifier = classifier or TagClassifier()
        self.segmenter = segmenter or Segmenter(classifier=self.classifier)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def prepare(self, source_dir: Union[str, Path], name: str,
                source_language: str = config.DEFAULT_SOURCE_LANGUAGE,
                target_language: str = config.DEFAULT_TARGET_LANGUAGE,
                strategy: str = STRATEGY_FILE,
                max_units: int = config.SEGMENT_MAX_UNITS,
                max_chars: int = config.SEGMENT_MAX_CHARS) -> Dict[str, Any]:
        """
        Segment a document directory into a new project.

        Files that fail to parse are skipped and reported; path problems
        abort the whole preparation.

        Raises:
            ValueError: If a project with this name already exists
            UnsafePathError: If the store rejects a path
        """
        if self.checkpoint.find_project(name) is not None:
            raise ValueError(f"Project '{name}' already exists")

        session = self.store.open(source_dir)
        paths = session.content_paths()
        failures = []
        groups = self.segmenter.segment(
            ((path, session.read_file(path)) for path in paths),
            strategy=strategy, max_units=max_units, max_chars=max_chars, failures=failures,
        )

        with self.checkpoint.transaction():
            project_id = self.checkpoint.create_project(
                name, str(session.root), str(Path(config.WORK_DIR) / name),
                source_language, target_language,
                settings={"strategy": strategy, "max_units": max_units, "max_chars": max_chars},
            )
            self.checkpoint.save_groups(project_id, groups)

        summary = {
            "project_id": project_id,
            "files": len(paths) - len(failures),
            "groups": len(groups),
            "units": sum(group.unit_count for group in groups),
            "skipped": [failure.path for failure in failures],
        }
        logger.info(f"Prepared project '{name}': {summary['groups']} group(s), {summary['units']} unit(s)")
        return summary

    def start(self, project_id: int,
              llm_configs: Optional[Mapping[str, Any]] = None,
              new_run: bool = False) -> Dict[str, Any]:
        """
        Start (or resume) translation and enqueue one job per unfinished group.

        A new run snapshots the endpoint configuration and supersedes the
        previous run: that run stops being live and its queued group jobs
        are cancelled in the same transaction. Resuming keeps the existing
        snapshot and every group cursor.

        Raises:
            MissingEndpointConfig: When a new run cannot resolve every usage type
        """
        self.checkpoint.get_project(project_id)
        run = self.checkpoint.latest_run(project_id)

        if run is None or new_run:
            snapshot = build_snapshot(llm_configs)
            with self.checkpoint.transaction():
                if run is not None:
                    self.checkpoint.set_run_status(run["id"], STATUS_SUPERSEDED)
                    self.queue.cancel_by_key_prefix(run_job_prefix(run["id"]))
                    self.checkpoint.reset_group_cursors(project_id)
                run_id = self.checkpoint.create_run(project_id, snapshot)
            logger.info(f"Created run {run_id} for project {project_id}")
        else:
            run_id = run["id"]
            self.checkpoint.set_run_status(run_id, STATUS_RUNNING)
            logger.info(f"Resuming run {run_id} for project {project_id}")

        self.checkpoint.set_project_status(project_id, STATUS_RUNNING)

        enqueued = 0
        for group in self.checkpoint.list_groups(project_id):
            if group["status"] == STATUS_READY:
                continue
            job_id = self.queue.enqueue(
                TranslationGroupWorker.name,
                {"run_id": run_id, "group_id": group["id"]},
                unique_key=group_job_key(run_id, group["id"]),
            )
            if job_id is not None:
                enqueued += 1

        return {"run_id": run_id, "enqueued": enqueued}

    def pause(self, project_id: int):
        """Pause a project; workers notice between units and snooze."""
        self.checkpoint.get_project(project_id)
        with self.checkpoint.transaction():
            self.checkpoint.set_project_status(project_id, STATUS_PAUSED)
            run = self.checkpoint.latest_run(project_id)
            if run is not None:
                self.checkpoint.set_run_status(run["id"], STATUS_PAUSED)
        logger.info(f"Project {project_id} paused")

    def status(self, project_id: int) -> Dict[str, Any]:
        project = self.checkpoint.get_project(project_id)
        run = self.checkpoint.latest_run(project_id)
        groups = self.checkpoint.list_groups(project_id)
        total_units = sum(group["unit_count"] for group in groups)
        done_units = sum(group["unit_count"] * group["progress"] // 100 for group in groups)

        return {
            "project": {k: project[k] for k in ("id", "name", "status", "source_language", "target_language")},
            "run": {"id": run["id"], "status": run["status"]} if run else None,
            "groups": [
                {k: group[k] for k in ("id", "group_key", "status", "cursor", "unit_count", "progress")}
                for group in groups
            ],
            "progress": 100 if total_units == 0 else int(done_units * 100 / total_units),
            "ready": all(group["status"] == STATUS_READY for group in groups),
            "dirty_units": len(self.checkpoint.list_dirty_units(project_id)),
            "pending_jobs": self.queue.has_pending(),
        }

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, project_id: int, output_dir: Union[str, Path],
               allow_missing: bool = False) -> Path:
        """
        Reassemble every file from the latest run and build the output tree.

        Raises:
            NotFoundError: If the project has no run
            MissingTranslationError: If a unit is untranslated and
                ``allow_missing`` is False
        """
        project = self.checkpoint.get_project(project_id)
        run = self.checkpoint.latest_run(project_id)
        if run is None:
            raise NotFoundError(f"Project {project_id} has no translation run")

        translated = {
            block["unit_id"]: block["translated_markup"]
            for block in self.checkpoint.list_block_translations(run["id"])
        }

        units_by_file: Dict[str, List[Dict[str, Any]]] = {}
        for group in self.checkpoint.list_groups(project_id):
            units_by_file.setdefault(group["source_path"], []).extend(
                self.checkpoint.list_units(group["id"])
            )

        session = self.store.open(project["source_path"])
        for path, units in units_by_file.items():
            replacements = resolve_replacements(
                [unit["raw_markup"] for unit in units],
                [translated.get(unit["id"]) for unit in units],
                [unit["unit_key"] for unit in units],
                allow_missing=allow_missing,
            )
            session.write_file(path, assemble_markup(session.read_file(path), replacements, path,
                                                     self.classifier))

        return session.build(output_dir)

    # ------------------------------------------------------------------
    # Quality guard
    # ------------------------------------------------------------------

    def scan_similarity(self, project_id: int, search: Optional[str] = None) -> Optional[int]:
        return self._enqueue_project_job(SimilarityDirtyWorker.name, project_id, search=search)

    def validate(self, project_id: int, search: Optional[str] = None) -> Optional[int]:
        return self._enqueue_project_job(LlmValidationWorker.name, project_id, search=search)

    def heal(self, project_id: int) -> Optional[int]:
        return self._enqueue_project_job(ProjectHealingWorker.name, project_id)

    def retranslate_dirty(self, project_id: int) -> Optional[int]:
        return self._enqueue_project_job(DirtyRetranslationWorker.name, project_id)

    def _enqueue_project_job(self, worker: str, project_id: int, **extra) -> Optional[int]:
        self.checkpoint.get_project(project_id)
        args = {"project_id": project_id}
        args.update({k: v for k, v in extra.items() if v is not None})
        return self.queue.enqueue(worker, args, unique_key=f"{worker}:{project_id}",
                                  max_attempts=config.QUALITY_JOB_MAX_ATTEMPTS)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def build_runner(self, model_client: ModelClient,
                     batch_config: Optional[BatchConfig] = None) -> JobRunner:
        """Job runner with every pipeline worker registered."""
        batch_config = batch_config or BatchConfig()
        group_worker = TranslationGroupWorker(
            self.checkpoint, model_client,
            batch_size=batch_config.batch_size,
            pause_snooze_seconds=batch_config.pause_snooze_seconds,
        )
        workers = [
            group_worker,
            DirtyRetranslationWorker(group_worker),
            SimilarityDirtyWorker(self.checkpoint),
            LlmValidationWorker(self.checkpoint, model_client),
            ProjectHealingWorker(self.checkpoint),
        ]
        return JobRunner(self.queue, workers, concurrency=batch_config.concurrency)
