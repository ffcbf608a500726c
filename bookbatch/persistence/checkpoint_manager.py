"""
Checkpoint manager: durable state of projects, runs, groups and units.

This is the persistence interface the batch worker relies on. Every method
that writes can run inside :meth:`CheckpointManager.transaction`, so one
unit's block upsert, status change and cursor advance commit together.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from .database import Database, dumps
from bookbatch.core.exceptions import NotFoundError
from bookbatch.core.markup.models import TranslationGroup
from bookbatch.core.result import Err, Ok, Result

logger = logging.getLogger(__name__)

# Project / run / group statuses
STATUS_PENDING = 'pending'
STATUS_RUNNING = 'running'
STATUS_PAUSED = 'paused'
STATUS_READY = 'ready'
STATUS_SUPERSEDED = 'superseded'

# Unit statuses
UNIT_PENDING = 'pending'
UNIT_TRANSLATING = 'translating'
UNIT_TRANSLATED = 'translated'

# Block translation statuses
BLOCK_TRANSLATED = 'translated'
BLOCK_HEALING_FAILED = 'healing_failed'


class CheckpointManager:
    """
    Manages pipeline state in SQLite, including the resumable group cursors.
    """

    def __init__(self, db_path: str = "data/bookbatch.db", db: Optional[Database] = None):
        """
        Initialize checkpoint manager.

        Args:
            db_path: Path to SQLite database
            db: Existing database to share (overrides db_path)
        """
        self.db = db or Database(db_path)

    def transaction(self):
        """Atomic scope shared by every method called inside it."""
        return self.db.transaction()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, name: str, source_path: str, work_dir: str,
                       source_language: str, target_language: str,
                       settings: Optional[Dict[str, Any]] = None) -> int:
        cursor = self.db.execute("""
            INSERT INTO projects (name, source_path, work_dir, source_language, target_language, settings)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (name, source_path, work_dir, source_language, target_language, dumps(settings or {})))
        return cursor.lastrowid

    def get_project(self, project_id: int) -> Dict[str, Any]:
        project = self.db.fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def find_project(self, name: str) -> Optional[Dict[str, Any]]:
        return self.db.fetchone("SELECT * FROM projects WHERE name = ?", (name,))

    def set_project_status(self, project_id: int, status: str):
        self.db.execute(
            "UPDATE projects SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (status, project_id)
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(self, project_id: int, llm_config: Dict[str, Any], status: str = STATUS_RUNNING) -> int:
        cursor = self.db.execute(
            "INSERT INTO runs (project_id, status, llm_config) VALUES (?, ?, ?)",
            (project_id, status, dumps(llm_config))
        )
        return cursor.lastrowid

    def get_run(self, run_id: int) -> Dict[str, Any]:
        run = self.db.fetchone("SELECT * FROM runs WHERE id = ?", (run_id,))
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")
        return run

    def latest_run(self, project_id: int) -> Optional[Dict[str, Any]]:
        return self.db.fetchone(
            "SELECT * FROM runs WHERE project_id = ? ORDER BY id DESC LIMIT 1", (project_id,)
        )

    def set_run_status(self, run_id: int, status: str):
        self.db.execute(
            "UPDATE runs SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (status, run_id)
        )

    # ------------------------------------------------------------------
    # Groups and units
    # ------------------------------------------------------------------

    def save_groups(self, project_id: int, groups: List[TranslationGroup]) -> List[int]:
        """
        Persist segmented groups and their units in one transaction.

        Returns:
            Group ids in group order
        """
        group_ids = []
        with self.db.transaction() as conn:
            for group in groups:
                cursor = conn.execute("""
                    INSERT INTO translation_groups
                    (project_id, group_key, position, source_path, unit_count, status)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (project_id, group.group_key, group.position, group.source_path,
                      group.unit_count, STATUS_PENDING))
                group_id = cursor.lastrowid
                group_ids.append(group_id)

                conn.executemany("""
                    INSERT INTO translation_units
                    (group_id, unit_key, position, protected_text, raw_markup,
                     placeholder_map, content_hash, status)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, [
                    (group_id, unit.unit_key, unit.position, unit.protected_text, unit.raw_markup,
                     dumps(unit.placeholder_map), unit.content_hash, UNIT_PENDING)
                    for unit in group.units
                ])
        return group_ids

    def get_group(self, group_id: int) -> Dict[str, Any]:
        group = self.db.fetchone("SELECT * FROM translation_groups WHERE id = ?", (group_id,))
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group

    def list_groups(self, project_id: int) -> List[Dict[str, Any]]:
        return self.db.fetchall(
            "SELECT * FROM translation_groups WHERE project_id = ? ORDER BY position", (project_id,)
        )

    def get_unit(self, unit_id: int) -> Dict[str, Any]:
        unit = self.db.fetchone("SELECT * FROM translation_units WHERE id = ?", (unit_id,))
        if unit is None:
            raise NotFoundError(f"Unit {unit_id} not found")
        return unit

    def list_units(self, group_id: int) -> List[Dict[str, Any]]:
        return self.db.fetchall(
            "SELECT * FROM translation_units WHERE group_id = ? ORDER BY position", (group_id,)
        )

    def fetch_pending_units(self, group_id: int, cursor: int, batch_size: int,
                            statuses=('pending', 'queued', 'translating')) -> List[Dict[str, Any]]:
        """
        Units at or after the cursor that still need translating, in position order.
        """
        placeholders = ", ".join("?" for _ in statuses)
        return self.db.fetchall(f"""
            SELECT * FROM translation_units
            WHERE group_id = ? AND position >= ? AND status IN ({placeholders})
            ORDER BY position ASC
            LIMIT ?
        """, (group_id, cursor, *statuses, batch_size))

    def set_unit_status(self, unit_id: int, status: str):
        self.db.execute("UPDATE translation_units SET status = ? WHERE id = ?", (status, unit_id))

    def set_unit_dirty(self, unit_id: int, dirty: bool = True):
        self.db.execute("UPDATE translation_units SET dirty = ? WHERE id = ?", (1 if dirty else 0, unit_id))

    def mark_units_dirty(self, unit_ids: List[int]) -> int:
        """Flag units for re-translation. Returns how many were flagged."""
        unique_ids = sorted(set(unit_ids))
        if not unique_ids:
            return 0
        with self.db.transaction() as conn:
            conn.executemany("UPDATE translation_units SET dirty = 1 WHERE id = ?",
                             [(unit_id,) for unit_id in unique_ids])
        return len(unique_ids)

    def list_dirty_units(self, project_id: int) -> List[Dict[str, Any]]:
        return self.db.fetchall("""
            SELECT u.* FROM translation_units u
            JOIN translation_groups g ON g.id = u.group_id
            WHERE g.project_id = ? AND u.dirty = 1
            ORDER BY g.position, u.position
        """, (project_id,))

    def advance_cursor(self, group_id: int, position: int) -> int:
        """
        Move the cursor forward to ``position + 1``.

        The cursor never decreases and never exceeds the group's unit count.

        Returns:
            The resulting cursor
        """
        with self.db.transaction() as conn:
            conn.execute("""
                UPDATE translation_groups
                SET cursor = MIN(MAX(cursor, ?), unit_count), updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, (position + 1, group_id))
            row = conn.execute("SELECT cursor FROM translation_groups WHERE id = ?", (group_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Group {group_id} not found")
        return row['cursor']

    def set_group_status(self, group_id: int, status: str, progress: Optional[int] = None):
        if progress is None:
            self.db.execute(
                "UPDATE translation_groups SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (status, group_id)
            )
        else:
            self.db.execute("""
                UPDATE translation_groups SET status = ?, progress = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, (status, progress, group_id))

    def set_group_context(self, group_id: int, context_summary: Optional[str]):
        self.db.execute(
            "UPDATE translation_groups SET context_summary = ? WHERE id = ?", (context_summary, group_id)
        )

    def update_group_progress(self, group_id: int) -> int:
        """Recompute progress as the percentage of translated units."""
        with self.db.transaction() as conn:
            row = conn.execute("""
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN status = 'translated' THEN 1 ELSE 0 END) AS done
                FROM translation_units WHERE group_id = ?
            """, (group_id,)).fetchone()
            total, done = row['total'], row['done'] or 0
            progress = 100 if total == 0 else int(done * 100 / total)
            conn.execute("UPDATE translation_groups SET progress = ? WHERE id = ?", (progress, group_id))
        return progress

    def reset_group_cursors(self, project_id: int):
        """Rewind every group for a new run: cursor 0, units pending."""
        with self.db.transaction() as conn:
            conn.execute("""
                UPDATE translation_units SET status = 'pending'
                WHERE group_id IN (SELECT id FROM translation_groups WHERE project_id = ?)
            """, (project_id,))
            conn.execute("""
                UPDATE translation_groups SET cursor = 0, progress = 0, status = 'pending',
                    context_summary = NULL
                WHERE project_id = ?
            """, (project_id,))

    # ------------------------------------------------------------------
    # Block translations
    # ------------------------------------------------------------------

    def upsert_block_translation(self, run_id: int, unit_id: int, translated_text: str,
                                 translated_markup: str, raw_response: Optional[Dict[str, Any]] = None,
                                 status: str = BLOCK_TRANSLATED,
                                 metadata: Optional[Dict[str, Any]] = None) -> Result[int, NotFoundError]:
        """
        Insert or replace the translation of one unit for one run.

        Returns:
            Ok(block id), or Err(NotFoundError) if the run or unit does not exist
        """
        try:
            with self.db.transaction() as conn:
                conn.execute("""
                    INSERT INTO block_translations
                    (run_id, unit_id, translated_text, translated_markup, status, raw_response, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (run_id, unit_id) DO UPDATE SET
                        translated_text = excluded.translated_text,
                        translated_markup = excluded.translated_markup,
                        status = excluded.status,
                        raw_response = excluded.raw_response,
                        metadata = excluded.metadata,
                        updated_at = CURRENT_TIMESTAMP
                """, (run_id, unit_id, translated_text, translated_markup, status,
                      dumps(raw_response), dumps(metadata or {})))
                row = conn.execute(
                    "SELECT id FROM block_translations WHERE run_id = ? AND unit_id = ?", (run_id, unit_id)
                ).fetchone()
        except sqlite3.IntegrityError as e:
            return Err(NotFoundError(f"Cannot store translation for run {run_id}, unit {unit_id}: {e}"))
        return Ok(row['id'])

    def list_block_translations(self, run_id: int, group_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Translations of a run joined with their unit, in group/position order."""
        sql = """
            SELECT b.*, u.group_id, u.unit_key, u.position, u.protected_text, u.raw_markup,
                   u.placeholder_map, u.content_hash
            FROM block_translations b
            JOIN translation_units u ON u.id = b.unit_id
            JOIN translation_groups g ON g.id = u.group_id
            WHERE b.run_id = ?
        """
        params: List[Any] = [run_id]
        if group_id is not None:
            sql += " AND u.group_id = ?"
            params.append(group_id)
        sql += " ORDER BY g.position, u.position"
        return self.db.fetchall(sql, params)

    def update_block_translation(self, block_id: int, translated_text: str, translated_markup: str,
                                 status: str, metadata: Dict[str, Any]):
        self.db.execute("""
            UPDATE block_translations
            SET translated_text = ?, translated_markup = ?, status = ?, metadata = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """, (translated_text, translated_markup, status, dumps(metadata), block_id))

    def close(self):
        """Close database connection."""
        self.db.close()
