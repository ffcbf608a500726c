"""Unit tests for checkpoint persistence and group cursors."""

import pytest

from bookbatch.core.exceptions import NotFoundError
from bookbatch.persistence.checkpoint_manager import (
    BLOCK_TRANSLATED,
    STATUS_READY,
    UNIT_TRANSLATED,
)
from conftest import seed_group


class TestProjects:
    """Test project and run records."""

    def test_create_and_find(self, checkpoint):
        project_id = checkpoint.create_project("book", "/src", "/work", "English", "French",
                                               settings={"strategy": "file"})

        project = checkpoint.get_project(project_id)
        assert project["status"] == "pending"
        assert project["settings"] == {"strategy": "file"}
        assert checkpoint.find_project("book")["id"] == project_id
        assert checkpoint.find_project("other") is None

    def test_missing_project(self, checkpoint):
        with pytest.raises(NotFoundError):
            checkpoint.get_project(42)

    def test_latest_run(self, checkpoint):
        project_id, run_id, _ = seed_group(checkpoint, ["a"])
        second = checkpoint.create_run(project_id, {"configs": {"translate": {}}})

        assert checkpoint.latest_run(project_id)["id"] == second
        assert checkpoint.get_run(run_id)["llm_config"] == {"configs": {}}


class TestGroups:
    """Test group and unit persistence."""

    def test_units_saved_in_order(self, checkpoint):
        _, _, group_id = seed_group(checkpoint, ["a", "b", "c"])

        units = checkpoint.list_units(group_id)
        assert [unit["position"] for unit in units] == [0, 1, 2]
        assert units[0]["placeholder_map"] == {"p_1": "<p>", "/p_1": "</p>"}
        assert checkpoint.get_group(group_id)["unit_count"] == 3

    def test_fetch_pending_from_cursor(self, checkpoint):
        _, _, group_id = seed_group(checkpoint, ["a", "b", "c", "d"])
        units = checkpoint.list_units(group_id)
        checkpoint.set_unit_status(units[2]["id"], UNIT_TRANSLATED)

        pending = checkpoint.fetch_pending_units(group_id, cursor=1, batch_size=10)
        assert [unit["position"] for unit in pending] == [1, 3]

        assert len(checkpoint.fetch_pending_units(group_id, cursor=0, batch_size=2)) == 2

    def test_progress(self, checkpoint):
        _, _, group_id = seed_group(checkpoint, ["a", "b", "c", "d"])
        unit = checkpoint.list_units(group_id)[0]
        checkpoint.set_unit_status(unit["id"], UNIT_TRANSLATED)

        assert checkpoint.update_group_progress(group_id) == 25
        checkpoint.set_group_status(group_id, STATUS_READY, progress=100)
        assert checkpoint.get_group(group_id)["progress"] == 100

    def test_dirty_units(self, checkpoint):
        project_id, _, group_id = seed_group(checkpoint, ["a", "b", "c"])
        units = checkpoint.list_units(group_id)

        assert checkpoint.mark_units_dirty([units[2]["id"], units[0]["id"], units[2]["id"]]) == 2
        assert [unit["position"] for unit in checkpoint.list_dirty_units(project_id)] == [0, 2]

        checkpoint.set_unit_dirty(units[0]["id"], False)
        assert [unit["position"] for unit in checkpoint.list_dirty_units(project_id)] == [2]
        assert checkpoint.mark_units_dirty([]) == 0

    def test_reset_group_cursors(self, checkpoint):
        project_id, _, group_id = seed_group(checkpoint, ["a", "b"])
        unit = checkpoint.list_units(group_id)[0]
        checkpoint.set_unit_status(unit["id"], UNIT_TRANSLATED)
        checkpoint.advance_cursor(group_id, 0)
        checkpoint.set_group_context(group_id, "summary")

        checkpoint.reset_group_cursors(project_id)

        group = checkpoint.get_group(group_id)
        assert (group["cursor"], group["status"], group["context_summary"]) == (0, "pending", None)
        assert checkpoint.get_unit(unit["id"])["status"] == "pending"


class TestAdvanceCursor:
    """Test cursor monotonicity."""

    def test_moves_past_position(self, checkpoint):
        _, _, group_id = seed_group(checkpoint, ["a"] * 10)

        assert checkpoint.advance_cursor(group_id, 6) == 7
        assert checkpoint.get_group(group_id)["cursor"] == 7

    @pytest.mark.parametrize("positions", [
        [0, 1, 2, 3],
        [5, 2, 7, 1, 0],
        [9, 3, 12, 40],
        [3, 3, 3],
    ])
    def test_never_decreases_or_exceeds_unit_count(self, checkpoint, positions):
        _, _, group_id = seed_group(checkpoint, ["a"] * 10)

        previous = 0
        for position in positions:
            cursor = checkpoint.advance_cursor(group_id, position)
            assert previous <= cursor <= 10
            previous = cursor

    def test_missing_group(self, checkpoint):
        with pytest.raises(NotFoundError):
            checkpoint.advance_cursor(99, 0)


class TestBlockTranslations:
    """Test idempotent translation storage."""

    def test_upsert_is_keyed_on_run_and_unit(self, checkpoint):
        _, run_id, group_id = seed_group(checkpoint, ["a"])
        unit_id = checkpoint.list_units(group_id)[0]["id"]

        first = checkpoint.upsert_block_translation(run_id, unit_id, "[[p_1]]x[[/p_1]]", "<p>x</p>")
        second = checkpoint.upsert_block_translation(run_id, unit_id, "[[p_1]]y[[/p_1]]", "<p>y</p>",
                                                     metadata={"mode": "valid"})

        assert first.value == second.value
        blocks = checkpoint.list_block_translations(run_id)
        assert len(blocks) == 1
        assert blocks[0]["translated_markup"] == "<p>y</p>"
        assert blocks[0]["status"] == BLOCK_TRANSLATED
        assert blocks[0]["metadata"] == {"mode": "valid"}
        assert blocks[0]["unit_key"] == "u_0"

    def test_unknown_unit_is_err(self, checkpoint):
        _, run_id, _ = seed_group(checkpoint, ["a"])

        result = checkpoint.upsert_block_translation(run_id, 999, "x", "<p>x</p>")

        assert result.is_err()
        assert isinstance(result.error, NotFoundError)

    def test_transaction_rolls_back(self, checkpoint):
        _, run_id, group_id = seed_group(checkpoint, ["a", "b"])
        unit_id = checkpoint.list_units(group_id)[0]["id"]

        with pytest.raises(RuntimeError):
            with checkpoint.transaction():
                checkpoint.upsert_block_translation(run_id, unit_id, "x", "<p>x</p>")
                checkpoint.advance_cursor(group_id, 0)
                raise RuntimeError("crash mid-unit")

        assert checkpoint.list_block_translations(run_id) == []
        assert checkpoint.get_group(group_id)["cursor"] == 0
