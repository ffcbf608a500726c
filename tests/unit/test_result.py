"""Unit tests for Result type."""

import pytest

from bookbatch.core.exceptions import HealingFailed
from bookbatch.core.result import Err, Ok


class TestResult:
    """Test Ok/Err behaviour."""

    def test_ok(self):
        result = Ok("[[p_1]]Salut[[/p_1]]")

        assert result.is_ok() and not result.is_err()
        assert result.unwrap() == "[[p_1]]Salut[[/p_1]]"

    def test_err_unwrap_raises_carried_error(self):
        """unwrap re-raises the domain exception itself."""
        error = HealingFailed("[[p_1]][[/p_1]]", ["p_1"])

        with pytest.raises(HealingFailed) as exc_info:
            Err(error).unwrap()

        assert exc_info.value is error

    def test_err_unwrap_plain_value(self):
        with pytest.raises(ValueError, match="Called unwrap on Err"):
            Err("boom").unwrap()
