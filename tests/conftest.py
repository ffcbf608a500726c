"""
Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and provides common fixtures
and configuration for all test modules.
"""

import sys
from pathlib import Path
from typing import Callable, List, Optional

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Import pytest for fixtures
import pytest

from bookbatch.core.exceptions import ModelCallError
from bookbatch.core.llm.model_client import MODE_VALID, TranslationResult
from bookbatch.core.llm.selector import EndpointConfig, build_snapshot
from bookbatch.core.markup.models import TranslationGroup, TranslationUnit
from bookbatch.core.markup.placeholder_codec import protect
from bookbatch.core.markup.segmenter import hash_source
from bookbatch.core.result import Err, Ok
from bookbatch.persistence.checkpoint_manager import CheckpointManager
from bookbatch.persistence.job_queue import JobQueue


XHTML_NS = "http://www.w3.org/1999/xhtml"


def make_chapter(paragraphs: List[str], title: str = "Chapter") -> str:
    """Build a small XHTML chapter with one <p> per paragraph."""
    body = "\n".join(f"    <p>{text}</p>" for text in paragraphs)
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        f'<html xmlns="{XHTML_NS}">\n'
        f'  <head><title>{title}</title></head>\n'
        '  <body>\n'
        f'    <h1>{title}</h1>\n'
        f'{body}\n'
        '  </body>\n'
        '</html>\n'
    )


def make_document(body: str) -> str:
    """Wrap raw body markup in an XHTML document."""
    return f'<html xmlns="{XHTML_NS}"><head><title>Doc</title></head><body>{body}</body></html>'


@pytest.fixture
def sample_xhtml():
    """XHTML chapter with a heading, inline markup and naked text."""
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        f'<html xmlns="{XHTML_NS}">\n'
        '<head><title>One</title></head>\n'
        '<body>\n'
        '  <h1>Chapter One</h1>\n'
        '  <p>Hello <b>World</b>.</p>\n'
        '  <div>Loose text<p>Inner</p></div>\n'
        '</body>\n'
        '</html>\n'
    )


@pytest.fixture
def checkpoint(tmp_path):
    """Checkpoint manager on a temporary SQLite database."""
    manager = CheckpointManager(str(tmp_path / "test.db"))
    yield manager
    manager.close()


@pytest.fixture
def queue(checkpoint):
    return JobQueue(checkpoint.db)


@pytest.fixture
def endpoint_config():
    return EndpointConfig(model="test-model", base_urls=["http://llm-a:8080", "http://llm-b:8080"])


@pytest.fixture
def llm_snapshot(endpoint_config):
    """Run snapshot resolving both usage types to the test endpoint."""
    return build_snapshot({"translate": endpoint_config, "validation": endpoint_config})


@pytest.fixture
def docs_dir(tmp_path):
    """Directory with two small chapters."""
    root = tmp_path / "book"
    (root / "text").mkdir(parents=True)
    (root / "text" / "ch1.xhtml").write_text(
        make_chapter(["First <i>line</i>.", "Second line."], title="One"), encoding="utf-8")
    (root / "text" / "ch2.xhtml").write_text(
        make_chapter(["Third line."], title="Two"), encoding="utf-8")
    (root / "styles.css").write_text("p { margin: 0; }", encoding="utf-8")
    return root


class ScriptedModelClient:
    """
    Stand-in for ModelClient driven by a translate function.

    ``crash_on`` raises RuntimeError on that (1-based) call, simulating a
    process dying mid-unit; ``fail_on`` returns Err(ModelCallError) instead.
    """

    def __init__(self, translate_fn: Optional[Callable[[str], str]] = None,
                 crash_on: Optional[int] = None, fail_on: Optional[int] = None,
                 verdict: str = "translated"):
        self.translate_fn = translate_fn or (lambda text: text.replace("line", "ligne"))
        self.crash_on = crash_on
        self.fail_on = fail_on
        self.verdict = verdict
        self.calls: List[str] = []
        self.summaries: List[Optional[str]] = []
        self.classified: List[tuple] = []
        self.classify_languages: List[Optional[str]] = []

    async def translate(self, endpoint_config, protected_text, previous_summary=None,
                        target_language=None, source_language=None):
        self.calls.append(protected_text)
        self.summaries.append(previous_summary)
        call_number = len(self.calls)
        if call_number == self.crash_on:
            raise RuntimeError("worker process died")
        if call_number == self.fail_on:
            return Err(ModelCallError("all endpoints down"))
        return Ok(TranslationResult(
            translations=[self.translate_fn(protected_text)],
            context_summary=f"summary after {call_number}",
            raw_response={"content": "{}", "mode": MODE_VALID},
            mode=MODE_VALID,
        ))

    async def classify(self, endpoint_config, source, translated, target_language=None):
        self.classified.append((source, translated))
        self.classify_languages.append(target_language)
        return Ok(self.verdict)


@pytest.fixture
def scripted_client():
    """Factory for ScriptedModelClient instances."""
    return ScriptedModelClient


def seed_group(checkpoint, texts: List[str], llm_config=None, name: str = "book"):
    """
    Create a project holding one group with a <p> unit per text, plus a running run.

    Returns:
        Tuple of (project_id, run_id, group_id)
    """
    units = []
    for position, text in enumerate(texts):
        markup = f"<p>{text}</p>"
        protected, mapping = protect(markup)
        units.append(TranslationUnit(f"u_{position}", position, protected, markup, mapping, hash_source(markup)))

    project_id = checkpoint.create_project(name, "/src", "/work", "English", "French")
    group_id = checkpoint.save_groups(project_id, [TranslationGroup("ch1.xhtml", 0, units, "ch1.xhtml")])[0]
    run_id = checkpoint.create_run(project_id, llm_config or {"configs": {}})
    checkpoint.set_project_status(project_id, "running")
    return project_id, run_id, group_id
