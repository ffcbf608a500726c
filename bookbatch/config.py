"""
Centralized configuration class
"""
import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional
from dotenv import load_dotenv

# Setup debug logger for configuration
_config_logger = logging.getLogger('config')

# Check for DEBUG_MODE early (before .env is loaded, check environment)
_debug_mode = os.getenv('DEBUG_MODE', 'false').lower() == 'true'
if _debug_mode:
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    _config_logger.setLevel(logging.DEBUG)
    _config_logger.debug("DEBUG_MODE enabled - verbose logging active")

# Get config directory (current working directory)
_config_dir = Path.cwd()
_env_file = _config_dir / '.env'

if _env_file.exists():
    _dotenv_result = load_dotenv(_env_file)
    if _debug_mode:
        _config_logger.debug(f"load_dotenv() returned: {_dotenv_result}")
        _config_logger.debug(f"Loaded .env from: {_env_file.absolute()}")
elif _debug_mode:
    _config_logger.debug(f"No .env found at {_env_file.absolute()}, using environment and defaults")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


# Storage
DATABASE_PATH = os.getenv('DATABASE_PATH', 'data/bookbatch.db')
WORK_DIR = os.getenv('WORK_DIR', 'data/work')

# LLM endpoints (comma separated list of servers behind the endpoint pool)
LLM_SERVERS = os.getenv('LLM_SERVERS', '')
LLM_MODEL = os.getenv('LLM_MODEL', '')
LLM_API_KEY = os.getenv('LLM_API_KEY', '')
LLM_VALIDATION_MODEL = os.getenv('LLM_VALIDATION_MODEL', '')
DEFAULT_CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com/v1/chat/completions"

# LLM call parameters
REQUEST_TIMEOUT = int(os.getenv('REQUEST_TIMEOUT', '600'))
MAX_TRANSLATION_ATTEMPTS = int(os.getenv('MAX_TRANSLATION_ATTEMPTS', '2'))
MAX_CORRECTION_ATTEMPTS = int(os.getenv('MAX_CORRECTION_ATTEMPTS', '3'))
RETRY_DELAY_SECONDS = int(os.getenv('RETRY_DELAY_SECONDS', '2'))

# Endpoint pool health windows (seconds)
ENDPOINT_FAILURE_COOLDOWN = int(os.getenv('ENDPOINT_FAILURE_COOLDOWN', '60'))
ENDPOINT_STALE_BUSY = int(os.getenv('ENDPOINT_STALE_BUSY', '600'))

# Batch worker
BATCH_SIZE = int(os.getenv('BATCH_SIZE', '20'))
PAUSE_SNOOZE_SECONDS = int(os.getenv('PAUSE_SNOOZE_SECONDS', '10'))
JOB_MAX_ATTEMPTS = int(os.getenv('JOB_MAX_ATTEMPTS', '100'))
QUALITY_JOB_MAX_ATTEMPTS = int(os.getenv('QUALITY_JOB_MAX_ATTEMPTS', '3'))
JOB_RESCUE_AFTER_SECONDS = int(os.getenv('JOB_RESCUE_AFTER_SECONDS', '600'))
JOB_RESCUE_INTERVAL_SECONDS = int(os.getenv('JOB_RESCUE_INTERVAL_SECONDS', '60'))
WORKER_CONCURRENCY = int(os.getenv('WORKER_CONCURRENCY', '2'))

# Segmentation window limits (strategy="window")
SEGMENT_MAX_UNITS = int(os.getenv('SEGMENT_MAX_UNITS', '80'))
SEGMENT_MAX_CHARS = int(os.getenv('SEGMENT_MAX_CHARS', '8000'))

# Fuzzy tag matching used by the auto-healer
FUZZY_MIN_BRACKETS = int(os.getenv('FUZZY_MIN_BRACKETS', '1'))
FUZZY_MAX_BRACKETS = int(os.getenv('FUZZY_MAX_BRACKETS', '2'))
FUZZY_ALLOW_INNER_WHITESPACE = _env_bool('FUZZY_ALLOW_INNER_WHITESPACE', 'true')

# Similarity guard thresholds
SIMILARITY_MEDIUM_THRESHOLD = float(os.getenv('SIMILARITY_MEDIUM_THRESHOLD', '0.50'))
SIMILARITY_HIGH_THRESHOLD = float(os.getenv('SIMILARITY_HIGH_THRESHOLD', '0.90'))

# Default languages from environment
DEFAULT_SOURCE_LANGUAGE = os.getenv('DEFAULT_SOURCE_LANGUAGE', 'English')
DEFAULT_TARGET_LANGUAGE = os.getenv('DEFAULT_TARGET_LANGUAGE', 'Korean')

# Debug mode (reload after .env is loaded)
DEBUG_MODE = _env_bool('DEBUG_MODE', 'false')

# Log loaded configuration in debug mode
if DEBUG_MODE or _debug_mode:
    _config_logger.setLevel(logging.DEBUG)
    _config_logger.debug("=" * 60)
    _config_logger.debug("LOADED CONFIGURATION VALUES:")
    _config_logger.debug("=" * 60)
    _config_logger.debug(f"   DATABASE_PATH: {DATABASE_PATH}")
    _config_logger.debug(f"   LLM_SERVERS: {LLM_SERVERS or '(not set)'}")
    _config_logger.debug(f"   LLM_MODEL: {LLM_MODEL or '(not set)'}")
    _config_logger.debug(f"   LLM_API_KEY: {'***' + LLM_API_KEY[-4:] if LLM_API_KEY else '(not set)'}")
    _config_logger.debug(f"   REQUEST_TIMEOUT: {REQUEST_TIMEOUT}")
    _config_logger.debug(f"   BATCH_SIZE: {BATCH_SIZE}")
    _config_logger.debug(f"   WORKER_CONCURRENCY: {WORKER_CONCURRENCY}")
    _config_logger.debug(f"   DEFAULT_TARGET_LANGUAGE: {DEFAULT_TARGET_LANGUAGE}")
    _config_logger.debug("=" * 60)

# ============================================================================
# SEMANTIC PLACEHOLDER CONFIGURATION
# ============================================================================
# Inline markup tags are replaced by [[p_1]] / [[/p_1]] / [[br_2/]] tokens
# before translation. The LLM must keep them verbatim in its output.

PLACEHOLDER_OPEN = "[["
"""Opening delimiter of a semantic placeholder (e.g., [[ in [[p_1]])"""

PLACEHOLDER_CLOSE = "]]"
"""Closing delimiter of a semantic placeholder (e.g., ]] in [[p_1]])"""

PLACEHOLDER_TOKEN_PATTERN = r'\[\[[^\[\]]+\]\]'
"""Regex for any well-formed placeholder token in source or translated text"""

# Markup scanned by the placeholder codec: opening, closing or self-closing tags
MARKUP_TAG_PATTERN = r'<(/?)([a-zA-Z][a-zA-Z0-9:_.-]*)(?:\s+[^<>]*?)?(/?)>'

# Block structure used by the segmenter and the assembler
BLOCK_TAGS = [
    'p', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'li', 'dt', 'dd', 'td', 'th',
    'figcaption', 'caption', 'pre', 'code', 'address', 'nav'
]

CONTAINER_TAGS = [
    'html', 'body', 'div', 'section', 'article', 'aside', 'header', 'footer',
    'main', 'ol', 'ul', 'dl', 'table', 'thead', 'tbody', 'tfoot', 'tr',
    'blockquote', 'figure'
]

IGNORED_TAGS = ['head', 'script', 'style', 'meta', 'link', 'title']

# Wrapper used to give naked top-level text an identity of its own
NAKED_TEXT_WRAPPER = 'span'

# Unit statuses considered "still to do" by the batch worker
PENDING_UNIT_STATUSES = ('pending', 'queued', 'translating')

# Usage types a run must resolve an LLM endpoint for
REQUIRED_USAGE_TYPES = ('translate', 'validation')


@dataclass
class BatchConfig:
    """Worker-facing configuration for one translation run"""

    target_language: str = DEFAULT_TARGET_LANGUAGE
    source_language: str = DEFAULT_SOURCE_LANGUAGE
    batch_size: int = BATCH_SIZE
    timeout: int = REQUEST_TIMEOUT
    max_attempts: int = MAX_TRANSLATION_ATTEMPTS
    max_corrections: int = MAX_CORRECTION_ATTEMPTS
    pause_snooze_seconds: int = PAUSE_SNOOZE_SECONDS
    concurrency: int = WORKER_CONCURRENCY
    servers: Optional[List[str]] = None
    model: str = LLM_MODEL
    api_key: str = LLM_API_KEY

    @classmethod
    def from_cli_args(cls, args) -> 'BatchConfig':
        """Create config from CLI arguments"""
        servers = getattr(args, 'servers', None) or LLM_SERVERS
        return cls(
            target_language=getattr(args, 'target_lang', DEFAULT_TARGET_LANGUAGE),
            source_language=getattr(args, 'source_lang', DEFAULT_SOURCE_LANGUAGE),
            batch_size=getattr(args, 'batch_size', BATCH_SIZE),
            concurrency=getattr(args, 'concurrency', WORKER_CONCURRENCY),
            servers=[s.strip() for s in servers.split(',') if s.strip()] or None,
            model=getattr(args, 'model', None) or LLM_MODEL,
            api_key=getattr(args, 'api_key', None) or LLM_API_KEY,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            'target_language': self.target_language,
            'source_language': self.source_language,
            'batch_size': self.batch_size,
            'timeout': self.timeout,
            'max_attempts': self.max_attempts,
            'max_corrections': self.max_corrections,
            'pause_snooze_seconds': self.pause_snooze_seconds,
            'concurrency': self.concurrency,
            'servers': self.servers,
            'model': self.model,
        }
