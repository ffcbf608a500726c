"""
Persistence module for pipeline state and durable jobs.
"""

from .database import Database
from .checkpoint_manager import CheckpointManager
from .job_queue import JobQueue

__all__ = ['Database', 'CheckpointManager', 'JobQueue']
