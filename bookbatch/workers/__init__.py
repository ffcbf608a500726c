"""
Job workers and the runner that executes them.
"""
from .outcomes import Continue, Done, Snooze
from .runner import JobRunner

__all__ = ['Continue', 'Done', 'Snooze', 'JobRunner']
