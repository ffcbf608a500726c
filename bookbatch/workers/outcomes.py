"""
Values a worker step returns to the job runner.

A step never reschedules itself. It reports what should happen next and
the runner applies it to the job row.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Union


@dataclass
class Done:
    """The job is finished."""
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Continue:
    """More work remains; run the same job again."""
    reason: str = ""


@dataclass
class Snooze:
    """Not runnable right now; try again after ``seconds`` without using an attempt."""
    seconds: float


Outcome = Union[Done, Continue, Snooze]
