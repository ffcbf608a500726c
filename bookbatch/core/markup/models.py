"""
Data structures produced by segmentation and consumed by the batch worker.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Any


@dataclass
class TranslationUnit:
    """Smallest translatable span of markup.

    Attributes:
        unit_key: Identifier unique within the group (``u_1``, ``u_2``...)
        position: Processing and reassembly order inside the group
        protected_text: Markup with every tag replaced by a placeholder
        raw_markup: Serialized source markup of the leaf block
        placeholder_map: Placeholder key -> original tag text
        content_hash: sha256 hex digest of ``raw_markup``
        status: pending, translating or translated
        dirty: Flagged for re-translation by the quality guard
    """
    unit_key: str
    position: int
    protected_text: str
    raw_markup: str
    placeholder_map: Dict[str, str] = field(default_factory=dict)
    content_hash: str = ""
    status: str = "pending"
    dirty: bool = False

    @property
    def char_count(self) -> int:
        return len(self.protected_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'unit_key': self.unit_key,
            'position': self.position,
            'protected_text': self.protected_text,
            'raw_markup': self.raw_markup,
            'placeholder_map': dict(self.placeholder_map),
            'content_hash': self.content_hash,
            'status': self.status,
            'dirty': self.dirty,
        }


@dataclass
class TranslationGroup:
    """Ordered units processed as one crash-resumable batch.

    Attributes:
        group_key: Source file path, or ``<file>#window-<n>`` for window groups
        position: Order of the group inside the project
        units: Units in ascending position order
        source_path: File the units were segmented from
        cursor: Lowest position not yet durably translated
        status: pending, running, paused or ready
    """
    group_key: str
    position: int
    units: List[TranslationUnit] = field(default_factory=list)
    source_path: str = ""
    cursor: int = 0
    status: str = "pending"

    @property
    def unit_count(self) -> int:
        return len(self.units)

    @property
    def char_count(self) -> int:
        return sum(unit.char_count for unit in self.units)
