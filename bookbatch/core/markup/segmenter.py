"""
Block-level segmentation of markup documents into translation units.

A document is walked depth-first. Containers are always traversed, and a
block tag is emitted as one unit only when it holds no nested block
structure. Inline content sitting directly inside a container (text plus
elements such as ``em`` or ``a`` and their tails) is grouped into maximal
runs between structural children; each run holding non-whitespace text
becomes a unit of its own, wrapped in a span so it can be identified.
"""
import copy
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from lxml import etree

from bookbatch.config import NAKED_TEXT_WRAPPER, SEGMENT_MAX_CHARS, SEGMENT_MAX_UNITS
from bookbatch.core.exceptions import ParseError
from bookbatch.core.markup.models import TranslationGroup, TranslationUnit
from bookbatch.core.markup.placeholder_codec import PlaceholderCodec
from bookbatch.core.markup.tag_classifier import TagClassifier

logger = logging.getLogger(__name__)

HTML_EXTENSIONS = ('.html', '.htm')

STRATEGY_FILE = "file"
STRATEGY_WINDOW = "window"


@dataclass
class Slot:
    """One translatable location inside a parsed document.

    ``kind`` is ``"block"`` for a leaf element, or ``"text"`` for a run of
    inline content inside ``owner``. A run opens with ``owner.text`` when
    ``anchor`` is None, or with ``anchor.tail`` otherwise, and continues
    through the inline ``elements`` and their tails.
    """
    kind: str
    owner: etree._Element
    anchor: Optional[etree._Element] = None
    elements: List[etree._Element] = field(default_factory=list)

    @property
    def lead(self) -> str:
        source = self.owner.text if self.anchor is None else self.anchor.tail
        return source or ""

    @lead.setter
    def lead(self, value: Optional[str]):
        if self.anchor is None:
            self.owner.text = value
        else:
            self.anchor.tail = value

    @property
    def text(self) -> str:
        """Plain text of the slot."""
        if self.kind == "block":
            return "".join(self.owner.itertext())
        parts = [self.lead]
        for element in self.elements:
            parts.extend(element.itertext())
            parts.append(element.tail or "")
        return "".join(parts)

    def insert_index(self) -> int:
        """Child index of ``owner`` where the run's elements start."""
        if self.elements:
            return self.owner.index(self.elements[0])
        return 0 if self.anchor is None else self.owner.index(self.anchor) + 1


def is_html_path(path: str) -> bool:
    return path.lower().endswith(HTML_EXTENSIONS)


def parse_markup(content: Union[bytes, str], path: str = "") -> etree._Element:
    """
    Parse a document into an lxml tree.

    XHTML/XML files are parsed strictly; ``.html``/``.htm`` files go through
    the lenient HTML parser.

    Raises:
        ParseError: If the document is malformed or empty
    """
    if isinstance(content, str):
        content = content.encode('utf-8')

    preview = content[:200].decode('utf-8', errors='replace')
    if not content.strip():
        raise ParseError("Document is empty", path=path, content_preview=preview)

    try:
        if is_html_path(path):
            root = etree.fromstring(content, etree.HTMLParser())
        else:
            parser = etree.XMLParser(resolve_entities=False, no_network=True)
            root = etree.fromstring(content, parser)
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Failed to parse {path or 'document'}: {e}", path=path,
                         original_error=e, content_preview=preview) from e

    if root is None:
        raise ParseError("Document has no root element", path=path, content_preview=preview)
    return root


def iter_slots(root: etree._Element, classifier: TagClassifier) -> Iterator[Slot]:
    """Yield every translatable slot of a document in document order."""
    if classifier.is_ignored(root):
        return
    if classifier.is_leaf_block(root):
        yield Slot("block", root)
        return
    if not classifier.should_descend(root):
        return

    run = Slot("text", root)
    for child in root:
        if classifier.is_inline(child):
            run.elements.append(child)
            continue
        # Any other child closes the current run
        if run.text.strip():
            yield run
        if isinstance(child.tag, str):
            yield from iter_slots(child, classifier)
        run = Slot("text", root, anchor=child)
    if run.text.strip():
        yield run


def serialize_slot(slot: Slot) -> str:
    """Serialize a slot to the markup a unit carries."""
    if slot.kind == "block":
        return etree.tostring(slot.owner, encoding='unicode', with_tail=False)
    wrapper = etree.Element(NAKED_TEXT_WRAPPER)
    wrapper.text = slot.lead
    for element in slot.elements:
        inline = copy.deepcopy(element)
        inline.tail = element.tail
        wrapper.append(inline)
    return etree.tostring(wrapper, encoding='unicode')


def hash_source(markup: str) -> str:
    return hashlib.sha256(markup.encode('utf-8')).hexdigest()


class Segmenter:
    """
    Turns documents into ordered translation groups.

    Example:
        >>> segmenter = Segmenter()
        >>> group = segmenter.segment_document("ch1.xhtml", content, position=0)
        >>> [unit.unit_key for unit in group.units]
        ['u_0', 'u_1', 'u_2']
    """

    def __init__(self, codec: Optional[PlaceholderCodec] = None,
                 classifier: Optional[TagClassifier] = None):
        self.codec = codec or PlaceholderCodec()
        self.classifier = classifier or TagClassifier()

    def segment_document(self, path: str, content: Union[bytes, str], position: int = 0) -> TranslationGroup:
        """
        Segment one file into a single group keyed by its path.

        Raises:
            ParseError: If the file cannot be parsed
        """
        root = parse_markup(content, path)
        units = [
            self._build_unit(index, serialize_slot(slot))
            for index, slot in enumerate(iter_slots(root, self.classifier))
        ]
        logger.debug(f"Segmented {path}: {len(units)} units")
        return TranslationGroup(group_key=path, position=position, units=units, source_path=path)

    def segment(self, documents: Iterable[Tuple[str, Union[bytes, str]]],
                strategy: str = STRATEGY_FILE,
                max_units: int = SEGMENT_MAX_UNITS,
                max_chars: int = SEGMENT_MAX_CHARS,
                failures: Optional[List[ParseError]] = None) -> List[TranslationGroup]:
        """
        Segment documents, in order, into translation groups.

        Args:
            documents: (relative path, content) pairs in reading order
            strategy: "file" for one group per file, "window" to split
                oversized files into bounded windows
            max_units: Window limit on units (window strategy only)
            max_chars: Window limit on protected characters (window strategy only)
            failures: When given, files that fail to parse are skipped and
                their ParseError appended here instead of raised

        Returns:
            Groups with dense positions in file order

        Raises:
            ParseError: On the first file that cannot be parsed (without ``failures``)
            ValueError: If the strategy is unknown
        """
        if strategy not in (STRATEGY_FILE, STRATEGY_WINDOW):
            raise ValueError(f"Unknown segmentation strategy: {strategy}")

        groups: List[TranslationGroup] = []
        for path, content in documents:
            try:
                groups.append(self.segment_document(path, content, position=len(groups)))
            except ParseError as e:
                if failures is None:
                    raise
                logger.error(f"Skipping {path}: {e.message}")
                failures.append(e)

        if strategy == STRATEGY_WINDOW:
            groups = self._split_windows(groups, max_units, max_chars)

        logger.info(f"Segmented {len(groups)} groups, "
                    f"{sum(g.unit_count for g in groups)} units ({strategy} strategy)")
        return groups

    def _build_unit(self, index: int, markup: str) -> TranslationUnit:
        protected_text, mapping = self.codec.protect(markup)
        return TranslationUnit(
            unit_key=f"u_{index}",
            position=index,
            protected_text=protected_text,
            raw_markup=markup,
            placeholder_map=mapping,
            content_hash=hash_source(markup),
        )

    def _split_windows(self, groups: List[TranslationGroup], max_units: int,
                       max_chars: int) -> List[TranslationGroup]:
        windowed: List[TranslationGroup] = []

        for group in groups:
            if group.unit_count <= max_units and group.char_count <= max_chars:
                windowed.append(group)
                continue

            windows: List[List[TranslationUnit]] = []
            current: List[TranslationUnit] = []
            current_chars = 0
            for unit in group.units:
                too_many = len(current) >= max_units
                too_long = current_chars + unit.char_count > max_chars
                if current and (too_many or too_long):
                    windows.append(current)
                    current, current_chars = [], 0
                current.append(unit)
                current_chars += unit.char_count
            if current:
                windows.append(current)

            for number, window in enumerate(windows, start=1):
                # Positions restart in every window; unit keys stay file-unique
                for offset, unit in enumerate(window):
                    unit.position = offset
                windowed.append(TranslationGroup(
                    group_key=f"{group.group_key}#window-{number}",
                    position=0,
                    units=window,
                    source_path=group.source_path,
                ))

        for index, group in enumerate(windowed):
            group.position = index
        return windowed
