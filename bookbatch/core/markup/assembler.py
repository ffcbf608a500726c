"""
Reassembly of translated units into their source documents.
"""
import logging
from typing import List, Optional, Sequence, Union

from lxml import etree
from lxml import html as lxml_html

from bookbatch.core.exceptions import MissingTranslationError
from bookbatch.core.markup.segmenter import Slot, is_html_path, iter_slots, parse_markup
from bookbatch.core.markup.tag_classifier import TagClassifier

logger = logging.getLogger(__name__)


def resolve_replacements(source_markups: Sequence[str], translated_markups: Sequence[Optional[str]],
                         unit_keys: Sequence[str] = (), allow_missing: bool = False) -> List[str]:
    """
    Pick the markup to write back for every unit, in position order.

    Raises:
        MissingTranslationError: If a unit has no translation and
            ``allow_missing`` is False
    """
    resolved = []
    missing = []
    for index, (source, translated) in enumerate(zip(source_markups, translated_markups)):
        if translated is None:
            if not allow_missing:
                missing.append(unit_keys[index] if index < len(unit_keys) else str(index))
                continue
            translated = source
        resolved.append(translated)

    if missing:
        raise MissingTranslationError(f"{len(missing)} units have no translation", unit_keys=missing)
    return resolved


def _parse_fragment(markup: str, as_html: bool) -> Optional[etree._Element]:
    try:
        if as_html:
            return lxml_html.fragment_fromstring(markup)
        return etree.fromstring(markup.encode('utf-8'), etree.XMLParser(recover=True))
    except (etree.XMLSyntaxError, etree.ParserError) as e:
        logger.warning(f"Could not parse translated fragment, keeping source: {e}")
        return None


def _replace_run(slot: Slot, wrapper: etree._Element) -> None:
    """Swap an inline run for the content of its translated wrapper."""
    index = slot.insert_index()
    for element in slot.elements:
        # Removing an element removes its tail with it
        slot.owner.remove(element)
    slot.lead = wrapper.text
    for offset, inline in enumerate(list(wrapper)):
        slot.owner.insert(index + offset, inline)


def _apply(slot: Slot, markup: str, as_html: bool) -> None:
    fragment = _parse_fragment(markup, as_html)
    if fragment is None:
        return

    if slot.kind == "text":
        _replace_run(slot, fragment)
        return

    parent = slot.owner.getparent()
    fragment.tail = slot.owner.tail
    if parent is None:
        return
    parent.replace(slot.owner, fragment)


def assemble_markup(document_markup: Union[bytes, str], replacements: Sequence[str],
                    path: str = "", classifier: Optional[TagClassifier] = None) -> bytes:
    """
    Replace every translatable slot of a document with its translated markup.

    Slots are found with the same rules the segmenter uses, so the n-th
    replacement lands on the n-th unit. An inline run takes the content of
    its translated wrapper (text and inline elements), without the wrapper
    itself.

    Args:
        document_markup: Original file content
        replacements: Translated markup per unit, in position order
        path: File path, used to pick the parser
        classifier: Tag classifier (defaults to the segmentation one)

    Returns:
        Serialized document as UTF-8 bytes
    """
    classifier = classifier or TagClassifier()
    as_html = is_html_path(path)
    root = parse_markup(document_markup, path)

    slots = list(iter_slots(root, classifier))
    if len(slots) != len(replacements):
        logger.warning(f"{path}: {len(slots)} slots but {len(replacements)} replacements")

    # Walk backwards so a replaced block never invalidates a tail slot it owns
    for slot, markup in reversed(list(zip(slots, replacements))):
        _apply(slot, markup, as_html)

    tree = root.getroottree()
    if as_html:
        return etree.tostring(tree, method='html', encoding='utf-8')
    return etree.tostring(tree, encoding='utf-8', xml_declaration=True)
