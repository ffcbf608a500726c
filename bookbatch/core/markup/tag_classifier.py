"""HTML tag classification for block-level segmentation.

This module decides which elements are translation leaves, which are
containers to walk into, and which are skipped entirely.
"""
from typing import Iterable, Optional

from lxml import etree

from bookbatch.config import BLOCK_TAGS, CONTAINER_TAGS, IGNORED_TAGS


def local_name(element) -> Optional[str]:
    """Return the lower-cased tag name without namespace, or None for non-elements.

    Comments and processing instructions have a callable ``tag`` in lxml and
    are reported as None.
    """
    tag = element.tag
    if not isinstance(tag, str):
        return None
    if '}' in tag:
        tag = tag.split('}', 1)[1]
    return tag.lower()


class TagClassifier:
    """Classifies elements as block leaves, containers or ignored subtrees.

    A block tag is only a leaf when none of its descendants are block or
    container tags; otherwise it is walked like a container, so that a
    wrapper never swallows a whole chapter into one unit.
    """

    def __init__(self, block_tags: Iterable[str] = BLOCK_TAGS,
                 container_tags: Iterable[str] = CONTAINER_TAGS,
                 ignored_tags: Iterable[str] = IGNORED_TAGS):
        self.block_tags = frozenset(block_tags)
        self.container_tags = frozenset(container_tags)
        self.ignored_tags = frozenset(ignored_tags)

    def is_block(self, element) -> bool:
        return local_name(element) in self.block_tags

    def is_container(self, element) -> bool:
        return local_name(element) in self.container_tags

    def is_ignored(self, element) -> bool:
        return local_name(element) in self.ignored_tags

    def is_structural(self, element) -> bool:
        """True for any block or container element."""
        name = local_name(element)
        return name in self.block_tags or name in self.container_tags

    def has_structural_descendant(self, element: etree._Element) -> bool:
        """Check whether any descendant is itself a block or container."""
        for descendant in element.iterdescendants():
            if self.is_structural(descendant):
                return True
        return False

    def is_leaf_block(self, element: etree._Element) -> bool:
        """A block element that contains no nested block structure."""
        return self.is_block(element) and not self.has_structural_descendant(element)

    def is_inline(self, element) -> bool:
        """An element that belongs to the text run around it."""
        if local_name(element) is None or self.is_ignored(element) or self.is_structural(element):
            return False
        return not self.has_structural_descendant(element)

    def should_descend(self, element: etree._Element) -> bool:
        """Containers, and any element wrapping nested blocks, are walked into."""
        return self.is_container(element) or self.has_structural_descendant(element)
