"""
Markup handling: placeholder protection, segmentation and reassembly.
"""
from .placeholder_codec import PlaceholderCodec
from .segmenter import Segmenter
from .assembler import assemble_markup

__all__ = ['PlaceholderCodec', 'Segmenter', 'assemble_markup']
