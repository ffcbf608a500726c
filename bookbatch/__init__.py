"""
bookbatch: resumable, cursor-driven LLM translation of markup documents.
"""

__version__ = "0.1.0"
