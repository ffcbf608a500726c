"""
Document store
"""
from .store import DocumentSession, DocumentStore

__all__ = ['DocumentSession', 'DocumentStore']
