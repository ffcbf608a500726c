"""
Auto-healing of model output against the tagged source.

Components:
    - tokenizer: typed token stream and tag tree
    - auto_healer: structural reconciliation
"""
from .auto_healer import AutoHealer, heal

__all__ = ['AutoHealer', 'heal']
