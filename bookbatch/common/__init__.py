"""
Common low-level utilities with minimal dependencies.

This package contains fundamental definitions (the placeholder syntax)
shared by the codec and the healer, kept free of other imports to avoid
circular dependencies.
"""
