"""
LLM Provider Implementations

Providers:
    - openai: OpenAI-compatible chat-completions servers
"""

__all__ = []
