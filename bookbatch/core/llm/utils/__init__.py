"""
LLM Utility Modules

Components:
    - extraction: Translation payload extraction from LLM responses
"""
