"""
LLM access: endpoint pool, provider and the model client built on them.
"""
from .endpoint_pool import EndpointPool
from .model_client import ModelClient, TranslationResult

__all__ = ['EndpointPool', 'ModelClient', 'TranslationResult']
