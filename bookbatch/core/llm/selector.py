"""
Endpoint configuration resolution and run snapshots.

A run freezes the model configuration it was started with, so later
changes to the environment never switch models halfway through a book.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from bookbatch import config
from bookbatch.core.exceptions import MissingEndpointConfig
from bookbatch.core.llm.endpoint_pool import split_urls
from bookbatch.core.llm.providers.openai import endpoint_from_base_url

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class EndpointConfig:
    """Model and servers used for one usage type."""
    model: str
    base_urls: List[str]
    api_key: str = ""
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def endpoints(self) -> List[str]:
        """Chat-completions URLs for every configured server."""
        return [endpoint_from_base_url(url) for url in self.base_urls]

    @property
    def is_complete(self) -> bool:
        return bool(self.model) and bool(self.base_urls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "base_urls": list(self.base_urls),
            "api_key": self.api_key,
            "settings": dict(self.settings),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'EndpointConfig':
        return cls(
            model=data.get("model", ""),
            base_urls=split_urls(data.get("base_urls") or data.get("base_url") or []),
            api_key=data.get("api_key") or "",
            settings=dict(data.get("settings") or {}),
        )


def env_fallback(usage_type: str) -> Optional[EndpointConfig]:
    """Configuration from LLM_SERVERS / LLM_MODEL / LLM_API_KEY, if both servers and model are set."""
    servers = split_urls(config.LLM_SERVERS)
    model = config.LLM_MODEL
    if usage_type == "validation" and config.LLM_VALIDATION_MODEL:
        model = config.LLM_VALIDATION_MODEL

    if not servers or not model:
        return None
    return EndpointConfig(model=model, base_urls=servers, api_key=config.LLM_API_KEY)


def build_snapshot(explicit: Optional[Mapping[str, Union[EndpointConfig, Mapping[str, Any]]]] = None,
                   usage_types: Iterable[str] = config.REQUIRED_USAGE_TYPES,
                   allow_missing: bool = False) -> Dict[str, Any]:
    """
    Resolve a configuration for every usage type and freeze it.

    Explicit configs win; anything unresolved falls back to the environment.

    Args:
        explicit: Usage type -> EndpointConfig (or its dict form)
        usage_types: Usage types the run needs
        allow_missing: Return a partial snapshot instead of raising

    Returns:
        Snapshot dict with ``version``, ``selected_at``, ``configs`` and ``missing``

    Raises:
        MissingEndpointConfig: If a usage type resolves to nothing
    """
    explicit = explicit or {}
    configs: Dict[str, Dict[str, Any]] = {}
    missing: List[str] = []

    for usage_type in usage_types:
        selected = explicit.get(usage_type)
        if isinstance(selected, Mapping):
            selected = EndpointConfig.from_dict(selected)
        if selected is None or not selected.is_complete:
            selected = env_fallback(usage_type)

        if selected is None:
            missing.append(usage_type)
        else:
            configs[usage_type] = selected.to_dict()

    if missing and not allow_missing:
        raise MissingEndpointConfig(
            f"No LLM endpoint configured for: {', '.join(missing)}", missing=missing
        )

    return {
        "version": SNAPSHOT_VERSION,
        "selected_at": datetime.now(timezone.utc).isoformat(),
        "configs": configs,
        "missing": missing,
    }


def resolve_config(snapshot: Mapping[str, Any], usage_type: str) -> EndpointConfig:
    """
    Read one usage type back out of a run snapshot.

    Raises:
        MissingEndpointConfig: If the snapshot has no entry for it
    """
    data = (snapshot or {}).get("configs", {}).get(usage_type)
    if not data:
        raise MissingEndpointConfig(f"Run snapshot has no '{usage_type}' config", missing=[usage_type])
    return EndpointConfig.from_dict(data)
