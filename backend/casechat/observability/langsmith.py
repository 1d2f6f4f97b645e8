"""LangSmith tracing setup and per-call trace config for LLM adapters."""

import logging
import os
from typing import Any, Dict, Iterable, Optional

from ..core.config import Settings

logger = logging.getLogger(__name__)


def initialize_langsmith(settings: Settings) -> bool:
    """
    Initialize LangSmith tracing environment.

    Returns:
        True when tracing is enabled and API key is present, else False.
    """
    tracing_requested = bool(settings.LANGSMITH_TRACING)
    has_api_key = bool(settings.LANGSMITH_API_KEY.strip())
    tracing_enabled = tracing_requested and has_api_key

    os.environ["LANGSMITH_TRACING"] = "true" if tracing_enabled else "false"
    os.environ["LANGCHAIN_TRACING_V2"] = "true" if tracing_enabled else "false"

    env_values = {
        "API_KEY": settings.LANGSMITH_API_KEY,
        "ENDPOINT": settings.LANGSMITH_ENDPOINT,
        "PROJECT": settings.LANGSMITH_PROJECT,
    }
    for suffix, value in env_values.items():
        if value:
            os.environ[f"LANGSMITH_{suffix}"] = value
            # Older LangChain integrations read the LANGCHAIN_* names.
            os.environ[f"LANGCHAIN_{suffix}"] = value
    if settings.LANGSMITH_WORKSPACE_ID:
        os.environ["LANGSMITH_WORKSPACE_ID"] = settings.LANGSMITH_WORKSPACE_ID

    if tracing_requested and not has_api_key:
        logger.warning("LANGSMITH_TRACING is set but LANGSMITH_API_KEY is empty; tracing disabled")
    elif tracing_enabled:
        logger.info(
            "LangSmith tracing enabled (project=%s, endpoint=%s)",
            settings.LANGSMITH_PROJECT,
            settings.LANGSMITH_ENDPOINT,
        )
    else:
        logger.info("LangSmith tracing disabled")

    return tracing_enabled


def build_trace_config(
    run_name: str,
    tags: Optional[Iterable[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build a LangChain runnable config carrying run name, tags and metadata."""
    config = dict(config or {})

    merged_tags = list(config.get("tags", []))
    merged_metadata = dict(config.get("metadata", {}))
    if tags:
        merged_tags.extend(tags)
    if metadata:
        merged_metadata.update({k: v for k, v in metadata.items() if v is not None})

    config["run_name"] = run_name
    if merged_tags:
        config["tags"] = merged_tags
    if merged_metadata:
        config["metadata"] = merged_metadata

    return config
