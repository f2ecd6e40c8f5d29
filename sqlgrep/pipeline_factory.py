from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Optional

from adapters.db.factory import build_adapter
from adapters.llm.base import ModelGateway
from adapters.llm.openai_provider import OpenAIProvider
from adapters.metrics.base import Metrics
from adapters.metrics.prometheus import PrometheusMetrics
from sqlgrep.config import BaseConfig, load_base_config
from sqlgrep.errors.exceptions import ConfigurationError
from sqlgrep.memory import ConversationStore
from sqlgrep.pipeline import Pipeline
from sqlgrep.schema.catalog import AdapterSchemaCatalog

if TYPE_CHECKING:
    from app.settings import Settings

log = logging.getLogger(__name__)


def build_gateway(settings: "Settings") -> ModelGateway:
    return OpenAIProvider(
        api_key=settings.api_key,
        base_url=settings.base_url or None,
        model=settings.model,
        timeout=settings.llm_timeout_sec,
    )


def build_memory(settings: "Settings") -> Optional[ConversationStore]:
    if not settings.conversation_enabled:
        return None
    try:
        return ConversationStore(
            settings.conversation_db,
            table=settings.conversation_table,
            max_messages=settings.conversation_max_messages,
            ttl_days=settings.conversation_ttl_days,
        )
    except ConfigurationError as e:
        log.warning(
            "Conversation memory disabled",
            extra={"error": e.message, "db_path": settings.conversation_db},
        )
        return None


def pipeline_from_settings(
    settings: "Settings",
    *,
    base_config: Optional[BaseConfig] = None,
    gateway: Optional[ModelGateway] = None,
    metrics: Optional[Metrics] = None,
) -> Pipeline:
    """
    Build a Pipeline from Settings and the YAML config (dependency-injected).
    Any collaborator passed explicitly wins over the settings-derived one.
    """
    if base_config is None:
        base_config = load_base_config(settings.config_path)

    adapter_factory = functools.partial(build_adapter, timeout=settings.query_timeout_sec)
    log.info(
        "Building pipeline",
        extra={
            "config_path": settings.config_path,
            "contexts": sorted(base_config.contexts.keys()),
            "conversation_enabled": settings.conversation_enabled,
        },
    )
    return Pipeline(
        gateway=gateway or build_gateway(settings),
        base_config=base_config,
        catalog=AdapterSchemaCatalog(
            adapter_factory=adapter_factory,
            cache_ttl=float(settings.metadata_cache_ttl_sec),
        ),
        adapter_factory=adapter_factory,
        memory=build_memory(settings),
        metrics=metrics or PrometheusMetrics(),
        system_prompt=settings.system_prompt or None,
        answer_format=settings.answer_format or None,
        model_max_retries=settings.model_max_retries,
    )
