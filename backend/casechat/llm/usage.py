"""Per-call LLM usage telemetry.

One ``llm_usage_records`` row per provider call, successful or not. The
row is written in its own DB session so telemetry never shares a
transaction with the request, and a failed write is logged, not raised.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..db.chat.models import ModelUsageRecord
from .providers.base import UsageMetrics

logger = logging.getLogger(__name__)


class UsageRecorder:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(
        self,
        provider: str,
        model_id: str,
        usage: Optional[UsageMetrics],
        request_type: str = "chat",
        case_id: Optional[str] = None,
        success: bool = True,
        error_type: Optional[str] = None,
    ) -> None:
        usage = usage or UsageMetrics()
        try:
            async with self.session_factory() as db:
                db.add(ModelUsageRecord(
                    provider=provider,
                    model_id=model_id,
                    cache_hit=usage.cache_hit,
                    input_tokens=usage.input_tokens,
                    cached_tokens=usage.cached_tokens,
                    output_tokens=usage.output_tokens,
                    request_type=request_type,
                    case_id=case_id,
                    success=success,
                    error_type=error_type,
                ))
                await db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record LLM usage for %s/%s", provider, model_id)
