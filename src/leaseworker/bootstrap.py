"""Wiring: build the store, provider and worker pool from settings."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from leaseworker.config import LifecycleMode, Settings
from leaseworker.db import WorkItemRepository, close_db, create_engine, create_session_factory
from leaseworker.engine import GenerationInvoker, GenerationProvider, PromptBuilder, ResultParser
from leaseworker.integrations import ChatCompletionsProvider
from leaseworker.tasks import LoopConfig, WorkerPool

logger = logging.getLogger("leaseworker")


@dataclass
class Runtime:
    """Everything a process needs to serve the queue; close with aclose()."""

    settings: Settings
    engine: AsyncEngine
    repository: WorkItemRepository
    provider: GenerationProvider
    invoker: GenerationInvoker
    parser: ResultParser
    prompts: PromptBuilder

    @property
    def lease_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.lease_ttl_minutes)

    def build_pool(self, mode: Optional[LifecycleMode] = None) -> WorkerPool:
        return WorkerPool(
            store=self.repository,
            invoker=self.invoker,
            parser=self.parser,
            prompts=self.prompts,
            lease_ttl=self.lease_ttl,
            config=LoopConfig.from_settings(self.settings, mode=mode),
            worker_id=self.settings.worker_id,
        )

    async def aclose(self) -> None:
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
        await close_db(self.engine)


def build_runtime(
    settings: Settings,
    provider: Optional[GenerationProvider] = None,
) -> Runtime:
    """
    Assemble a Runtime.

    Pass ``provider`` to substitute the generation backend (tests do); by
    default a ChatCompletionsProvider is built from the provider settings.
    """
    engine = create_engine(settings.async_database_url, echo=settings.debug)
    repository = WorkItemRepository(create_session_factory(engine))

    if provider is None:
        if not settings.provider_api_key:
            logger.warning("LEASEWORKER_PROVIDER_API_KEY is not set; provider calls will be unauthenticated")
        provider = ChatCompletionsProvider(
            settings.provider_base_url,
            api_key=settings.provider_api_key,
            timeout_seconds=settings.provider_timeout_seconds,
        )

    return Runtime(
        settings=settings,
        engine=engine,
        repository=repository,
        provider=provider,
        invoker=GenerationInvoker(
            provider,
            max_attempts=settings.generation_max_attempts,
            base_delay_seconds=settings.generation_retry_base_delay_seconds,
        ),
        parser=ResultParser(),
        prompts=PromptBuilder(
            model=settings.model,
            template=settings.prompt_template,
            temperature=settings.temperature,
        ),
    )
