"""LLM Gateway: the engine's LLM client.

Routes each LlmRequest to its provider adapter with:
  1. Circuit breaker check per provider
  2. Retries of retryable failures (429, 5xx, timeouts) with backoff + jitter
  3. LlmProviderError for anything non-retryable or once retries run out

Usage:
    gateway = LlmGateway.from_settings()
    response = await gateway.complete(request)
"""

from __future__ import annotations

import asyncio
import logging

from app.core.config import settings
from app.core.exceptions import LlmProviderError
from app.core.metrics import LLM_CALLS
from app.gateway.circuit_breaker import CircuitBreaker
from app.gateway.types import LlmProvider, LlmRequest, LlmResponse, ProviderConfig
from app.gateway.vendor_adapters import BaseProviderAdapter, ProviderCallError, get_adapter

logger = logging.getLogger(__name__)


class LlmGateway:
    def __init__(
        self,
        provider_configs: dict[LlmProvider, ProviderConfig],
        circuit_breaker: CircuitBreaker | None = None,
        adapter_kwargs: dict[LlmProvider, dict] | None = None,
    ):
        self.configs = provider_configs
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self._adapter_kwargs = adapter_kwargs or {}
        self._adapters: dict[LlmProvider, BaseProviderAdapter] = {}

    @classmethod
    def from_settings(cls) -> LlmGateway:
        common = {
            "timeout_seconds": settings.llm_timeout_seconds,
            "max_retries": settings.llm_max_retries,
            "base_retry_delay": settings.llm_base_retry_delay,
            "max_retry_delay": settings.llm_max_retry_delay,
        }
        return cls(
            provider_configs={
                LlmProvider.OPENAI: ProviderConfig(
                    provider=LlmProvider.OPENAI,
                    api_key=settings.openai_api_key,
                    base_url=settings.openai_base_url,
                    **common,
                ),
                LlmProvider.ANTHROPIC: ProviderConfig(
                    provider=LlmProvider.ANTHROPIC,
                    api_key=settings.anthropic_api_key,
                    base_url=settings.anthropic_base_url,
                    **common,
                ),
            },
            adapter_kwargs={LlmProvider.ANTHROPIC: {"api_version": settings.anthropic_version}},
        )

    def _get_adapter(self, provider: LlmProvider) -> BaseProviderAdapter | None:
        if provider not in self._adapters:
            config = self.configs.get(provider)
            if config is None or not config.api_key:
                return None
            self._adapters[provider] = get_adapter(config, **self._adapter_kwargs.get(provider, {}))
        return self._adapters[provider]

    async def complete(self, request: LlmRequest) -> LlmResponse:
        provider = request.config.provider

        adapter = self._get_adapter(provider)
        if adapter is None:
            raise LlmProviderError(f"No API key configured for {provider.value}", provider=provider.value)

        config = self.configs[provider]
        extra = request.tracing.log_extra()

        for attempt in range(config.max_retries + 1):
            if not self.circuit_breaker.allow_request(provider):
                raise LlmProviderError(f"Circuit breaker open for {provider.value}", provider=provider.value, status=503)

            LLM_CALLS.labels(provider=provider.value).inc()
            try:
                response = await adapter.send(request)
            except ProviderCallError as e:
                if not e.retryable:
                    raise LlmProviderError(str(e), provider=provider.value, status=e.status_code) from e

                retry_delay = self.circuit_breaker.record_failure(provider, attempt, config)
                if retry_delay is None:
                    raise LlmProviderError(
                        f"{provider.value} failed after {attempt + 1} attempts: {e}",
                        provider=provider.value,
                        status=e.status_code,
                    ) from e

                logger.info(
                    "Retrying %s call (attempt %d/%d) in %.1fs: %s",
                    provider.value,
                    attempt + 1,
                    config.max_retries,
                    retry_delay,
                    e,
                    extra=extra,
                )
                await asyncio.sleep(retry_delay)
                continue

            self.circuit_breaker.record_success(provider)
            logger.info(
                "%s %s responded in %dms (%d tokens, %d tool call(s))",
                provider.value,
                response.model,
                response.latency_ms,
                response.usage.total_tokens,
                len(response.tool_calls),
                extra=extra,
            )
            return response

        raise LlmProviderError(f"{provider.value} retries exhausted", provider=provider.value)

    def get_status(self) -> dict:
        return {
            "circuits": self.circuit_breaker.get_all_states(),
            "configured_providers": [p.value for p, c in self.configs.items() if c.api_key],
        }
