"""Provider-failover calling service.

Wraps one or more ``LLMProvider`` instances with a per-provider attempt
budget and ordered fallback.  Attempts are strictly sequential: a provider
that is failing is never hit with parallel retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, Sequence

from negotiation.errors import ProviderExhaustedError
from negotiation.llm.types import AttemptLog, LLMProvider, LLMRequest, LLMServiceResult

logger = logging.getLogger(__name__)


class ProviderFailoverService:
    """Try providers in order, retrying each up to ``max_retries_per_provider``.

    Parameters
    ----------
    providers : sequence of LLMProvider
        Primary first, then fallbacks.  Must not be empty.
    max_retries_per_provider : int
        Attempts made against each provider before moving on.
    retry_delay_ms : int
        Fixed delay observed before any attempt that follows a failure.
    call_timeout_s : float, optional
        Per-attempt timeout; a timed-out attempt counts as a failure.
    """

    def __init__(
        self,
        providers: Sequence[LLMProvider],
        max_retries_per_provider: int = 2,
        retry_delay_ms: int = 1000,
        call_timeout_s: Optional[float] = None,
    ) -> None:
        if not providers:
            raise ValueError("At least one LLM provider is required")
        if max_retries_per_provider < 1:
            raise ValueError("max_retries_per_provider must be >= 1")
        self.providers = list(providers)
        self.max_retries_per_provider = max_retries_per_provider
        self.retry_delay_ms = retry_delay_ms
        self.call_timeout_s = call_timeout_s

    async def call(self, request: LLMRequest) -> LLMServiceResult:
        """Issue *request*, failing over until one attempt succeeds.

        Raises ``ProviderExhaustedError`` carrying the full attempt log when
        every attempt on every provider fails.
        """
        attempts: list[AttemptLog] = []

        for provider in self.providers:
            for attempt in range(self.max_retries_per_provider):
                if attempts and not attempts[-1].success:
                    await self._delay()

                start = time.monotonic()
                try:
                    if self.call_timeout_s is not None:
                        response = await asyncio.wait_for(
                            provider.call(request), timeout=self.call_timeout_s
                        )
                    else:
                        response = await provider.call(request)
                except asyncio.TimeoutError:
                    error = f"{provider.name} call timed out after {self.call_timeout_s}s"
                except Exception as exc:  # noqa: BLE001
                    error = str(exc) or exc.__class__.__name__
                else:
                    attempts.append(
                        AttemptLog(
                            provider=provider.name,
                            model=response.model,
                            latency_ms=_elapsed_ms(start),
                            success=True,
                        )
                    )
                    if len(attempts) > 1:
                        logger.info(
                            "LLM call succeeded on %s after %d failed attempt(s)",
                            provider.name, len(attempts) - 1,
                        )
                    return LLMServiceResult(response=response, attempts=attempts)

                attempts.append(
                    AttemptLog(
                        provider=provider.name,
                        model="unknown",
                        latency_ms=_elapsed_ms(start),
                        success=False,
                        error=error,
                    )
                )
                logger.warning(
                    "LLM attempt failed: provider=%s attempt=%d/%d error=%s",
                    provider.name, attempt + 1, self.max_retries_per_provider, error,
                )

        logger.error("All %d LLM attempts failed across %d provider(s)", len(attempts), len(self.providers))
        raise ProviderExhaustedError(attempts)

    async def _delay(self) -> None:
        if self.retry_delay_ms > 0:
            await asyncio.sleep(self.retry_delay_ms / 1000)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
