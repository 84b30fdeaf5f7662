from __future__ import annotations

from dataclasses import dataclass
import hashlib
import json
import logging
import math
import re
import time
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signalflow.core.config import get_settings
from signalflow.core.errors import SchemaValidationError, TransientFailureError
from signalflow.persistence.db import SessionLocal
from signalflow.persistence.repos import ai_executions as ai_executions_repo
from signalflow.providers.llm.base import AIProvider
from signalflow.services.ai.cache import ExecutionCache, get_execution_cache
from signalflow.services.resilience import RetryPolicy, RetryStats, is_transient, retry_async
from signalflow.services.signals.normalizer import canonical_json
from signalflow.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class AIRequest(Generic[T]):
    tenant_id: str
    prompt: str
    schema: type[T]
    operation: str = "generate"
    model: str | None = None
    workflow_execution_id: str | None = None
    step_id: str | None = None
    use_cache: bool = True


@dataclass(frozen=True)
class HardenedResult(Generic[T]):
    result: T
    cached: bool
    execution_id: str
    duration_ms: int
    total_tokens: int = 0


def normalize_prompt(prompt: str) -> str:
    # Whitespace-only differences must not defeat the cache.
    return _WHITESPACE.sub(" ", prompt).strip()


def compute_fingerprint(model: str, schema: type[BaseModel], prompt: str) -> str:
    material = {
        "model": model,
        "schema": schema.model_json_schema(),
        "prompt": normalize_prompt(prompt),
    }
    return hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()


def estimate_tokens(text: str) -> int:
    chars_per_token = max(get_settings().ai_chars_per_token, 1.0)
    return math.ceil(len(text) / chars_per_token)


def parse_response(raw: str, schema: type[T]) -> T:
    try:
        payload = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise SchemaValidationError(
            "Provider response is not valid JSON",
            errors=[{"field": None, "message": str(exc)}],
        ) from exc
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in item["loc"]) or None, "message": item["msg"]}
            for item in exc.errors()
        ]
        raise SchemaValidationError("Provider response does not match schema", errors=errors) from exc


class HardenedExecutor:
    """Runs AI calls behind a fingerprint cache, bounded retry and schema validation.

    Every call leaves exactly one AI-execution row: ``cached`` for cache hits,
    ``success`` for validated provider responses and ``failed`` otherwise.
    """

    def __init__(
        self,
        provider: AIProvider,
        *,
        cache: ExecutionCache | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._session_factory = session_factory or SessionLocal
        self._retry_policy = retry_policy

    @property
    def cache(self) -> ExecutionCache:
        return self._cache or get_execution_cache()

    async def execute_with_schema(self, request: AIRequest[T]) -> HardenedResult[T]:
        settings = get_settings()
        model = request.model or settings.gemini_model
        fingerprint = compute_fingerprint(model, request.schema, request.prompt)
        use_cache = request.use_cache and settings.ai_cache_enabled
        started = time.monotonic()

        if use_cache:
            entry = await self.cache.get(fingerprint)
            if entry is not None:
                increment_counter("ai_cache_hits_total")
                result = request.schema.model_validate(entry.result)
                duration_ms = _elapsed_ms(started)
                row_id = await self._log(
                    request,
                    model=model,
                    fingerprint=fingerprint,
                    status="cached",
                    cached=True,
                    output=entry.result,
                    duration_ms=duration_ms,
                )
                logger.info(
                    "ai_call_cached tenant_id=%s operation=%s fingerprint=%s",
                    request.tenant_id,
                    request.operation,
                    fingerprint[:12],
                )
                return HardenedResult(result=result, cached=True, execution_id=row_id, duration_ms=duration_ms)
            increment_counter("ai_cache_misses_total")

        stats = RetryStats()

        async def _call() -> str:
            return await self._provider.call(model=model, prompt=request.prompt, schema=request.schema)

        integration = f"ai.{getattr(self._provider, 'name', 'unknown')}"
        try:
            try:
                raw = await retry_async(_call, policy=self._retry_policy, stats=stats)
            except Exception as exc:
                record_external_call(
                    integration=integration, latency_ms=(time.monotonic() - started) * 1000.0, success=False
                )
                if is_transient(exc):
                    raise TransientFailureError(
                        f"AI provider failed after {stats.attempts} attempts: {type(exc).__name__}"
                    ) from exc
                raise
            record_external_call(
                integration=integration, latency_ms=(time.monotonic() - started) * 1000.0, success=True
            )
            result = parse_response(raw, request.schema)
        except Exception as exc:
            duration_ms = _elapsed_ms(started)
            await self._log_failure(
                request,
                model=model,
                fingerprint=fingerprint,
                error=exc,
                retry_count=stats.retries,
                duration_ms=duration_ms,
            )
            increment_counter("ai_calls_failed_total")
            logger.warning(
                "ai_call_failed tenant_id=%s operation=%s attempts=%s error=%s",
                request.tenant_id,
                request.operation,
                stats.attempts,
                type(exc).__name__,
            )
            raise

        output = result.model_dump(mode="json")
        if use_cache:
            await self.cache.set(fingerprint, output)
        prompt_tokens = estimate_tokens(request.prompt)
        completion_tokens = estimate_tokens(raw)
        duration_ms = _elapsed_ms(started)
        row_id = await self._log(
            request,
            model=model,
            fingerprint=fingerprint,
            status="success",
            cached=False,
            output=output,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            retry_count=stats.retries,
            duration_ms=duration_ms,
        )
        logger.info(
            "ai_call_succeeded tenant_id=%s operation=%s attempts=%s duration_ms=%s",
            request.tenant_id,
            request.operation,
            stats.attempts,
            duration_ms,
        )
        return HardenedResult(
            result=result,
            cached=False,
            execution_id=row_id,
            duration_ms=duration_ms,
            total_tokens=prompt_tokens + completion_tokens,
        )

    async def _log(
        self,
        request: AIRequest[Any],
        *,
        model: str,
        fingerprint: str,
        status: str,
        cached: bool,
        output: Any = None,
        error: str | None = None,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        retry_count: int = 0,
        duration_ms: int = 0,
    ) -> str:
        # A dedicated session keeps the log row independent of the step's own transaction.
        async with self._session_factory() as session:
            row = await ai_executions_repo.insert_execution(
                session,
                tenant_id=request.tenant_id,
                values={
                    "workflow_execution_id": request.workflow_execution_id,
                    "step_id": request.step_id,
                    "provider": getattr(self._provider, "name", "unknown"),
                    "model": model,
                    "operation": request.operation,
                    "fingerprint": fingerprint,
                    "status": status,
                    "cached": cached,
                    "output_json": output,
                    "error": error,
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens,
                    "total_tokens": prompt_tokens + completion_tokens,
                    "retry_count": retry_count,
                    "duration_ms": duration_ms,
                },
            )
            return row.id

    async def _log_failure(
        self,
        request: AIRequest[Any],
        *,
        model: str,
        fingerprint: str,
        error: Exception,
        retry_count: int,
        duration_ms: int,
    ) -> None:
        # A failed log write must not mask the provider error the caller is about to see.
        try:
            await self._log(
                request,
                model=model,
                fingerprint=fingerprint,
                status="failed",
                cached=False,
                error=f"{type(error).__name__}: {error}",
                retry_count=retry_count,
                duration_ms=duration_ms,
            )
        except SQLAlchemyError as exc:
            logger.warning("ai_execution_log_failed fingerprint=%s", fingerprint[:12], exc_info=exc)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def build_hardened_executor(provider: AIProvider | None = None) -> HardenedExecutor:
    # Step runners get the configured provider unless they inject one.
    if provider is None:
        from signalflow.providers.llm.factory import get_ai_provider

        provider = get_ai_provider()
    return HardenedExecutor(provider)
