from __future__ import annotations

import asyncio
import json
from typing import Any

from pydantic import BaseModel


class FakeAIProvider:
    name = "fake"

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        *,
        default: Any = None,
        delays_s: list[float] | None = None,
    ) -> None:
        # Scripted responses keep tests deterministic; exceptions in the script are raised in order.
        self._responses = list(responses or [])
        self._default = default if default is not None else {}
        self._delays = list(delays_s or [])
        self.calls: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def call(self, *, model: str, prompt: str, schema: type[BaseModel]) -> str:
        self.calls.append({"model": model, "prompt": prompt, "schema": schema.__name__})
        if self._delays:
            await asyncio.sleep(self._delays.pop(0))
        if self._responses:
            item = self._responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return json.dumps(self._default)
