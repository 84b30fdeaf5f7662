from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel


class AIProvider(Protocol):
    name: str

    async def call(self, *, model: str, prompt: str, schema: type[BaseModel]) -> str:
        """Return the raw provider text; parsing and validation happen in the caller."""
        ...
