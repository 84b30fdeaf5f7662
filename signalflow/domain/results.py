from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from signalflow.core.errors import SignalflowError


T = TypeVar("T")


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    # Uniform outcome of a service operation; HTTP routes translate failures into error envelopes.
    ok: bool
    status: int
    data: T | None = None
    error: str | None = None
    code: str | None = None
    errors: list[dict[str, Any]] | None = None

    @classmethod
    def success(cls, data: T, *, status: int = 200) -> "ServiceResult[T]":
        return cls(ok=True, status=status, data=data)

    @classmethod
    def failure(cls, exc: SignalflowError) -> "ServiceResult[T]":
        return cls(
            ok=False,
            status=exc.status_code,
            error=exc.message,
            code=exc.code,
            errors=exc.errors,
        )

    def unwrap(self) -> T:
        # Return the payload of a successful result; failed results are not unwrappable.
        if not self.ok:
            raise RuntimeError(f"cannot unwrap failed result code={self.code}")
        return self.data  # type: ignore[return-value]
