from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signalflow.domain.models import SignalRoute
from signalflow.persistence.guards import tenant_predicate


async def get_route(session: AsyncSession, route_id: str) -> SignalRoute | None:
    result = await session.execute(select(SignalRoute).where(SignalRoute.id == route_id))
    return result.scalar_one_or_none()


async def list_routes(
    session: AsyncSession,
    *,
    tenant_id: str,
    source: str | None = None,
    enabled: bool | None = None,
) -> list[SignalRoute]:
    stmt = select(SignalRoute).where(tenant_predicate(SignalRoute, tenant_id))
    if source:
        stmt = stmt.where(SignalRoute.source == source)
    if enabled is not None:
        stmt = stmt.where(SignalRoute.enabled.is_(enabled))
    stmt = stmt.order_by(SignalRoute.priority.desc(), SignalRoute.created_at, SignalRoute.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_candidate_routes(
    session: AsyncSession, *, tenant_id: str, source: str
) -> list[SignalRoute]:
    # Candidates for matching: enabled routes of the signal's tenant and source, highest priority first.
    return await list_routes(session, tenant_id=tenant_id, source=source, enabled=True)


async def create_route(session: AsyncSession, *, tenant_id: str, values: dict[str, Any]) -> SignalRoute:
    route = SignalRoute(tenant_id=tenant_id, **values)
    session.add(route)
    await session.commit()
    await session.refresh(route)
    return route


async def update_route(session: AsyncSession, route: SignalRoute, values: dict[str, Any]) -> SignalRoute:
    for key, value in values.items():
        setattr(route, key, value)
    await session.commit()
    await session.refresh(route)
    return route


async def delete_route(session: AsyncSession, route: SignalRoute) -> None:
    await session.delete(route)
    await session.commit()
