from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from signalflow.core.errors import InvalidPayloadError, UnsupportedSourceError


URGENCIES = ("low", "normal", "high", "critical")


@dataclass(frozen=True)
class NormalizedPayload:
    # The single shape every adapter produces; `data` is what gets hashed and routed on.
    signal_type: str
    urgency: str
    data: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)


class SignalAdapter(Protocol):
    source: str

    def can_handle(self, source: str) -> bool:
        ...

    def normalize(self, payload: dict[str, Any]) -> NormalizedPayload:
        ...


def _number(value: Any) -> float | None:
    # Booleans are ints in Python; they are not metrics.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _urgency(value: Any, default: str = "normal") -> str:
    # Caller-supplied urgency must be one of the known levels.
    if value is None:
        return default
    lowered = str(value).strip().lower()
    if lowered not in URGENCIES:
        raise InvalidPayloadError(
            f"Invalid urgency: {value}. Valid urgencies: {', '.join(URGENCIES)}",
            errors=[{"field": "urgency", "message": "unknown urgency"}],
        )
    return lowered


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


class _BaseAdapter:
    source = ""

    def can_handle(self, source: str) -> bool:
        return source.strip().lower() == self.source


class CrmAdapter(_BaseAdapter):
    source = "crm"

    _closing_stages = {"closed_won", "closed_lost"}

    def normalize(self, payload: dict[str, Any]) -> NormalizedPayload:
        stage = _text(payload.get("dealStage"))
        signal_type = _text(payload.get("eventType")) or _text(payload.get("type"))
        if signal_type is None:
            if stage is not None:
                signal_type = "deal_stage_change"
            elif payload.get("contactId") is not None:
                signal_type = "contact_update"
            else:
                signal_type = "crm_event"
        urgency = "high" if stage in self._closing_stages else "normal"
        return NormalizedPayload(
            signal_type=signal_type,
            urgency=urgency,
            data=dict(payload),
            metadata=_compact({"adapter": self.source, "original_timestamp": _text(payload.get("occurredAt"))}),
        )


class Ga4Adapter(_BaseAdapter):
    source = "ga4"

    def normalize(self, payload: dict[str, Any]) -> NormalizedPayload:
        return NormalizedPayload(
            signal_type=self._signal_type(payload),
            urgency=self._urgency(payload),
            data=dict(payload),
            metadata=_compact(
                {
                    "adapter": self.source,
                    "property_id": payload.get("propertyId"),
                    "original_timestamp": _text(payload.get("timestamp")),
                }
            ),
        )

    def _signal_type(self, payload: dict[str, Any]) -> str:
        explicit = _text(payload.get("eventType"))
        if explicit:
            return explicit
        if "sessions" in payload or "users" in payload:
            return "traffic_metrics"
        if "conversions" in payload:
            return "conversion_metrics"
        if "pageViews" in payload:
            return "pageview_metrics"
        return "general_metrics"

    def _urgency(self, payload: dict[str, Any]) -> str:
        change = _number(payload.get("percentChange"))
        if change is None:
            return "low"
        change = abs(change)
        if change > 50:
            return "critical"
        if change > 25:
            return "high"
        if change > 10:
            return "normal"
        return "low"


class GscAdapter(_BaseAdapter):
    source = "gsc"

    def normalize(self, payload: dict[str, Any]) -> NormalizedPayload:
        return NormalizedPayload(
            signal_type=self._signal_type(payload),
            urgency=self._urgency(payload),
            data=dict(payload),
            metadata=_compact(
                {
                    "adapter": self.source,
                    "site_url": payload.get("siteUrl"),
                    "original_timestamp": _text(payload.get("date")),
                }
            ),
        )

    def _signal_type(self, payload: dict[str, Any]) -> str:
        if "position" in payload:
            return "ranking_change"
        if "clicks" in payload or "impressions" in payload:
            return "search_performance"
        if "query" in payload:
            return "query_metrics"
        return "general_search"

    def _urgency(self, payload: dict[str, Any]) -> str:
        change = _number(payload.get("positionChange"))
        if change is None:
            return "low"
        change = abs(change)
        if change > 10:
            return "critical"
        if change > 5:
            return "high"
        if change > 2:
            return "normal"
        return "low"


class HubSpotAdapter(_BaseAdapter):
    source = "hubspot"

    def normalize(self, payload: dict[str, Any]) -> NormalizedPayload:
        subscription = (_text(payload.get("subscriptionType")) or "").lower()
        return NormalizedPayload(
            signal_type=self._signal_type(subscription),
            urgency=self._urgency(subscription),
            data=dict(payload),
            metadata=_compact(
                {
                    "adapter": self.source,
                    "portal_id": payload.get("portalId"),
                    "event_type": payload.get("subscriptionType"),
                    "original_timestamp": _text(payload.get("occurredAt")),
                }
            ),
        )

    def _signal_type(self, subscription: str) -> str:
        for fragment, signal_type in (
            ("deal", "deal_update"),
            ("contact", "contact_update"),
            ("company", "company_update"),
            ("form", "form_submission"),
        ):
            if fragment in subscription:
                return signal_type
        return "general_crm"

    def _urgency(self, subscription: str) -> str:
        # Subscription types are compared lowercased, so camelCase fragments are lowered too.
        if "deal.creation" in subscription or "deal.propertychange" in subscription:
            return "high"
        if "form.submission" in subscription:
            return "high"
        return "normal"


class LinkedInAdapter(_BaseAdapter):
    source = "linkedin"

    def normalize(self, payload: dict[str, Any]) -> NormalizedPayload:
        return NormalizedPayload(
            signal_type=self._signal_type(payload),
            urgency=self._urgency(payload),
            data=dict(payload),
            metadata=_compact(
                {
                    "adapter": self.source,
                    "organization_id": payload.get("organizationId"),
                    "original_timestamp": _text(payload.get("timestamp")),
                }
            ),
        )

    def _signal_type(self, payload: dict[str, Any]) -> str:
        if "engagementRate" in payload:
            return "engagement_metrics"
        if "followers" in payload:
            return "follower_metrics"
        if "impressions" in payload:
            return "reach_metrics"
        return "general_social"

    def _urgency(self, payload: dict[str, Any]) -> str:
        change = _number(payload.get("engagementChange"))
        if change is not None:
            if abs(change) > 30:
                return "critical"
            if abs(change) > 15:
                return "high"
        return "normal"


class _EnvelopeAdapter(_BaseAdapter):
    # Internal and webhook signals wrap their data in an envelope carrying type/urgency hints.
    default_type = ""
    data_key = ""

    def normalize(self, payload: dict[str, Any]) -> NormalizedPayload:
        inner = payload.get(self.data_key)
        data = dict(inner) if isinstance(inner, dict) and inner else dict(payload)
        extra = payload.get("metadata")
        metadata: dict[str, Any] = {"adapter": self.source}
        if isinstance(extra, dict):
            metadata.update(extra)
        metadata.update(self._metadata(payload))
        return NormalizedPayload(
            signal_type=self._signal_type(payload),
            urgency=_urgency(payload.get("urgency")),
            data=data,
            metadata=_compact(metadata),
        )

    def _signal_type(self, payload: dict[str, Any]) -> str:
        return _text(payload.get("type")) or self.default_type

    def _metadata(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"original_timestamp": _text(payload.get("timestamp"))}


class InternalAdapter(_EnvelopeAdapter):
    source = "internal"
    default_type = "internal_event"
    data_key = "data"


class WebhookAdapter(_EnvelopeAdapter):
    source = "webhook"
    default_type = "webhook_event"
    data_key = "payload"

    def _signal_type(self, payload: dict[str, Any]) -> str:
        return _text(payload.get("type")) or _text(payload.get("event")) or self.default_type

    def _metadata(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "webhook_id": payload.get("webhookId"),
            "original_timestamp": _text(payload.get("timestamp")),
        }


# Closed registry: the full set of adapters is fixed here at import time.
ADAPTERS: tuple[SignalAdapter, ...] = (
    CrmAdapter(),
    HubSpotAdapter(),
    Ga4Adapter(),
    GscAdapter(),
    LinkedInAdapter(),
    InternalAdapter(),
    WebhookAdapter(),
)


def supported_sources() -> list[str]:
    return [adapter.source for adapter in ADAPTERS]


def get_adapter(source: str) -> SignalAdapter:
    for adapter in ADAPTERS:
        if adapter.can_handle(source):
            return adapter
    raise UnsupportedSourceError(
        f"Unsupported signal source: {source}. Supported sources: {', '.join(supported_sources())}"
    )
