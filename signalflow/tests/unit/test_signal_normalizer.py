from __future__ import annotations

from signalflow.services.signals.normalizer import canonical_json, compute_dedup_key


def test_canonical_json_ignores_key_order() -> None:
    left = {"b": 1, "a": {"y": [1, {"d": 2, "c": 3}], "x": None}}
    right = {"a": {"x": None, "y": [1, {"c": 3, "d": 2}]}, "b": 1}
    assert canonical_json(left) == canonical_json(right)
    assert canonical_json(left) == '{"a":{"x":null,"y":[1,{"c":3,"d":2}]},"b":1}'


def test_dedup_key_is_stable_and_scoped() -> None:
    data = {"dealId": "D-1", "dealStage": "closed_won"}
    key = compute_dedup_key("agency-1", "crm", "deal_stage_change", data)
    assert key == compute_dedup_key("agency-1", "crm", "deal_stage_change", dict(reversed(list(data.items()))))
    assert len(key) == 64
    # Any of tenant, source, type or data changing yields a different key.
    assert key != compute_dedup_key("agency-2", "crm", "deal_stage_change", data)
    assert key != compute_dedup_key("agency-1", "hubspot", "deal_stage_change", data)
    assert key != compute_dedup_key("agency-1", "crm", "contact_update", data)
    assert key != compute_dedup_key("agency-1", "crm", "deal_stage_change", {**data, "amount": 10})
