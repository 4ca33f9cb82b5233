# Overview: JSON text helpers for item lists persisted in a single column.

from __future__ import annotations

import json
from typing import Any


def load_json(raw: str | None, default: Any):
    """
    Parse a JSON text column.

    Rows written by older clients may hold NULL or an empty string; both map to
    `default`. Malformed text raises ValueError instead of silently dropping items.
    """
    if raw is None or raw == "":
        return default
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Malformed JSON column value: {exc}") from exc


def dump_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def normalize_item(item: dict) -> dict:
    """Canonical shape of an order line."""
    out = {
        "product_id": int(item["product_id"]),
        "quantity": int(item.get("quantity") or 0),
        "price_cents": int(item.get("price_cents") or 0),
    }
    if item.get("discount"):
        out["discount"] = item["discount"]
    if item.get("free"):
        out["free"] = int(item["free"])
    if item.get("is_return"):
        out["is_return"] = True
    return out


def normalize_allocation_item(item: dict) -> dict:
    return {
        "product_id": int(item["product_id"]),
        "quantity": int(item.get("quantity") or 0),
        "sold": int(item.get("sold") or 0),
    }
