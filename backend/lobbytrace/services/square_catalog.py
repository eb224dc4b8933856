# Overview: Helpers for reading Square catalog object dicts.

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CatalogIndex:
    items: dict[str, dict] = field(default_factory=dict)
    variations: list[dict] = field(default_factory=list)
    categories: dict[str, str] = field(default_factory=dict)

    def parent_of(self, variation: dict) -> dict | None:
        item_id = (variation.get("item_variation_data") or {}).get("item_id")
        return self.items.get(item_id) if item_id else None

    def category_name(self, item: dict) -> str | None:
        item_data = item.get("item_data") or {}
        category_id = item_data.get("category_id")
        if not category_id:
            categories = item_data.get("categories") or []
            category_id = categories[0].get("id") if categories else None
        if not category_id:
            return None
        return self.categories.get(category_id, category_id)


def index_catalog(objects: list[dict]) -> CatalogIndex:
    """Partition catalog objects; deleted objects are dropped."""
    index = CatalogIndex()
    for obj in objects or []:
        if not isinstance(obj, dict) or obj.get("is_deleted"):
            continue
        obj_type = obj.get("type")
        if obj_type == "ITEM":
            index.items[obj.get("id")] = obj
            # Search results may nest variations inside their item
            for nested in (obj.get("item_data") or {}).get("variations") or []:
                if isinstance(nested, dict) and not nested.get("is_deleted"):
                    index.variations.append(nested)
        elif obj_type == "ITEM_VARIATION":
            index.variations.append(obj)
        elif obj_type == "CATEGORY":
            index.categories[obj.get("id")] = (obj.get("category_data") or {}).get("name") or obj.get("id")

    # A variation can arrive both nested and top-level
    seen = set()
    unique = []
    for v in index.variations:
        if v.get("id") in seen:
            continue
        seen.add(v.get("id"))
        unique.append(v)
    index.variations = unique
    return index


def item_name(item: dict | None) -> str:
    if not item:
        return ""
    return ((item.get("item_data") or {}).get("name") or "").strip()


def variation_name(variation: dict) -> str:
    return ((variation.get("item_variation_data") or {}).get("name") or "").strip()


def variation_sku(variation: dict) -> str:
    return ((variation.get("item_variation_data") or {}).get("sku") or "").strip()


def variation_price_cents(variation: dict) -> int | None:
    money = (variation.get("item_variation_data") or {}).get("price_money") or {}
    amount = money.get("amount")
    return int(amount) if amount is not None else None


def display_name(variation: dict, parent: dict | None) -> str:
    """'<parent item name> <variation name>', as shown to staff."""
    parts = [p for p in (item_name(parent), variation_name(variation)) if p]
    return " ".join(parts) or variation.get("id") or ""
