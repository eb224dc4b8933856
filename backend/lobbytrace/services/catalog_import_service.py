# Overview: Pulls the Square catalog into Product rows without clobbering local fields.

from __future__ import annotations

import re
from dataclasses import dataclass, field

from flask import current_app

from ..actors import Actor, SOURCE_CATALOG_IMPORT
from ..extensions import db
from ..models import Product
from ..models.products import PRODUCT_ACTIVE
from .square_catalog import (
    CatalogIndex,
    index_catalog,
    item_name,
    variation_name,
    variation_price_cents,
    variation_sku,
)
from .square_client import SquareClient
"""
Catalog Import (authoritative)

- One Product per Square ITEM_VARIATION; Product.token == variation id.
- Re-import updates only Square-owned fields (Product.EXTERNAL_FIELDS).
  Ingredients, preparation time/instructions and allergens are never touched.
- New products start with no ingredients; recipes are added by staff.
- One variation failing never aborts the batch.
"""

DEFAULT_CATEGORY = "Drinks"

SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:fl\.?\s*)?oz\b", re.IGNORECASE)
TO_GO_RE = re.compile(r"\b(?:to[\s-]?go|take[\s-]?out)\b", re.IGNORECASE)
HERE_RE = re.compile(r"\b(?:here|dine[\s-]?in)\b", re.IGNORECASE)
ICED_RE = re.compile(r"\biced\b", re.IGNORECASE)
HOT_RE = re.compile(r"\bhot\b", re.IGNORECASE)


@dataclass
class ImportResult:
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


def parse_variation_attributes(variation: str | None) -> dict:
    """
    Pull size / temperature / to-go status out of a variation label,
    e.g. "16oz Iced (To Go)" -> {"size": "16oz", "temperature": "Iced",
    "to_go_status": "To-Go"}. Missing attributes are None.
    """
    attrs = {"size": None, "temperature": None, "to_go_status": None}
    if not variation:
        return attrs

    size = SIZE_RE.search(variation)
    if size:
        attrs["size"] = f"{size.group(1)}oz"

    if ICED_RE.search(variation):
        attrs["temperature"] = "Iced"
    elif HOT_RE.search(variation):
        attrs["temperature"] = "Hot"

    if TO_GO_RE.search(variation):
        attrs["to_go_status"] = "To-Go"
    elif HERE_RE.search(variation):
        attrs["to_go_status"] = "Here"
    return attrs


def _external_fields(variation: dict, parent: dict, index: CatalogIndex) -> dict:
    parent_data = parent.get("item_data") or {}
    var_name = variation_name(variation) or None
    fields = {
        "name": item_name(parent),
        "variation": var_name,
        "description": parent_data.get("description") or None,
        "category": index.category_name(parent) or DEFAULT_CATEGORY,
        "price_cents": variation_price_cents(variation),
        "sku": variation_sku(variation) or None,
        "square_item_id": parent.get("id"),
    }
    fields.update(parse_variation_attributes(var_name))
    return fields


def import_catalog(objects: list[dict], *, actor: Actor | None = None) -> ImportResult:
    """Import already-fetched catalog objects. Commits once per variation."""
    actor = actor or Actor.system(SOURCE_CATALOG_IMPORT)
    result = ImportResult()
    index = index_catalog(objects)

    for variation in index.variations:
        variation_id = variation.get("id")
        try:
            parent = index.parent_of(variation)
            if parent is None:
                result.skipped += 1
                result.errors.append(f"Variation {variation_id}: parent item not found")
                continue

            fields = _external_fields(variation, parent, index)
            if not fields["name"]:
                result.skipped += 1
                result.errors.append(f"Variation {variation_id}: item has no name")
                continue

            product = db.session.query(Product).filter_by(token=variation_id).first()
            if product is not None:
                for k, v in fields.items():
                    setattr(product, k, v)
                created = False
            else:
                product = Product(
                    token=variation_id,
                    status=PRODUCT_ACTIVE,
                    allergens=[],
                    created_by=str(actor),
                    **fields,
                )
                product.ingredients = []
                db.session.add(product)
                created = True
            db.session.commit()
            if created:
                result.imported += 1
            else:
                result.updated += 1
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Catalog import failed for variation %s", variation_id)
            result.errors.append(f"Variation {variation_id}: {exc}")

    current_app.logger.info(
        "Catalog import: %d imported, %d updated, %d skipped, %d errors",
        result.imported, result.updated, result.skipped, len(result.errors),
    )
    return result


def import_catalog_from_square(client: SquareClient, *, actor: Actor | None = None) -> ImportResult:
    """Fetch the live catalog, then import it. Fetch failures propagate."""
    return import_catalog(client.search_catalog(), actor=actor)
