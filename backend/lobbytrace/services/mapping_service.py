# Overview: Durable product <-> Square variation links and auto-suggestions.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..actors import Actor
from ..extensions import db
from ..models import Product, ProductMapping
from ..models.square import MAPPING_ACTIVE, MAPPING_DISABLED
from ..time_utils import utcnow
from .square_catalog import CatalogIndex, display_name, index_catalog, item_name, variation_sku

CONFIDENCE_TOKEN = 0.95
CONFIDENCE_FULL_NAME = 0.95
CONFIDENCE_NAME = 0.90
CONFIDENCE_SKU = 0.90
CONFIDENCE_OVERLAP = 0.75
OVERLAP_THRESHOLD = 0.7


class MappingError(ValueError):
    """Raised for mapping operation errors."""


class MappingNotFound(MappingError):
    pass


@dataclass
class Suggestion:
    product: Product
    square_variation: dict
    square_item_name: str
    square_catalog_object_id: str
    confidence: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "product_id": self.product.id,
            "product_name": self.product.full_name,
            "square_variation_id": self.square_variation.get("id"),
            "square_catalog_object_id": self.square_catalog_object_id,
            "square_item_name": self.square_item_name,
            "confidence": self.confidence,
            "reason": self.reason,
        }


def list_mappings(*, include_disabled: bool = False) -> list[ProductMapping]:
    q = db.session.query(ProductMapping)
    if not include_disabled:
        q = q.filter(ProductMapping.status == MAPPING_ACTIVE)
    return q.order_by(ProductMapping.product_name.asc(), ProductMapping.id.asc()).all()


def get_mapping(mapping_id: int) -> ProductMapping:
    mapping = db.session.get(ProductMapping, mapping_id)
    if mapping is None:
        raise MappingNotFound(f"Mapping {mapping_id} not found")
    return mapping


def _find_by_natural_key(product_id: int, square_variation_id: str) -> ProductMapping | None:
    return (
        db.session.query(ProductMapping)
        .filter_by(product_id=product_id, square_variation_id=square_variation_id)
        .first()
    )


def save_mapping(
    *,
    product_id: int,
    square_variation_id: str,
    square_catalog_object_id: str | None = None,
    square_item_name: str | None = None,
    product_name: str | None = None,
    actor: Actor,
) -> tuple[ProductMapping, bool]:
    """
    Insert-if-absent keyed by (product_id, square_variation_id).

    Returns (mapping, created). An existing row is re-enabled and its display
    names refreshed rather than duplicated; the unique constraint settles the
    race when two callers create the same pair at once.
    """
    if not square_variation_id:
        raise MappingError("square_variation_id is required")
    product = db.session.get(Product, product_id)
    if product is None:
        raise MappingError(f"Product {product_id} not found")

    names = {
        "product_name": product_name or product.full_name,
        "square_item_name": square_item_name or square_variation_id,
        "square_catalog_object_id": square_catalog_object_id or square_variation_id,
    }

    existing = _find_by_natural_key(product_id, square_variation_id)
    if existing is None:
        mapping = ProductMapping(
            product_id=product_id,
            square_variation_id=square_variation_id,
            status=MAPPING_ACTIVE,
            created_by=str(actor),
            **names,
        )
        db.session.add(mapping)
        try:
            db.session.commit()
            return mapping, True
        except IntegrityError:
            db.session.rollback()
            existing = _find_by_natural_key(product_id, square_variation_id)
            if existing is None:
                raise

    for k, v in names.items():
        setattr(existing, k, v)
    existing.status = MAPPING_ACTIVE
    db.session.commit()
    return existing, False


def set_enabled(mapping_id: int, enabled: bool) -> ProductMapping:
    mapping = get_mapping(mapping_id)
    mapping.status = MAPPING_ACTIVE if enabled else MAPPING_DISABLED
    db.session.commit()
    return mapping


def find_active_mapping(square_variation_id: str | None) -> ProductMapping | None:
    """
    Mapping that drives consumption for a sale line.

    When several products are actively mapped to the same variation the
    oldest mapping wins.
    """
    if not square_variation_id:
        return None
    rows = (
        db.session.query(ProductMapping)
        .filter(
            ProductMapping.square_variation_id == square_variation_id,
            ProductMapping.status == MAPPING_ACTIVE,
        )
        .order_by(ProductMapping.id.asc())
        .all()
    )
    if len(rows) > 1:
        current_app.logger.warning(
            "Variation %s has %d active mappings; using mapping %s",
            square_variation_id, len(rows), rows[0].id,
        )
    return rows[0] if rows else None


def touch_last_synced(mapping_ids: Iterable[int], when=None, *, commit: bool = True) -> int:
    ids = sorted(set(mapping_ids))
    if not ids:
        return 0
    when = when or utcnow()
    count = 0
    for mapping in db.session.query(ProductMapping).filter(ProductMapping.id.in_(ids)).all():
        mapping.last_synced_at = when
        count += 1
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return count


# AUTO-SUGGESTION

def _normalize(value: str | None) -> str:
    return " ".join((value or "").casefold().split())


def _word_overlap(product_words: list[str], square_words: list[str]) -> int:
    return sum(
        1 for w in product_words
        if any(w in s or s in w for s in square_words)
    )


def _match(product: Product, variation: dict, parent: dict | None) -> tuple[float, str] | None:
    """First matching rule wins; rules are ordered by descending confidence."""
    if product.token and product.token == variation.get("id"):
        return CONFIDENCE_TOKEN, "token match"

    square_full = _normalize(display_name(variation, parent))
    product_full = _normalize(product.full_name)
    if product_full and product_full == square_full:
        return CONFIDENCE_FULL_NAME, "exact name match"

    product_name = _normalize(product.name)
    if product_name and product_name == _normalize(item_name(parent)):
        return CONFIDENCE_NAME, "name match"

    product_sku = _normalize(product.sku)
    square_sku = _normalize(variation_sku(variation))
    if product_sku and square_sku and product_sku == square_sku:
        return CONFIDENCE_SKU, "SKU match"

    product_words = product_full.split()
    square_words = square_full.split()
    shorter = min(len(product_words), len(square_words))
    if shorter:
        common = _word_overlap(product_words, square_words)
        if common >= shorter * OVERLAP_THRESHOLD:
            return CONFIDENCE_OVERLAP, f"partial name match ({common}/{len(product_words)} words)"
    return None


def suggest(products: list[Product], square_objects: list[dict] | CatalogIndex) -> list[Suggestion]:
    """
    Score every (product, ITEM_VARIATION) pair and return the matches,
    highest confidence first, one entry per pair.
    """
    index = square_objects if isinstance(square_objects, CatalogIndex) else index_catalog(square_objects)
    found: list[Suggestion] = []
    for product in products:
        for variation in index.variations:
            parent = index.parent_of(variation)
            matched = _match(product, variation, parent)
            if matched is None:
                continue
            confidence, reason = matched
            found.append(
                Suggestion(
                    product=product,
                    square_variation=variation,
                    square_item_name=display_name(variation, parent),
                    square_catalog_object_id=(parent or variation).get("id"),
                    confidence=confidence,
                    reason=reason,
                )
            )

    found.sort(key=lambda s: s.confidence, reverse=True)
    seen: set[tuple[int, str]] = set()
    unique = []
    for s in found:
        key = (s.product.id, s.square_variation.get("id"))
        if key in seen:
            continue
        seen.add(key)
        unique.append(s)
    return unique


def suggest_unmapped(products: list[Product], square_objects: list[dict]) -> list[Suggestion]:
    """Suggestions limited to products and variations with no active mapping."""
    active = list_mappings()
    mapped_products = {m.product_id for m in active}
    mapped_variations = {m.square_variation_id for m in active}

    index = index_catalog(square_objects)
    index.variations = [v for v in index.variations if v.get("id") not in mapped_variations]
    return suggest([p for p in products if p.id not in mapped_products], index)
