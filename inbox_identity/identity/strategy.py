"""
Merge Strategy Resolver

Computes the surviving contact's field values from a primary, a secondary
and a MergeStrategy. Pure: nothing here touches storage.

Precedence for scalar identity fields:
1. Explicit per-field override ("primary" or "secondary")
2. The preferred side's value when non-empty
3. The other side's value (backfill)
"""

from datetime import datetime

from .types import (
    SCALAR_FIELDS,
    ContactRecord,
    CustomFields,
    MergeStrategy,
    ResolvedFields,
)


def _is_empty(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _coalesce(a, b):
    return a if not _is_empty(a) else b


def resolve_scalar(
    field: str,
    primary: ContactRecord,
    secondary: ContactRecord,
    strategy: MergeStrategy,
):
    primary_value = getattr(primary, field)
    secondary_value = getattr(secondary, field)

    override = strategy.fields.get(field)
    if override == "primary":
        return primary_value
    if override == "secondary":
        return secondary_value

    if strategy.prefer_primary:
        return _coalesce(primary_value, secondary_value)
    return _coalesce(secondary_value, primary_value)


def merge_tags(primary_tags: list[str], secondary_tags: list[str]) -> list[str]:
    """Order-insensitive union; sorted so storage writes are deterministic."""
    return sorted({tag for tag in [*primary_tags, *secondary_tags] if tag})


def merge_custom_fields(
    primary: CustomFields,
    secondary: CustomFields,
    *,
    secondary_id: str | None = None,
) -> CustomFields:
    """
    Shallow key-wise merge: primary wins on shared keys, secondary-only keys
    are copied in. `mergedFrom` accumulates ids from both sides plus the
    secondary itself.
    """
    primary_data = primary.to_storage()
    secondary_data = secondary.to_storage()
    merged = {**secondary_data, **primary_data}

    merged_from = list(primary.merged_from)
    for contact_id in [*secondary.merged_from, secondary_id]:
        if contact_id and contact_id not in merged_from:
            merged_from.append(contact_id)
    merged["mergedFrom"] = merged_from

    return CustomFields.from_storage(merged)


def _earliest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a and b:
        return min(a, b)
    return a or b


def resolve_merge(
    primary: ContactRecord,
    secondary: ContactRecord,
    strategy: MergeStrategy | None = None,
) -> ResolvedFields:
    """
    Decide the final field values for the surviving (primary) contact.

    Args:
        primary: The contact that survives the merge
        secondary: The contact being consolidated away
        strategy: Precedence configuration (defaults to prefer-primary)

    Returns:
        ResolvedFields to write onto the primary
    """
    strategy = strategy or MergeStrategy()

    scalars = {field: resolve_scalar(field, primary, secondary, strategy) for field in SCALAR_FIELDS}

    return ResolvedFields(
        **scalars,
        status=primary.status,
        tags=merge_tags(primary.tags, secondary.tags),
        custom_fields=merge_custom_fields(
            primary.custom_fields,
            secondary.custom_fields,
            secondary_id=secondary.id,
        ),
        last_contacted_at=_earliest(primary.last_contacted_at, secondary.last_contacted_at),
    )
