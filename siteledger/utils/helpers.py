"""Input coercion shared by the service modules.

JSON bodies reach the services unchanged, so every free-form field is
type-checked here before it is stripped, compared against a choice set or
used as a primary key. Failures raise ValidationError (HTTP 422).

Usage:
    from siteledger.utils.helpers import choice_field, id_field, text_field

    reason = text_field(reason, "reason", required=True)
    urgency = choice_field(urgency, "urgency", REQUISITION_URGENCIES)
    pk = id_field(data.get("boq_item_id"), "boq_item_id")
"""

from siteledger.core.exceptions import ValidationError


def text_field(value, field: str, *, required: bool = False) -> str | None:
    """Stripped string, or None when empty and not required."""
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "invalid"})
    value = value.strip()
    if not value:
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    return value


def choice_field(value, field: str, choices) -> str:
    if not isinstance(value, str) or value not in choices:
        raise ValidationError(
            f"Invalid {field} {value!r}. Must be one of: {', '.join(sorted(choices))}",
            details={field: "invalid"},
        )
    return value


def id_field(value, field: str) -> int:
    """Positive integer primary key; booleans and numeric strings are refused."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be a positive integer id", details={field: "invalid"})
    return value
