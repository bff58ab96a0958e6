"""Input validation for reading requests.

Turns the raw JSON body sent by the forms ({"personA": {...},
"personB": {...}}) into the sanitized input the rest of the paywall uses:

    {
        "person_a": {"name", "birthday", "birthtime", "birthtime_unknown",
                     "gender", "birthplace"},
        "person_b": {...},
    }

Strings are trimmed and stripped of HTML with bleach. Each person's name
and birthday are required; everything else defaults to empty / False /
"male".
"""

import html

import bleach

from soulcross.errors import ValidationError

GENDERS = ("male", "female", "other")
MAX_FIELD_LENGTH = 200

PERSON_KEYS = (("personA", "person_a"), ("personB", "person_b"))
REQUIRED_FIELDS = ("name", "birthday")


def _clean(value):
    """Strip HTML tags and surrounding whitespace from a form value.

    bleach escapes what survives ("&" -> "&amp;"); values are stored and
    served as JSON, so the entities are decoded again.
    """
    if value is None:
        return ""
    return html.unescape(bleach.clean(str(value), tags=[], strip=True)).strip()


def sanitize_person(person):
    """Normalize one person's fields. Never raises."""
    if not isinstance(person, dict):
        person = {}

    gender = person.get("gender")
    return {
        "name": _clean(person.get("name")),
        "birthday": _clean(person.get("birthday")),
        "birthtime": _clean(person.get("birthtime")),
        "birthtime_unknown": bool(person.get("birthtimeUnknown")),
        "gender": gender if gender in GENDERS else "male",
        "birthplace": _clean(person.get("birthplace")),
    }


def validate_reading_input(raw):
    """Validate a raw reading payload.

    Returns:
        dict with "person_a" and "person_b" sanitized records.

    Raises:
        ValidationError: naming every missing or oversized field.
    """
    payload = raw if isinstance(raw, dict) else {}

    sanitized = {}
    missing = []
    too_long = []
    for raw_key, key in PERSON_KEYS:
        person = sanitize_person(payload.get(raw_key))
        for field in REQUIRED_FIELDS:
            if not person[field]:
                missing.append(f"{raw_key}.{field}")
        for field in ("name", "birthplace", "birthday", "birthtime"):
            if len(person[field]) > MAX_FIELD_LENGTH:
                too_long.append(f"{raw_key}.{field}")
        sanitized[key] = person

    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}", fields=missing
        )
    if too_long:
        raise ValidationError(
            f"Fields too long (max {MAX_FIELD_LENGTH} characters): {', '.join(too_long)}",
            fields=too_long,
        )

    return sanitized
