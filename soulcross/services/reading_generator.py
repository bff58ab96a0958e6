"""Reading content generator.

Produces the preview and full reading payloads from sanitized input.
Both functions are pure: the same input always yields the same content,
so regenerating after a failure is safe.

Payload keys are camelCase because they are returned to the UI verbatim.
"""


def _names(reading_input):
    a = reading_input["person_a"].get("name") or "Person A"
    b = reading_input["person_b"].get("name") or "Person B"
    return a, b


def generate_preview_reading(reading_input):
    """Short teaser shown before payment."""
    a, b = _names(reading_input)

    return {
        "title": f"{a} & {b}: Relationship Preview",
        "summary": (
            f"{a} and {b} show a strong pull between emotional expression and "
            "practical stability. The connection has real momentum, but timing "
            "and communication style need alignment."
        ),
        "highlights": [
            "Natural attraction forms quickly when both feel heard.",
            "Most friction comes from different pace, not lack of care.",
        ],
        "upgradeHint": (
            "Unlock the full reading to see detailed strengths, tension "
            "triggers, and a practical plan."
        ),
    }


def generate_full_reading(reading_input):
    """Full reading unlocked by a paid order."""
    a, b = _names(reading_input)

    return {
        "title": f"{a} & {b}: Full Relationship Reading",
        "overview": (
            f"{a} tends to process feelings through reflection, while {b} often "
            "seeks quick clarity. This pairing can be deeply supportive when both "
            "sides define expectations early."
        ),
        "strengths": [
            "Strong potential for mutual growth through honest feedback.",
            "Complementary emotional and practical instincts.",
            "High resilience when conflicts are addressed early.",
        ],
        "tensions": [
            "Misread silence as rejection during stress cycles.",
            "Different conflict styles can escalate small issues.",
            "Overgiving without boundaries leads to burnout.",
        ],
        "guidance": [
            "Set a weekly 20-minute check-in with one clear agenda.",
            "Name the issue before discussing solutions.",
            "Use time-boxed pauses during heated conversations.",
            "Define one non-negotiable and one compromise from each side.",
            "Track wins to prevent a negativity-only pattern.",
        ],
        "finalMessage": (
            "This relationship works best when clarity is treated as care, not "
            "criticism. Progress comes from consistency."
        ),
    }
