"""
Canned replies for trivial conversational intents.

The table is ordered: the first key found (case-insensitive substring) wins,
so ``"hello and thanks"`` resolves to the greeting.
"""

from typing import Optional, Sequence, Tuple

CANNED_RESPONSES: Tuple[Tuple[str, Tuple[str, ...], str], ...] = (
    ("greeting", ("greeting", "hello"), "Hello! How can I help you today?"),
    ("goodbye", ("goodbye",), "Goodbye! Have a great day!"),
    (
        "thanks",
        ("thanks", "thank you"),
        "You're welcome! Is there anything else I can help with?",
    ),
    ("help", ("help",), "I'm here to help! What do you need assistance with?"),
)


def match_canned_response(
    text: str,
    table: Sequence[Tuple[str, Tuple[str, ...], str]] = CANNED_RESPONSES,
) -> Optional[Tuple[str, str]]:
    """Return ``(intent, reply)`` for the first matching intent, else None."""
    lowered = (text or "").lower()
    if not lowered.strip():
        return None
    for intent, triggers, reply in table:
        if any(trigger in lowered for trigger in triggers):
            return intent, reply
    return None
