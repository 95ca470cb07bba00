"""
Storage keys for fee documents.
Sessions are entered as "2025/2026"; "/" is not allowed in keys, so it becomes "-".

Keys are "<id>-<term>-<start>-<end>". The id may itself contain "-" (UUIDs),
so a key stays unambiguous only while the term has no "-" and the session has
exactly one separator. check_term and check_session enforce that on input.
"""

SESSION_SEPARATOR = "/"
KEY_SEPARATOR = "-"


def sanitize_session(raw: str) -> str:
    """
    Normalize a session string into a storage-safe key fragment.

    Examples:
        2025/2026 -> 2025-2026
        2025-2026 -> 2025-2026
    """
    return str(raw).strip().replace(SESSION_SEPARATOR, KEY_SEPARATOR)


def check_term(term: str) -> str:
    if KEY_SEPARATOR in term:
        raise ValueError(f"term must not contain '{KEY_SEPARATOR}'")
    return term


def check_session(session: str) -> str:
    parts = sanitize_session(session).split(KEY_SEPARATOR)
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise ValueError("session must have two parts, e.g. 2025/2026")
    return session


def fee_structure_key(class_id: str, term: str, session: str) -> str:
    return KEY_SEPARATOR.join((str(class_id), str(term), sanitize_session(session)))


def fee_status_key(student_id: str, term: str, session: str) -> str:
    return KEY_SEPARATOR.join((str(student_id), str(term), sanitize_session(session)))
