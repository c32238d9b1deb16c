import re
from typing import Optional

_LOCALPART_INVALID = re.compile(r"[^a-z0-9._=\-/]")


def normalize_localpart(localpart: Optional[str]) -> Optional[str]:
    """
    Normalizes a user localpart: strip whitespace and a leading @, lowercase,
    drop characters the homeserver would reject.
    """
    if not localpart:
        return None

    normalized = localpart.strip().lstrip("@").split(":", 1)[0].lower()
    normalized = _LOCALPART_INVALID.sub("", normalized)
    return normalized or None


def make_user_id(localpart: str, domain: str) -> str:
    normalized = normalize_localpart(localpart)
    if not normalized:
        raise ValueError(f"Invalid localpart: {localpart!r}")
    return f"@{normalized}:{domain}"
