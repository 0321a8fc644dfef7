import time
import re
from typing import Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


EMAIL_MIN_LEN = 5
EMAIL_MAX_LEN = 100


def is_valid_email(email: Optional[str]) -> bool:
    if not isinstance(email, str) or not email:
        return False
    email = email.strip()
    if not (EMAIL_MIN_LEN <= len(email) <= EMAIL_MAX_LEN):
        return False
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def normalize_email(email: str) -> str:
    return email.strip().lower()


# letters from any alphabet, single spaces between words
_NAME_RE = re.compile(r"^[^\W\d_]+(?: [^\W\d_]+)*$")


def is_valid_name(name: Optional[str]) -> bool:
    if not isinstance(name, str) or not name:
        return False
    name = name.strip()
    if not (2 <= len(name) <= 30):
        return False
    return _NAME_RE.match(name) is not None


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    "+48 600 100 200" -> "48600100200". Returns None if the input is not
    9-15 digits once separators (spaces, dashes) are removed.
    """
    if not isinstance(phone, str) or not phone:
        return None
    p = phone.strip()
    if p.startswith("+"):
        p = p[1:]
    p = re.sub(r"[\s-]", "", p)
    if not re.fullmatch(r"\d{9,15}", p):
        return None
    return p
