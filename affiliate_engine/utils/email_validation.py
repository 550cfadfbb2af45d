"""
Email format validation for payout destinations (PayPal accounts).
Format only - no DNS or mailbox probing.
"""
import re

# RFC 5322 simplified - covers 99%+ of valid emails
EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9]"
    r"(?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(?:\.[a-zA-Z0-9]"
    r"(?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*\.[a-zA-Z]{2,}$"
)


def is_valid_email_format(email: str) -> bool:
    """
    Check if email matches a valid format (RFC 5322 simplified).

    Args:
        email: Email address to validate

    Returns:
        True if format is valid
    """
    if not email or len(email) > 254:
        return False
    return bool(EMAIL_REGEX.match(email.strip()))


def email_local_part(email: str) -> str:
    """The part before the @, lowercased. Empty string when there is no @."""
    if not email or "@" not in email:
        return ""
    return email.split("@", 1)[0].strip().lower()
