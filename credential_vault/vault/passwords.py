"""
Password tools: strong password generation and strength scoring.

Neither function touches stored credentials; both are pure and safe to call
without a PIN.
"""
import re
import string
import secrets

from ..exceptions import ValidationError

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
ALPHABET = LOWERCASE + UPPERCASE + DIGITS + SYMBOLS

MIN_GENERATED_LENGTH = 4  # one character per class
MAX_GENERATED_LENGTH = 128
DEFAULT_GENERATED_LENGTH = 16

MAX_SCORE = 6
STRONG = "strong"

_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"[0-9]")
_SYMBOL_RE = re.compile(r"[^A-Za-z0-9]")

# (criterion, feedback when it fails), in reporting order.
_CRITERIA = (
    (lambda p: len(p) >= 8, "Password must be at least 8 characters long"),
    (lambda p: _UPPER_RE.search(p) is not None, "Add at least one uppercase letter"),
    (lambda p: _LOWER_RE.search(p) is not None, "Add at least one lowercase letter"),
    (lambda p: _DIGIT_RE.search(p) is not None, "Add at least one digit"),
    (lambda p: _SYMBOL_RE.search(p) is not None, "Add at least one special character"),
    (lambda p: len(p) >= 12, "Use at least 12 characters for a stronger password"),
)

_random = secrets.SystemRandom()


def generate_strong_password(length: int = DEFAULT_GENERATED_LENGTH) -> str:
    """Generate a random password with at least one character of each class.

    One lowercase, uppercase, digit and symbol are drawn first, the rest is
    filled from the full alphabet, then everything is shuffled so the
    guaranteed characters sit at unpredictable positions.

    Raises:
        ValidationError: If ``length`` is below 4 or above 128.
    """
    if isinstance(length, bool) or not isinstance(length, int):
        raise ValidationError("Password length must be an integer")
    if length < MIN_GENERATED_LENGTH:
        raise ValidationError(
            f"Password length must be at least {MIN_GENERATED_LENGTH}"
        )
    if length > MAX_GENERATED_LENGTH:
        raise ValidationError(
            f"Password length cannot exceed {MAX_GENERATED_LENGTH}"
        )
    chars = [
        secrets.choice(LOWERCASE),
        secrets.choice(UPPERCASE),
        secrets.choice(DIGITS),
        secrets.choice(SYMBOLS),
    ]
    chars.extend(secrets.choice(ALPHABET) for _ in range(length - len(chars)))
    _random.shuffle(chars)
    return "".join(chars)


def check_password_strength(password: str) -> dict:
    """Score a password from 0 to 6.

    Returns:
        ``{"score": int, "feedback": list[str]}``. Feedback lists every
        failed criterion in a fixed order, or is ``["strong"]`` when the
        score is the maximum.
    """
    if not isinstance(password, str):
        raise ValidationError("Password must be a string")
    score = 0
    feedback = []
    for passes, message in _CRITERIA:
        if passes(password):
            score += 1
        else:
            feedback.append(message)
    return {
        "score": score,
        "feedback": feedback if score < MAX_SCORE else [STRONG],
    }
