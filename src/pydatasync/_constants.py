"""Internal constants shared across the library."""

BASE_URL = "http://localhost:5000/api"
USER_AGENT = "pydatasync/0.1"

#: Default freshness window for cached resources (seconds).
DEFAULT_MAX_AGE: float = 5 * 60
#: Upper bound on cached resource keys before least recently used ones are evicted.
DEFAULT_MAX_ENTRIES = 100
#: Refresh the session proactively this many seconds before it expires.
DEFAULT_REFRESH_LEEWAY: float = 5 * 60
#: Used when the backend omits ``expiresIn``.
DEFAULT_TOKEN_TTL: float = 15 * 60

LOGIN_ENDPOINT = "/auth/login"
REGISTER_ENDPOINT = "/auth/register"
REFRESH_ENDPOINT = "/auth/refresh-token"
LOGOUT_ENDPOINT = "/auth/logout"
CURRENT_USER_ENDPOINT = "/auth/me"

# ------------------------------------------------------------------
# Credential store keys
# ------------------------------------------------------------------

STORE_ACCESS_TOKEN = "access_token"
STORE_REFRESH_TOKEN = "refresh_token"
STORE_EXPIRES_AT = "expires_at"
STORE_SESSION_ID = "session_id"
STORE_USER = "user"
STORE_KEYS: tuple[str, ...] = (
    STORE_ACCESS_TOKEN,
    STORE_REFRESH_TOKEN,
    STORE_EXPIRES_AT,
    STORE_SESSION_ID,
    STORE_USER,
)

# ------------------------------------------------------------------
# Token lifetime strings  ("15m", "7d", "3600")
# ------------------------------------------------------------------

_DURATION_UNITS: dict[str, int] = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def parse_duration(value: str | int | float | None, default: float = DEFAULT_TOKEN_TTL) -> float:
    """Convert an ``expiresIn`` value to seconds.

    Accepts plain numbers (seconds) and ``<n><unit>`` strings with units
    ``s``, ``m``, ``h``, ``d``, ``w``. ``None`` and empty strings fall back to
    *default*.

    Raises :class:`ValueError` for anything else.
    """
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip().lower()
    if not text:
        return default
    unit = _DURATION_UNITS.get(text[-1])
    if unit is None:
        return float(text)
    number = text[:-1].strip()
    if not number:
        raise ValueError(f"duration is missing a number: {value!r}")
    return float(number) * unit
