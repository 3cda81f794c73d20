"""Shared utility functions."""
import uuid
from datetime import datetime, timezone
from urllib.parse import urlparse


def generate_import_log_id() -> str:
    """Generate a unique import log ID."""
    return f"log_{uuid.uuid4().hex[:12]}"


def generate_task_id() -> str:
    """Generate a unique task ID."""
    return f"task_{uuid.uuid4().hex[:12]}"


def get_utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def extract_source_name(url: str) -> str:
    """Return the host name of a feed URL without a leading ``www.``."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "unknown"
    if not hostname:
        return "unknown"
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


def validate_url(url: str) -> bool:
    """Validate that a URL is properly formatted."""
    try:
        result = urlparse(url)
        return all([result.scheme in ('http', 'https'), result.netloc])
    except Exception:
        return False


def elapsed_ms(started_at: datetime) -> int:
    """Milliseconds elapsed since ``started_at``."""
    return int((get_utc_now() - started_at).total_seconds() * 1000)


def calculate_exponential_backoff(attempt: int, base_delay: float = 2.0, max_delay: float = 300.0) -> float:
    """Calculate exponential backoff delay."""
    delay = base_delay * (2 ** attempt)
    return min(delay, max_delay)
