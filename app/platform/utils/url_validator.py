from typing import Optional, Tuple
from urllib.parse import urlparse

ALLOWED_SCHEMES = ("http", "https")


def normalize_url(url: str) -> Tuple[str, bool]:
    """Prefix scheme-less input with https://. Returns (url, was_modified)."""
    url = url.strip()

    if "://" not in url:
        return f"https://{url}", True

    return url, False


def validate_url(url: Optional[str]) -> Tuple[bool, str, str]:
    """
    Syntactic URL check used before any DNS or browser work.

    Returns:
        (is_valid, normalized_url, error_message)
    """
    if not url or not url.strip():
        return False, "", "URL cannot be empty"

    normalized_url, _ = normalize_url(url)

    try:
        parsed = urlparse(normalized_url)
        hostname = parsed.hostname
    except ValueError as e:
        return False, normalized_url, f"URL parsing error: {str(e)}"

    if parsed.scheme not in ALLOWED_SCHEMES:
        return False, normalized_url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"

    if not parsed.netloc or not hostname:
        return False, normalized_url, "Invalid URL format: missing domain"

    if any(ch.isspace() for ch in normalized_url):
        return False, normalized_url, "Invalid URL format: contains whitespace"

    return True, normalized_url, ""


def extract_hostname(url: str) -> Optional[str]:
    """Lower-cased hostname without port or IPv6 brackets, or None."""
    try:
        return urlparse(url).hostname
    except ValueError:
        return None
