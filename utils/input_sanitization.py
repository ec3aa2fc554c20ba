"""
Pattern-based detection of hostile input and string sanitization.

Security Features:
- SQL injection signatures (keywords, tautologies, comments, chaining, blind timing)
- XSS signatures (script blocks, javascript: URIs, inline handlers, dangerous tags, DOM sinks)
- Path traversal, including percent-encoded variants
- Known scanner user agents and probe paths (.env, .git, wp-admin, backups, ...)

Detection is heuristic. SQL-like words in ordinary prose will match; that is
accepted for a defence-in-depth layer.
"""
import re
from typing import Any, List, Pattern

SQL_INJECTION_PATTERNS: List[Pattern] = [
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|UNION|ALTER|CREATE|TRUNCATE)\b", re.IGNORECASE),
    re.compile(r"\b(OR|AND)\b\s+\d+\s*=\s*\d+", re.IGNORECASE),
    re.compile(r"(--|#|/\*|\*/)"),
    re.compile(r"\b(EXEC|EXECUTE|xp_\w*|sp_\w*)\b", re.IGNORECASE),
    re.compile(r"(;|\||\$\(|`)"),
    re.compile(r"\bWAITFOR\b\s+\bDELAY\b", re.IGNORECASE),
    re.compile(r"\bBENCHMARK\b\s*\(", re.IGNORECASE),
]

XSS_PATTERNS: List[Pattern] = [
    re.compile(r"<script\b", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe\b", re.IGNORECASE),
    re.compile(r"<object\b", re.IGNORECASE),
    re.compile(r"<embed\b", re.IGNORECASE),
    re.compile(r"\beval\s*\(", re.IGNORECASE),
    re.compile(r"document\.(cookie|write|location)", re.IGNORECASE),
    re.compile(r"window\.(location|open)", re.IGNORECASE),
]

PATH_TRAVERSAL_PATTERNS: List[Pattern] = [
    re.compile(r"\.\./"),
    re.compile(r"\.\.\\"),
    re.compile(r"\.\.%2f", re.IGNORECASE),
    re.compile(r"%2e%2e%2f", re.IGNORECASE),
    re.compile(r"%2e%2e/", re.IGNORECASE),
    re.compile(r"\.\.%5c", re.IGNORECASE),
    re.compile(r"%2e%2e%5c", re.IGNORECASE),
]

SCANNER_USER_AGENTS = (
    "sqlmap", "nikto", "nmap", "masscan", "zgrab", "gobuster",
    "dirbuster", "wpscan", "acunetix", "nessus", "openvas", "burpsuite",
)

# Probe paths that only scanners request
SUSPICIOUS_PATH_PATTERNS: List[Pattern] = [
    re.compile(r"\.env", re.IGNORECASE),
    re.compile(r"\.git", re.IGNORECASE),
    re.compile(r"wp-admin", re.IGNORECASE),
    re.compile(r"wp-login", re.IGNORECASE),
    re.compile(r"phpmyadmin", re.IGNORECASE),
    re.compile(r"admin\.php", re.IGNORECASE),
    re.compile(r"shell\.php", re.IGNORECASE),
    re.compile(r"config\.php", re.IGNORECASE),
    re.compile(r"\.sql$", re.IGNORECASE),
    re.compile(r"\.bak$", re.IGNORECASE),
    re.compile(r"\.backup$", re.IGNORECASE),
    re.compile(r"\.old$", re.IGNORECASE),
    re.compile(r"\.swp$", re.IGNORECASE),
    re.compile(r"\.DS_Store", re.IGNORECASE),
]

# Removal rules applied to every string leaf by sanitize()
# The opening tag stops at the next "<" and the body at the next "<script",
# so repeated unclosed openings are scanned in linear time
_SCRIPT_BLOCK = re.compile(r"<script\b[^<>]*>(?:(?!<script\b)[\s\S])*?</script\s*>", re.IGNORECASE)
_SCRIPT_TAG = re.compile(r"</?script\b[^>]*>?", re.IGNORECASE)
_JAVASCRIPT_URI = re.compile(r"javascript\s*:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)


def _matches_any(value: str, patterns: List[Pattern]) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return any(pattern.search(value) for pattern in patterns)


def looks_like_sql_injection(value: str) -> bool:
    return _matches_any(value, SQL_INJECTION_PATTERNS)


def looks_like_xss(value: str) -> bool:
    return _matches_any(value, XSS_PATTERNS)


def looks_like_path_traversal(value: str) -> bool:
    """Check a request path (not a body) for directory traversal sequences."""
    return _matches_any(value, PATH_TRAVERSAL_PATTERNS)


def looks_like_scanner_user_agent(user_agent: str) -> bool:
    if not user_agent:
        return False
    lowered = user_agent.lower()
    return any(scanner in lowered for scanner in SCANNER_USER_AGENTS)


def looks_like_suspicious_path(path: str) -> bool:
    """Check a request path for files and admin panels that scanners probe for."""
    return _matches_any(path, SUSPICIOUS_PATH_PATTERNS)


def _sanitize_string(value: str) -> str:
    # Repeat until stable so that removals cannot assemble a new match
    while True:
        cleaned = _SCRIPT_BLOCK.sub("", value)
        cleaned = _SCRIPT_TAG.sub("", cleaned)
        cleaned = _JAVASCRIPT_URI.sub("", cleaned)
        cleaned = _EVENT_HANDLER.sub("", cleaned)
        cleaned = cleaned.strip()
        if cleaned == value:
            return cleaned
        value = cleaned


def sanitize(value: Any) -> Any:
    """
    Recursively strip script tags, javascript: URIs and inline event handlers.

    Strings are cleaned and trimmed; lists, tuples and dicts are rebuilt with
    sanitized members (dict keys included). Other values pass through. The
    input is never modified, and ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    if isinstance(value, str):
        return _sanitize_string(value)
    if isinstance(value, list):
        return [sanitize(item) for item in value]
    if isinstance(value, tuple):
        return tuple(sanitize(item) for item in value)
    if isinstance(value, dict):
        return {
            (sanitize(key) if isinstance(key, str) else key): sanitize(item)
            for key, item in value.items()
        }
    return value
