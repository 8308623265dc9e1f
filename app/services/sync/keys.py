"""
Object key construction for mirrored files

Keys look like:
    <org prefix>/file-sync/<provider>/<user_id>/<external id>/<file name>
"""
import re
from typing import Optional

MAX_KEY_PART_LENGTH = 200

_SEPARATORS = re.compile(r"[/\\]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_key_part(value: Optional[str]) -> str:
    """
    Make one key segment safe for S3.

    Path separators become "_", control characters are dropped, whitespace
    is trimmed and the result is capped at MAX_KEY_PART_LENGTH. A segment
    made only of dots ("." / "..") sanitizes to "".

    Example:
        "../../etc/passwd" -> ".._.._etc_passwd"
    """
    if not value:
        return ""

    cleaned = _SEPARATORS.sub("_", value)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = cleaned.strip()[:MAX_KEY_PART_LENGTH].strip()

    if cleaned.strip(".") == "":
        return ""
    return cleaned


def normalize_prefix(value: Optional[str]) -> Optional[str]:
    """
    Normalize an organization prefix override.

    Splits on "/", sanitizes each segment and drops empty or dot-only ones,
    so "  /tenants//acme/../x/ " becomes "tenants/acme/x". Empty -> None.
    """
    if not value:
        return None

    segments = [sanitize_key_part(part) for part in value.strip().split("/")]
    segments = [s for s in segments if s]
    return "/".join(segments) or None


def build_org_prefix(
    organization_id: str,
    provider: str,
    user_id: str,
    override_prefix: Optional[str] = None
) -> str:
    """
    Deterministic per-organization/provider/user prefix.

    The organization part is the storage-settings override when one is set,
    otherwise "org/<organization_id>".
    """
    base = normalize_prefix(override_prefix) or f"org/{sanitize_key_part(organization_id)}"
    return f"{base}/file-sync/{sanitize_key_part(provider)}/{sanitize_key_part(user_id)}"


def build_object_key(prefix: str, external_id: str, name: Optional[str]) -> str:
    """<prefix>/<external id>/<name>, falling back to file-<external id> for unusable names."""
    safe_id = sanitize_key_part(external_id) or "unknown"
    safe_name = sanitize_key_part(name) or f"file-{safe_id}"
    return f"{prefix}/{safe_id}/{safe_name}"
