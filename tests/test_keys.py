from app.services.sync.keys import (
    MAX_KEY_PART_LENGTH,
    build_object_key,
    build_org_prefix,
    normalize_prefix,
    sanitize_key_part,
)


def test_sanitize_replaces_separators():
    assert sanitize_key_part("../../etc/passwd") == ".._.._etc_passwd"
    assert sanitize_key_part("a\\b/c") == "a_b_c"


def test_sanitize_drops_control_characters_and_trims():
    assert sanitize_key_part("  report\x00\x1f\x7f.pdf\n ") == "report.pdf"


def test_sanitize_caps_length():
    assert len(sanitize_key_part("x" * 500)) == MAX_KEY_PART_LENGTH


def test_sanitize_dot_only_is_empty():
    assert sanitize_key_part("..") == ""
    assert sanitize_key_part(".") == ""
    assert sanitize_key_part(None) == ""


def test_normalize_prefix():
    assert normalize_prefix("  /tenants//acme/../x/ ") == "tenants/acme/x"
    assert normalize_prefix("   ") is None
    assert normalize_prefix(None) is None
    assert normalize_prefix("/../") is None


def test_build_org_prefix_default_and_override():
    assert build_org_prefix("org-1", "google_drive", "user-1") == "org/org-1/file-sync/google_drive/user-1"
    assert (
        build_org_prefix("org-1", "dropbox", "user-1", override_prefix="/clients/acme/")
        == "clients/acme/file-sync/dropbox/user-1"
    )


def test_build_object_key_never_escapes_prefix():
    key = build_object_key("org/o/file-sync/dropbox/u", "id:1/..", "../../secret\x00.txt")
    parts = key.split("/")
    assert key.startswith("org/o/file-sync/dropbox/u/")
    assert ".." not in parts
    assert "." not in parts
    assert "\x00" not in key
    assert len(parts) == 7


def test_build_object_key_fallbacks():
    assert build_object_key("p", "abc", "..") == "p/abc/file-abc"
    assert build_object_key("p", "", "name.txt") == "p/unknown/name.txt"
