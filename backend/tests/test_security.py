import pytest

from fashionmuse import security


def test_hash_then_verify_round_trip():
    for password in ["password123", "", "pässwörd with spaces", "x" * 500]:
        stored = security.hash_password(password)
        assert security.verify_password(password, stored)

def test_wrong_password_does_not_verify():
    stored = security.hash_password("correct horse")
    assert not security.verify_password("correct horse ", stored)
    assert not security.verify_password("Correct horse", stored)

def test_same_password_gets_different_salts():
    first = security.hash_password("same-password")
    second = security.hash_password("same-password")
    assert first != second
    assert security.verify_password("same-password", first)
    assert security.verify_password("same-password", second)

def test_stored_format_is_salt_colon_hash():
    salt, separator, digest = security.hash_password("abc").partition(":")
    assert separator == ":"
    assert len(salt) == security.SALT_BYTES * 2
    assert len(digest) == 64

def test_digest_matches_hex_sha256_of_password_and_salt():
    salt, _, digest = security.hash_password("abc").partition(":")
    assert digest == security.pwd_context.hash("abc" + salt)
    assert set(salt) <= set(security.SALT_CHARSET)

@pytest.mark.parametrize("malformed", ["", "no-separator", ":digestonly", "saltonly:", "salt:not-a-hex-digest", None])
def test_malformed_stored_value_never_verifies(malformed):
    assert security.verify_password("anything", malformed) is False

def test_weak_salt_source_is_logged_and_still_verifies(mocker, caplog):
    mocker.patch.object(security, "has_urandom", False)
    with caplog.at_level("WARNING", logger="fashionmuse.security"):
        stored = security.hash_password("fallback")
    assert security.verify_password("fallback", stored)
    assert len(stored.partition(":")[0]) == security.SALT_BYTES * 2
    assert "weak source" in caplog.text
