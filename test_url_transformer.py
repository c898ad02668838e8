"""
Tests for resolving format records into a single playable URL
"""
from urllib.parse import parse_qs, urlsplit

import pytest

from errors import FormatError
from url_transformer import decipher, n_transform, resolve, set_query_param
from test_fixtures import make_cipher, make_ciphered_format, make_direct_format


def reverse(value: str) -> str:
    return value[::-1]


def query_of(url: str) -> dict:
    return parse_qs(urlsplit(url).query)


# ============================================================================
# set_query_param
# ============================================================================

def test_set_query_param_appends_new_parameter():
    assert set_query_param("https://example/v?a=1", "sig", "x") == "https://example/v?a=1&sig=x"


def test_set_query_param_replaces_in_place_and_drops_duplicates():
    url = "https://example/v?n=1&a=2&n=3"
    assert set_query_param(url, "n", "z") == "https://example/v?n=z&a=2"


# ============================================================================
# decipher
# ============================================================================

def test_decipher_round_trip_sets_signature():
    raw = make_cipher("https://example/video?other=1", s="abc", sp="sig")

    url = decipher(raw, reverse)

    assert query_of(url) == {"other": ["1"], "sig": ["cba"]}
    assert url == "https://example/video?other=1&sig=cba"


def test_decipher_uses_sp_parameter_name():
    raw = make_cipher("https://example/video?other=1", s="abc", sp="signature")
    assert query_of(decipher(raw, reverse))["signature"] == ["cba"]


def test_decipher_defaults_to_sig_without_sp():
    raw = "s=abc&url=" + "https%3A%2F%2Fexample%2Fvideo%3Fother%3D1"
    assert query_of(decipher(raw, reverse))["sig"] == ["cba"]


def test_decipher_decodes_signature_once():
    raw = "s=AB%2525CD&sp=sig&url=https%3A%2F%2Fexample%2Fv"
    seen = []

    decipher(raw, lambda s: seen.append(s) or s)

    assert seen == ["AB%25CD"]


def test_decipher_without_s_returns_url_unchanged():
    raw = "sp=sig&url=https%3A%2F%2Fexample%2Fvideo%3Fother%3D1"

    def fail(value):
        raise AssertionError("transform must not run")

    assert decipher(raw, fail) == "https://example/video?other=1"


# ============================================================================
# n_transform
# ============================================================================

def test_n_transform_replaces_n_and_keeps_other_params():
    url = "https://example/video?n=abc&x=1"
    assert n_transform(url, str.upper) == "https://example/video?n=ABC&x=1"


def test_n_transform_without_n_returns_url_unchanged():
    url = "https://example/video?x=1&y=%2F"
    assert n_transform(url, str.upper) is url


def test_n_transform_without_transform_returns_url_unchanged():
    url = "https://example/video?n=abc"
    assert n_transform(url, None) == url


# ============================================================================
# resolve
# ============================================================================

def test_resolve_ciphered_format_applies_both_transforms():
    fmt = make_ciphered_format("https://example/v?n=xyz&other=1")

    resolve(fmt, reverse, str.upper)

    assert fmt["url"] == "https://example/v?n=XYZ&other=1&sig=cba"
    assert "signatureCipher" not in fmt
    assert "cipher" not in fmt


def test_resolve_legacy_cipher_field():
    fmt = {"itag": 18, "cipher": make_cipher("https://example/v?other=1")}

    resolve(fmt, reverse)

    assert fmt == {"itag": 18, "url": "https://example/v?other=1&sig=cba"}


def test_resolve_direct_format_only_applies_n_transform():
    fmt = make_direct_format("https://example/v?n=abc&expire=1")

    def fail(value):
        raise AssertionError("decipher must not run for direct formats")

    resolve(fmt, fail, reverse)

    assert fmt["url"] == "https://example/v?n=cba&expire=1"


def test_resolve_without_n_adds_no_n_param():
    fmt = make_ciphered_format("https://example/v?other=1")

    resolve(fmt, reverse, str.upper)

    query = query_of(fmt["url"])
    assert query["sig"] == ["cba"]
    assert "n" not in query


def test_resolve_drops_stale_cipher_next_to_direct_url():
    fmt = make_direct_format("https://example/v?a=1")
    fmt["signatureCipher"] = make_cipher("https://example/other")

    resolve(fmt, reverse)

    assert fmt["url"] == "https://example/v?a=1"
    assert "signatureCipher" not in fmt


def test_resolve_format_without_any_url_fails():
    with pytest.raises(FormatError):
        resolve({"itag": 22}, reverse)
