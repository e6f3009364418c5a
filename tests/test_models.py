"""
Tests for models.py — typed projection rules.
"""

import math

import pytest

from grokgate.models import (
    DEFAULT_GROK_SETTINGS,
    GlobalSettings,
    GrokSettings,
    ImageMode,
    SettingsBundle,
    normalize_max_retry,
    normalize_retry_codes,
    strip_cf_prefix,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", ""),
        ("   ", ""),
        ("abc123", "abc123"),
        ("  abc123  ", "abc123"),
        ("cf_clearance=abc123", "abc123"),
        (" cf_clearance=abc123 ", "abc123"),
        ("cf_clearance=cf_clearance=x", "cf_clearance=x"),
    ],
)
def test_strip_cf_prefix(raw, expected):
    assert strip_cf_prefix(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        (2, 2),
        (0, 0),
        (-4, 0),
        (2.9, 2),
        ("5", 3),
        (True, 3),
        (None, 3),
        (math.inf, 3),
        (math.nan, 3),
    ],
)
def test_normalize_max_retry(raw, expected):
    assert normalize_max_retry(raw) == expected


def test_normalize_retry_codes_dedupes_in_order_and_filters():
    assert normalize_retry_codes([429, "500", 429, 502.0, 1.5, True, 401]) == [429, 502, 401]


def test_normalize_retry_codes_never_empty():
    assert normalize_retry_codes([]) == [401, 429, 403]
    assert normalize_retry_codes(["x"]) == [401, 429, 403]
    assert normalize_retry_codes(None) == [401, 429, 403]


def test_unknown_fields_are_dropped():
    settings = GlobalSettings.model_validate({"base_url": "https://x", "surprise": 1})
    assert settings.base_url == "https://x"
    assert "surprise" not in settings.model_dump()


def test_invalid_field_value_falls_back_to_default():
    settings = GlobalSettings.model_validate(
        {"image_mode": "gif", "image_cache_max_size_mb": "lots", "log_level": "DEBUG"}
    )
    assert settings.image_mode == ImageMode.URL
    assert settings.image_cache_max_size_mb == 512
    assert settings.log_level == "DEBUG"


def test_grok_invalid_retry_codes_fall_back_to_default():
    settings = GrokSettings.model_validate({"retry_codes": ["not-a-code"]})
    assert settings.retry_codes == [401, 429, 403]


def test_grok_mixed_retry_codes_keep_the_integers():
    settings = GrokSettings.model_validate({"retry_codes": [429, "x", True, 429]})
    assert settings.retry_codes == [429]


def test_invalid_value_uses_fallback_model_from_context():
    current = GrokSettings(stream_chunk_timeout=90, retry_codes=[502])
    settings = GrokSettings.model_validate(
        {"stream_chunk_timeout": "slow", "retry_codes": "502"}, context={"fallback": current}
    )
    assert settings.stream_chunk_timeout == 90
    assert settings.retry_codes == [502]


def test_grok_cookie_is_stored_bare():
    assert GrokSettings(cf_clearance="cf_clearance=abc").cf_clearance == "abc"


def test_grok_max_retry_coerced():
    assert GrokSettings.model_validate({"max_retry": "many"}).max_retry == 3
    assert GrokSettings.model_validate({"max_retry": 1.7}).max_retry == 1


def test_retry_status_codes_mirrors_retry_codes_on_output():
    settings = GrokSettings.model_validate({"retry_codes": [500, 502]})
    dumped = settings.model_dump()
    assert dumped["retry_codes"] == [500, 502]
    assert dumped["retry_status_codes"] == [500, 502]


def test_legacy_name_accepted_when_retry_codes_missing():
    settings = GrokSettings.model_validate({"retry_status_codes": [503]})
    assert settings.retry_codes == [503]
    assert settings.retry_status_codes == [503]


def test_defaults_have_both_retry_names_equal():
    assert DEFAULT_GROK_SETTINGS.retry_codes == DEFAULT_GROK_SETTINGS.retry_status_codes


def test_bundle_accepts_global_alias():
    bundle = SettingsBundle.model_validate({"global": {}, "grok": {}})
    assert bundle.global_ == GlobalSettings()
