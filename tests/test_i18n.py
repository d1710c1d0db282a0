"""
Unit tests for i18n utilities
"""

import json

from src.core.enums import ValidationReason
from src.utils.i18n import I18n, get_user_language


def test_i18n_initialization():
    """Test I18n class initialization"""
    i18n = I18n()

    assert i18n.default_language == "zh"
    assert "zh" in i18n.translations
    assert "en" in i18n.translations


def test_i18n_get_nested_key():
    i18n = I18n()

    assert i18n.get("buttons.grab", language="en") == "🧧 Grab"
    assert i18n.get("buttons.grab", language="zh") != "buttons.grab"


def test_i18n_get_with_formatting():
    """Test translation with formatting arguments"""
    i18n = I18n()

    result = i18n.get("error.amount_too_small", language="en", min="1.00", currency="USDT")
    assert "1.00" in result
    assert "USDT" in result


def test_i18n_get_missing_key():
    """Should return the key itself if not found"""
    i18n = I18n()

    assert i18n.get("nonexistent.key.here", language="en") == "nonexistent.key.here"


def test_i18n_fallback_to_default_language():
    i18n = I18n()

    assert i18n.get("buttons.grab", language="fr") == i18n.get("buttons.grab", language="zh")


def test_i18n_missing_format_argument_returns_template():
    i18n = I18n()

    result = i18n.get("error.amount_too_small", language="en", min="1.00")
    assert "{currency}" in result


def test_every_validation_reason_has_a_message():
    i18n = I18n()

    for language in ("zh", "en"):
        for reason in ValidationReason:
            key = f"error.{reason.value}"
            assert i18n.get(key, language=language) != key, (language, key)


def test_locales_have_the_same_keys():
    i18n = I18n()

    def flatten(tree, prefix=""):
        keys = set()
        for name, value in tree.items():
            path = f"{prefix}{name}"
            if isinstance(value, dict):
                keys |= flatten(value, path + ".")
            else:
                keys.add(path)
        return keys

    assert flatten(i18n.translations["zh"]) == flatten(i18n.translations["en"])


def test_i18n_reload(tmp_path):
    (tmp_path / "zh.json").write_text(json.dumps({"hello": "你好"}), encoding="utf-8")
    i18n = I18n(locales_dir=tmp_path)
    assert i18n.get("hello") == "你好"

    (tmp_path / "en.json").write_text(json.dumps({"hello": "Hello"}), encoding="utf-8")
    i18n.reload()
    assert i18n.get("hello", language="en") == "Hello"


def test_get_user_language():
    assert get_user_language("en") == "en"
    assert get_user_language(None, "zh-hans") == "zh"
    assert get_user_language(None, "en-US") == "en"
    assert get_user_language(None, "ru") == "zh"
    assert get_user_language() == "zh"
