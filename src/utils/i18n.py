"""
Internationalization (i18n) utilities for bot localization
"""
import json
from pathlib import Path
from typing import Dict, Any, Optional

from loguru import logger


LOCALES_DIR = Path(__file__).resolve().parent.parent / "locales"
SUPPORTED_LANGUAGES = ("zh", "en")


class I18n:
    """
    Simple i18n class for managing translations
    """

    def __init__(self, locales_dir: Optional[Path] = None, default_language: str = "zh"):
        """
        Initialize i18n system

        Args:
            locales_dir: Directory containing translation files
            default_language: Default language code
        """
        self.locales_dir = Path(locales_dir) if locales_dir else LOCALES_DIR
        self.default_language = default_language
        self.translations: Dict[str, Dict[str, Any]] = {}
        self._load_translations()

    def _load_translations(self) -> None:
        """Load all translation files from locales directory"""
        if not self.locales_dir.exists():
            logger.warning(f"Locales directory not found: {self.locales_dir}")
            return

        for locale_file in sorted(self.locales_dir.glob("*.json")):
            language = locale_file.stem
            try:
                with open(locale_file, "r", encoding="utf-8") as f:
                    self.translations[language] = json.load(f)
                logger.debug(f"Loaded translations for language: {language}")
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Error loading translations for {language}: {e}")

    def get(self, key: str, language: Optional[str] = None, **kwargs) -> str:
        """
        Get translated string by key

        Args:
            key: Translation key (supports nested keys with dots, e.g., 'claim.success')
            language: Language code (if None, uses default)
            **kwargs: Format arguments for string formatting

        Returns:
            Translated string, or the key itself when missing
        """
        lang = language or self.default_language

        value = self._lookup(self.translations.get(lang, {}), key)
        if value is None and lang != self.default_language:
            value = self._lookup(self.translations.get(self.default_language, {}), key)

        if value is None:
            logger.warning(f"Translation not found: {key} (language: {lang})")
            return key

        try:
            return value.format(**kwargs) if kwargs else value
        except KeyError as e:
            logger.error(f"Missing format argument in translation {key}: {e}")
            return value

    @staticmethod
    def _lookup(trans: Dict[str, Any], key: str) -> Optional[str]:
        value: Any = trans
        for k in key.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(k)
        return value if isinstance(value, str) else None

    def reload(self) -> None:
        """Reload all translations"""
        self.translations.clear()
        self._load_translations()


# Global i18n instance
i18n = I18n()


def get_user_language(user_language: Optional[str] = None, telegram_language: Optional[str] = None) -> str:
    """
    Determine user language with fallback logic

    Priority:
    1. User's saved language preference
    2. Telegram language code
    3. Default language (Chinese)

    Returns:
        Language code (zh or en)
    """
    for candidate in (user_language, telegram_language):
        if candidate:
            code = candidate.lower()[:2]
            if code in SUPPORTED_LANGUAGES:
                return code
    return "zh"
