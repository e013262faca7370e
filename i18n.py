"""
Lightweight i18n module for the Ask System CLI.

Usage:
    import i18n
    i18n.init()                                 # detect locale, load strings
    i18n.t('cli.goodbye')                       # → "Goodbye!"
    i18n.t('cli.basic_mode', error='no key')    # → "AI unavailable (no key)…"
"""

import json
import os
from pathlib import Path
from typing import Optional

_strings: dict = {}
_locale_code: str = 'en'

LOCALES_DIR = Path(__file__).resolve().parent / 'locales'


def _detect_locale() -> str:
    """Detect language code from the LANG environment variable."""
    lang = os.environ.get('LANG', '')
    # e.g. "es_ES.UTF-8" → "es_ES"
    code = lang.split('.')[0]
    return code if code and code not in ('C', 'POSIX') else 'en'


def _resolve_locale(code: str, locales_dir: Path) -> str:
    """Resolve a locale code to an available JSON file.

    Resolution order: exact match (en_GB) → language only (en) → fallback 'en'.
    """
    if (locales_dir / f'{code}.json').is_file():
        return code
    lang = code.split('_')[0]
    if lang != code and (locales_dir / f'{lang}.json').is_file():
        return lang
    return 'en'


def _load(path: Path) -> dict:
    with open(path, encoding='utf-8') as f:
        return json.load(f)


def init(locale_override: Optional[str] = None, locales_dir: Path = LOCALES_DIR):
    """Initialize i18n: load base English strings plus a locale overlay."""
    global _strings, _locale_code

    en_path = locales_dir / 'en.json'
    _strings = _load(en_path) if en_path.is_file() else {}

    raw_code = locale_override or _detect_locale()
    _locale_code = _resolve_locale(raw_code, locales_dir)

    if _locale_code != 'en':
        _strings.update(_load(locales_dir / f'{_locale_code}.json'))


def t(key: str, **kwargs) -> str:
    """Look up a translated string by key, with optional {placeholder} interpolation.

    Unknown keys are returned unchanged so a missing string never blanks the UI.
    """
    text = _strings.get(key, key)

    if kwargs:
        try:
            text = text.format(**kwargs)
        except (KeyError, IndexError):
            pass

    return text


def get_locale() -> str:
    """Return the resolved locale code."""
    return _locale_code
