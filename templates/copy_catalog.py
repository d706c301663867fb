"""
Copy Catalog — Localized fixed UI strings keyed by a stable name.

Strings are loaded from YAML:

    en-IN:
      greeting: "Hello! ..."
      ask_for_city: "Nice to meet you, {name}! ..."
    hi-IN:
      greeting: "नमस्ते! ..."

Lookup order for a key:
  1. The requested language
  2. The default language
  3. The key itself (logged as missing)

Placeholders use `{name}` form and are substituted literally, so stray
braces in copy never raise.
"""
from __future__ import annotations

import structlog
from pathlib import Path
from typing import Any, Optional

import yaml

logger = structlog.get_logger()

DEFAULT_COPY_PATH = Path(__file__).resolve().parent.parent / "config" / "copy.yaml"


class CopyCatalog:

    def __init__(self, table: dict[str, dict[str, str]], default_language: str = "en-IN"):
        self._table = table
        self.default_language = default_language

    @classmethod
    def from_yaml(cls, path: str | Path = None, default_language: str = "en-IN") -> "CopyCatalog":
        path = Path(path or DEFAULT_COPY_PATH)
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        table = {lang: {k: str(v) for k, v in (entries or {}).items()} for lang, entries in raw.items()}
        logger.info("copy_catalog_loaded",
                    path=str(path),
                    languages=sorted(table),
                    keys=len(table.get(default_language, {})))
        return cls(table, default_language=default_language)

    def languages(self) -> list[str]:
        return sorted(self._table)

    def has(self, key: str, language: Optional[str] = None) -> bool:
        return key in self._table.get(language or self.default_language, {})

    def text(self, key: str, language: Optional[str] = None) -> str:
        for lang in (language, self.default_language):
            if lang and key in self._table.get(lang, {}):
                return self._table[lang][key]
        logger.warning("copy_key_missing", key=key, language=language)
        return key

    def render(self, key: str, language: Optional[str] = None, **values: Any) -> str:
        result = self.text(key, language)
        for name, value in values.items():
            result = result.replace("{" + name + "}", str(value))
        return result
