"""Expense type catalog (tipos de egreso) used to classify XML documents."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path

import config
from egresos.accounting.numbers import sort_key

logger = logging.getLogger(__name__)

NO_CATEGORY_LABEL = "SIN TIPO"
NO_ACCOUNT = "—"


@dataclass(frozen=True)
class ExpenseType:
    code: str
    name: str
    account: str | None = None

    @property
    def label(self) -> str:
        return f"{self.name} ({self.code})"


def normalize_code(value) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    # Short numeric codes keep a 3-digit form: "7" -> "007"
    if text.isdigit() and len(text) < 3:
        return text.zfill(3)
    return text


def normalize_account(value) -> str:
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value).strip())


class ExpenseCatalog:
    """Read-only code -> {name, account} lookup built from a list of entries."""

    def __init__(self, entries: list[dict]):
        types = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            code = normalize_code(entry.get("codigo", entry.get("code")))
            name = str(entry.get("nombre", entry.get("name")) or "").strip()
            account = normalize_account(entry.get("cuenta", entry.get("account"))) or None
            if not code or not name:
                continue
            types.append(ExpenseType(code=code, name=name, account=account))

        types.sort(key=lambda t: (sort_key(t.name), t.code.zfill(10)))
        self._types = types
        self._labels = {t.code: t.label for t in types}
        self._accounts = {t.code: t.account for t in types if t.account}

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> ExpenseCatalog:
        path = Path(path or config.EXPENSE_CATALOG_PATH)
        if not path.exists():
            logger.warning(f"Expense catalog not found at {path}, using an empty catalog")
            return cls([])
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("tipos", [])
        catalog = cls(data)
        logger.info(f"Loaded {len(catalog)} expense types from {path}")
        return catalog

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, code: str) -> bool:
        return normalize_code(code) in self._labels

    def all(self) -> list[ExpenseType]:
        return list(self._types)

    def find(self, code: str | None) -> ExpenseType | None:
        code = normalize_code(code)
        return next((t for t in self._types if t.code == code), None)

    def label(self, code: str | None) -> str:
        """Visible label for a stored category; unassigned -> SIN TIPO, unknown codes stay as-is."""
        code = (code or "").strip()
        if not code:
            return NO_CATEGORY_LABEL
        return self._labels.get(normalize_code(code), code)

    def account(self, code: str | None) -> str:
        code = (code or "").strip()
        if not code:
            return NO_ACCOUNT
        return self._accounts.get(normalize_code(code), NO_ACCOUNT)

    def search(self, text: str, limit: int = 20) -> list[ExpenseType]:
        needle = sort_key(text)
        if not needle:
            return self._types[:limit]
        matches = [
            t for t in self._types
            if needle in sort_key(t.name) or needle in sort_key(t.code) or needle in sort_key(t.account)
        ]
        return matches[:limit]
