from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml

from ..config import get_settings
from ..intents import Department
from .errors import ConfigError
from .nlu.text_normalizer import normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductInfo:
    name: str
    brands: List[str] = field(default_factory=list)
    available_sizes: List[str] = field(default_factory=list)
    types: List[str] = field(default_factory=list)
    description: str = ""
    english_name: str = ""


@dataclass(frozen=True)
class DepartmentContact:
    kind: str
    name: str
    phone: str
    whatsapp: Optional[str] = None


@dataclass(frozen=True)
class Location:
    name: str
    address: str
    department: Optional[str] = None


@dataclass(frozen=True)
class WorkingHours:
    days: str
    open: str
    close: str
    closed: Optional[str] = None


class KnowledgeStore(Protocol):
    """Read-only catalog and company facts consumed by the policy and the composer.

    Implementations raise ``KnowledgeStoreError`` when the backend is unavailable;
    an unknown product is ``None``, not an error.
    """

    def get_product(self, name: str) -> Optional[ProductInfo]: ...

    def get_department_contact(self, kind: Department | str) -> Optional[DepartmentContact]: ...

    def get_locations(self) -> List[Location]: ...

    def get_working_hours(self) -> Optional[WorkingHours]: ...

    def list_brands(self) -> List[str]: ...

    def get_company_name(self) -> str: ...


class YamlKnowledgeStore:
    """Knowledge store backed by a YAML document loaded once at construction."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or get_settings().knowledge_path
        data = self._load(self._path)

        self._products: Dict[str, ProductInfo] = {}
        for name, raw in (data.get("products") or {}).items():
            raw = raw or {}
            self._products[normalize(name)] = ProductInfo(
                name=name,
                brands=list(raw.get("brands") or []),
                available_sizes=[str(size) for size in raw.get("available_sizes") or []],
                types=[str(kind) for kind in raw.get("types") or []],
                description=raw.get("description") or "",
                english_name=raw.get("english_name") or "",
            )

        self._departments: Dict[str, DepartmentContact] = {
            kind: DepartmentContact(
                kind=kind,
                name=(raw or {}).get("name") or kind,
                phone=str((raw or {}).get("phone") or ""),
                whatsapp=(raw or {}).get("whatsapp"),
            )
            for kind, raw in (data.get("departments") or {}).items()
        }

        self._locations: List[Location] = [
            Location(
                name=item.get("name", ""),
                address=item.get("address", ""),
                department=item.get("department"),
            )
            for item in data.get("locations") or []
        ]

        hours = data.get("working_hours")
        self._hours: Optional[WorkingHours] = (
            WorkingHours(
                days=hours.get("days", ""),
                open=hours.get("open", ""),
                close=hours.get("close", ""),
                closed=hours.get("closed"),
            )
            if hours
            else None
        )

        self._company = str((data.get("company") or {}).get("name") or "")

        brands = data.get("brands") or {}
        self._brands: List[str] = list(
            dict.fromkeys(brand for group in brands.values() for brand in group or [])
        )

        logger.info(
            "YamlKnowledgeStore loaded path=%s products=%d departments=%d locations=%d",
            self._path,
            len(self._products),
            len(self._departments),
            len(self._locations),
        )

    @staticmethod
    def _load(path: Path) -> Dict[str, Any]:
        try:
            with Path(path).open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot load knowledge file {path}", reason="knowledge_load_failed") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Knowledge file {path} must contain a mapping", reason="knowledge_malformed")
        return data

    def get_product(self, name: str) -> Optional[ProductInfo]:
        return self._products.get(normalize(name))

    def get_department_contact(self, kind: Department | str) -> Optional[DepartmentContact]:
        return self._departments.get(str(kind))

    def get_locations(self) -> List[Location]:
        return list(self._locations)

    def get_working_hours(self) -> Optional[WorkingHours]:
        return self._hours

    def list_brands(self) -> List[str]:
        return list(self._brands)

    def get_company_name(self) -> str:
        return self._company


_knowledge_store: YamlKnowledgeStore | None = None


def get_knowledge_store() -> YamlKnowledgeStore:
    global _knowledge_store
    if _knowledge_store is None:
        _knowledge_store = YamlKnowledgeStore()
    return _knowledge_store

