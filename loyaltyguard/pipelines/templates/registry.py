"""
Merchant Template Registry

Loads the static merchant catalog from YAML once per process. Catalog order
is preserved; it breaks ties when two templates score the same.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = Path(__file__).parent / "merchants.yaml"


@dataclass(frozen=True)
class MerchantTemplate:
    """One known merchant receipt layout."""
    id: str
    keywords: Tuple[str, ...]
    required_patterns: Tuple[Pattern, ...] = ()
    receipt_id_patterns: Tuple[Pattern, ...] = ()
    display_name: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None
    tax_rate: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerchantTemplate":
        country = data.get("country")
        currency = data.get("currency")
        tax_rate = data.get("tax_rate")
        return cls(
            id=str(data["id"]),
            keywords=tuple(str(kw).lower() for kw in data.get("keywords") or []),
            required_patterns=tuple(re.compile(p) for p in data.get("required_patterns") or []),
            receipt_id_patterns=tuple(re.compile(p) for p in data.get("receipt_id_patterns") or []),
            display_name=data.get("display_name"),
            country=str(country).upper() if country else None,
            currency=str(currency).upper() if currency else None,
            tax_rate=float(tax_rate) if tax_rate is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "keywords": list(self.keywords),
            "country": self.country,
            "currency": self.currency,
            "tax_rate": self.tax_rate,
        }


class TemplateRegistry:
    """
    Read-only collection of merchant templates.

    Entries that fail to load (missing id, bad regex) are skipped with a
    warning; the rest of the catalog stays usable.
    """

    def __init__(self, catalog_path: Optional[Union[str, Path]] = None, auto_load: bool = True):
        self.catalog_path = Path(catalog_path) if catalog_path else DEFAULT_CATALOG
        self._templates: List[MerchantTemplate] = []
        self._loaded = False

        if auto_load:
            self.load()

    def load(self) -> int:
        """Load (or reload) the catalog file. Returns the number of templates."""
        self._templates = []
        self._loaded = True

        if not self.catalog_path.exists():
            logger.warning(f"Merchant catalog not found: {self.catalog_path}")
            return 0

        with open(self.catalog_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or []

        entries = data.get("templates", []) if isinstance(data, dict) else data
        seen = set()
        for entry in entries:
            try:
                template = MerchantTemplate.from_dict(entry)
            except (KeyError, TypeError, re.error) as e:
                logger.warning(f"Skipping merchant template {entry!r:.60}: {e}")
                continue
            if template.id in seen:
                logger.warning(f"Duplicate merchant template id {template.id} ignored")
                continue
            seen.add(template.id)
            self._templates.append(template)

        logger.info(f"Loaded {len(self._templates)} merchant templates from {self.catalog_path.name}")
        return len(self._templates)

    def get_all(self) -> List[MerchantTemplate]:
        if not self._loaded:
            self.load()
        return list(self._templates)

    def get_by_id(self, template_id: str) -> Optional[MerchantTemplate]:
        for template in self.get_all():
            if template.id == template_id:
                return template
        return None

    def count(self) -> int:
        return len(self.get_all())


# Global registry instance
_registry: Optional[TemplateRegistry] = None


def get_registry(catalog_path: Optional[Union[str, Path]] = None) -> TemplateRegistry:
    """Get the global template registry (lazy loaded)."""
    global _registry
    if _registry is None:
        _registry = TemplateRegistry(catalog_path=catalog_path)
    return _registry


def reset_registry() -> None:
    """Reset the global registry (for testing)."""
    global _registry
    _registry = None
