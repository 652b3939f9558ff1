"""
CarePath Triage – Symptom Catalog
==================================
Read-only reference data: the symptom catalog and the medicine / home-care /
natural-remedy catalog. Loaded once at startup from YAML and shared by every
request without locking.

Integrity problems (bad weights, items without safety information, an id used
in more than one section, triggers that reference unknown symptoms) raise
``CatalogIntegrityError`` at load time so a broken catalog never serves traffic.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from core.errors import CatalogIntegrityError
from models.schema_definition import (
    HomeRemedy,
    Medicine,
    NaturalRemedy,
    RecommendationItem,
    SymptomEntry,
)

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path(__file__).resolve().parents[2] / "configs"
_DEFAULT_SYMPTOMS_PATH = _CONFIG_DIR / "symptom_catalog.yaml"
_DEFAULT_RECOMMENDATIONS_PATH = _CONFIG_DIR / "recommendations.yaml"

_SECTIONS = {
    "medicines": Medicine,
    "home_remedies": HomeRemedy,
    "natural_remedies": NaturalRemedy,
}

_NON_ID_CHARS = re.compile(r"[^a-z0-9]+")


def load_yaml(path: Path) -> dict:
    """Read a YAML mapping, raising CatalogIntegrityError if it is missing or malformed."""
    if not path.exists():
        raise CatalogIntegrityError(f"Catalog file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise CatalogIntegrityError(f"Catalog file {path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise CatalogIntegrityError(f"Catalog file {path} must contain a mapping")
    return data


def slugify(label: str) -> str:
    """'Chest Pain' -> 'chest_pain'."""
    return _NON_ID_CHARS.sub("_", label.strip().lower()).strip("_")


class SymptomCatalog:
    """Symptom and recommendation lookup tables."""

    def __init__(
        self,
        symptoms_path: Optional[str] = None,
        recommendations_path: Optional[str] = None,
    ):
        sym_path = Path(symptoms_path) if symptoms_path else _DEFAULT_SYMPTOMS_PATH
        rec_path = Path(recommendations_path) if recommendations_path else _DEFAULT_RECOMMENDATIONS_PATH

        self._symptoms: Dict[str, SymptomEntry] = self._load_symptoms(load_yaml(sym_path))
        self._aliases: Dict[str, str] = self._build_aliases(self._symptoms.values())

        rec_data = load_yaml(rec_path)
        self.medicines: List[Medicine] = self._load_items(rec_data, "medicines")
        self.home_remedies: List[HomeRemedy] = self._load_items(rec_data, "home_remedies")
        self.natural_remedies: List[NaturalRemedy] = self._load_items(rec_data, "natural_remedies")
        self._check_unique_ids()
        self._check_triggers()

        logger.info(
            "Catalog loaded: %d symptoms, %d medicines, %d home remedies, %d natural remedies",
            len(self._symptoms),
            len(self.medicines),
            len(self.home_remedies),
            len(self.natural_remedies),
        )

    # ── Loading ─────────────────────────────────────────────────────────

    @staticmethod
    def _load_symptoms(data: dict) -> Dict[str, SymptomEntry]:
        entries: Dict[str, SymptomEntry] = {}
        for raw in data.get("symptoms") or []:
            try:
                entry = SymptomEntry.model_validate(raw)
            except PydanticValidationError as e:
                ident = raw.get("id", "?") if isinstance(raw, dict) else "?"
                raise CatalogIntegrityError(f"Invalid symptom '{ident}': {e}") from e
            if entry.id in entries:
                raise CatalogIntegrityError(f"Duplicate symptom id '{entry.id}'")
            entries[entry.id] = entry
        if not entries:
            raise CatalogIntegrityError("Symptom catalog is empty")
        return entries

    @staticmethod
    def _load_items(data: dict, section: str) -> list:
        model = _SECTIONS[section]
        items = []
        seen = set()
        for raw in data.get(section) or []:
            try:
                item = model.model_validate(raw)
            except PydanticValidationError as e:
                ident = raw.get("id", "?") if isinstance(raw, dict) else "?"
                raise CatalogIntegrityError(f"Invalid {section} entry '{ident}': {e}") from e
            if item.id in seen:
                raise CatalogIntegrityError(f"Duplicate {section} id '{item.id}'")
            seen.add(item.id)
            items.append(item)
        return items

    @staticmethod
    def _build_aliases(entries: Iterable[SymptomEntry]) -> Dict[str, str]:
        aliases: Dict[str, str] = {}
        for entry in entries:
            aliases[slugify(entry.name)] = entry.id
            for name in entry.localized_names.values():
                aliases.setdefault(name.strip().lower(), entry.id)
        return aliases

    def _check_unique_ids(self):
        owner: Dict[str, str] = {}
        for section in _SECTIONS:
            for item in getattr(self, section):
                if item.id in owner:
                    raise CatalogIntegrityError(
                        f"Recommendation id '{item.id}' appears in both {owner[item.id]} and {section}"
                    )
                owner[item.id] = section

    def _check_triggers(self):
        for item in self.recommendations():
            unknown = [s for s in item.treats if s not in self._symptoms]
            if unknown:
                raise CatalogIntegrityError(
                    f"Recommendation '{item.id}' references unknown symptoms: {unknown}"
                )

    # ── Lookup ──────────────────────────────────────────────────────────

    def __contains__(self, symptom_id: str) -> bool:
        return symptom_id in self._symptoms

    def __len__(self) -> int:
        return len(self._symptoms)

    def get(self, symptom_id: str) -> Optional[SymptomEntry]:
        return self._symptoms.get(symptom_id)

    def symptoms(self) -> List[SymptomEntry]:
        return list(self._symptoms.values())

    def recommendations(self) -> List[RecommendationItem]:
        """All recommendation items, medicines first."""
        return [*self.medicines, *self.home_remedies, *self.natural_remedies]

    def normalize_id(self, label: str) -> Optional[str]:
        """
        Resolve a user-supplied symptom label to a catalog id.

        Accepts ids ("chest_pain"), display names ("Chest Pain") and
        localized names ("fiebre"). Returns None when nothing matches.
        """
        if not label or not label.strip():
            return None
        slug = slugify(label)
        if slug in self._symptoms:
            return slug
        if slug in self._aliases:
            return self._aliases[slug]
        return self._aliases.get(label.strip().lower())

    def listing(self, language: str = "en") -> List[dict]:
        """Symptom listing for the UI, names localized where available."""
        return [
            {
                "id": s.id,
                "name": s.display_name(language),
                "bodySystem": s.body_system,
                "urgency": s.urgency.value,
                "description": s.description,
                "followUpQuestions": list(s.follow_up_questions),
            }
            for s in self._symptoms.values()
        ]
