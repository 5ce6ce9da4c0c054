"""
Demonstration Catalog — Voicify

In-memory store of recorded demonstrations, keyed by application and
command phrase, plus the on-disk persistence for it.

    DemonstrationCatalog  — app -> (command -> Demonstration), insertion ordered
    CatalogStore          — atomic JSON file, JSON/YAML export and import

File layout (``data/voicify_catalog.json``):

    {
      "version": 1,
      "updated_at": "2026-01-01T00:00:00+00:00",
      "demonstrations": [ {<Demonstration.to_dict()>}, ... ]
    }

Usage:
    from voicify.catalog import CatalogStore

    store = CatalogStore()
    catalog = store.load()
    best = catalog.find_best_match("turn on wifi", "com.android.settings")
    if best is not None:
        print(best.command, best.match_distance)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import yaml

from voicify.edit_distance import distance
from voicify.errors import PersistenceError
from voicify.models import Demonstration

logger = logging.getLogger("catalog")

# ---------------------------------------------------------------------------
# Constants & Configuration
# ---------------------------------------------------------------------------

BASE_DIR = Path(__file__).resolve().parent.parent

DATA_DIR = Path(os.getenv("VOICIFY_DATA_DIR", str(BASE_DIR / "data")))
CATALOG_FILENAME = "voicify_catalog.json"
DEFAULT_CATALOG_PATH = DATA_DIR / CATALOG_FILENAME

SCHEMA_VERSION = 1

EXPORT_FORMATS = ("json", "yaml")


# ---------------------------------------------------------------------------
# JSON persistence helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json(path: Path, default: Any = None) -> Any:
    if default is None:
        default = {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return default
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Corrupt catalog file %s: %s", path, exc)
        return default


# ===================================================================
# DemonstrationCatalog
# ===================================================================

class DemonstrationCatalog:
    """
    Two-level mapping of recorded demonstrations.

    Command phrases are unique per application; adding a phrase that already
    exists replaces the stored demonstration.
    """

    def __init__(self) -> None:
        self._apps: Dict[str, Dict[str, Demonstration]] = {}
        self._lock = threading.RLock()

    # ----- Mutation -----

    def add(self, demonstration: Demonstration) -> bool:
        """Insert or replace. Returns True if an existing entry was replaced."""
        with self._lock:
            scope = self._apps.setdefault(demonstration.app_identifier, {})
            replaced = demonstration.command in scope
            if replaced:
                logger.info(
                    "Replaced old command %r for %s",
                    demonstration.command, demonstration.app_identifier,
                )
            scope[demonstration.command] = demonstration
            return replaced

    def remove(self, app_identifier: str, command: str) -> bool:
        with self._lock:
            scope = self._apps.get(app_identifier)
            if not scope or command not in scope:
                return False
            del scope[command]
            if not scope:
                del self._apps[app_identifier]
            logger.info("Removed command %r for %s", command, app_identifier)
            return True

    def clear(self) -> None:
        with self._lock:
            self._apps.clear()
        logger.info("Catalog cleared")

    # ----- Lookup -----

    def get(self, app_identifier: str, command: str) -> Optional[Demonstration]:
        with self._lock:
            return self._apps.get(app_identifier, {}).get(command)

    def find_best_match(self, phrase: str, app_identifier: str) -> Optional[Demonstration]:
        """
        Return the demonstration of ``app_identifier`` whose command is closest
        to ``phrase`` by edit distance, with ``match_distance`` set on it.

        Ties go to the command inserted first. No threshold is applied here.
        """
        with self._lock:
            scope = self._apps.get(app_identifier)
            if not scope:
                logger.debug("No demonstrations for %s", app_identifier)
                return None

            best: Optional[Demonstration] = None
            best_distance = 0
            for command, demo in scope.items():
                d = distance(phrase, command)
                if best is None or d < best_distance:
                    best = demo
                    best_distance = d

            best.match_distance = best_distance
            logger.debug("Best match for %r in %s: %r (distance=%d)",
                         phrase, app_identifier, best.command, best_distance)
            return best

    def apps(self) -> List[str]:
        with self._lock:
            return list(self._apps.keys())

    def commands(self, app_identifier: str) -> List[str]:
        with self._lock:
            return list(self._apps.get(app_identifier, {}).keys())

    def count(self, app_identifier: Optional[str] = None) -> int:
        with self._lock:
            if app_identifier is not None:
                return len(self._apps.get(app_identifier, {}))
            return sum(len(scope) for scope in self._apps.values())

    def __len__(self) -> int:
        return self.count()

    def __iter__(self) -> Iterator[Demonstration]:
        with self._lock:
            snapshot = [demo for scope in self._apps.values() for demo in scope.values()]
        return iter(snapshot)

    # ----- Serialisation -----

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "updated_at": _now_iso(),
            "demonstrations": [demo.to_dict() for demo in self],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DemonstrationCatalog:
        """Build a catalog from the file schema. Malformed records are skipped."""
        catalog = cls()
        if not isinstance(data, dict):
            logger.warning("Catalog data is not a mapping; starting empty")
            return catalog

        version = data.get("version", SCHEMA_VERSION)
        if version != SCHEMA_VERSION:
            logger.warning("Unknown catalog version %r; attempting to load anyway", version)

        for raw in data.get("demonstrations") or []:
            try:
                catalog.add(Demonstration.from_dict(raw))
            except (TypeError, ValueError, AttributeError, KeyError) as exc:
                logger.warning("Skipping malformed demonstration record: %s", exc)
        return catalog


# ===================================================================
# CatalogStore
# ===================================================================

class CatalogStore:
    """Loads and saves a DemonstrationCatalog as a single JSON document."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path is not None else DEFAULT_CATALOG_PATH

    def load(self) -> DemonstrationCatalog:
        """Missing or corrupt content yields an empty catalog."""
        data = _load_json(self.path, default={})
        if not data:
            logger.info("No catalog at %s; starting empty", self.path)
            return DemonstrationCatalog()
        catalog = DemonstrationCatalog.from_dict(data)
        logger.info("Loaded %d demonstrations from %s", len(catalog), self.path)
        return catalog

    def save(self, catalog: DemonstrationCatalog) -> None:
        """
        Atomic write: dump to a sibling ``.tmp`` file, then ``os.replace``.

        Raises:
            PersistenceError: If the catalog cannot be serialised or written.
        """
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(catalog.to_dict(), fh, indent=2, default=str)
            os.replace(str(tmp), str(self.path))
        except (OSError, TypeError, ValueError) as exc:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise PersistenceError(f"Could not save catalog to {self.path}: {exc}") from exc
        logger.debug("Saved %d demonstrations to %s", len(catalog), self.path)

    def export(
        self,
        catalog: DemonstrationCatalog,
        path: Union[str, Path],
        format: str = "json",
    ) -> Path:
        """
        Write the catalog to ``path`` as JSON or YAML.

        Raises:
            ValueError: If the format is not supported.
            PersistenceError: If the file cannot be written.
        """
        fmt = format.lower()
        data = catalog.to_dict()
        if fmt == "json":
            content = json.dumps(data, indent=2, default=str)
        elif fmt == "yaml":
            content = yaml.dump(data, default_flow_style=False, sort_keys=False)
        else:
            raise ValueError(f"Unsupported export format: {format}")

        out = Path(path)
        try:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Could not export catalog to {out}: {exc}") from exc

        logger.info("Exported %d demonstrations to %s", len(catalog), out)
        return out

    def import_file(self, path: Union[str, Path]) -> List[Demonstration]:
        """
        Read demonstrations from a JSON or YAML export.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the suffix is unsupported or the content is invalid.
        """
        src = Path(path)
        if not src.exists():
            raise FileNotFoundError(f"Import file not found: {src}")

        content = src.read_text(encoding="utf-8")
        suffix = src.suffix.lower()
        try:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content)
            elif suffix == ".json":
                data = json.loads(content)
            else:
                raise ValueError(f"Unsupported file type: {suffix}")
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ValueError(f"Could not parse {src}: {exc}") from exc

        if not isinstance(data, dict) or "demonstrations" not in data:
            raise ValueError(f"{src} is not a Voicify catalog export")

        imported = list(DemonstrationCatalog.from_dict(data))
        logger.info("Read %d demonstrations from %s", len(imported), src)
        return imported
