from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
import yaml


logger = structlog.get_logger(__name__)

SITES_FILENAME = "sites.json"
_YAML_SUFFIXES = (".yaml", ".yml")


@dataclass(frozen=True)
class Target:
    name: str
    url: str


def default_sites_path() -> Path:
    return Path(__file__).resolve().parent.parent / SITES_FILENAME


def _read_document(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in _YAML_SUFFIXES:
        return yaml.safe_load(text)
    return json.loads(text)


def parse_targets(data: Any) -> list[Target]:
    """
    Accepts either ``{"sites": [...]}`` or a bare list of ``{name, url}`` mappings.
    Invalid and duplicate entries are skipped; file order is preserved.
    """
    if isinstance(data, dict):
        data = data.get("sites")
    if not isinstance(data, list):
        logger.error("Site list must be a list or a mapping with a 'sites' list", got=type(data).__name__)
        return []

    targets: list[Target] = []
    seen: set[str] = set()
    for idx, entry in enumerate(data):
        if not isinstance(entry, dict):
            logger.warning("Skipping site entry that is not a mapping", index=idx)
            continue
        name = entry.get("name")
        url = entry.get("url")
        if not isinstance(name, str) or not name.strip() or not isinstance(url, str) or not url.strip():
            logger.warning("Skipping site entry without string name/url", index=idx)
            continue
        name = name.strip()
        if name in seen:
            logger.warning("Skipping duplicate site name", index=idx, name=name)
            continue
        seen.add(name)
        targets.append(Target(name=name, url=url.strip()))
    return targets


def load_targets(path: Path | str | None = None) -> list[Target]:
    """Load the configured sites once. Any load failure degrades to an empty list."""
    p = Path(path) if path is not None else default_sites_path()
    try:
        data = _read_document(p)
    except FileNotFoundError:
        logger.error("Site list not found", path=str(p))
        return []
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        logger.error("Error loading site list", path=str(p), error=f"{type(e).__name__}: {e}")
        return []

    targets = parse_targets(data)
    logger.info("Loaded site list", path=str(p), count=len(targets))
    return targets
