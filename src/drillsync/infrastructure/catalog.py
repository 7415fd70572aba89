"""
Exercise catalog loader.

The catalog is the universe of drillable keys for a course, used by the
discover policy and to resolve keys into renderable items. Format:

    modules:
      - number: 1
        name: Basics
        exercises:
          - id: loop
            label: Loops
            category: warmup
            variants: [v1, v2]

Each variant becomes its own key (``m1_loop_v1``); an exercise without
variants is keyed ``m1_loop``.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from drillsync.domain.models import QueueItem

logger = logging.getLogger(__name__)


def parse_catalog(data: Any) -> dict[str, QueueItem]:
    items: dict[str, QueueItem] = {}
    if not isinstance(data, dict):
        return items

    for module in data.get("modules") or []:
        if not isinstance(module, dict) or "number" not in module:
            continue
        try:
            number = int(module["number"])
        except (TypeError, ValueError):
            logger.warning(f"Skipping catalog module with invalid number {module['number']!r}")
            continue
        module_name = module.get("name") or f"Module {number}"

        for exercise in module.get("exercises") or []:
            if not isinstance(exercise, dict) or not exercise.get("id"):
                continue
            problem = str(exercise["id"])
            base = f"m{number}_{problem}"
            label = exercise.get("label") or problem
            category = exercise.get("category")
            variants = exercise.get("variants") or [None]

            for variant in variants:
                key = f"{base}_{variant}" if variant else base
                items[key] = QueueItem(
                    key=key,
                    label=f"{module_name}: {label}",
                    module=number,
                    category=category,
                    problem=problem,
                    variant=str(variant) if variant else None,
                    content=exercise,
                )
    return items


def load_catalog(path: Path) -> dict[str, QueueItem]:
    """Read a YAML catalog file. Returns an empty catalog if it is unreadable."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load catalog {path}: {e}")
        return {}
    items = parse_catalog(data)
    logger.debug(f"Loaded {len(items)} catalog entries from {path}")
    return items
