from __future__ import annotations

import json
import random
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent / "content_packs"


def _load_json(path: Path, fallback):
    if not path.exists():
        return fallback
    return json.loads(path.read_text(encoding="utf-8-sig"))


def load_oracle_pack(pack_key: str = "default") -> dict:
    themed_file = BASE_DIR / f"oracle_{pack_key or 'default'}.json"
    if not themed_file.exists():
        themed_file = BASE_DIR / "oracle_default.json"
    return _load_json(themed_file, {})


def load_leisure_catalog() -> list[dict]:
    return _load_json(BASE_DIR / "leisure.json", [])


def narrative_line(pack: dict, key: str, rng: random.Random | None, fallback: str) -> str:
    lines = pack.get(key) or []
    if not lines:
        return fallback
    return (rng or random.Random()).choice(lines)
