"""Seed the database with sample narratives and characters."""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Tuple

import yaml

from ..models import CharacterSnapshot, Narrative
from ..state import EngineState

DEFAULT_WORLD_PATH = Path(__file__).resolve().parent.parent / "data" / "sample_world.yaml"


def seed_database(path: Path, world: Path = DEFAULT_WORLD_PATH) -> Tuple[int, int]:
    with world.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    state = EngineState(path)
    narratives = [Narrative.from_dict(entry) for entry in data.get("narratives", [])]
    characters = [CharacterSnapshot.from_dict(entry) for entry in data.get("characters", [])]
    for narrative in narratives:
        state.upsert_narrative(narrative)
    for character in characters:
        state.upsert_character(character)
    return len(narratives), len(characters)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the narrative engine database")
    parser.add_argument("db", type=Path, help="Path to SQLite database")
    parser.add_argument("--world", type=Path, default=DEFAULT_WORLD_PATH, help="YAML file to load")
    args = parser.parse_args()
    narratives, characters = seed_database(args.db, args.world)
    print(f"Seeded {narratives} narratives and {characters} characters into {args.db}")


if __name__ == "__main__":  # pragma: no cover - CLI tool
    main()
