from typing import Generator

import pytest
import numpy as np

from scribescript import core, config

# some logging to turn on if we like
#logging.getLogger("scribescript.evaluator").level = logging.DEBUG
#logging.getLogger("scribescript.mutation").level = logging.DEBUG

DEFINITIONS = [
    {"id": "strength", "name": "Strength", "type": "P", "category": "attributes"},
    {"id": "stealth", "name": "Stealth", "type": "P", "category": "attributes"},
    {"id": "gold", "name": "Gold", "type": "C", "category": "currency"},
    {"id": "health", "name": "Health", "type": "C", "max": "{$strength * 2}"},
    {
        "id": "reputation", "name": "Reputation", "type": "P",
        "description": "You are {$.level > 3 : famous | unknown}.",
        "increase_description": "Your fame grows.",
    },
    {"id": "sword", "name": "Sword", "type": "I", "category": "weapons, contraband", "plural_name": "Swords"},
    {"id": "ruby", "name": "Ruby", "type": "I", "category": "contraband, gems"},
    {"id": "amulet", "name": "Amulet", "type": "I", "category": "contraband, gems"},
    {"id": "lockpick", "name": "Lockpick", "type": "I", "category": "tools"},
    {"id": "cloak", "name": "Shadow Cloak", "type": "E", "category": "equipment", "bonus": "$stealth + 2, $strength - 1"},
    {"id": "title", "name": "Title", "type": "S"},
    {"id": "season", "name": "Season", "type": "C"},
    {"id": "cursed", "name": "Cursed Tome", "description": "{$cursed.description}"},
    {"id": "secret", "name": "Secret", "type": "C", "tags": ["hidden"]},
    {"id": "fatigue", "name": "Fatigue", "type": "C", "grind_cap": "{$strength}"},
    {"id": "lore", "name": "Lore", "type": "P", "grind_cap": "3"},
]


@pytest.fixture(autouse=True)
def builtin_config() -> Generator[None, None, None]:
    # tests may change settings, start every test from the built-ins
    config.load_config()
    yield
    config.load_config()

@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(seed=0)

@pytest.fixture
def defs() -> core.DefinitionRegistry:
    return core.DefinitionRegistry.from_dicts(DEFINITIONS)

@pytest.fixture
def state() -> dict[str, core.Quality]:
    return core.load_state({
        "strength": {"qualityId": "strength", "type": "P", "level": 5, "changePoints": 15},
        "gold": {"qualityId": "gold", "type": "C", "level": 12},
        "health": {"qualityId": "health", "type": "C", "level": 8},
        "reputation": {"qualityId": "reputation", "type": "P", "level": 5, "changePoints": 15},
        "sword": {
            "qualityId": "sword", "type": "I", "level": 8,
            "sources": [{"tag": "cave", "count": 5}, {"tag": "market", "count": 3}],
        },
        "ruby": {"qualityId": "ruby", "type": "I", "level": 2},
        "lockpick": {"qualityId": "lockpick", "type": "I", "level": 1},
        "title": {"qualityId": "title", "type": "S", "stringValue": "Squire"},
        "favorite": {"qualityId": "favorite", "type": "S", "stringValue": "sword"},
        "formula": {"qualityId": "formula", "type": "S", "stringValue": "$gold + 1"},
    })
