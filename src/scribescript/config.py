""" Engine settings

Defaults come from `scribescript/data/config.toml`. An override file can be
merged on top with `load_config`, after which `config.Settings` holds the
result as nested namespaces. Modules read `config.Settings` at call time.
"""

import toml # type: ignore
import importlib.resources
import types
from typing import Dict, Optional, Any, List, TextIO

def merge(a:Dict[str, Any], b:Dict[str, Any], path:Optional[List[str]]=None) -> Dict[str, Any]:
    """ recursively merges override b into a

    b[key] wins when key is in both, but only if the values have the same
    type. A mismatch (say a number replaced by a string) raises ValueError
    naming the dotted key.

    inspired by https://stackoverflow.com/a/51653724/553580
    """

    if path is None: path = []
    for key in b:
        if key in a:
            if isinstance(a[key], dict) and isinstance(b[key], dict):
                merge(a[key], b[key], path + [str(key)])
            elif a[key].__class__ == b[key].__class__:
                a[key] = b[key]
            else:
                raise ValueError('Conflict at %s' % '.'.join(path + [str(key)]))
        else:
            a[key] = b[key]
    return a

def validate(config:Dict[str, Any]) -> None:
    """ Rejects settings the challenge curve and the scheduler cannot use. """
    challenge = config["Challenge"]
    if not challenge["MIN"] <= challenge["PIVOT"] <= challenge["MAX"]:
        raise ValueError(f'Challenge.PIVOT {challenge["PIVOT"]} must lie in [{challenge["MIN"]}, {challenge["MAX"]}]')
    roll = config["Roll"]
    if roll["LOW"] > roll["HIGH"]:
        raise ValueError(f'Roll.LOW {roll["LOW"]} is above Roll.HIGH {roll["HIGH"]}')
    scheduler = config["Scheduler"]
    if scheduler["DEFAULT_UNIT"] not in scheduler["UNITS"]:
        raise ValueError(f'Scheduler.DEFAULT_UNIT "{scheduler["DEFAULT_UNIT"]}" is not one of Scheduler.UNITS')
    if any(ms <= 0 for ms in scheduler["UNITS"].values()):
        raise ValueError("Scheduler.UNITS must all be positive")
    if config["Engine"]["MAX_RECURSION_DEPTH"] < 1:
        raise ValueError("Engine.MAX_RECURSION_DEPTH must be at least 1")

def dict_to_simplenamespace(d:Dict[str, Any]) -> types.SimpleNamespace:
    """ Converts sections to SimpleNamespaces.

    UPPERCASE tables (`UNITS`, `SEPARATORS`) stay dicts because their keys
    are looked up with strings from authored content.
    """
    d = d.copy()
    for key in d:
        if isinstance(d[key], dict) and not key.isupper():
            d[key] = dict_to_simplenamespace(d[key])

    return types.SimpleNamespace(**d)

def load_config(config_file:Optional[TextIO]=None) -> types.SimpleNamespace:
    config = toml.loads(importlib.resources.files("scribescript.data").joinpath("config.toml").read_text())
    if config_file:
        merge(config, toml.load(config_file))
    validate(config)

    global Settings
    Settings = dict_to_simplenamespace(config)

    return Settings

# reloading with an override file is fine, but start from the defaults
Settings = load_config()
