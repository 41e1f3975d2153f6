""" Tests for macro handlers and the macro registry. """

import pytest

from scribescript import macros, evaluator, config
from scribescript.core import TypeMismatch
from scribescript.engine import evaluate_text

def test_split_args():
    assert macros.split_args("a; {b; c}; d") == ["a", "{b; c}", "d"]
    assert macros.split_args("gems") == ["gems"]

def test_registry():
    registry = macros.default_registry()
    assert "random" in registry
    assert "RANDOM" in registry
    assert "frobnicate" not in registry
    assert registry.get("frobnicate") is None
    assert {"pick", "roll", "list", "count", "all", "schedule", "cancel", "new"} <= set(registry)
    with pytest.raises(KeyError):
        registry["frobnicate"]

def test_custom_macro(state, defs):
    registry = macros.default_registry()
    registry.register_macro(lambda args, ctx: args[0].upper(), "shout")
    e = evaluator.Evaluator(registry)
    assert evaluate_text("{%shout[hey]}!", state, defs, evaluator=e) == "HEY!"

def test_unknown_macro(state, defs):
    warnings = []
    assert evaluate_text("{%frobnicate[1]}", state, defs, warnings=warnings) == "[Unknown Macro: frobnicate]"
    assert len(warnings) == 1

def test_list_and_count(state, defs):
    assert evaluate_text("{%list[contraband]}", state, defs) == "Amulet, Ruby, Sword"
    assert evaluate_text("{%list[contraband; owned]}", state, defs) == "Ruby, Sword"
    assert evaluate_text("{%list[contraband; owned; .name; and]}", state, defs) == "Ruby and Sword"
    assert evaluate_text("{%count[contraband]}", state, defs) == "3"
    assert evaluate_text("{%count[contraband; has]}", state, defs) == "2"
    assert evaluate_text("{%all[contraband]}", state, defs) == "amulet, ruby, sword"
    assert evaluate_text("{%all[contraband; >0; id; pipe]}", state, defs) == "ruby | sword"

def test_category_ordering(state, defs):
    defs.lookup("sword").ordering = -1
    assert evaluate_text("{%list[contraband]}", state, defs) == "Sword, Amulet, Ruby"

def test_filter_condition(state, defs):
    assert evaluate_text("{%list[contraband; $.level > 5]}", state, defs) == "Sword"
    assert evaluate_text("{%list[contraband; $.level > 1; .plural]}", state, defs) == "Ruby, Swords"

def test_empty_collection(state, defs):
    assert evaluate_text("{%list[nonexistent]}", state, defs) == "nothing"
    assert evaluate_text("{%count[nonexistent]}", state, defs) == "0"
    assert evaluate_text("{%pick[contraband; 1; $.level > 100]}", state, defs) == "nothing"

def test_collection_needs_category(state, defs):
    warnings = []
    assert evaluate_text("{%list[]}", state, defs, warnings=warnings) == "{%list[]}"
    assert len(warnings) == 1

def test_pick(state, defs, rng):
    for _ in range(10):
        picked = evaluate_text("{%pick[contraband; 2]}", state, defs, rng=rng).split(", ")
        assert len(picked) == 2
        assert len(set(picked)) == 2
        assert set(picked) <= {"amulet", "ruby", "sword"}

    assert evaluate_text("{%pick[weapons].name}", state, defs, rng=rng) == "Sword"

def test_roll_owned_only(state, defs, rng):
    seen = set()
    for _ in range(30):
        seen.add(evaluate_text("{%roll[contraband]}", state, defs, rng=rng))
    assert seen <= {"ruby", "sword"}
    rolled = evaluate_text("{%roll[contraband; 5]}", state, defs, rng=rng).split(", ")
    assert len(rolled) == 5

def test_collection_args(state, defs, rng):
    ctx = evaluator.EvaluationContext(state, defs, rng=rng)
    args = macros.parse_collection_args("pick", ["Contraband", "2", "owned", ".name", "newline"], ctx)
    assert args.category == "contraband"
    assert args.count == 2
    assert args.filter == "owned"
    assert args.prop == ".name"
    assert args.separator == "\n"

    args = macros.parse_collection_args("list", ["gems"], ctx)
    assert args.count is None
    assert args.prop == ".name"

    with pytest.raises(TypeMismatch):
        macros.parse_collection_args("list", [], ctx)

def test_collection_size_cap(state, defs, rng):
    config.Settings.Engine.MAX_COLLECTION_SIZE = 2
    warnings = []
    assert evaluate_text("{%count[contraband]}", state, defs, warnings=warnings) == "2"
    assert len(warnings) == 1

def test_random_macro(state, defs):
    assert evaluate_text("{%random[100]}", state, defs, roll=100) == "true"
    assert evaluate_text("{%random[40]}", state, defs, roll=41) == "false"
    assert evaluate_text("{%random[40; invert]}", state, defs, roll=41) == "true"
    assert evaluate_text("{%random[$gold * 3]}", state, defs, roll=36) == "true"

def test_chance_macro(state, defs):
    assert evaluate_text("{%chance[$strength >> 5]}", state, defs) == "60"
    assert evaluate_text("{%chance[$strength >> 5; margin:5]}", state, defs) == "60"
    assert evaluate_text("{%chance[$strength >> 10; 5]}", state, defs) == "0"

def test_choice_macro(state, defs, rng):
    seen = set()
    for _ in range(30):
        seen.add(evaluate_text("{%choice[north; 'the {$sword.name.lower}'; south]}", state, defs, rng=rng))
    assert seen <= {"north", "the sword", "south"}
    assert len(seen) > 1

def test_new_in_text(state, defs):
    assert evaluate_text("{%new[pet_rock; name:Rocky]}", state, defs) == "pet_rock"
    assert "pet_rock" not in state
