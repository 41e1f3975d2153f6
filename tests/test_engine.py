""" Scenario tests for the engine entry points and per-action Engine. """

import numpy as np

from scribescript import engine
from scribescript.core import Quality, QualityType, PendingEvent
from scribescript.engine import Engine, Option
from scribescript.scheduler import EventSchedule

HAGGLE = {
    "id": "haggle",
    "name": "Haggle with the merchant",
    "challenge": "$strength >= 50 [10]",
    "visible_if": "$gold > 0",
    "unlock_if": "$gold >= 10",
    "pass_long": "The merchant relents{40% : , grinning | }.",
    "pass_quality_change": "$gold += 5, $ruby[source:merchant] ++",
    "pass_redirect": "market_square",
    "fail_long": "You are shown the door.",
    "fail_quality_change": "$gold -= 2",
    "fail_move_to": "street",
}

def test_option_from_dict():
    option = Option.from_dict(HAGGLE)
    assert option.id == "haggle"
    assert option.challenge == "$strength >= 50 [10]"
    assert option.pass_redirect == "market_square"
    assert option.fail_redirect is None
    assert option.fail_move_to == "street"

    option = Option.from_dict({"id": "bare", "pass_long": None})
    assert option.pass_long == ""
    assert option.challenge == ""

def test_resolve_option_pass(state, defs):
    state["strength"].level = 55
    e = Engine(state, defs, roll=40)
    resolution = e.resolve_option(Option.from_dict(HAGGLE))
    assert resolution.success
    assert resolution.chance == 80
    assert resolution.roll == 40
    # the outcome text sees the same roll as the challenge
    assert resolution.text == "The merchant relents, grinning."
    assert resolution.redirect == "market_square"
    assert resolution.move_to is None
    assert state["gold"].level == 17
    assert state["ruby"].level == 3
    assert [(s.tag, s.count) for s in state["ruby"].sources] == [("merchant", 1)]
    assert [m.quality_id for m in resolution.mutations] == ["gold", "ruby"]
    assert resolution.warnings == []

def test_resolve_option_fail(state, defs):
    state["strength"].level = 55
    e = Engine(state, defs, roll=81)
    resolution = e.resolve_option(Option.from_dict(HAGGLE))
    assert not resolution.success
    assert resolution.text == "You are shown the door."
    assert resolution.move_to == "street"
    assert resolution.redirect is None
    assert state["gold"].level == 10

def test_resolve_option_without_challenge(state, defs):
    e = Engine(state, defs, rng=np.random.default_rng(seed=0))
    resolution = e.resolve_option(Option("rest", pass_long="You rest.", pass_quality_change="$health ++"))
    assert resolution.success
    assert resolution.chance is None
    assert resolution.roll is None
    assert not e.roll.drawn
    assert resolution.text == "You rest."
    assert state["health"].level == 9

def test_shared_roll_across_fields(state, defs):
    # roll 45: a 10% check fails, a 60% check passes, a chance 70 challenge passes
    e = Engine(state, defs, roll=45)
    assert e.render_text("{10%}") == "false"
    assert e.condition("(!{10%} && {60%})")
    assert e.chance("70") == 70
    resolution = e.resolve_option(Option("try", challenge="70", pass_quality_change="$gold += {%random[60]}"))
    assert resolution.success
    assert resolution.roll == 45

def test_visibility_and_unlock(state, defs):
    e = Engine(state, defs)
    option = Option.from_dict(HAGGLE)
    assert e.is_visible(option)
    assert e.is_unlocked(option)

    state["gold"].level = 5
    assert e.is_visible(option)
    assert not e.is_unlocked(option)

    assert e.is_visible(Option("open"))
    assert e.is_unlocked(Option("open", unlock_if="// always"))

def test_aliases_are_per_field(state, defs):
    e = Engine(state, defs)
    assert e.render_text("{@x = 3}{@x}") == "3"
    assert e.render_text("[{@x}]") == "[]"
    assert len(e.warnings) == 1

def test_effective_level(state, defs):
    state["stealth"] = Quality("stealth", QualityType.PYRAMIDAL, level=3, change_points=6)
    e = Engine(state, defs, equipment={"body": "cloak", "hands": None})
    assert e.effective_level("stealth") == 5
    assert e.effective_level("strength") == 4
    assert e.effective_level("gold") == 12

    world = {"season": Quality("season", QualityType.COUNTER, level=2)}
    e = Engine(state, defs, world=world)
    assert e.effective_level("season") == 2
    assert e.effective_level("stealth") == 3
    assert e.effective_level("missing") == 0

def test_render_content(state, defs):
    e = Engine(state, defs)
    storylet = {
        "id": "{not rendered}",
        "deck": "{also raw}",
        "name": "The {$sword.name} Shop",
        "text": "You have {$gold} gold.",
        "options": [{"id": "buy", "name": "Buy a {$ruby.name.lower}"}],
        "ordering": 3,
    }
    rendered = e.render(storylet)
    assert rendered["id"] == "{not rendered}"
    assert rendered["deck"] == "{also raw}"
    assert rendered["name"] == "The Sword Shop"
    assert rendered["text"] == "You have 12 gold."
    assert rendered["options"] == [{"id": "buy", "name": "Buy a ruby"}]
    assert rendered["ordering"] == 3

def test_apply_effect_empty(state, defs):
    e = Engine(state, defs)
    result = e.apply_effect("")
    assert result.mutations == []
    result = e.apply_effect(None)
    assert result.mutations == []

def test_engine_schedules(state, defs):
    schedule = EventSchedule()
    e = Engine(state, defs, schedule=schedule, now=0.)
    e.apply_effect("%schedule[$gold += 1 : 1h; recur]")
    assert len(schedule) == 1
    assert schedule.next_trigger_time() == 3600000.

def test_fire_due_events(state, defs):
    schedule = EventSchedule()
    engine.apply_effect("%schedule[$gold += 1 : 1h; recur], %schedule[$ruby -= 1 : 90m]", state, defs, schedule=schedule, now=0.)

    result = engine.fire_due_events(schedule, state, defs, now=30 * 60000.)
    assert result.mutations == []

    result = engine.fire_due_events(schedule, state, defs, now=2 * 3600000.)
    # the recurring event fires at 1h and again at 2h
    assert state["gold"].level == 14
    assert state["ruby"].level == 1
    assert len(result.mutations) == 3
    assert len(schedule) == 1
    assert schedule.next_trigger_time() == 3 * 3600000.

def test_fire_due_events_skips_missing_targets(state, defs):
    schedule = EventSchedule([
        PendingEvent("vanished", "+=", 1, trigger_time=10.),
        PendingEvent("gold", "+=", 1, trigger_time=20.),
    ])
    result = engine.fire_due_events(schedule, state, defs, now=100.)
    assert state["gold"].level == 13
    assert len(result.warnings) == 1
    assert len(schedule) == 0

def test_fired_events_can_schedule(state, defs):
    schedule = EventSchedule([
        PendingEvent("gold", "", 0, trigger_time=10., effect="$gold += 1, %schedule[$gold += 1 : 1h]"),
    ])
    engine.fire_due_events(schedule, state, defs, now=100.)
    assert state["gold"].level == 13
    assert len(schedule) == 1
    assert schedule.next_trigger_time() == 10. + 3600000

def test_module_entry_points_take_state(state, defs):
    warnings = []
    assert engine.evaluate_text("{$gold}", state, defs, warnings=warnings) == "12"
    assert engine.evaluate_condition("$gold > 5", state, defs)
    result = engine.apply_effect("$gold += 1", state, defs)
    assert engine.evaluate_text("{$gold}", state, defs) == "13"
    assert result.mutations[0].level_after == 13
    assert warnings == []

def test_resolve_option_with_bad_challenge(state, defs):
    e = Engine(state, defs, roll=10)
    option = Option("climb", challenge="$strength >> 5 ; foo:3", pass_long="You make it.")
    resolution = e.resolve_option(option)
    assert resolution.chance == 60
    assert resolution.success
    assert resolution.text == "You make it."
    assert len(e.warnings) == 1

    e = Engine(state, defs, roll=10)
    resolution = e.resolve_option(Option("gamble", challenge="$luck >< 50", fail_long="No luck."))
    assert resolution.chance == 0
    assert not resolution.success
    assert resolution.text == "No luck."
