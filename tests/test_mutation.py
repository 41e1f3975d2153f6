""" Tests for applying effects to quality state. """

import pytest

from scribescript import mutation
from scribescript.core import QualityType, ParseError, dump_state
from scribescript.engine import apply_effect, evaluate_text
from scribescript.scheduler import EventSchedule

def tags(quality):
    return [(s.tag, s.count) for s in quality.sources]

def test_statement_parse():
    statement = mutation.Statement.parse("$sword[source:cave] += 2")
    assert statement.sigil == "$"
    assert statement.name == "sword"
    assert statement.bracket == "source:cave"
    assert statement.rest.strip() == "+= 2"

    statement = mutation.Statement.parse("gold ++")
    assert statement.sigil == ""
    assert statement.bracket is None

    with pytest.raises(ParseError):
        mutation.Statement.parse("$sword[source:cave += 2")

def test_metadata_parse():
    metadata = mutation.Metadata.parse("source:Found in a cave, desc:You found it., hidden")
    assert metadata.source == "Found in a cave"
    assert metadata.desc == "You found it."
    assert metadata.hidden

    with pytest.raises(ParseError):
        mutation.Metadata.parse("colour:red")

def test_simple_changes(state, defs):
    result = apply_effect("$gold += 10", state, defs)
    assert state["gold"].level == 22
    assert len(result.mutations) == 1
    m = result.mutations[0]
    assert m.quality_id == "gold"
    assert m.level_before == 12
    assert m.level_after == 22
    assert m.change_text == "Gold increased."
    assert m.scope == "character"

    apply_effect("$gold ++, gold --, $gold *= 2, $gold -= 4", state, defs)
    assert state["gold"].level == 40

    result = apply_effect("$gold = 0", state, defs)
    assert state["gold"].level == 0
    assert result.mutations[0].change_text == "Gold decreased."

def test_statements_apply_in_order(state, defs):
    apply_effect("$gold = 5, $gold += {$gold * 2}", state, defs)
    assert state["gold"].level == 15

    apply_effect("$ruby = $gold, $gold = 1", state, defs)
    assert state["ruby"].level == 15
    assert state["gold"].level == 1

def test_failed_statement_does_not_stop_the_rest(state, defs):
    result = apply_effect("$mystery += 1, $gold += 1, $title += 1, $gold /= 0, $gold += 1", state, defs)
    assert state["gold"].level == 14
    assert "mystery" not in state
    assert state["title"].string_value == "Squire"
    assert len(result.warnings) == 3
    assert len(result.mutations) == 2

def test_bad_syntax_warns(state, defs):
    result = apply_effect("$gold, $gold +=, $gold ++ 2, %pick[gems]", state, defs)
    assert state["gold"].level == 12
    assert len(result.warnings) == 4
    assert result.mutations == []

def test_create_defined_quality(state, defs):
    apply_effect("$stealth += 3", state, defs)
    assert state["stealth"].type == QualityType.PYRAMIDAL
    assert state["stealth"].change_points == 3
    assert state["stealth"].level == 2

    result = apply_effect("$amulet -= 2", state, defs)
    assert "amulet" not in state
    assert result.mutations == []

def test_string_assignment(state, defs):
    result = apply_effect("$title = 'Knight of the Vale'", state, defs)
    assert state["title"].string_value == "Knight of the Vale"
    assert result.mutations[0].string_value == "Knight of the Vale"
    assert result.mutations[0].change_text == "Title is now Knight of the Vale"

    apply_effect("$title = $favorite.capital", state, defs)
    assert state["title"].string_value == "Sword"

def test_quoted_commas(state, defs):
    apply_effect("$title = 'Bold, Brave', $gold += 1", state, defs)
    assert state["title"].string_value == "Bold, Brave"
    assert state["gold"].level == 13

def test_change_text(state, defs):
    # braces in a statement render before it applies
    result = apply_effect("$gold[desc:You had {$gold} coins.] += 3", state, defs)
    assert state["gold"].level == 15
    assert result.mutations[0].change_text == "You had 12 coins."

    result = apply_effect("$reputation += 6", state, defs)
    assert state["reputation"].level == 6
    assert result.mutations[0].change_text == "Your fame grows."

    result = apply_effect("$gold[hidden] += 1, $secret = 1", state, defs)
    assert result.mutations[0].hidden
    assert result.mutations[1].hidden

def test_max_level(state, defs):
    apply_effect("$health += 5", state, defs)
    assert state["health"].level == 10

    apply_effect("$strength = 7, $health += 5", state, defs)
    assert state["health"].level == 14

def test_sources_and_pruning(state, defs):
    result = apply_effect("$sword -= 4", state, defs)
    assert state["sword"].level == 4
    assert tags(state["sword"]) == [("cave", 1), ("market", 3)]
    assert result.mutations[0].level_before == 8

    apply_effect("$ruby[source:market] += 2", state, defs)
    assert state["ruby"].level == 4
    assert tags(state["ruby"]) == [("market", 2)]

    apply_effect("$ruby -= 3", state, defs)
    assert state["ruby"].level == 1
    assert tags(state["ruby"]) == [("market", 1)]

def test_source_consumed_in_effect(state, defs):
    apply_effect("$title = $sword.source", state, defs)
    assert state["title"].string_value == "market"
    assert state["sword"].level == 8
    assert tags(state["sword"]) == [("cave", 5), ("market", 2)]
    assert state["sword"].unsourced == 1

def test_all_category_is_idempotent(state, defs):
    apply_effect("$all[contraband] = 0", state, defs)
    assert state["sword"].level == 0
    assert state["sword"].sources == []
    assert state["ruby"].level == 0
    assert "amulet" not in state
    assert state["lockpick"].level == 1
    assert state["gold"].level == 12

    before = dump_state(state)
    apply_effect("$all[contraband] = 0", state, defs)
    assert dump_state(state) == before

def test_batch_macros(state, defs, rng):
    apply_effect("%all[contraband; owned] += 1", state, defs)
    assert state["sword"].level == 9
    assert state["ruby"].level == 3
    assert "amulet" not in state

    apply_effect("%pick[contraband; 1; owned] = 0", state, defs, rng=rng)
    assert (state["sword"].level == 0) != (state["ruby"].level == 0)

def test_world_scope(state, defs):
    world = {}
    result = apply_effect("#season = 3", state, defs, world=world)
    assert world["season"].level == 3
    assert "season" not in state
    assert result.mutations[0].scope == "world"
    assert evaluate_text("{#season}", state, defs, world=world) == "3"

def test_alias_target(state, defs):
    apply_effect("@target += 1", state, defs, aliases={"target": "gold"})
    assert state["gold"].level == 13

    result = apply_effect("@nobody += 1", state, defs)
    assert len(result.warnings) == 1

def test_brace_expansion(state, defs):
    apply_effect("{$gold > 10 : $gold -= 2, $ruby += 1 | $gold += 1}", state, defs)
    assert state["gold"].level == 10
    assert state["ruby"].level == 3

    apply_effect("${$favorite} += 1", state, defs)
    assert state["sword"].level == 9

def test_comments_are_ignored(state, defs):
    apply_effect("$gold += 1 // pay the ferryman\n, $ruby += 1{// ghost}", state, defs)
    assert state["gold"].level == 13
    assert state["ruby"].level == 3

def test_new_quality(state, defs):
    result = apply_effect("%new[pet_rock; name:Rocky, weight:3] = 4", state, defs)
    rock = state["pet_rock"]
    assert rock.type == QualityType.PYRAMIDAL
    assert rock.level == 4
    assert rock.change_points == 10
    assert rock.custom_properties == {"name": "Rocky", "weight": 3}
    assert result.mutations[0].change_text == "pet_rock created."
    assert evaluate_text("{$pet_rock.name} weighs {$pet_rock.weight}", state, defs) == "Rocky weighs 3"

def test_new_from_template(state, defs):
    apply_effect("%new[sword_2; sword]", state, defs)
    assert state["sword_2"].type == QualityType.ITEM
    assert state["sword_2"].level == 1
    assert defs.lookup("sword_2").name == "Sword"
    assert defs.lookup("sword_2").in_category("contraband")

def test_new_string_quality(state, defs):
    apply_effect("%new[nickname] = 'Red'", state, defs)
    assert state["nickname"].type == QualityType.STRING
    assert state["nickname"].string_value == "Red"

    result = apply_effect("%new[other] += 1", state, defs)
    assert "other" not in state
    assert len(result.warnings) == 1

def test_schedule(state, defs):
    schedule = EventSchedule()
    result = apply_effect("%schedule[$gold += 5 : 2h]", state, defs, schedule=schedule, now=1000.)
    assert state["gold"].level == 12
    assert len(result.scheduled) == 1
    event = result.scheduled[0]
    assert event.target_quality_id == "gold"
    assert event.op == "+="
    assert event.value == 5
    assert event.trigger_time == 1000. + 2 * 3600000
    assert event.interval_ms == 2 * 3600000
    assert not event.recurring
    assert event.effect == "$gold += 5"
    assert event in schedule

def test_schedule_options(state, defs):
    result = apply_effect("%schedule[$gold[source:bank] += {$gold} : 30m; recur, desc:Interest]", state, defs, now=0.)
    event = result.scheduled[0]
    assert event.recurring
    assert event.interval_ms == 30 * 60000
    assert event.description == "Interest"
    # the value is fixed when scheduled
    assert event.effect == "$gold[source:bank] += 12"

    result = apply_effect("$schedule[$gold ++ : 5]", state, defs, now=0.)
    assert result.scheduled[0].interval_ms == 5 * 60000
    assert result.scheduled[0].effect == "$gold ++"

def test_schedule_unique(state, defs):
    schedule = EventSchedule()
    apply_effect("%schedule[$gold += 1 : 1h; unique]", state, defs, schedule=schedule)
    result = apply_effect("%schedule[$gold += 1 : 1h; unique]", state, defs, schedule=schedule)
    assert len(schedule) == 1
    assert result.scheduled == []

def test_schedule_bad_duration(state, defs):
    result = apply_effect("%schedule[$gold += 1 : soon]", state, defs)
    assert result.scheduled == []
    assert len(result.warnings) == 1

def test_reset_and_update(state, defs):
    schedule = EventSchedule()
    apply_effect("%schedule[$gold += 1 : 1h], %schedule[$gold += 2 : 2h]", state, defs, schedule=schedule)
    assert len(schedule) == 2

    result = apply_effect("%reset[$gold -= 1 : 1h]", state, defs, schedule=schedule)
    assert len(result.cancelled) == 2
    assert len(schedule) == 1
    assert [e.op for e in schedule] == ["-="]

    result = apply_effect("%update[$ruby += 1 : 1h]", state, defs, schedule=schedule)
    assert result.scheduled == []
    assert len(schedule) == 1

    result = apply_effect("%update[$gold += 3 : 1h]", state, defs, schedule=schedule)
    assert len(result.scheduled) == 1
    assert [e.value for e in schedule] == [3]

def test_cancel(state, defs):
    schedule = EventSchedule()
    apply_effect("%schedule[$gold += 1 : 1h], %schedule[$gold += 2 : 2h], %schedule[$gold += 3 : 3h]", state, defs, schedule=schedule)

    result = apply_effect("%cancel[$gold; first 1]", state, defs, schedule=schedule)
    assert [e.value for e in result.cancelled] == [1]

    result = apply_effect("$cancel[$gold; last]", state, defs, schedule=schedule)
    assert [e.value for e in result.cancelled] == [3]

    result = apply_effect("%cancel[$gold]", state, defs, schedule=schedule)
    assert [e.value for e in result.cancelled] == [2]
    assert len(schedule) == 0
    assert result.cancellations[0].mode == "all"

def test_cancel_within_effect(state, defs):
    result = apply_effect("%schedule[$gold += 1 : 1h], %cancel[$gold]", state, defs)
    assert result.scheduled == []
    assert len(result.cancelled) == 1

def test_grind_cap(state, defs):
    apply_effect("$fatigue += 3", state, defs)
    assert state["fatigue"].level == 3
    apply_effect("$fatigue += 4", state, defs)
    assert state["fatigue"].level == 7

    # capped at $strength, increases stop but sets still apply
    result = apply_effect("$fatigue ++", state, defs)
    assert state["fatigue"].level == 7
    assert result.mutations == []
    assert result.warnings == []
    apply_effect("$fatigue = 2", state, defs)
    assert state["fatigue"].level == 2

    apply_effect("$lore = 3", state, defs)
    result = apply_effect("$lore += 10", state, defs)
    assert state["lore"].level == 3
    assert state["lore"].change_points == 6
    assert result.mutations == []

def test_sources_only_on_items(state, defs):
    result = apply_effect("$gold[source:bank] += 3", state, defs)
    assert state["gold"].level == 15
    assert state["gold"].sources == []
    assert len(result.warnings) == 1

    result = apply_effect("$ruby[source:bank] += 1", state, defs)
    assert tags(state["ruby"]) == [("bank", 1)]
    assert result.warnings == []
