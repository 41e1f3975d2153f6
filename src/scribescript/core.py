""" ScribeScript core data model

Qualities, their definitions, and the records the engine hands back to its
collaborators (state mutations and pending events), along with the error
taxonomy and value coercion. No dependencies on other parts of the engine.
"""

import abc
import enum
import math
import uuid
import logging
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from typing import Optional, Any, Union

logger = logging.getLogger(__name__)

Value = Union[str, int, float, bool]


class ScribeError(Exception):
    """ Base for every content error the engine detects.

    None of these abort rendering of a page: they are raised where detected
    and caught at the field boundary, which degrades and records a warning.
    """
    pass

class ParseError(ScribeError, ValueError):
    def __init__(self, message:str, position:int=-1) -> None:
        super().__init__(message if position < 0 else f'{message} at {position}')
        self.position = position

class UnknownIdentifier(ScribeError):
    pass

class TypeMismatch(ScribeError):
    pass

class RecursionLimitExceeded(ScribeError):
    pass

class InvalidChallengeSyntax(ScribeError):
    pass

class ScheduledTargetMissing(ScribeError):
    pass


def normalize_number(x:Union[int, float]) -> Union[int, float]:
    """ integral floats become ints so they render without a trailing .0 """
    if isinstance(x, float) and math.isfinite(x) and x.is_integer():
        return int(x)
    return x

def to_number(value:Value) -> Union[int, float]:
    """ Best-effort numeric reading of a value.

    Empty text reads as 0. Raises TypeMismatch for any other text that is not
    a number.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return normalize_number(value)
    s = str(value).strip()
    if s == "":
        return 0
    if s.lower() == "true":
        return 1
    if s.lower() == "false":
        return 0
    try:
        return int(s)
    except ValueError:
        pass
    try:
        f = float(s)
    except ValueError:
        raise TypeMismatch(f'"{s}" is not a number') from None
    if not math.isfinite(f):
        raise TypeMismatch(f'"{s}" is not a finite number')
    return normalize_number(f)

def to_text(value:Value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        value = normalize_number(value)
        if isinstance(value, float):
            return f'{value:.6f}'.rstrip("0").rstrip(".")
    return str(value)

def truthy(value:Value) -> bool:
    """ Condition reading: true, or a number above zero. """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value > 0
    s = value.strip()
    if s.lower() == "true":
        return True
    try:
        return float(s) > 0
    except ValueError:
        return False


class QualityType(enum.Enum):
    PYRAMIDAL = "P"
    COUNTER = "C"
    ITEM = "I"
    EQUIPABLE = "E"
    STRING = "S"

    @property
    def is_numeric(self) -> bool:
        return self != QualityType.STRING

    @property
    def tracks_sources(self) -> bool:
        return self in (QualityType.ITEM, QualityType.EQUIPABLE)

    @classmethod
    def parse(cls, value:Union[str, "QualityType"]) -> "QualityType":
        if isinstance(value, QualityType):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls[value.upper()]


class SourceEntry:
    """ How many units of an item came from one tagged source. """

    def __init__(self, tag:str, count:int) -> None:
        self.tag = tag
        self.count = count

    def __eq__(self, other:Any) -> bool:
        if not isinstance(other, SourceEntry):
            return NotImplemented
        return self.tag == other.tag and self.count == other.count

    def __repr__(self) -> str:
        return f'SourceEntry({self.tag!r}, {self.count})'


class Quality:
    """ A typed piece of persistent character (or world) state. """

    def __init__(
            self,
            quality_id:str,
            quality_type:QualityType=QualityType.PYRAMIDAL,
            level:int=0,
            change_points:int=0,
            string_value:str="",
            sources:Optional[list[SourceEntry]]=None,
            custom_properties:Optional[dict[str, Any]]=None,
    ) -> None:
        self.quality_id = quality_id
        self.type = quality_type
        self.level = level
        self.change_points = change_points
        self.string_value = string_value
        self.sources:list[SourceEntry] = sources if sources is not None else []
        self.custom_properties:dict[str, Any] = custom_properties if custom_properties is not None else {}

    @property
    def unsourced(self) -> int:
        """ units of level not attributed to any tagged source """
        return max(0, self.level - sum(s.count for s in self.sources))

    @property
    def value(self) -> Value:
        if self.type == QualityType.STRING:
            return self.string_value
        return self.level

    def copy(self) -> "Quality":
        return Quality(
            self.quality_id, self.type, self.level, self.change_points,
            self.string_value,
            [SourceEntry(s.tag, s.count) for s in self.sources],
            dict(self.custom_properties),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "qualityId": self.quality_id,
            "type": self.type.value,
            "level": self.level,
            "changePoints": self.change_points,
            "stringValue": self.string_value,
            "sources": [{"tag": s.tag, "count": s.count} for s in self.sources],
            "customProperties": dict(self.custom_properties),
        }

    @staticmethod
    def from_dict(data:Mapping[str, Any]) -> "Quality":
        return Quality(
            data["qualityId"],
            QualityType.parse(data.get("type", "P")),
            int(data.get("level", 0)),
            int(data.get("changePoints", 0)),
            data.get("stringValue", ""),
            [SourceEntry(s["tag"], int(s["count"])) for s in data.get("sources", [])],
            dict(data.get("customProperties", {})),
        )

    def __repr__(self) -> str:
        return f'Quality({self.quality_id!r}, {self.type.name}, level={self.level}, cp={self.change_points}, str={self.string_value!r}, sources={self.sources!r})'


QualityState = MutableMapping[str, Quality]


def load_state(data:Mapping[str, Mapping[str, Any]]) -> dict[str, Quality]:
    """ Builds a quality state from its document-store shape. """
    return {qid: Quality.from_dict({"qualityId": qid, **q}) for qid, q in data.items()}

def dump_state(state:Mapping[str, Quality]) -> dict[str, dict[str, Any]]:
    return {qid: q.to_dict() for qid, q in state.items()}


class QualityDefinition:
    """ Authored, read-only description of a quality. """

    def __init__(
            self,
            quality_id:str,
            name:Optional[str]=None,
            quality_type:QualityType=QualityType.PYRAMIDAL,
            category:str="",
            description:str="",
            bonus:str="",
            max:Optional[str]=None,
            grind_cap:Optional[str]=None,
            increase_description:str="",
            decrease_description:str="",
            tags:Optional[Iterable[str]]=None,
            ordering:int=0,
            singular_name:Optional[str]=None,
            plural_name:Optional[str]=None,
            text_variants:Optional[Mapping[str, str]]=None,
            **properties:Any,
    ) -> None:
        self.quality_id = quality_id
        self.name = name if name is not None else quality_id
        self.type = QualityType.parse(quality_type)
        self.category = category
        self.description = description
        self.bonus = bonus
        self.max = max
        # increases stop once the level reaches this (template), sets still apply
        self.grind_cap = grind_cap
        self.increase_description = increase_description
        self.decrease_description = decrease_description
        self.tags = list(tags) if tags else []
        self.ordering = ordering
        self.singular_name = singular_name
        self.plural_name = plural_name
        self.text_variants:dict[str, str] = dict(text_variants) if text_variants else {}
        self.properties:dict[str, Any] = properties

    @property
    def categories(self) -> list[str]:
        return [c.strip().lower() for c in self.category.split(",") if c.strip()]

    def in_category(self, category:str) -> bool:
        return category.strip().lower() in self.categories

    @property
    def hidden(self) -> bool:
        return "hidden" in self.tags

    def get_property(self, prop:str) -> Optional[Any]:
        """ Raw definition field lookup for dotted property access. """
        if prop in self.text_variants:
            return self.text_variants[prop]
        if prop in self.properties:
            return self.properties[prop]
        return None

    def derive(self, quality_id:str, text_variants:Optional[Mapping[str, str]]=None) -> "QualityDefinition":
        """ a copy of this definition under a new id, used as a template """
        variants = dict(self.text_variants)
        variants.update(text_variants or {})
        return QualityDefinition(
            quality_id,
            name=self.name,
            quality_type=self.type,
            category=self.category,
            description=self.description,
            bonus=self.bonus,
            max=self.max,
            grind_cap=self.grind_cap,
            increase_description=self.increase_description,
            decrease_description=self.decrease_description,
            tags=self.tags,
            ordering=self.ordering,
            singular_name=self.singular_name,
            plural_name=self.plural_name,
            text_variants=variants,
            **self.properties,
        )

    @staticmethod
    def from_dict(data:Mapping[str, Any]) -> "QualityDefinition":
        data = dict(data)
        quality_id = data.pop("id")
        quality_type = QualityType.parse(data.pop("type", "P"))
        return QualityDefinition(quality_id, quality_type=quality_type, **data)

    def __repr__(self) -> str:
        return f'QualityDefinition({self.quality_id!r}, {self.type.name}, category={self.category!r})'


class QualityDefRegistry(abc.ABC):
    """ Read interface onto authored quality definitions. """

    @abc.abstractmethod
    def lookup(self, quality_id:str) -> Optional[QualityDefinition]: ...

    @abc.abstractmethod
    def __iter__(self) -> Iterator[QualityDefinition]: ...

    def __contains__(self, quality_id:object) -> bool:
        return isinstance(quality_id, str) and self.lookup(quality_id) is not None

    def in_category(self, category:str) -> list[QualityDefinition]:
        """ definitions in category, sorted by ordering then name """
        defs = [d for d in self if d.in_category(category)]
        defs.sort(key=lambda d: (d.ordering, (d.name or d.quality_id).lower()))
        return defs

    @property
    def can_register(self) -> bool:
        return False

    def register(self, definition:QualityDefinition) -> None:
        raise NotImplementedError(f'{self.__class__.__name__} is read-only')


class DefinitionRegistry(QualityDefRegistry):
    def __init__(self, definitions:Optional[Iterable[QualityDefinition]]=None) -> None:
        self._definitions:dict[str, QualityDefinition] = {}
        for d in definitions or []:
            self._definitions[d.quality_id] = d

    def lookup(self, quality_id:str) -> Optional[QualityDefinition]:
        return self._definitions.get(quality_id)

    def __iter__(self) -> Iterator[QualityDefinition]:
        return iter(list(self._definitions.values()))

    def __len__(self) -> int:
        return len(self._definitions)

    @property
    def can_register(self) -> bool:
        return True

    def register(self, definition:QualityDefinition) -> None:
        self._definitions[definition.quality_id] = definition

    @staticmethod
    def from_dicts(data:Iterable[Mapping[str, Any]]) -> "DefinitionRegistry":
        return DefinitionRegistry(QualityDefinition.from_dict(d) for d in data)


class StateMutation:
    """ One applied change, handed to persistence for atomic commit. """

    def __init__(
            self,
            quality_id:str,
            op:str,
            value:Value,
            level_before:int,
            level_after:int,
            cp_before:int=0,
            cp_after:int=0,
            string_value:Optional[str]=None,
            change_text:str="",
            scope:str="character",
            hidden:bool=False,
    ) -> None:
        self.quality_id = quality_id
        self.op = op
        self.value = value
        self.level_before = level_before
        self.level_after = level_after
        self.cp_before = cp_before
        self.cp_after = cp_after
        self.string_value = string_value
        self.change_text = change_text
        self.scope = scope
        self.hidden = hidden

    def __repr__(self) -> str:
        return f'StateMutation({self.quality_id!r} {self.op} {self.value!r}: {self.level_before}->{self.level_after})'


class PendingEvent:
    """ A deferred quality change, fired later by an external scheduler. """

    def __init__(
            self,
            target_quality_id:str,
            op:str,
            value:Value,
            trigger_time:float,
            recurring:bool=False,
            interval_ms:Optional[int]=None,
            description:str="",
            unique:bool=False,
            effect:Optional[str]=None,
            event_id:Optional[str]=None,
    ) -> None:
        self.id = event_id or uuid.uuid4().hex
        self.target_quality_id = target_quality_id
        self.op = op
        self.value = value
        self.trigger_time = trigger_time
        self.recurring = recurring
        self.interval_ms = interval_ms
        self.description = description
        self.unique = unique
        # the full effect statement to re-apply, including metadata
        self.effect = effect if effect is not None else f'${target_quality_id} {op} {value}'

    def same_timer(self, other:"PendingEvent") -> bool:
        return (
            self.target_quality_id == other.target_quality_id
            and self.op == other.op
            and self.value == other.value
            and self.interval_ms == other.interval_ms
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "targetQualityId": self.target_quality_id,
            "op": self.op,
            "value": self.value,
            "triggerTime": self.trigger_time,
            "recurring": self.recurring,
            "intervalMs": self.interval_ms,
            "description": self.description,
            "effect": self.effect,
        }

    def __repr__(self) -> str:
        return f'PendingEvent({self.target_quality_id!r} {self.op} {self.value!r} @ {self.trigger_time}{" recurring" if self.recurring else ""})'


class Cancellation:
    """ Request to drop pending events for a target quality. """

    def __init__(self, target_quality_id:str, mode:str="all", count:int=1) -> None:
        if mode not in ("all", "first", "last"):
            raise ValueError(f'unknown cancel mode {mode}')
        self.target_quality_id = target_quality_id
        self.mode = mode
        self.count = count

    def __repr__(self) -> str:
        return f'Cancellation({self.target_quality_id!r}, {self.mode}, {self.count})'


class EffectResult:
    def __init__(self) -> None:
        self.mutations:list[StateMutation] = []
        self.scheduled:list[PendingEvent] = []
        self.cancellations:list[Cancellation] = []
        self.cancelled:list[PendingEvent] = []
        self.warnings:list[str] = []


class ChallengeResult:
    def __init__(self, success:bool, chance:int, roll:int, description:str="") -> None:
        self.success = success
        self.chance = chance
        self.roll = roll
        self.description = description

    def __repr__(self) -> str:
        return f'ChallengeResult(success={self.success}, chance={self.chance}, roll={self.roll})'
