""" ScribeScript: the templating and effect language of quality based
narrative content. Renders text, checks conditions, computes challenge
chances and applies effects against a player's qualities. """

from .core import ScribeError, ParseError, UnknownIdentifier, TypeMismatch, RecursionLimitExceeded, InvalidChallengeSyntax, ScheduledTargetMissing
from .core import QualityType, SourceEntry, Quality, QualityDefinition, QualityDefRegistry, DefinitionRegistry, StateMutation, PendingEvent, Cancellation, EffectResult, ChallengeResult, load_state, dump_state
from .evaluator import EvaluationContext, Evaluator, ResolutionRoll
from .scheduler import EventSchedule
from .engine import evaluate_text, evaluate_condition, evaluate_challenge, apply_effect, fire_due_events, Engine, Option, Resolution
