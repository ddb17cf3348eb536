"""
Error taxonomy for the conversation engine.

None of these are fatal to a session. The engine raises them internally
and converts them into a rejected ActionResult at the process() boundary,
so callers never need a try/except around process().

Classes:
- CoachError: base class, carries a stable `kind` string for results/JSON
- ValidationError: input rejected (empty text, unknown card)
- IllegalActionError: action not legal in the current phase
- UnknownActionError: action string outside the closed vocabulary
- BusyRejection: a suggestion fetch is in flight, try again
- ProviderFailure: Suggestion Provider raised; phase unchanged
- SuggestionProviderError: raised BY providers (wrapped into ProviderFailure)
"""


class CoachError(Exception):
    """Base exception for engine-level, recoverable errors"""
    kind = "error"


class ValidationError(CoachError):
    """Raised when an action's payload is unusable (caller should resubmit)"""
    kind = "validation_error"


class IllegalActionError(CoachError):
    """Raised when an action is not legal for the current phase"""
    kind = "illegal_action"


class UnknownActionError(IllegalActionError):
    """Raised when an action string is not part of the action vocabulary"""
    kind = "unknown_action"


class BusyRejection(CoachError):
    """Raised when an action arrives while a suggestion fetch is outstanding"""
    kind = "busy"


class ProviderFailure(CoachError):
    """Raised when the Suggestion Provider fails; the step is unchanged"""
    kind = "provider_failure"


class SuggestionProviderError(Exception):
    """Raised by Suggestion Provider implementations"""
    pass
