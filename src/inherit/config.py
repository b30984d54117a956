from dataclasses import dataclass
from enum import Enum, auto


class InertOverridePolicy(Enum):
    WARN = auto()
    """
    Accept the declaration, leave the inherited routine in effect and emit an
    ``InertOverrideWarning``.
    """

    ERROR = auto()
    """
    Reject the declaration with an ``InertOverrideError``.
    """


@dataclass(kw_only=True, frozen=True, slots=True, weakref_slot=True)
class ResolutionConfig:
    inert_override: InertOverridePolicy = InertOverridePolicy.WARN
    """
    What happens when a unit declares a routine at a key whose inherited
    override permission is false.
    """

    synthetic_prefix: str = "arg_"
    """
    Prefix of the positional names generated for parameters that cannot be
    forwarded as they are written (wildcards and destructuring patterns).
    """

    delegate_withheld: bool = True
    """
    Whether a base routine whose body calls a routine withheld by the base is
    delegated instead of copied.

    A withheld routine is never emitted in the extension, so a copied body that
    calls it would not resolve there.
    """


DEFAULT_CONFIG = ResolutionConfig()
