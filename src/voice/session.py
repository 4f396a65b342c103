"""Per-call session state."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

PROMPT_PARAMETER = "prompt"
FIRST_MESSAGE_PARAMETER = "initialScript"


@dataclass(frozen=True)
class SessionState:
    """
    State captured from the Twilio ``start`` event.

    Attributes:
        call_leg_id: Twilio stream SID; every outbound frame carries it
        init_params: Custom parameters attached to the call when it was placed
    """
    call_leg_id: str
    init_params: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.call_leg_id:
            raise ValueError("call_leg_id is required")
        object.__setattr__(self, "init_params", MappingProxyType(dict(self.init_params)))

    @property
    def prompt(self) -> Optional[str]:
        return self.init_params.get(PROMPT_PARAMETER) or None

    @property
    def first_message(self) -> Optional[str]:
        return self.init_params.get(FIRST_MESSAGE_PARAMETER) or None
