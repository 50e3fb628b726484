"""Remote tool calls that drive client-visible state.

The service can call exactly two tools:

  start_analysis()                          -> analyzing = True
  set_user_profile(name, sunSign, rashi)    -> profile = {...}, analyzing = False

Each recognised call is acknowledged with a function response carrying the
call id; a whole batch is acknowledged in one outbound message. Unknown tool
names are logged and get no acknowledgement.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from session_errors import MalformedMessageError

logger = logging.getLogger(__name__)

START_ANALYSIS = "start_analysis"
SET_USER_PROFILE = "set_user_profile"

START_ANALYSIS_RESULT = "Animation started."
SET_USER_PROFILE_RESULT = "Profile set successfully on UI."

# Function declarations sent with the session setup
TOOL_DECLARATIONS = [
    {
        "name": SET_USER_PROFILE,
        "description": "Sets the user profile after analyzing birth details. "
                       "Call this when you have calculated the Sun Sign and Rashi.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "name": {"type": "STRING", "description": "The user's name"},
                "sunSign": {"type": "STRING",
                            "description": "The calculated Sun Sign (e.g., Aries)"},
                "rashi": {"type": "STRING",
                          "description": "The corresponding Hindi Rashi name (e.g., Mesha)"},
            },
            "required": ["name", "sunSign", "rashi"],
        },
    },
    {
        "name": START_ANALYSIS,
        "description": "Triggers the visual analysis animation. Call this immediately "
                       "after the user provides their birth details, before you "
                       "calculate the result.",
        "parameters": {"type": "OBJECT", "properties": {}},
    },
]


@dataclass(frozen=True)
class Profile:
    name: str
    sun_sign: str
    rashi: str

    def to_dict(self) -> dict:
        return {"name": self.name, "sunSign": self.sun_sign, "rashi": self.rashi}


# ── Call variants ──────────────────────────────────────────────────

@dataclass(frozen=True)
class StartAnalysis:
    call_id: str
    name: str = START_ANALYSIS


@dataclass(frozen=True)
class SetUserProfile:
    call_id: str
    profile: Profile
    name: str = SET_USER_PROFILE


@dataclass(frozen=True)
class UnknownTool:
    call_id: str
    name: str


ToolCall = StartAnalysis | SetUserProfile | UnknownTool


@dataclass(frozen=True)
class FunctionResponse:
    call_id: str
    name: str
    result: str

    def to_dict(self) -> dict:
        return {"id": self.call_id, "name": self.name,
                "response": {"result": self.result}}


def parse_tool_call(call: dict) -> ToolCall:
    """Map one wire `{id, name, args}` entry onto a call variant."""
    if not isinstance(call, dict):
        raise MalformedMessageError(f"Tool call is not an object: {call!r}")
    call_id = call.get("id", "")
    name = call.get("name", "")
    args = call.get("args") or {}

    if name == START_ANALYSIS:
        return StartAnalysis(call_id=call_id)

    if name == SET_USER_PROFILE:
        fields = {}
        for key in ("name", "sunSign", "rashi"):
            value = args.get(key) if isinstance(args, dict) else None
            if not isinstance(value, str):
                raise MalformedMessageError(
                    f"{SET_USER_PROFILE} call {call_id!r} missing string argument '{key}'"
                )
            fields[key] = value
        profile = Profile(name=fields["name"], sun_sign=fields["sunSign"],
                          rashi=fields["rashi"])
        return SetUserProfile(call_id=call_id, profile=profile)

    return UnknownTool(call_id=call_id, name=name)


class ToolCallStateMachine:
    """Holds the analyzing flag and the latest profile.

    on_change(analyzing, profile) fires after every transition.
    """

    def __init__(self, on_change: Callable[[bool, Profile | None], None] | None = None):
        self.analyzing = False
        self.profile: Profile | None = None
        self._on_change = on_change or (lambda analyzing, profile: None)

    def apply(self, call: ToolCall) -> FunctionResponse | None:
        """Apply one call; returns its acknowledgement, or None if unrecognised."""
        if isinstance(call, StartAnalysis):
            self.analyzing = True
            self._on_change(self.analyzing, self.profile)
            return FunctionResponse(call.call_id, call.name, START_ANALYSIS_RESULT)

        elif isinstance(call, SetUserProfile):
            self.profile = call.profile
            self.analyzing = False
            self._on_change(self.analyzing, self.profile)
            logger.info("Profile set: %s / %s / %s", call.profile.name,
                        call.profile.sun_sign, call.profile.rashi)
            return FunctionResponse(call.call_id, call.name, SET_USER_PROFILE_RESULT)

        else:
            logger.warning("Ignoring unknown tool call %r (id=%s)", call.name, call.call_id)
            return None

    def handle_batch(self, calls: list) -> list[FunctionResponse]:
        """Process wire calls in order; malformed or unknown calls are skipped."""
        responses = []
        for raw in calls:
            try:
                call = parse_tool_call(raw)
            except MalformedMessageError as e:
                logger.warning("Skipping malformed tool call: %s", e.message)
                continue
            response = self.apply(call)
            if response is not None:
                responses.append(response)
        return responses

    def reset(self):
        """Drop the analyzing flag (interrupt/teardown). The profile stays."""
        if self.analyzing:
            self.analyzing = False
            self._on_change(self.analyzing, self.profile)
