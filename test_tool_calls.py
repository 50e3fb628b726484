#!/usr/bin/env python3
"""Tests for the tool-call state machine.

Tests: start_analysis / set_user_profile transitions, acknowledgements,
       unknown and malformed calls, batch ordering, declarations.

Run: python3 test_tool_calls.py
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

PASSED = 0
FAILED = 0
ERRORS = []

ASHA = {"name": "Asha", "sunSign": "Leo", "rashi": "Simha"}


def describe(name):
    """Decorator to register a named test."""
    def decorator(fn):
        fn._test_name = name
        return fn
    return decorator


def run_test(fn):
    global PASSED, FAILED
    name = getattr(fn, '_test_name', fn.__name__)
    try:
        if asyncio.iscoroutinefunction(fn):
            asyncio.run(fn())
        else:
            fn()
        PASSED += 1
        print(f"  PASS: {name}")
    except AssertionError as e:
        FAILED += 1
        ERRORS.append((name, str(e)))
        print(f"  FAIL: {name} -- {e}")
    except Exception as e:
        FAILED += 1
        ERRORS.append((name, f"{type(e).__name__}: {e}"))
        print(f"  ERROR: {name} -- {type(e).__name__}: {e}")


def make_machine():
    from tool_calls import ToolCallStateMachine
    changes = []
    machine = ToolCallStateMachine(on_change=lambda a, p: changes.append((a, p)))
    return machine, changes


# ======================================================================
# Test Group 1: Parsing
# ======================================================================

@describe("parse_tool_call maps names onto variants")
def test_parse_variants():
    from tool_calls import (Profile, SetUserProfile, StartAnalysis, UnknownTool,
                            parse_tool_call)
    assert parse_tool_call({"id": "a", "name": "start_analysis"}) == StartAnalysis("a")
    call = parse_tool_call({"id": "b", "name": "set_user_profile", "args": ASHA})
    assert isinstance(call, SetUserProfile)
    assert call.profile == Profile("Asha", "Leo", "Simha")
    unknown = parse_tool_call({"id": "c", "name": "book_flight", "args": {}})
    assert isinstance(unknown, UnknownTool) and unknown.name == "book_flight"


@describe("set_user_profile without rashi is malformed")
def test_parse_missing_arg():
    from tool_calls import parse_tool_call
    from session_errors import MalformedMessageError
    try:
        parse_tool_call({"id": "x", "name": "set_user_profile",
                         "args": {"name": "Asha", "sunSign": "Leo"}})
    except MalformedMessageError as e:
        assert "rashi" in e.message
    else:
        raise AssertionError("expected MalformedMessageError")


# ======================================================================
# Test Group 2: Transitions
# ======================================================================

@describe("start_analysis sets analyzing and acknowledges with the call id")
def test_start_analysis():
    machine, changes = make_machine()
    responses = machine.handle_batch([{"id": "call-1", "name": "start_analysis", "args": {}}])
    assert machine.analyzing is True
    assert len(responses) == 1
    assert responses[0].to_dict() == {
        "id": "call-1", "name": "start_analysis",
        "response": {"result": "Animation started."},
    }
    assert changes == [(True, None)]


@describe("set_user_profile stores the profile and clears analyzing, whatever came before")
def test_set_profile_from_any_state():
    from tool_calls import Profile
    for analyzing_before in (False, True):
        machine, _ = make_machine()
        machine.analyzing = analyzing_before
        machine.profile = Profile("Old", "Aries", "Mesha")
        machine.handle_batch([{"id": "p", "name": "set_user_profile", "args": ASHA}])
        assert machine.profile == Profile("Asha", "Leo", "Simha")
        assert machine.profile.to_dict() == ASHA
        assert machine.analyzing is False


@describe("analyzing stays true until a profile arrives")
def test_analyzing_persists():
    machine, _ = make_machine()
    machine.handle_batch([{"id": "1", "name": "start_analysis"}])
    machine.handle_batch([{"id": "2", "name": "something_else"}])
    assert machine.analyzing is True
    machine.handle_batch([{"id": "3", "name": "set_user_profile", "args": ASHA}])
    assert machine.analyzing is False


@describe("Latest profile wins")
def test_latest_profile_wins():
    machine, _ = make_machine()
    machine.handle_batch([
        {"id": "1", "name": "set_user_profile", "args": ASHA},
        {"id": "2", "name": "set_user_profile",
         "args": {"name": "Ravi", "sunSign": "Aries", "rashi": "Mesha"}},
    ])
    assert machine.profile.name == "Ravi"


# ======================================================================
# Test Group 3: Batches
# ======================================================================

@describe("Batch responses keep call order and ids")
def test_batch_order():
    machine, _ = make_machine()
    responses = machine.handle_batch([
        {"id": "first", "name": "start_analysis"},
        {"id": "second", "name": "set_user_profile", "args": ASHA},
    ])
    assert [r.call_id for r in responses] == ["first", "second"]
    assert responses[1].result == "Profile set successfully on UI."


@describe("Unknown tools get no acknowledgement and change nothing")
def test_unknown_ignored():
    machine, changes = make_machine()
    responses = machine.handle_batch([{"id": "u", "name": "launch_rocket", "args": {}}])
    assert responses == []
    assert changes == []
    assert machine.analyzing is False and machine.profile is None


@describe("A malformed call is skipped, the rest of the batch still runs")
def test_malformed_skipped():
    machine, _ = make_machine()
    responses = machine.handle_batch([
        {"id": "bad", "name": "set_user_profile", "args": {"name": "Asha"}},
        "not-a-call",
        {"id": "ok", "name": "start_analysis"},
    ])
    assert [r.call_id for r in responses] == ["ok"]
    assert machine.profile is None
    assert machine.analyzing is True


@describe("reset() drops analyzing but keeps the profile")
def test_reset():
    machine, changes = make_machine()
    machine.handle_batch([{"id": "p", "name": "set_user_profile", "args": ASHA},
                          {"id": "a", "name": "start_analysis"}])
    machine.reset()
    assert machine.analyzing is False
    assert machine.profile.name == "Asha"
    assert changes[-1][0] is False


@describe("Tool declarations describe both tools with required profile fields")
def test_declarations():
    from tool_calls import TOOL_DECLARATIONS
    by_name = {d["name"]: d for d in TOOL_DECLARATIONS}
    assert set(by_name) == {"set_user_profile", "start_analysis"}
    assert by_name["set_user_profile"]["parameters"]["required"] == ["name", "sunSign", "rashi"]
    assert by_name["start_analysis"]["parameters"]["properties"] == {}


# ======================================================================
# Run all tests
# ======================================================================

if __name__ == "__main__":
    print("=" * 60)
    print("Tool Call Tests")
    print("=" * 60)

    tests = [
        obj for name, obj in sorted(globals().items())
        if callable(obj) and hasattr(obj, '_test_name')
    ]

    print(f"\nRunning {len(tests)} tests...\n")

    for fn in tests:
        run_test(fn)

    print(f"\n{'=' * 60}")
    print(f"Results: {PASSED} passed, {FAILED} failed out of {PASSED + FAILED}")

    if ERRORS:
        print(f"\nFailures:")
        for name, err in ERRORS:
            print(f"  - {name}: {err}")

    print("=" * 60)
    sys.exit(0 if FAILED == 0 else 1)
