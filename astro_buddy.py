#!/usr/bin/env python3
"""Terminal front end for an Astro Buddy live session.

Prints the session's signals as they change and reads single-line commands:

  m      toggle mute
  p      toggle pause
  q      end the session
  <text> send as a suggested prompt
"""

import argparse
import asyncio
import logging
import sys
import threading

from event_bus import SignalType
from live_session import LiveSession, SessionState
from persona import Portal, SessionConfig

log = logging.getLogger("astro_buddy")

HELP = "Commands: m = mute, p = pause, q = quit, anything else is sent as a prompt"


def format_signal(evt) -> str | None:
    """One display line per signal, or None for signals not worth printing."""
    p = evt.payload
    if evt.type == SignalType.TALKING.value:
        return "[speaking]" if p.get("talking") else "[listening]"
    if evt.type == SignalType.ANALYZING.value:
        return "[reading the stars...]" if p.get("analyzing") else None
    if evt.type == SignalType.PROFILE.value:
        return f"[profile] {p.get('name')}: {p.get('sunSign')} / {p.get('rashi')}"
    if evt.type == SignalType.TRANSCRIPT.value:
        return f'  "{p["text"]}"' if p.get("text") else None
    if evt.type == SignalType.STATUS.value:
        if "muted" in p:
            return "[muted]" if p["muted"] else "[unmuted]"
        return f"[{p.get('status')}]"
    if evt.type == SignalType.ERROR.value:
        return f"[error] {p.get('message')}"
    return None


def handle_command(session: LiveSession, line: str) -> bool:
    """Apply one command line. Returns False once the session should end."""
    command = line.strip()
    if not command:
        return True
    if command == "m":
        session.toggle_mute()
    elif command == "p":
        session.toggle_pause()
    elif command == "q":
        session.end_session()
        return False
    elif not session.send_suggested_prompt(command):
        print("(not connected, prompt not sent)", flush=True)
    return True


def _stdin_reader(loop, queue):
    """Daemon thread: forward stdin lines to the event loop."""
    try:
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        loop.call_soon_threadsafe(queue.put_nowait, None)
    except RuntimeError:
        pass  # loop closed


async def _command_loop(session, queue):
    while True:
        line = await queue.get()
        if line is None or not handle_command(session, line):
            return


async def run_session(config: SessionConfig) -> LiveSession:
    session = LiveSession(config)

    def print_signal(evt):
        text = format_signal(evt)
        if text:
            print(text, flush=True)

    session.bus.on("*", print_signal)

    queue = asyncio.Queue()
    loop = asyncio.get_running_loop()
    threading.Thread(target=_stdin_reader, args=(loop, queue), daemon=True).start()

    print(f"Astro Buddy - {config.portal.value} portal", flush=True)
    print(HELP, flush=True)

    commands = asyncio.create_task(_command_loop(session, queue))
    try:
        await session.run()
    finally:
        commands.cancel()
    return session


def main():
    parser = argparse.ArgumentParser(description="Astro Buddy live voice session")
    parser.add_argument("--portal", default=None,
                        help="soulmate, casual, friendship or undecided (default: undecided)")
    parser.add_argument("--voice", default=None, help="Prebuilt voice name (default: Kore)")
    parser.add_argument("--model", default=None, help="Live model id")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        portal = Portal.parse(args.portal) if args.portal else None
    except ValueError as e:
        parser.error(str(e))
    config = SessionConfig.from_env(portal=portal, voice=args.voice, model=args.model)

    try:
        session = asyncio.run(run_session(config))
    except KeyboardInterrupt:
        log.info("Interrupted")
        return 0

    if session.state == SessionState.ERRORED:
        print(f"Session failed: {session.error_message}", file=sys.stderr, flush=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
