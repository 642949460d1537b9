#!/usr/bin/env python3
"""
Terminal chat against a running backend (uvicorn tripmate.main:app).

Shows tool calls as they start and finish and streams the answer. Ctrl+C
while an answer is streaming stops it and keeps the partial text; commands:
/regen regenerates the last answer, /plain toggles the non-agent path,
/quit exits.

    python scripts/chat_cli.py
    API_BASE=http://host:8000 python scripts/chat_cli.py
"""

import asyncio
import signal
import sys
import uuid
from pathlib import Path

# Project root on path so "tripmate" resolves without installing
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from tripmate.client.chat_client import ChatApiClient
from tripmate.client.reducer import ChatSession
from tripmate.core import session_store
from tripmate.schemas.events import ContentEvent, ErrorEvent, ToolEndEvent, ToolStartEvent


def _render(message, event) -> None:
    if isinstance(event, ContentEvent):
        print(event.content, end="", flush=True)
    elif isinstance(event, ToolStartEvent):
        print(f"\n  [{event.display_name}] ...", flush=True)
    elif isinstance(event, ToolEndEvent):
        status = f"failed: {event.error}" if event.error else "done"
        print(f"  [{event.name}] {status}", flush=True)
    elif isinstance(event, ErrorEvent):
        print(f"\n  (error: {event.message})", flush=True)


async def _run_turn(start) -> None:
    handle = start()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, handle.cancel)
    except (NotImplementedError, RuntimeError):
        pass
    try:
        await handle.wait()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
    if handle.message.status == "cancelled":
        print("\n  (stopped)", end="")
    print()


async def main() -> None:
    client = ChatApiClient()
    use_agent = True

    def send(message, history, token):
        return client.stream_chat(message, history, token, use_agent=use_agent)

    conversation_id = uuid.uuid4().hex
    session = ChatSession(send, persist=session_store.persist_hook(conversation_id), on_event=_render)
    print("Tripmate. Type a question, /regen, /plain or /quit.")
    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, "\n> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line == "/quit":
                break
            if line == "/plain":
                use_agent = not use_agent
                print(f"agent mode: {'on' if use_agent else 'off'}")
                continue
            if line == "/regen":
                last = next((m for m in reversed(session.messages) if m.role == "assistant"), None)
                if last is None:
                    print("nothing to regenerate")
                    continue
                turn = lambda: session.regenerate(last.id)
            else:
                turn = lambda: session.start(line)
            await _run_turn(turn)
    finally:
        await client.aclose()
        stored = session_store.get_messages(conversation_id)
        print(f"\n{len(stored)} answers kept this session.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
