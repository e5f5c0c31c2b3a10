"""
Diagnostic Channel

One-way reports from the sandboxed document back to the editor session.
Only the sender opened last is trusted; reports from replaced sandboxes,
foreign senders or of an unknown shape are dropped without being counted.
"""

import re
from typing import Callable, Optional, Tuple

from pydantic import ValidationError

from logger import playground_logger
from models import ChannelMessage, Diagnostic

# Stack frames pointing into the generated document, e.g. "at about:srcdoc:14:9"
STACK_LOCATION_PATTERN = re.compile(r'(?:about:srcdoc|<anonymous>):(\d+):(\d+)')


def parse_stack_location(
    stack: Optional[str],
    script_line_offset: int,
    script_line_count: int
) -> Tuple[Optional[int], Optional[int]]:
    """
    Maps the first stack frame inside the user script back to a (line, column)
    of the user's JavaScript. Frames in the wrapper or instrumentation are skipped.

    Returns: (line, column), or (None, None) when no frame points into user code
    """
    if not stack:
        return None, None

    for match in STACK_LOCATION_PATTERN.finditer(stack):
        line = int(match.group(1)) - script_line_offset
        if 1 <= line <= script_line_count:
            return line, int(match.group(2))

    return None, None


def selection_range(source: str, line: int, column: Optional[int] = None) -> Tuple[int, int]:
    """
    Character span to select in the editor for a 1-based (line, column).
    The start is the length of every earlier line plus one newline each,
    moved along by the column; the end is the end of that line.
    """
    lines = source.split("\n")
    line = max(1, min(line, len(lines)))
    line_start = sum(len(text) + 1 for text in lines[:line - 1])
    line_end = line_start + len(lines[line - 1])

    start = line_start + max(0, (column or 1) - 1)
    return min(start, line_end), line_end


class DiagnosticChannel:
    """
    Holds the single live diagnostic of an editor session.

    The message handler (`deliver`) and the session (`post`/`clear`) are the
    only writers; both run on the event loop, so each write is atomic.
    """

    def __init__(self, on_runtime_fault: Optional[Callable[[Diagnostic], None]] = None):
        self.on_runtime_fault = on_runtime_fault
        self.current: Optional[Diagnostic] = None
        self.live_sender: Optional[str] = None
        self.script_line_offset = 0
        self.script_line_count = 0

    def open(self, sender_id: str, script_line_offset: int = 0, script_line_count: int = 0):
        """Trust `sender_id` from now on; every earlier sender becomes stale."""
        self.live_sender = sender_id
        self.script_line_offset = script_line_offset
        self.script_line_count = script_line_count

    def close(self):
        self.live_sender = None

    def clear(self):
        self.current = None

    def post(self, diagnostic: Diagnostic):
        """Synchronous diagnostic (static analysis); overwrites the previous one."""
        self.current = diagnostic

    def deliver(self, sender_id: str, payload) -> bool:
        """
        Handles one message from a sandbox.

        Returns: True when the message became the live diagnostic
        """
        if self.live_sender is None or sender_id != self.live_sender:
            playground_logger.debug(f"Dropped message from stale sender {sender_id}")
            return False

        try:
            message = ChannelMessage.model_validate(payload)
        except ValidationError:
            playground_logger.debug(f"Dropped unrecognised message from {sender_id}: {payload!r}")
            return False

        line, column = parse_stack_location(
            message.stack, self.script_line_offset, self.script_line_count
        )
        diagnostic = Diagnostic(
            message=message.message,
            line=line,
            column=column,
            stack=message.stack or None,
        )
        self.current = diagnostic
        playground_logger.info(f"🐞 Runtime fault from {sender_id}: {diagnostic.message}")

        if self.on_runtime_fault:
            self.on_runtime_fault(diagnostic)
        return True
