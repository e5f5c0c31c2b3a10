"""
Shared fixtures. Environment is set before any project module reads it.
"""
import os

os.environ.setdefault("USE_MOCK_SERVICES", "true")
os.environ.setdefault("REQUIRE_AUTH", "true")
os.environ["LOG_FILE_PATH"] = ""  # console logging only while testing

import asyncio
import re
from typing import List, Optional

import pytest

from data_service_mock import InMemoryDataService
from models import Challenge
from sandbox import RenderedDocument, SandboxError

THROW_PATTERN = re.compile(r'throw new Error\("([^"]*)"\)')


class FakeSandbox:
    """
    Stands in for PlaywrightSandbox without a browser.

    - syntax check: unbalanced parentheses or braces are a SyntaxError
    - render: a `throw new Error("...")` in the user script is reported back
      asynchronously with a stack frame pointing at its document line
    """

    def __init__(self, fault_delay: float = 0.01, fail_render: bool = False):
        self.fault_delay = fault_delay
        self.fail_render = fail_render
        self.rendered: List[RenderedDocument] = []
        self.senders: List[str] = []
        self.syntax_checks: List[str] = []
        self.discarded = 0
        self.report = None

    async def check_syntax(self, source: str) -> Optional[str]:
        self.syntax_checks.append(source)
        if source.count("(") != source.count(")") or source.count("{") != source.count("}"):
            return "SyntaxError: Unexpected token '{'"
        return None

    async def render(self, document: RenderedDocument, sender_id: str, report):
        if self.fail_render:
            raise SandboxError("Sandbox failed to render: browser crashed")
        self.rendered.append(document)
        self.senders.append(sender_id)
        self.report = report

        lines = document.html.split("\n")
        for number in range(document.script_line_offset + 1, document.script_line_offset + document.script_line_count + 1):
            match = THROW_PATTERN.search(lines[number - 1])
            if match:
                payload = {
                    "type": "playground_error",
                    "message": match.group(1),
                    "stack": f"Error: {match.group(1)}\n    at about:srcdoc:{number}:{match.start() + 1}",
                }
                asyncio.get_running_loop().call_later(self.fault_delay, report, sender_id, payload)
                break

    async def discard(self):
        self.discarded += 1

    def send(self, payload, sender_id: Optional[str] = None):
        """Deliver a message as if posted by a sandbox (the latest one by default)."""
        return self.report(sender_id or self.senders[-1], payload)


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


@pytest.fixture
def data_service():
    return InMemoryDataService()


@pytest.fixture
def challenge():
    return Challenge(
        id="js-click-counter",
        title="Click Counter",
        description="Count clicks.",
        level="intermediate",
        category="javascript",
        starter_html='<button id="add">Add</button>',
        starter_css="button {\n  color: red;\n}",
        starter_js="const button = document.getElementById('add');",
        order_index=1,
    )
