"""
Static Analyzer for Editor Source

Cheap, best-effort checks run before anything is rendered:
- CSS brace balance
- HTML tag balance (stack scan, void and self-closing tags ignored)
- JavaScript syntax (parsed as a function body, never called)

The checks flag likely mistakes; they are not parsers.
"""

import re
from typing import Awaitable, Callable, Optional

from models import Diagnostic, SourceBundle

CSS_BRACE_MESSAGE = "Possible CSS brace mismatch detected"
HTML_TAG_MESSAGE = "Possible HTML tag mismatch detected"

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
})

# <name ...>, </name>, <name ... />; doctype and processing instructions never match
TAG_PATTERN = re.compile(r'<(/?)([a-zA-Z][a-zA-Z0-9-]*)\b[^>]*?(/?)>')
COMMENT_PATTERN = re.compile(r'<!--.*?(?:-->|$)', re.DOTALL)
# Script and style bodies are raw text; "a<b" inside them is not a tag
RAW_TEXT_PATTERN = re.compile(r'(<(script|style)\b[^>]*>).*?(</\2\s*>)', re.DOTALL | re.IGNORECASE)

# Parses a script as a function body and returns the parser message, or None when it parses
SyntaxChecker = Callable[[str], Awaitable[Optional[str]]]


def check_css(css: str) -> Optional[Diagnostic]:
    if css.count("{") != css.count("}"):
        return Diagnostic(message=CSS_BRACE_MESSAGE)
    return None


def html_tags_balanced(html: str) -> bool:
    """
    Scans tag tokens left to right keeping a stack of open element names.
    A closer with an empty stack, a closer that does not match the top,
    or anything left open at the end is an imbalance.
    """
    stack = []
    html = RAW_TEXT_PATTERN.sub(r"\1\3", COMMENT_PATTERN.sub("", html))
    for closing, name, self_closing in TAG_PATTERN.findall(html):
        name = name.lower()
        if name in VOID_ELEMENTS or self_closing:
            continue
        if not closing:
            stack.append(name)
            continue
        if not stack or stack[-1] != name:
            return False
        stack.pop()
    return not stack


def check_html(html: str) -> Optional[Diagnostic]:
    if not html_tags_balanced(html):
        return Diagnostic(message=HTML_TAG_MESSAGE)
    return None


async def check_js(js: str, checker: SyntaxChecker) -> Optional[Diagnostic]:
    error = await checker(js)
    if error:
        return Diagnostic(message=error)
    return None


async def analyze(bundle: SourceBundle, checker: SyntaxChecker) -> Optional[Diagnostic]:
    """
    Returns the first problem found, or None when the bundle looks clean.

    Precedence is fixed: HTML, then CSS, then JavaScript. The JavaScript
    check is skipped once a structural problem has been found.
    """
    problem = check_html(bundle.html) or check_css(bundle.css)
    if problem:
        return problem
    return await check_js(bundle.js, checker)
