"""
Sandboxed Executor

Renders a SourceBundle in headless Chromium via Playwright:
- the user document runs inside an <iframe sandbox="allow-scripts"> (opaque origin,
  no storage, no access to the host page, no top-level navigation)
- every run gets a fresh, offline browser context; the previous one is closed
- the only way out is postMessage to the host page, which forwards messages
  whose source is the iframe to one exposed binding
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

import config
from logger import playground_logger
from models import SourceBundle

CHANNEL_BINDING = "__playgroundChannel"
FRAME_ID = "playground"

# (sender_id, payload) -> None
ReportCallback = Callable[[str, Any], None]


class SandboxError(Exception):
    """The browser could not render a document (crash, timeout, launch failure)."""


# --- 1. Document Assembly ---

INSTRUMENTATION_SCRIPT = """<script>
(function () {
  function report(message, stack) {
    try {
      parent.postMessage({ type: 'playground_error', message: String(message), stack: stack ? String(stack) : '' }, '*');
    } catch (ignored) {}
  }
  var consoleError = console.error;
  console.error = function () {
    var parts = [];
    for (var i = 0; i < arguments.length; i++) {
      var value = arguments[i];
      parts.push(value && value.message ? value.message : String(value));
    }
    report(parts.join(' '), arguments[0] && arguments[0].stack);
    return consoleError.apply(console, arguments);
  };
  window.addEventListener('error', function (event) {
    var error = event.error;
    report(error && error.message ? error.message : event.message, error && error.stack);
  });
  window.addEventListener('unhandledrejection', function (event) {
    var reason = event.reason;
    report(reason && reason.message ? reason.message : String(reason), reason && reason.stack);
  });
})();
</script>"""

USER_SCRIPT_OPEN = "<script>\ntry {\n"
USER_SCRIPT_CLOSE = """
} catch (error) {
  parent.postMessage({
    type: 'playground_error',
    message: error && error.message ? String(error.message) : String(error),
    stack: error && error.stack ? String(error.stack) : ''
  }, '*');
}
</script>"""

SCRIPT_CLOSER = re.compile(r'</(script)', re.IGNORECASE)
STYLE_CLOSER = re.compile(r'</(style)', re.IGNORECASE)


@dataclass(frozen=True)
class RenderedDocument:
    html: str
    # Document line numbers of the user script are offset + 1 .. offset + count
    script_line_offset: int
    script_line_count: int


def build_document(bundle: SourceBundle) -> RenderedDocument:
    """
    Assembles the self-contained document for one run: the CSS as a style block,
    the HTML verbatim, the instrumentation, then the user script in a guarded block.
    User script lines are copied verbatim so stack positions map straight back.
    """
    css = STYLE_CLOSER.sub(r'<\\/\1', bundle.css)
    js = SCRIPT_CLOSER.sub(r'<\\/\1', bundle.js)

    prefix = (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '<meta charset="UTF-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"<style>\n{css}\n</style>\n"
        "</head>\n"
        "<body>\n"
        f"{bundle.html}\n"
        f"{INSTRUMENTATION_SCRIPT}\n"
        f"{USER_SCRIPT_OPEN}"
    )
    suffix = f"{USER_SCRIPT_CLOSE}\n</body>\n</html>\n"

    return RenderedDocument(
        html=prefix + js + suffix,
        script_line_offset=prefix.count("\n"),
        script_line_count=js.count("\n") + 1,
    )


# Host page: owns the sandboxed frame and forwards only that frame's messages
HOST_PAGE = f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"></head>
<body style="margin: 0">
<iframe id="{FRAME_ID}" sandbox="allow-scripts" title="output" style="border: 0; width: 100%; height: 100vh"></iframe>
<script>
  const frame = document.getElementById('{FRAME_ID}');
  window.addEventListener('message', (event) => {{
    if (event.source !== frame.contentWindow) return;
    window.{CHANNEL_BINDING}(event.data);
  }});
</script>
</body>
</html>"""

SYNTAX_CHECK_SCRIPT = """(source) => {
  try {
    new Function(source);
    return null;
  } catch (error) {
    return String(error);
  }
}"""


# --- 2. Shared Browser ---

class BrowserHost:
    """
    One Chromium instance shared by every editor session, launched on first use.
    Also owns a scratch page (blank, offline) used for JavaScript syntax checks.
    """

    def __init__(self, headless: bool = config.BROWSER_HEADLESS):
        self.headless = headless
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._scratch: Optional[Page] = None
        self._lock = asyncio.Lock()

    async def browser(self) -> Browser:
        async with self._lock:
            return await self._ensure_browser()

    async def _ensure_browser(self) -> Browser:
        # Caller holds self._lock
        if self._browser is None or not self._browser.is_connected():
            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=self.headless)
                self._scratch = None
            except PlaywrightError as e:
                playground_logger.error(f"❌ Could not launch Chromium: {e}")
                raise SandboxError(f"Browser unavailable: {e}") from e
            playground_logger.info("🌐 Chromium launched for sandboxed runs")
        return self._browser

    async def _scratch_page(self) -> Page:
        async with self._lock:
            browser = await self._ensure_browser()
            if self._scratch is None or self._scratch.is_closed():
                context = await browser.new_context(offline=True)
                self._scratch = await context.new_page()
            return self._scratch

    async def check_syntax(self, source: str) -> Optional[str]:
        """
        Builds a function from `source` without calling it.

        Returns: the parser message (e.g. "SyntaxError: Unexpected token '{'"), or None
        """
        try:
            scratch = await self._scratch_page()
            return await scratch.evaluate(SYNTAX_CHECK_SCRIPT, source)
        except PlaywrightError as e:
            playground_logger.error(f"❌ Syntax check failed in browser: {e}")
            raise SandboxError(f"Syntax check unavailable: {e}") from e

    async def close(self):
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
                self._scratch = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            playground_logger.info("🌐 Chromium closed")


# --- 3. Per-Session Sandbox ---

class PlaywrightSandbox:
    """
    The isolated execution context of one editor session.
    Rendering always replaces the previous context, so no global state survives a run.
    """

    def __init__(self, host: BrowserHost, render_timeout_ms: int = config.SANDBOX_RENDER_TIMEOUT_MS):
        self.host = host
        self.render_timeout_ms = render_timeout_ms
        self._context: Optional[BrowserContext] = None

    async def check_syntax(self, source: str) -> Optional[str]:
        return await self.host.check_syntax(source)

    async def render(self, document: RenderedDocument, sender_id: str, report: ReportCallback):
        """
        Loads `document` into a new sandboxed frame. Returns once the frame has been
        handed its document; runtime reports arrive later through `report`.
        """
        await self.discard()
        browser = await self.host.browser()

        try:
            context = await browser.new_context(offline=True, java_script_enabled=True)
            self._context = context
            page = await context.new_page()

            def forward(source, payload):
                # The binding is visible in every frame; only the host page may use it
                frame = source.get("frame")
                if frame is None or frame.parent_frame is not None:
                    playground_logger.debug(f"Dropped binding call from a child frame of {sender_id}")
                    return
                report(sender_id, payload)

            await page.expose_binding(CHANNEL_BINDING, forward)
            await page.set_content(HOST_PAGE, timeout=self.render_timeout_ms)
            await page.evaluate(
                f"(html) => {{ document.getElementById('{FRAME_ID}').srcdoc = html; }}",
                document.html
            )
        except PlaywrightError as e:
            playground_logger.error(f"❌ Sandbox render failed for {sender_id}: {e}")
            await self.discard()
            raise SandboxError(f"Sandbox failed to render: {e}") from e

        playground_logger.info(f"🧪 Rendered run {sender_id} ({len(document.html)} chars)")

    async def discard(self):
        """Close the current context; anything still running inside it is abandoned."""
        context, self._context = self._context, None
        if context is None:
            return
        try:
            await context.close()
        except PlaywrightError as e:
            playground_logger.warning(f"⚠️ Closing sandbox context failed: {e}")
