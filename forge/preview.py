"""Live preview — wraps generated component source in a fixed harness.

Compilation and execution happen in the browser (React + Babel from a CDN);
this module only builds the harness and the page around it, and debounces
re-renders while code is still streaming in.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Union

logger = logging.getLogger(__name__)

DEFAULT_COMPONENT = "App"

_FUNCTION_RE = re.compile(r"function\s+(\w+)")

_HARNESS_HEAD = """const { useState, useEffect, useCallback, useMemo, useRef } = React;

class ErrorBoundary extends React.Component {
  constructor(props) {
    super(props);
    this.state = { hasError: false, error: null };
  }

  static getDerivedStateFromError(error) {
    return { hasError: true, error };
  }

  componentDidCatch(error, errorInfo) {
    console.error('Error caught by boundary:', error, errorInfo);
  }

  render() {
    if (this.state.hasError) {
      return (
        <div className="p-4 bg-red-50 border border-red-200 rounded-lg">
          <h3 className="text-red-800 font-semibold">Preview Error</h3>
          <p className="text-red-600 text-sm mt-1">
            {(this.state.error && this.state.error.message) || 'Something went wrong'}
          </p>
        </div>
      );
    }
    return this.props.children;
  }
}
"""

_HARNESS_MOUNT = """
const root = ReactDOM.createRoot(document.getElementById('root'));
root.render(
  <ErrorBoundary>
    <{name} />
  </ErrorBoundary>
);
"""

_DOCUMENT = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<script src="https://cdn.tailwindcss.com"></script>
<script crossorigin src="https://unpkg.com/react@18/umd/react.development.js"></script>
<script crossorigin src="https://unpkg.com/react-dom@18/umd/react-dom.development.js"></script>
<script src="https://unpkg.com/@babel/standalone/babel.min.js"></script>
<style>
  * {{ margin: 0; padding: 0; box-sizing: border-box; }}
  body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; overflow-x: hidden; }}
  #root {{ width: 100%; min-height: 100vh; }}
</style>
</head>
<body>
<div id="root"></div>
<script type="text/babel" data-presets="react">
{script}
</script>
</body>
</html>
"""


def component_name(code: str) -> str:
    """Name of the first declared function component, or ``App``."""
    match = _FUNCTION_RE.search(code)
    return match.group(1) if match else DEFAULT_COMPONENT


def wrap_component(code: str) -> str:
    """Harness script: hook bindings, error boundary, the code, and the mount call."""
    return _HARNESS_HEAD + "\n" + code.strip() + "\n" + _HARNESS_MOUNT.format(name=component_name(code))


def render_document(code: str) -> str:
    """Full standalone HTML page rendering the component."""
    script = wrap_component(code).replace("</script", "<\\/script")
    return _DOCUMENT.format(title=html.escape(component_name(code)), script=script)


Sink = Callable[[str], Union[Awaitable[None], None]]


class PreviewRenderer:
    """Debounced preview sink.

    ``update()`` may be called on every streamed fragment; the sink only sees
    the latest code once updates pause for ``debounce`` seconds. A failed
    debounced render is logged and retried by ``flush()``, which raises the
    sink's error if the retry fails too.
    """

    def __init__(self, sink: Sink, debounce: float = 0.3) -> None:
        self._sink = sink
        self._debounce = debounce
        self._pending: asyncio.Task | None = None
        self._latest: str | None = None
        self._rendered: str | None = None
        self.renders = 0
        self.failures = 0

    def update(self, code: str) -> None:
        self._latest = code
        if self._pending and not self._pending.done():
            self._pending.cancel()
        self._pending = asyncio.get_running_loop().create_task(self._render_later())

    async def _render_later(self) -> None:
        await asyncio.sleep(self._debounce)
        try:
            await self._render()
        except Exception as e:
            self.failures += 1
            logger.warning(f"Preview render failed: {e}")

    async def flush(self) -> None:
        """Render the latest code now, cancelling any pending render."""
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.cancel()
            await asyncio.wait([pending])
        await self._render()

    def close(self) -> None:
        if self._pending and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def _render(self) -> None:
        code = self._latest
        if code is None or code == self._rendered:
            return
        result = self._sink(render_document(code))
        if asyncio.iscoroutine(result):
            await result
        self._rendered = code
        self.renders += 1
