"""Command line entry point.

  forge serve [--host HOST] [--port PORT]
  forge generate "a pricing card with a monthly/yearly toggle" [--out preview.html]

Environment:
  FORGE_URL     relay base URL for ``generate`` (default http://127.0.0.1:8000)
  FORGE_CONFIG  config file for ``serve`` (default config.yaml)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from forge.client import DEFAULT_BASE_URL, GenerationError, RelayClient
from forge.config import get_config
from forge.preview import PreviewRenderer

logger = logging.getLogger(__name__)


async def run_generate(prompt: str, url: str, out: str | None = None) -> int:
    """Stream one generation to stdout. Returns the process exit code."""
    client = RelayClient(base_url=url)
    renderer = None
    if out:
        out_path = Path(out)
        renderer = PreviewRenderer(
            lambda document: out_path.write_text(document, encoding="utf-8"),
            debounce=get_config().preview.debounce_seconds,
        )

    printed = 0

    def on_update(code: str) -> None:
        nonlocal printed
        sys.stdout.write(code[printed:])
        sys.stdout.flush()
        printed = len(code)
        if renderer is not None:
            renderer.update(code)

    loop = asyncio.get_running_loop()
    handles_sigint = False
    try:
        loop.add_signal_handler(signal.SIGINT, client.stop)
        handles_sigint = True
    except NotImplementedError:
        pass  # Windows: Ctrl-C falls back to KeyboardInterrupt

    result = None
    try:
        result = await client.generate(prompt, on_update=on_update)
    except GenerationError as e:
        sys.stdout.write("\n")
        logger.error(f"Generation failed: {e.message}")
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)
        if renderer is not None:
            renderer.close()

    if renderer is not None:
        try:
            await renderer.flush()
        except OSError as e:
            logger.error(f"Could not write preview to {out}: {e}")
            return 1

    if result is None:
        return 1
    sys.stdout.write("\n")
    if result.status == "cancelled":
        logger.info("Generation stopped")
    elif out:
        logger.info(f"Preview written to {out}")
    return 0


def serve(host: str, port: int, reload: bool = False) -> int:
    import uvicorn

    uvicorn.run("forge.main:app", host=host, port=port, reload=reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="forge", description="Generate React components from a prompt.")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Stream a component from a running relay.")
    gen.add_argument("prompt", help="Description of the component to build.")
    gen.add_argument("--url", default=os.getenv("FORGE_URL", DEFAULT_BASE_URL), help="Relay base URL.")
    gen.add_argument("--out", help="Write the live preview HTML document to this file.")

    srv = sub.add_parser("serve", help="Run the relay server.")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    srv.add_argument("--reload", action="store_true", help="Reload on code changes (development).")
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        return serve(args.host, args.port, args.reload)
    return asyncio.run(run_generate(args.prompt, args.url, args.out))


if __name__ == "__main__":
    sys.exit(main())
