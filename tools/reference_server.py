#!/usr/bin/env python3
"""Serve the Python model as the conformance reference endpoint.

Endpoints match what ``conformance/harness/runner.py`` calls:
``POST /state/reset``, ``POST /state/load``, ``GET /state/digest`` and
``POST /ix/execute``.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click
from aiohttp import web

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT / "tools"))

from vaultpay_spec.errors import ErrorCode, SpecError  # noqa: E402
from vaultpay_spec.state_digest import compute_state_digest  # noqa: E402
from vaultpay_spec.state_transition import apply_ix  # noqa: E402
from vaultpay_spec.types import ProgramState  # noqa: E402
from fixtures_io import ix_from_json, state_from_json, state_to_json  # noqa: E402

logger = logging.getLogger(__name__)

STATE_KEY = web.AppKey("state", ProgramState)


def _digest(state: ProgramState) -> str:
    return compute_state_digest(state_to_json(state))


async def reset_state(request: web.Request) -> web.Response:
    request.app[STATE_KEY] = ProgramState()
    return web.json_response({"success": True})


async def load_state(request: web.Request) -> web.Response:
    try:
        state = state_from_json(await request.json())
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("rejected state load: %s", exc)
        return web.json_response({"success": False, "error": str(exc)}, status=400)
    request.app[STATE_KEY] = state
    return web.json_response({"success": True, "state_digest": _digest(state)})


async def state_digest(request: web.Request) -> web.Response:
    return web.json_response({"state_digest": _digest(request.app[STATE_KEY])})


async def execute_ix(request: web.Request) -> web.Response:
    body: dict[str, Any] = await request.json()
    try:
        ix = ix_from_json(body["ix"])
    except (ValueError, KeyError, TypeError) as exc:
        return web.json_response(
            {"success": False, "error_code": int(ErrorCode.INVALID_FORMAT), "error": str(exc)}
        )

    before = len(request.app[STATE_KEY].events)
    try:
        state, result = apply_ix(request.app[STATE_KEY], ix)
    except SpecError as exc:
        # Serialization-level problems surface before the transition runs.
        return web.json_response({"success": False, "error_code": int(exc.code)})
    request.app[STATE_KEY] = state

    return web.json_response(
        {
            "success": result.ok,
            "error_code": int(result.error.code) if result.error else 0,
            "outcome": result.outcome.value if result.outcome else None,
            "events": [type(e).__name__ for e in state.events[before:]],
            "state_digest": _digest(state),
        }
    )


def make_app() -> web.Application:
    app = web.Application()
    app[STATE_KEY] = ProgramState()
    app.router.add_post("/state/reset", reset_state)
    app.router.add_post("/state/load", load_state)
    app.router.add_get("/state/digest", state_digest)
    app.router.add_post("/ix/execute", execute_ix)
    return app


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8081, show_default=True, type=int)
@click.option("--verbose", is_flag=True, help="Log every state transition")
def main(host: str, port: int, verbose: bool) -> None:
    """Run the VaultPay reference endpoint."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    web.run_app(make_app(), host=host, port=port)


if __name__ == "__main__":
    main()
