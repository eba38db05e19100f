"""
FastAPI server for UniFi discovery

Serves the UniFi device inventory as a Grafana Alloy discovery.http document.
Every request re-enumerates sites and devices from the UniFi API.
"""

import asyncio
import json
import logging
from typing import Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from . import __version__
from .api_client import RequestContext, UnifiApiClient, UnifiError
from .discovery import collect_targets
from .models import Target


log = logging.getLogger("unifi_discovery.server")

DISCONNECT_POLL_SECONDS = 0.5

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# =============================================================================
# Helpers
# =============================================================================

async def _watch_disconnect(request: Request, ctx: RequestContext):
    """Cancel the upstream walk once the discovery client goes away"""
    while not ctx.cancelled:
        if await request.is_disconnected():
            log.info("[http] client disconnected, cancelling upstream enumeration")
            ctx.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def render_document(targets: Iterable[Target]) -> bytes:
    """Pretty-printed JSON array, 2-space indent, trailing newline"""
    doc = [t.model_dump() for t in targets]
    return (json.dumps(doc, indent=2) + "\n").encode()


# =============================================================================
# FastAPI App
# =============================================================================

def create_app(client: UnifiApiClient, request_timeout: Optional[float] = None) -> FastAPI:
    """Build the discovery app around an existing API client"""
    app = FastAPI(
        title="UniFi Discovery",
        description="Grafana Alloy discovery.http targets from the UniFi Network API",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.client = client
    app.state.request_timeout = request_timeout

    @app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def discovery(request: Request):
        """Serve the list of scrape targets (any path, any method)"""
        ctx = RequestContext(request.app.state.request_timeout)
        loop = asyncio.get_running_loop()
        watcher = asyncio.ensure_future(_watch_disconnect(request, ctx))
        try:
            # executor futures cancel immediately; ctx.cancel() then stops the worker thread
            targets = await loop.run_in_executor(None, collect_targets, request.app.state.client, ctx)
        except UnifiError as e:
            log.warning(f"[discovery] failed phase={e.phase}: {e}")
            return PlainTextResponse(str(e), status_code=500)
        except asyncio.CancelledError:
            ctx.cancel()
            raise
        finally:
            watcher.cancel()

        # Serialise before committing the status line; never send a truncated body
        try:
            body = render_document(targets)
        except (TypeError, ValueError):
            log.exception("[discovery] failed to serialise discovery document")
            raise

        return Response(content=body, status_code=200, media_type="application/json")

    return app


__all__ = ["create_app", "render_document"]
