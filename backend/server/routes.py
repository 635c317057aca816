"""
Route registration for the Appu voice agent API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire SessionGateway to the UI WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from observability.logger import log_event
from session.gateway import SessionGateway


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        gateway = SessionGateway(
            config=app.state.config,
            openai_client=app.state.openai_client,
            http_client=app.state.http_client,
        )
        sender = asyncio.get_running_loop().create_task(_pump_outbound(ws, gateway))
        reason = "client_disconnect"

        try:
            await gateway.on_ws_connect()

            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect()

                if msg.get("text") is not None:
                    await gateway.on_json_message(msg["text"])

                elif msg.get("bytes") is not None:
                    log_event({
                        "level": "WARNING",
                        "event_type": "ui_binary_ignored",
                        "gateway_id": gateway.gateway_id,
                        "bytes": len(msg["bytes"]),
                    })

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            reason = "server_error"
            log_event({
                "level": "ERROR",
                "event_type": "WS_FATAL_ERROR",
                "gateway_id": gateway.gateway_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            sender.cancel()
            await gateway.on_ws_disconnect(reason=reason)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

async def _pump_outbound(ws: WebSocket, gateway: SessionGateway) -> None:
    """Send gateway messages to the UI in order until cancelled."""
    try:
        while True:
            kind, payload = await gateway.next_outbound()
            if kind == "binary":
                await ws.send_bytes(payload)
            else:
                await ws.send_text(json.dumps(payload))
    except asyncio.CancelledError:
        return
    except (WebSocketDisconnect, RuntimeError) as exc:
        # UI went away mid-send; the receive loop observes the disconnect
        log_event({
            "level": "WARNING",
            "event_type": "ui_send_stopped",
            "gateway_id": gateway.gateway_id,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
