"""
FastAPI websocket server for the simulator bridge.
Receives telemetry frames, runs one control cycle per frame, and sends the
steer command back after the actuation latency.
"""

import asyncio
import itertools
import logging
import time
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse

from bridge.protocol import MANUAL_REPLY
from control.errors import ControlCycleError, DecodeError, EncodeError, FitError
from mpc_stack import ControlSession, MPCStack

logger = logging.getLogger(__name__)

SOCKET_PATHS = ("/socket.io/", "/")


def _get_bridge_logger(log_dir: Optional[str]) -> logging.Logger:
    bridge_logger = logging.getLogger("mpc_bridge")
    bridge_logger.setLevel(logging.INFO)
    if not log_dir:
        return bridge_logger

    log_path = Path(log_dir) / "mpc_bridge.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    if not any(isinstance(h, logging.FileHandler) and h.baseFilename == str(log_path.resolve())
               for h in bridge_logger.handlers):
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        handler.setFormatter(formatter)
        bridge_logger.addHandler(handler)
    return bridge_logger


def _consume_late_result(task: "asyncio.Future") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Timed-out cycle finished with error: %s", exc)


def create_app(stack: MPCStack) -> FastAPI:
    """Build the bridge app around an MPC stack."""
    app = FastAPI(title="MPC Bridge Server")
    bridge_logger = _get_bridge_logger(stack.config.log_dir)
    connection_counter = itertools.count(1)

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return "<h1>Hello world!</h1>"

    async def _finish_pending(task: "asyncio.Future", session: ControlSession) -> None:
        """Wait for a timed-out cycle so cycles of one session never overlap."""
        try:
            await task
        except ControlCycleError as e:
            bridge_logger.warning("[LATE_CYCLE] connection=%s failed: %s", session.connection_id, e)
        else:
            bridge_logger.info("[LATE_CYCLE] connection=%s result discarded", session.connection_id)
        finally:
            # The worker no longer touches the session once the task has settled.
            session.optimizer_failures += 1

    async def telemetry_socket(websocket: WebSocket):
        await websocket.accept()
        client = websocket.client
        peer = f"{client.host}:{client.port}" if client else "unknown"
        session = ControlSession(connection_id=f"{peer}#{next(connection_counter)}")
        bridge_logger.info("[CONNECT] connection=%s", session.connection_id)

        pending: Optional[asyncio.Future] = None
        try:
            while True:
                frame = await websocket.receive_text()
                if pending is not None:
                    await _finish_pending(pending, session)
                    pending = None

                start_time = time.time()
                task = asyncio.ensure_future(
                    asyncio.to_thread(stack.process_message, frame, session)
                )
                try:
                    reply = await asyncio.wait_for(
                        asyncio.shield(task), timeout=stack.config.optimizer_timeout_s
                    )
                except asyncio.TimeoutError:
                    pending = task
                    bridge_logger.warning(
                        "[OPTIMIZER_FAILURE] connection=%s timeout=%.3fs; sending neutral command",
                        session.connection_id,
                        stack.config.optimizer_timeout_s,
                    )
                    reply = stack.fail_safe_reply(session)
                except DecodeError as e:
                    session.aborted_cycles += 1
                    bridge_logger.warning("[DECODE_ERROR] connection=%s %s", session.connection_id, e)
                    continue
                except FitError as e:
                    session.aborted_cycles += 1
                    bridge_logger.warning("[FIT_ERROR] connection=%s %s", session.connection_id, e)
                    continue
                except EncodeError as e:
                    session.aborted_cycles += 1
                    bridge_logger.warning("[ENCODE_ERROR] connection=%s %s", session.connection_id, e)
                    continue

                if reply is None:
                    continue
                if reply != MANUAL_REPLY:
                    # Emulate actuation latency; matches the compensator's latency.
                    await asyncio.sleep(stack.config.latency_s)
                await websocket.send_text(reply)

                duration = time.time() - start_time
                if duration > stack.config.latency_s + stack.config.slow_cycle_s:
                    bridge_logger.warning(
                        "[SLOW] connection=%s reply after %.3fs", session.connection_id, duration
                    )
        except WebSocketDisconnect as e:
            bridge_logger.info(
                "[DISCONNECT] connection=%s code=%s cycles=%d optimizer_failures=%d aborted=%d",
                session.connection_id,
                e.code,
                session.cycle_count,
                session.optimizer_failures,
                session.aborted_cycles,
            )
        finally:
            if pending is not None:
                pending.add_done_callback(_consume_late_result)

    for path in SOCKET_PATHS:
        app.add_api_websocket_route(path, telemetry_socket)

    return app
