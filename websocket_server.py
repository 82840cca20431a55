# websocket_server.py
# WebSocket server for Microlearn: streams curriculum units to the app while they are generated

import asyncio
import time
import json
import logging
from datetime import datetime, timezone
from typing import Optional
import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from core.curriculum_generator import CurriculumGenerator
from models.schemas import GenerationOutcome, GenerationStatus
from services.llm_service import LLMService
from services.moderation_service import ModerationService
from services.storage_service import StorageService
import config

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')

OUTCOME_MESSAGE_TYPES = {
    GenerationStatus.ACCEPTED: "curriculum_ready",
    GenerationStatus.BLOCKED: "content_blocked",
    GenerationStatus.FAILED: "generation_failed",
    GenerationStatus.CANCELLED: "generation_cancelled",
}


def ts():
    """Timestamp helper for logging"""
    return datetime.now(timezone.utc).isoformat(sep=' ', timespec='milliseconds')


def log(*args):
    """Console logging with timestamp"""
    print(f"[{ts()}][WebSocket]", *args, flush=True)


def is_normal_closure(error: ConnectionClosed) -> bool:
    if isinstance(error, ConnectionClosedOK):
        return True
    rcvd = getattr(error, "rcvd", None)
    return rcvd is not None and rcvd.code in (1000, 1001)


class MicrolearnWebSocketWrapper:
    """
    WebSocket wrapper that stamps outgoing messages and tracks activity.
    """
    def __init__(self, websocket, client_id: str):
        self.websocket = websocket
        self.client_id = client_id
        self.message_count = 0
        self.last_activity = time.time()
        self.connection_start_time = time.time()

    async def send(self, message):
        """Send a dict (or JSON string) with client id and timestamp added."""
        data = json.loads(message) if isinstance(message, str) else dict(message)
        data["client_id"] = self.client_id
        data["timestamp"] = time.time()

        self.message_count += 1
        self.last_activity = time.time()
        await self.websocket.send(json.dumps(data))

    async def recv(self):
        message = await self.websocket.recv()
        self.last_activity = time.time()
        return message


class CurriculumAgent:
    """
    Per-connection agent: owns one curriculum session and its generation task.
    """
    def __init__(self, websocket_wrapper: MicrolearnWebSocketWrapper, generator: CurriculumGenerator, storage_service=None):
        self.websocket = websocket_wrapper
        self.client_id = websocket_wrapper.client_id
        self.generator = generator
        self.storage_service = storage_service
        self.generation_task: Optional[asyncio.Task] = None
        self.metrics = {
            "generate_requests": 0,
            "more_units_requests": 0,
            "errors": 0
        }
        self.session_start_time = time.time()

        self.handlers = {
            "ping": self.handle_ping,
            "generate": self.handle_generate,
            "more_units": self.handle_more_units,
            "reset": self.handle_reset,
            "get_session": self.handle_get_session,
            "get_recent_searches": self.handle_get_recent_searches,
        }

        log(f"Curriculum agent initialized for client {self.client_id}")

    async def process_messages(self):
        """
        Main message processing loop.
        """
        try:
            await self.websocket.send({
                "type": "connection_ready",
                "message": "Microlearn WebSocket connected successfully",
            })

            while True:
                try:
                    message = await self.websocket.recv()
                    await self.handle_message(message)
                except ConnectionClosed as e:
                    log(f"Client {self.client_id} disconnected ({'normal' if is_normal_closure(e) else 'abnormal'})")
                    if not is_normal_closure(e):
                        self.metrics["errors"] += 1
                    break
        finally:
            await self.cleanup()

    async def handle_message(self, message: str):
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            await self.websocket.send({"type": "error", "error": "Invalid JSON message"})
            return

        message_type = data.get("type") if isinstance(data, dict) else None
        if not message_type:
            await self.websocket.send({"type": "error", "error": "Message type is required"})
            return

        handler = self.handlers.get(message_type)
        if handler is None:
            await self.websocket.send({"type": "error", "error": f"Unknown message type: {message_type}"})
            return

        log(f"Processing message type: {message_type} for client {self.client_id}")
        await handler(data)

    async def handle_ping(self, data: dict):
        await self.websocket.send({
            "type": "pong",
            "message": "Connection alive",
            "server_time": time.time()
        })

    async def handle_generate(self, data: dict):
        topic = (data.get("topic") or "").strip()
        if not topic:
            await self.websocket.send({"type": "error", "error": "Topic must not be empty"})
            return
        self.metrics["generate_requests"] += 1
        use_cache = bool(data.get("use_cache", True))
        self._start_generation(
            lambda: self.generator.generate_curriculum(topic, on_progress=self.send_progress, use_cache=use_cache),
            topic
        )
        await self.websocket.send({"type": "generation_started", "topic": topic})

    async def handle_more_units(self, data: dict):
        if not self.generator.session.can_extend:
            await self.websocket.send({"type": "error", "error": "No curriculum loaded"})
            return
        self.metrics["more_units_requests"] += 1
        topic = self.generator.session.topic
        self._start_generation(lambda: self.generator.generate_more_units(on_progress=self.send_progress), topic)
        await self.websocket.send({"type": "generation_started", "topic": topic})

    async def handle_reset(self, data: dict):
        self.cancel_generation()
        self.generator.reset()
        await self.handle_get_session(data)

    async def handle_get_session(self, data: dict):
        await self.websocket.send({
            "type": "session",
            "session": self.generator.session.snapshot().model_dump(mode="json")
        })

    async def handle_get_recent_searches(self, data: dict):
        recent = self.storage_service.get_recent_searches() if self.storage_service else []
        await self.websocket.send({"type": "recent_searches", "recent_searches": recent})

    async def send_progress(self, snapshot):
        await self.websocket.send({
            "type": "units_progress",
            "session": snapshot.model_dump(mode="json")
        })

    async def send_outcome(self, outcome: GenerationOutcome):
        await self.websocket.send({
            "type": OUTCOME_MESSAGE_TYPES[outcome.status],
            "outcome": outcome.model_dump(mode="json")
        })

    def _start_generation(self, make_coro, topic: str):
        self.cancel_generation()
        self.generation_task = asyncio.create_task(self._run_generation(make_coro, topic))

    async def _run_generation(self, make_coro, topic: str):
        try:
            outcome = await make_coro()
        except asyncio.CancelledError:
            log(f"Generation for '{topic}' cancelled for client {self.client_id}")
            raise
        except Exception as e:
            self.metrics["errors"] += 1
            log(f"Error generating curriculum for {self.client_id}: {e}")
            outcome = GenerationOutcome(status=GenerationStatus.FAILED, topic=topic, error=str(e))
        try:
            await self.send_outcome(outcome)
        except ConnectionClosed:
            log(f"Client {self.client_id} left before the outcome was delivered")

    def cancel_generation(self):
        if self.generation_task is not None and not self.generation_task.done():
            self.generation_task.cancel()
        self.generation_task = None

    async def cleanup(self):
        """Cancel outstanding work when the connection closes."""
        self.cancel_generation()
        session_duration = time.time() - self.session_start_time
        log(f"Cleaning up client {self.client_id} after {session_duration:.2f}s")
        log(f"Final metrics for {self.client_id}: {self.metrics}")


def create_agent(websocket_wrapper: MicrolearnWebSocketWrapper, storage_service: StorageService) -> CurriculumAgent:
    generator = CurriculumGenerator(
        LLMService(),
        storage_service=storage_service,
        moderation_service=ModerationService(),
    )
    return CurriculumAgent(websocket_wrapper, generator, storage_service)


def make_handler(storage_service: StorageService):
    async def websocket_handler(websocket):
        """
        Main WebSocket handler for Microlearn connections.
        """
        connection_start_time = time.time()
        client_id = f"microlearn_client_{int(connection_start_time * 1000)}"
        log(f"New client connected: {client_id} from {getattr(websocket, 'remote_address', 'unknown')}")

        wrapper = MicrolearnWebSocketWrapper(websocket, client_id)
        try:
            agent = create_agent(wrapper, storage_service)
            await agent.process_messages()
        except ConnectionClosed as e:
            log(f"Client {client_id} disconnected during setup: {e}")
        except Exception as e:
            log(f"Error handling client {client_id}: {e}")
            logging.exception(f"Unhandled error for {client_id}")
        finally:
            connection_duration = time.time() - connection_start_time
            log(f"Connection handler finished for {client_id}. Total duration: {connection_duration:.2f}s")

    return websocket_handler


async def start_websocket_server(host: str = None, port: int = None):
    """
    Start the Microlearn WebSocket server.
    """
    host = host or config.WEBSOCKET_HOST
    port = port or config.WEBSOCKET_PORT
    server_config = {
        "ping_interval": 20,  # Send ping every 20 seconds
        "ping_timeout": 10,   # Wait 10 seconds for pong
        "close_timeout": 10,  # Wait 10 seconds for close
        "max_size": 2**20,    # 1MB max message size
        "max_queue": 32,      # Max queued messages per connection
    }

    # One cache shared by every connection so writes are serialized
    storage_service = StorageService()

    log(f"Starting Microlearn WebSocket server on {host}:{port}")
    async with websockets.serve(make_handler(storage_service), host, port, **server_config):
        log(f"WebSocket URL: ws://{host}:{port}")
        await asyncio.Future()  # Run forever


def main():
    """
    Main entry point for the Microlearn WebSocket server.
    """
    import argparse

    parser = argparse.ArgumentParser(description='Microlearn WebSocket Server')
    parser.add_argument('--host', default=config.WEBSOCKET_HOST, help='Host to bind to')
    parser.add_argument('--port', type=int, default=config.WEBSOCKET_PORT, help='Port to bind to')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        log("Debug logging enabled")

    try:
        asyncio.run(start_websocket_server(args.host, args.port))
    except KeyboardInterrupt:
        log("Server stopped by user")


if __name__ == "__main__":
    main()
