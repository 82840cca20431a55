"""
Microlearn - Main API Server
Turns a topic into a five-unit flash-card curriculum generated by an LLM.
"""

import logging
import asyncio
import sys
import os
import json
from typing import Optional
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

# Add current directory to Python path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

import config
from core.curriculum_generator import CurriculumGenerator
from core.exceptions import PersistenceError
from models.schemas import GenerationOutcome, GenerationStatus, TopicRequest
from services.llm_service import LLMService
from services.moderation_service import ModerationService
from services.storage_service import StorageService

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')

# Initialize FastAPI app
app = FastAPI(
    title="Microlearn API",
    description="AI-generated microlearning flash cards: five units of three cards for any topic.",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this to the mobile app's origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services
storage_service = None
curriculum_generator = None
generation_task: Optional[asyncio.Task] = None

try:
    storage_service = StorageService()
    curriculum_generator = CurriculumGenerator(
        LLMService(),
        storage_service=storage_service,
        moderation_service=ModerationService(),
    )
    SERVICES_AVAILABLE = True
    logging.info("All services initialized successfully")
except Exception as e:
    logging.error(f"Failed to initialize services: {e}")
    SERVICES_AVAILABLE = False


def _require_generator() -> CurriculumGenerator:
    if curriculum_generator is None:
        raise HTTPException(status_code=503, detail="Curriculum generation service not available")
    return curriculum_generator


def _require_storage() -> StorageService:
    if storage_service is None:
        raise HTTPException(status_code=503, detail="Storage service not available")
    return storage_service


def _require_topic(topic: str) -> str:
    topic = (topic or "").strip()
    if not topic:
        raise HTTPException(status_code=400, detail="Topic must not be empty")
    return topic


def _start_generation(coro) -> asyncio.Task:
    """Start a generation task, cancelling the one currently in flight."""
    global generation_task
    if generation_task is not None and not generation_task.done():
        logging.info("Cancelling in-flight generation")
        generation_task.cancel()
    generation_task = asyncio.create_task(coro)
    return generation_task


async def _run_generation(coro) -> GenerationOutcome:
    task = _start_generation(coro)
    try:
        return await task
    except asyncio.CancelledError:
        raise HTTPException(status_code=409, detail="Generation was superseded by a newer request")


def _outcome_response(outcome: GenerationOutcome) -> GenerationOutcome:
    if outcome.status == GenerationStatus.BLOCKED:
        raise HTTPException(status_code=403, detail=outcome.error)
    if outcome.status == GenerationStatus.FAILED:
        raise HTTPException(status_code=502, detail=outcome.error)
    if outcome.status == GenerationStatus.CANCELLED:
        raise HTTPException(status_code=409, detail="Generation was superseded by a newer request")
    return outcome


@app.get("/health")
async def health():
    return {"status": "ok", "services_available": SERVICES_AVAILABLE}

# ===== CURRICULUM ENDPOINTS =====

@app.post("/api/curriculum", response_model=GenerationOutcome)
async def generate_curriculum(request: TopicRequest):
    """Generate (or load from cache) the curriculum for a topic."""
    generator = _require_generator()
    topic = _require_topic(request.topic)
    logging.info(f"Generating curriculum for: {topic[:50]}")
    outcome = await _run_generation(generator.generate_curriculum(topic, use_cache=request.use_cache))
    return _outcome_response(outcome)


@app.post("/api/curriculum/more", response_model=GenerationOutcome)
async def generate_more_units():
    """Dive deeper into the current topic with additional units."""
    generator = _require_generator()
    if not generator.session.can_extend:
        raise HTTPException(status_code=400, detail="No curriculum loaded")
    outcome = await _run_generation(generator.generate_more_units())
    return _outcome_response(outcome)


@app.post("/api/curriculum/stream")
async def stream_curriculum(request: TopicRequest):
    """Stream session snapshots as NDJSON while the curriculum is generated."""
    generator = _require_generator()
    topic = _require_topic(request.topic)
    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(snapshot):
        queue.put_nowait({"type": "progress", "session": snapshot.model_dump(mode="json")})

    async def run():
        try:
            outcome = await generator.generate_curriculum(topic, on_progress=on_progress, use_cache=request.use_cache)
            queue.put_nowait({"type": "outcome", "outcome": outcome.model_dump(mode="json")})
        except asyncio.CancelledError:
            cancelled = GenerationOutcome(status=GenerationStatus.CANCELLED, topic=topic)
            queue.put_nowait({"type": "outcome", "outcome": cancelled.model_dump(mode="json")})
            raise
        except Exception as e:
            logging.error(f"Error streaming curriculum for '{topic}': {e}")
            failed = GenerationOutcome(status=GenerationStatus.FAILED, topic=topic, error=f"Error: {e}")
            queue.put_nowait({"type": "outcome", "outcome": failed.model_dump(mode="json")})

    _start_generation(run())

    async def event_stream():
        while True:
            event = await queue.get()
            yield json.dumps(event) + "\n"
            if event["type"] == "outcome":
                break

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")


@app.get("/api/curriculum/{topic}", response_model=GenerationOutcome)
async def get_cached_curriculum(topic: str):
    """Get a previously generated curriculum without calling the model."""
    storage = _require_storage()
    try:
        units = storage.load_curriculum(topic)
    except PersistenceError as e:
        logging.error(f"Error loading cached curriculum: {e}")
        units = None
    if not units:
        raise HTTPException(status_code=404, detail="Curriculum not found")
    return GenerationOutcome(status=GenerationStatus.ACCEPTED, topic=topic, units=units, from_cache=True)


@app.get("/api/session")
async def get_session():
    return _require_generator().session.snapshot()


@app.post("/api/reset")
async def reset_session():
    """Return to the main screen: cancel generation and clear the session."""
    generator = _require_generator()
    if generation_task is not None and not generation_task.done():
        generation_task.cancel()
    generator.reset()
    return generator.session.snapshot()

# ===== RECENT SEARCHES =====

@app.get("/api/recent-searches")
async def get_recent_searches():
    return {"recent_searches": _require_storage().get_recent_searches()}


@app.delete("/api/recent-searches")
async def clear_recent_searches():
    try:
        _require_storage().clear_recent_searches()
    except PersistenceError as e:
        logging.error(f"Error clearing recent searches: {e}")
        raise HTTPException(status_code=500, detail="Could not clear recent searches")
    return {"recent_searches": []}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host=config.API_HOST, port=config.API_PORT, reload=True)
