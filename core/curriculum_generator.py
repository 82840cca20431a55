"""
Curriculum Generator - Prompts the model, parses its output and retries on shape mismatch
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Callable, List, Optional
import config
from core.chunk_parser import ChunkParser
from core.exceptions import BlockedContentError, PersistenceError, ShapeMismatchError, TransportError
from core.prompts import build_curriculum_prompt, build_more_units_prompt
from models.schemas import GenerationOutcome, GenerationStatus, SessionSnapshot, Unit


class GenerationState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    VALIDATING = "validating"
    RETRYING = "retrying"
    ACCEPTED = "accepted"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


TERMINAL_STATES = {
    GenerationState.ACCEPTED,
    GenerationState.FAILED,
    GenerationState.BLOCKED,
    GenerationState.CANCELLED,
}

ALLOWED_TRANSITIONS = {
    GenerationState.IDLE: {
        GenerationState.REQUESTING,
        GenerationState.ACCEPTED,
        GenerationState.BLOCKED,
    },
    GenerationState.REQUESTING: {
        GenerationState.VALIDATING,
        GenerationState.FAILED,
        GenerationState.CANCELLED,
    },
    GenerationState.VALIDATING: {
        GenerationState.ACCEPTED,
        GenerationState.RETRYING,
        GenerationState.FAILED,
    },
    GenerationState.RETRYING: {GenerationState.REQUESTING},
}


class CurriculumSession:
    """Mutable state of the curriculum currently shown to the user.

    Only the generator mutates it; presentation layers read ``snapshot()``.
    """

    def __init__(self):
        self.topic = ""
        self.units: List[Unit] = []
        self.accepted_units: List[Unit] = []
        self.retry_count = 0
        self.state = GenerationState.IDLE
        self.progress = 0.0
        self.error: Optional[str] = None
        self.generation_id = 0

    @property
    def is_loading(self) -> bool:
        return self.state != GenerationState.IDLE and self.state not in TERMINAL_STATES

    @property
    def can_extend(self) -> bool:
        """True once a curriculum for the topic has been accepted."""
        return bool(self.topic and self.accepted_units)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            topic=self.topic,
            units=list(self.units),
            state=self.state.value,
            retry_count=self.retry_count,
            progress=self.progress,
            loading=self.is_loading,
            error=self.error,
        )


class CurriculumGenerator:
    """Generates curricula through the model client with bounded retries."""

    def __init__(
        self,
        llm_service,
        storage_service=None,
        moderation_service=None,
        parser: ChunkParser = None,
        max_retries: int = None,
        streaming: bool = None,
        prompt_style: str = None,
    ):
        self.llm_service = llm_service
        self.storage_service = storage_service
        self.moderation_service = moderation_service
        self.prompt_style = prompt_style or config.PROMPT_STYLE
        self.parser = parser or ChunkParser(formal=self.prompt_style == "formal")
        self.max_retries = config.MAX_RETRIES if max_retries is None else max_retries
        self.streaming = config.USE_STREAMING if streaming is None else streaming
        self.session = CurriculumSession()

    # ===== PUBLIC OPERATIONS =====

    async def generate_curriculum(self, topic: str, on_progress: Callable = None, use_cache: bool = True) -> GenerationOutcome:
        """Generate the initial curriculum for a topic, replacing the current units."""
        topic = topic.strip()
        if not topic:
            raise ValueError("Topic must not be empty")
        return await self.generate(
            topic, config.INITIAL_UNIT_COUNT, on_progress=on_progress, use_cache=use_cache
        )

    async def generate_more_units(self, on_progress: Callable = None) -> GenerationOutcome:
        """Dive deeper into the current topic, appending new units."""
        if not self.session.can_extend:
            raise ValueError("No curriculum is loaded to extend")
        return await self.generate(
            self.session.topic, config.MORE_UNITS_COUNT,
            existing_units=list(self.session.accepted_units), on_progress=on_progress
        )

    def reset(self):
        """Drop the current curriculum and supersede any in-flight generation."""
        session = self.session
        session.generation_id += 1
        session.topic = ""
        session.units = []
        session.accepted_units = []
        session.retry_count = 0
        session.progress = 0.0
        session.error = None
        session.state = GenerationState.IDLE
        logging.info("Curriculum session reset")

    async def generate(
        self,
        topic: str,
        target_unit_count: int,
        existing_units: Optional[List[Unit]] = None,
        on_progress: Callable = None,
        use_cache: bool = False,
    ) -> GenerationOutcome:
        """Run one generation call to a terminal outcome.

        With ``existing_units`` the new units are appended to them, otherwise
        they replace the session's units. A later call on the same session
        supersedes this one, which then returns a cancelled outcome.
        """
        generation_id = self._begin(topic, existing_units)
        session = self.session

        try:
            if self.moderation_service:
                self.moderation_service.check(topic)
        except BlockedContentError:
            session.units = []
            session.accepted_units = []
            session.error = "This topic is not available. Please try a different one."
            self._transition(GenerationState.BLOCKED)
            return GenerationOutcome(status=GenerationStatus.BLOCKED, topic=topic, error=session.error)

        if existing_units is None:
            await self._remember_search(topic)
            cached = await self._load_cached(topic) if use_cache else None
            if not self._is_current(generation_id):
                return self._cancelled(topic, 0)
            if cached:
                session.units = cached
                session.accepted_units = list(cached)
                session.progress = 1.0
                self._transition(GenerationState.ACCEPTED)
                return GenerationOutcome(
                    status=GenerationStatus.ACCEPTED, topic=topic, units=cached, from_cache=True
                )

        base_units = list(existing_units or [])
        attempts = 0

        while True:
            attempts += 1
            prompt = self._build_prompt(topic, target_unit_count, base_units)
            self._transition(GenerationState.REQUESTING)
            logging.info(f"Curriculum request attempt {attempts} for '{topic}' ({target_unit_count} units)")

            try:
                units = await self._request_units(prompt, base_units, generation_id, on_progress)
            except TransportError as e:
                if not self._is_current(generation_id):
                    return self._cancelled(topic, attempts)
                session.error = f"Error: {e}"
                self._transition(GenerationState.FAILED)
                return GenerationOutcome(
                    status=GenerationStatus.FAILED, topic=topic, error=session.error, attempts=attempts
                )
            except asyncio.CancelledError:
                if self._is_current(generation_id):
                    session.units = base_units
                    self._transition(GenerationState.CANCELLED)
                raise
            except Exception as e:
                logging.error(f"Unexpected error generating curriculum for '{topic}': {e}")
                if self._is_current(generation_id):
                    session.units = base_units
                    session.error = f"Error: {e}"
                    self._transition(GenerationState.FAILED)
                raise

            if units is None:
                return self._cancelled(topic, attempts)

            self._transition(GenerationState.VALIDATING)
            try:
                self._validate(units, target_unit_count)
            except ShapeMismatchError as e:
                logging.warning(f"{e} for '{topic}'")
                if session.retry_count < self.max_retries:
                    session.retry_count += 1
                    session.units = base_units
                    session.progress = 0.0
                    self._transition(GenerationState.RETRYING)
                    logging.info(f"Retrying ({session.retry_count}/{self.max_retries})")
                    continue
                session.units = base_units
                session.error = (
                    f"Error: Unable to generate the correct number of units after {self.max_retries} retries."
                )
                self._transition(GenerationState.FAILED)
                return GenerationOutcome(
                    status=GenerationStatus.FAILED, topic=topic, error=session.error, attempts=attempts
                )

            accepted = base_units + units
            session.units = accepted
            session.accepted_units = list(accepted)
            session.progress = 1.0
            self._transition(GenerationState.ACCEPTED)
            logging.info(f"Successfully processed {len(units)} units for '{topic}'")
            await self._persist(topic, accepted)
            return GenerationOutcome(
                status=GenerationStatus.ACCEPTED, topic=topic, units=accepted, attempts=attempts
            )

    # ===== STATE MACHINE =====

    def _begin(self, topic: str, existing_units: Optional[List[Unit]]) -> int:
        session = self.session
        session.generation_id += 1
        session.topic = topic
        session.units = list(existing_units or [])
        if existing_units is None:
            session.accepted_units = []
        session.retry_count = 0
        session.progress = 0.0
        session.error = None
        session.state = GenerationState.IDLE
        return session.generation_id

    def _is_current(self, generation_id: int) -> bool:
        return self.session.generation_id == generation_id

    def _transition(self, new_state: GenerationState):
        current = self.session.state
        if new_state not in ALLOWED_TRANSITIONS.get(current, set()):
            raise RuntimeError(f"Invalid generation state transition {current.value} -> {new_state.value}")
        logging.debug(f"Generation state {current.value} -> {new_state.value}")
        self.session.state = new_state

    def _cancelled(self, topic: str, attempts: int) -> GenerationOutcome:
        logging.info(f"Generation for '{topic}' was superseded")
        return GenerationOutcome(status=GenerationStatus.CANCELLED, topic=topic, attempts=attempts)

    def _validate(self, units: List[Unit], target_unit_count: int):
        if len(units) != target_unit_count:
            raise ShapeMismatchError(target_unit_count, len(units))

    # ===== MODEL CLIENT =====

    def _build_prompt(self, topic: str, target_unit_count: int, base_units: List[Unit]) -> str:
        if base_units:
            return build_more_units_prompt(
                topic, target_unit_count, base_units,
                style=self.prompt_style, cards_per_unit=self.parser.cards_per_unit
            )
        return build_curriculum_prompt(
            topic, target_unit_count, style=self.prompt_style, cards_per_unit=self.parser.cards_per_unit
        )

    async def _request_units(self, prompt: str, base_units: List[Unit], generation_id: int, on_progress: Callable):
        """Return the parsed units, or None when this call was superseded."""
        if not self.streaming:
            text = await self.llm_service.generate_response(prompt)
            if not self._is_current(generation_id):
                return None
            units = self.parser.parse(text)
            self.session.units = base_units + units
            await self._notify(on_progress)
            return units

        stream = self.llm_service.stream_response(prompt)
        buffer = []
        chunk_count = 0
        try:
            async for fragment in stream:
                if not self._is_current(generation_id):
                    return None
                buffer.append(fragment)
                chunk_count += 1
                units = self.parser.parse("".join(buffer))
                self.session.units = base_units + units
                self.session.progress = min(0.9, chunk_count / config.ESTIMATED_TOTAL_CHUNKS)
                await self._notify(on_progress)
        finally:
            if hasattr(stream, "aclose"):
                await stream.aclose()

        if not self._is_current(generation_id):
            return None
        logging.info(f"Stream completed after {chunk_count} chunks")
        return self.parser.parse("".join(buffer))

    async def _notify(self, on_progress: Callable):
        if on_progress is None:
            return
        result = on_progress(self.session.snapshot())
        if inspect.isawaitable(result):
            await result

    # ===== PERSISTENCE =====
    # Storage does blocking file I/O, so it runs in the default executor.

    async def _run_storage(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _persist(self, topic: str, units: List[Unit]):
        if not self.storage_service:
            return
        try:
            await self._run_storage(self.storage_service.save_curriculum, topic, units)
        except PersistenceError as e:
            logging.error(f"Failed to cache curriculum for '{topic}': {e}")

    async def _remember_search(self, topic: str):
        if not self.storage_service:
            return
        try:
            await self._run_storage(self.storage_service.add_recent_search, topic)
        except PersistenceError as e:
            logging.error(f"Failed to record recent search '{topic}': {e}")

    async def _load_cached(self, topic: str) -> Optional[List[Unit]]:
        if not self.storage_service:
            return None
        try:
            return await self._run_storage(self.storage_service.load_curriculum, topic)
        except PersistenceError as e:
            logging.error(f"Ignoring cached curriculum for '{topic}': {e}")
            return None
