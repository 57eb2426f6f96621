"""
Conversation session: drives one chat turn from classification to a final entry
"""
import asyncio
import time
from typing import AsyncGenerator, Callable, Dict, List, Optional
from uuid import uuid4

import structlog

from trip_assistant.models.catalog import TravelProduct
from trip_assistant.models.chat import (
    ConversationEntry,
    EntryStatus,
    Role,
    SessionEvent,
    SessionPhase,
    SessionSnapshot,
    TextSegment,
)
from trip_assistant.services.assembler import StreamAssembler
from trip_assistant.services.catalog import CatalogService
from trip_assistant.services.config import Settings
from trip_assistant.services.errors import ClassificationError, ClassificationErrorKind
from trip_assistant.services.llm import ClassificationResult, LLMService
from trip_assistant.services.prompts import build_recommendation_prompt, extract_budget
from trip_assistant.services.segments import derive_segments
from trip_assistant.utils.metrics import (
    classification_counter,
    first_fragment_latency,
    fragment_counter,
    track_stream,
    track_turn,
)

logger = structlog.get_logger()


def _unique(ids) -> List[str]:
    seen = set()
    result = []
    for product_id in ids:
        if product_id not in seen:
            seen.add(product_id)
            result.append(product_id)
    return result


class ConversationSession:
    """
    State machine for one chat widget.

    Each call to ``submit`` runs a single turn:
    Idle -> Classifying -> {Rejected, ClassificationFailed, Recommending},
    Recommending -> Streaming -> Completed, any -> Failed, then back to Idle.
    Events carry deep copies of entries so consumers never share the
    session's mutable state.
    """

    def __init__(
        self,
        llm: LLMService,
        catalog: CatalogService,
        settings: Settings,
        session_id: Optional[str] = None
    ):
        self.session_id = session_id or str(uuid4())
        self._llm = llm
        self._catalog = catalog
        self._settings = settings

        self._entries: List[ConversationEntry] = []
        self._phase = SessionPhase.IDLE
        self._busy = False

        # Per-turn state
        self._turn_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._assembler: Optional[StreamAssembler] = None
        self._in_flight: Optional[ConversationEntry] = None
        self._products: Dict[str, TravelProduct] = {}

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def busy(self) -> bool:
        """True while a turn is in progress"""
        return self._busy

    @property
    def entries(self) -> List[ConversationEntry]:
        return [entry.model_copy(deep=True) for entry in self._entries]

    @property
    def assembler(self) -> Optional[StreamAssembler]:
        """Active assembler, present only while streaming"""
        return self._assembler

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            phase=self._phase,
            busy=self._busy,
            entries=self.entries
        )

    def begin_turn(self) -> Optional[str]:
        """
        Claim the session for one turn.

        Returns the turn id to pass to ``submit``, or None when a turn is
        already running. Check and claim happen without yielding to the
        event loop, so two callers cannot both succeed.
        """
        if self._busy:
            return None
        self._turn_id = str(uuid4())
        self._busy = True
        return self._turn_id

    def release_turn(self, turn_id: str):
        """Clear per-turn state and drop the claim; no-op unless ``turn_id`` still holds the session"""
        if self._is_current(turn_id):
            self._assembler = None
            self._in_flight = None
            self._busy = False
            self._task = None
            self._turn_id = None

    async def submit(self, text: str, turn_id: Optional[str] = None) -> AsyncGenerator[SessionEvent, None]:
        """
        Run one turn for a user message and yield the resulting events.

        ``turn_id`` is a claim from ``begin_turn``; without one the turn is
        claimed here. Empty messages, messages sent mid-turn and stale claims
        are ignored. Closing the generator or cancelling its task aborts the
        turn.
        """
        query = (text or "").strip()
        if not query:
            logger.info("Ignoring empty submission", session_id=self.session_id)
            if turn_id is not None:
                self.release_turn(turn_id)
            return

        if turn_id is None:
            turn_id = self.begin_turn()
            if turn_id is None:
                logger.warning("Ignoring submission while a turn is in progress", session_id=self.session_id)
                return
        elif not self._is_current(turn_id):
            logger.warning("Ignoring submission with a stale turn claim", session_id=self.session_id)
            return

        self._task = asyncio.current_task()
        fragments = None

        logger.info(
            "Turn started",
            session_id=self.session_id,
            turn_id=turn_id,
            query_length=len(query)
        )

        try:
            user_entry = self._new_entry(Role.USER, query)
            self._entries.append(user_entry)
            yield self._event("entry_added", user_entry)

            # Classification
            yield self._set_phase(SessionPhase.CLASSIFYING)
            try:
                result = await self._llm.classify(query)
            except ClassificationError as e:
                if e.kind != ClassificationErrorKind.UNKNOWN:
                    classification_counter.labels(result=e.kind.value).inc()
                    for event in self._resolve_turn(SessionPhase.CLASSIFICATION_FAILED, e.user_message):
                        yield event
                    return

                # Fail open: availability over precision
                logger.warning(
                    "Classifier failed with unknown error, treating query as accepted",
                    session_id=self.session_id,
                    error=str(e)
                )
                classification_counter.labels(result="fail_open").inc()
                result = ClassificationResult.ACCEPTED
            else:
                classification_counter.labels(result=result.value).inc()

            if not self._is_current(turn_id):
                return

            if result == ClassificationResult.REJECTED:
                for event in self._resolve_turn(SessionPhase.REJECTED, self._settings.REJECTION_MESSAGE):
                    yield event
                return

            # Grounded prompt
            yield self._set_phase(SessionPhase.RECOMMENDING)
            budget = extract_budget(query)
            products = self._catalog.get_all_products()
            self._products = {product.id: product for product in products}
            prompt = build_recommendation_prompt(products, budget, query)
            logger.info(
                "Recommendation prompt built",
                session_id=self.session_id,
                budget=budget,
                products=len(products),
                prompt_length=len(prompt)
            )

            # Streaming
            assembler = StreamAssembler()
            self._assembler = assembler
            fragments = self._llm.stream_complete(prompt)
            yield self._set_phase(SessionPhase.STREAMING)

            entry = None
            if self._settings.ENTRY_MATERIALIZATION == "immediate":
                entry = self._open_assistant_entry()
                yield self._event("entry_added", entry)

            stream_started = time.time()
            fragment_count = 0
            async for fragment in fragments:
                if not self._is_current(turn_id):
                    return
                fragment_count += 1
                fragment_counter.inc()
                if fragment_count == 1:
                    first_fragment_latency.observe(time.time() - stream_started)

                previous = entry.content if entry is not None else ""
                committed = assembler.consume(fragment)

                if entry is None:
                    # Not shown until there is something to show
                    if not committed.strip():
                        continue
                    entry = self._open_assistant_entry()
                    self._render(entry, committed, assembler.references)
                    yield self._event("entry_added", entry)
                elif committed != previous:
                    self._render(entry, committed, assembler.references)
                    yield self._event("entry_updated", entry)

            if not self._is_current(turn_id):
                return

            final = assembler.finish()
            added = entry is None
            if added:
                entry = self._open_assistant_entry()

            if final.document.strip():
                self._render(entry, final.document, final.references)
            else:
                logger.warning("Model produced no content", session_id=self.session_id)
                self._render(entry, self._settings.EMPTY_RESPONSE_MESSAGE, ())

            entry.status = EntryStatus.FINAL
            self._in_flight = None
            self._assembler = None
            yield self._event("entry_added" if added else "entry_updated", entry)

            track_stream(fragment_count, len(final.references), time.time() - stream_started)
            yield self._set_phase(SessionPhase.COMPLETED)
            track_turn(SessionPhase.COMPLETED.value)
            yield self._set_phase(SessionPhase.IDLE)

        except (asyncio.CancelledError, GeneratorExit):
            if self._is_current(turn_id):
                logger.warning("Turn aborted", session_id=self.session_id, turn_id=turn_id)
                self._discard_turn()
            raise

        except Exception as e:
            logger.error(
                "Turn failed",
                session_id=self.session_id,
                turn_id=turn_id,
                error=str(e),
                exc_info=True
            )
            if self._is_current(turn_id):
                removed = self._remove_in_flight()
                if removed is not None:
                    yield self._event("entry_removed", removed)
                for event in self._resolve_turn(SessionPhase.FAILED, self._settings.STREAM_ERROR_MESSAGE):
                    yield event

        finally:
            if fragments is not None:
                await fragments.aclose()
            self.release_turn(turn_id)

    def abort(self) -> bool:
        """
        Cancel the running turn without finishing its stream.

        The partial assistant entry is removed and the session returns to
        Idle. Returns False when no turn is running.
        """
        if not self._busy:
            return False

        task = self._task
        logger.info("Aborting turn", session_id=self.session_id, turn_id=self._turn_id)
        self._discard_turn()
        self._busy = False
        self._task = None
        self._turn_id = None

        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        return True

    def close(self):
        """Tear the session down"""
        self.abort()
        self._entries.clear()

    def _is_current(self, turn_id: str) -> bool:
        return self._turn_id == turn_id

    def _discard_turn(self):
        self._remove_in_flight()
        self._assembler = None
        self._phase = SessionPhase.IDLE
        track_turn("aborted")

    def _remove_in_flight(self) -> Optional[ConversationEntry]:
        entry = self._in_flight
        self._in_flight = None
        if entry is None:
            return None
        self._entries = [item for item in self._entries if item is not entry]
        return entry

    def _resolve_turn(self, phase: SessionPhase, message: str) -> List[SessionEvent]:
        """Append a final assistant entry, pass through a terminal phase, return to Idle"""
        events = [self._set_phase(phase)]
        entry = self._new_entry(Role.ASSISTANT, message)
        self._entries.append(entry)
        events.append(self._event("entry_added", entry))
        track_turn(phase.value)
        events.append(self._set_phase(SessionPhase.IDLE))
        return events

    def _open_assistant_entry(self) -> ConversationEntry:
        entry = ConversationEntry(
            id=str(uuid4()),
            role=Role.ASSISTANT,
            status=EntryStatus.STREAMING
        )
        self._entries.append(entry)
        self._in_flight = entry
        return entry

    def _new_entry(self, role: Role, content: str) -> ConversationEntry:
        return ConversationEntry(
            id=str(uuid4()),
            role=role,
            content=content,
            render_document=[TextSegment(text=content)],
            status=EntryStatus.FINAL
        )

    def _render(self, entry: ConversationEntry, document: str, references):
        entry.content = document
        entry.render_document = derive_segments(
            document,
            self._products,
            self._settings.UNKNOWN_PRODUCT_POLICY
        )
        entry.referenced_ids = _unique(references)

    def _set_phase(self, phase: SessionPhase) -> SessionEvent:
        self._phase = phase
        logger.debug("Session phase changed", session_id=self.session_id, phase=phase.value)
        return SessionEvent(type="phase_changed", session_id=self.session_id, phase=phase)

    def _event(self, event_type: str, entry: ConversationEntry) -> SessionEvent:
        return SessionEvent(
            type=event_type,
            session_id=self.session_id,
            phase=self._phase,
            entry=entry.model_copy(deep=True)
        )


class SessionRegistry:
    """
    Sessions keyed by id, one per chat widget.

    Sessions idle for longer than ``ttl_seconds`` are evicted, and beyond
    ``max_sessions`` the least recently used ones go first. A session in
    the middle of a turn is never evicted.
    """

    def __init__(
        self,
        factory: Callable[[Optional[str]], ConversationSession],
        ttl_seconds: Optional[float] = None,
        max_sessions: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._factory = factory
        self._ttl_seconds = ttl_seconds
        self._max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, ConversationSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, session_id: Optional[str] = None) -> ConversationSession:
        self.evict()
        session = self._factory(session_id)
        self._sessions[session.session_id] = session
        self._touch(session.session_id)
        self._prune_to_capacity(keep=session.session_id)
        logger.info("Session created", session_id=session.session_id, sessions=len(self._sessions))
        return session

    def get(self, session_id: str) -> Optional[ConversationSession]:
        self.evict()
        session = self._sessions.get(session_id)
        if session is not None:
            self._touch(session_id)
        return session

    def get_or_create(self, session_id: Optional[str] = None) -> ConversationSession:
        if session_id:
            session = self.get(session_id)
            if session is not None:
                return session
        return self.create(session_id)

    def remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info("Session removed", session_id=session_id)
        return True

    def evict(self) -> List[str]:
        """Drop sessions idle past the TTL; returns the evicted ids"""
        if self._ttl_seconds is None:
            return []

        cutoff = self._clock() - self._ttl_seconds
        expired = [
            session_id for session_id, seen in self._last_seen.items()
            if seen < cutoff and not self._sessions[session_id].busy
        ]
        for session_id in expired:
            logger.info("Evicting idle session", session_id=session_id)
            self.remove(session_id)
        return expired

    def close_all(self):
        for session_id in list(self._sessions):
            self.remove(session_id)

    def _touch(self, session_id: str):
        # Re-insert so iteration order is least recently used first
        self._last_seen.pop(session_id, None)
        self._last_seen[session_id] = self._clock()

    def _prune_to_capacity(self, keep: str):
        if self._max_sessions is None:
            return
        for session_id in list(self._last_seen):
            if len(self._sessions) <= self._max_sessions:
                break
            if session_id == keep or self._sessions[session_id].busy:
                continue
            logger.info("Evicting least recently used session", session_id=session_id)
            self.remove(session_id)
