"""
Session Memory Store

Per-session conversation history, a user preference snapshot and learning
insights derived from the history.

Ordering: every read that returns ConversationEntries returns them
most-recent-first. Entries of one session are never visible from another.
"""

import re
import threading
from collections import Counter
from dataclasses import asdict, replace
from datetime import datetime, timedelta
from typing import Any

import structlog

from adaptive_agent.core.domain.buffers import RingBuffer
from adaptive_agent.core.domain.models import (
    ConversationEntry,
    ConversationOutcome,
    LearningInsights,
    UserPreferences,
    new_id,
)

DEFAULT_HISTORY_PER_SESSION = 1000

TRACKED_TECHNOLOGIES = (
    "python",
    "typescript",
    "javascript",
    "react",
    "vue",
    "angular",
    "node",
    "nextjs",
    "django",
    "fastapi",
)


class SessionMemory:
    """
    In-process conversation memory keyed by session id.

    Each session keeps at most ``max_entries_per_session`` entries; older
    entries are evicted first.
    """

    def __init__(self, max_entries_per_session: int = DEFAULT_HISTORY_PER_SESSION):
        self.max_entries_per_session = max_entries_per_session
        self._conversations: dict[str, RingBuffer[ConversationEntry]] = {}
        self._preferences = UserPreferences()
        self._lock = threading.Lock()
        self.logger = structlog.get_logger().bind(component="session_memory")

    # ------------------------------------------------------------------
    # Conversation history
    # ------------------------------------------------------------------

    def add_conversation_entry(
        self,
        session_id: str,
        request: str,
        response: str,
        context_snapshot: dict[str, Any] | None = None,
        outcome: ConversationOutcome | None = None,
    ) -> str:
        """Append a turn to the session and return its entry id."""
        entry = ConversationEntry(
            entry_id=new_id("conv"),
            session_id=session_id,
            request=request,
            response=response,
            context=dict(context_snapshot or {}),
            outcome=outcome,
        )
        with self._lock:
            buffer = self._conversations.get(session_id)
            if buffer is None:
                buffer = RingBuffer(self.max_entries_per_session)
                self._conversations[session_id] = buffer
        buffer.append(entry)

        self.logger.debug(
            "conversation_entry_added",
            session_id=session_id,
            entry_id=entry.entry_id,
            request_length=len(request),
        )
        return entry.entry_id

    def get_relevant_context(
        self, session_id: str, request: str, limit: int = 10
    ) -> list[ConversationEntry]:
        """
        Return the most recent ``limit`` entries of the session.

        The request text is accepted for interface stability; selection is
        purely by recency. Use search_history() for keyword relevance.
        """
        return self.get_conversation_history(session_id, limit)

    def get_conversation_history(self, session_id: str, limit: int = 50) -> list[ConversationEntry]:
        buffer = self._get_buffer(session_id)
        if buffer is None or limit <= 0:
            return []
        return list(reversed(buffer.latest(limit)))

    def search_history(
        self, session_id: str, query: str, limit: int = 10
    ) -> list[ConversationEntry]:
        """
        Rank the session's entries by keyword overlap with ``query``.

        Each query word found in the request or response scores one point;
        entries younger than five hours get up to five extra points.
        Ties keep most-recent-first order.
        """
        entries = self.get_conversation_history(session_id, self.max_entries_per_session)
        if not entries:
            return []

        words = [w for w in query.lower().split() if w]
        now = datetime.now()

        def score(entry: ConversationEntry) -> float:
            text = f"{entry.request} {entry.response}".lower()
            hits = sum(1 for word in words if word in text)
            hours = (now - entry.timestamp).total_seconds() / 3600
            return hits + max(0.0, 5 - hours)

        return sorted(entries, key=score, reverse=True)[:limit]

    def update_conversation_outcome(self, entry_id: str, outcome: ConversationOutcome) -> bool:
        """Replace the outcome of an entry; returns False if no entry matches."""
        with self._lock:
            buffers = list(self._conversations.items())
        for session_id, buffer in buffers:
            updated = buffer.update_first(
                lambda entry: entry.entry_id == entry_id,
                lambda entry: replace(entry, outcome=outcome),
            )
            if updated is None:
                continue
            self.logger.debug(
                "conversation_outcome_updated",
                session_id=session_id,
                entry_id=entry_id,
                success=outcome.success,
            )
            return True
        return False

    # ------------------------------------------------------------------
    # Preferences and insights
    # ------------------------------------------------------------------

    def get_user_preferences(self) -> UserPreferences:
        with self._lock:
            return replace(self._preferences)

    def update_user_preferences(self, **updates: Any) -> UserPreferences:
        known = set(asdict(self._preferences))
        unknown = set(updates) - known
        if unknown:
            raise ValueError(f"Unknown preference fields: {', '.join(sorted(unknown))}")
        with self._lock:
            self._preferences = replace(self._preferences, **updates)
            preferences = replace(self._preferences)
        self.logger.debug("user_preferences_updated", fields=sorted(updates))
        return preferences

    def get_learning_insights(self, session_id: str) -> LearningInsights:
        entries = self.get_conversation_history(session_id, self.max_entries_per_session)
        if not entries:
            return LearningInsights()

        successful = [e for e in entries if e.outcome and e.outcome.success]
        failed = [e for e in entries if not (e.outcome and e.outcome.success)]

        return LearningInsights(
            successful_patterns=self._extract_patterns([e.response for e in successful]),
            common_issues=self._extract_patterns([e.request for e in failed]),
            improvement_areas=self._analyze_improvement_areas(entries[:20]),
            user_behavior_patterns=self._analyze_user_behavior(entries[:50]),
        )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def clear_session(self, session_id: str) -> None:
        with self._lock:
            self._conversations.pop(session_id, None)
        self.logger.debug("session_memory_cleared", session_id=session_id)

    def clear_old_data(self, older_than_days: int = 30) -> int:
        """Drop entries older than the cutoff; returns the number removed."""
        cutoff = datetime.now() - timedelta(days=older_than_days)
        removed = 0
        with self._lock:
            for session_id in list(self._conversations):
                buffer = self._conversations[session_id]
                removed += buffer.retain(lambda e: e.timestamp >= cutoff)
                if len(buffer) == 0:
                    del self._conversations[session_id]
        self.logger.debug("old_memory_cleared", older_than_days=older_than_days, removed=removed)
        return removed

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._conversations)

    def _get_buffer(self, session_id: str) -> RingBuffer[ConversationEntry] | None:
        with self._lock:
            return self._conversations.get(session_id)

    @staticmethod
    def _extract_patterns(texts: list[str], top: int = 10) -> list[str]:
        counts: Counter[str] = Counter()
        for text in texts:
            counts.update(w for w in re.findall(r"\w+", text.lower()) if len(w) > 3)
        return [word for word, _ in counts.most_common(top)]

    @staticmethod
    def _analyze_improvement_areas(recent: list[ConversationEntry]) -> list[str]:
        areas: list[str] = []
        if not recent:
            return areas

        failures = sum(1 for e in recent if not (e.outcome and e.outcome.success))
        if failures / len(recent) > 0.3:
            areas.append("High failure rate detected - consider reviewing error handling")

        slow = sum(1 for e in recent if e.context.get("duration_ms", 0) > 10_000)
        if slow > len(recent) * 0.2:
            areas.append("Slow response times detected - consider optimization")

        return areas

    @staticmethod
    def _analyze_user_behavior(recent: list[ConversationEntry]) -> list[str]:
        patterns: list[str] = []
        if not recent:
            return patterns

        average_length = sum(len(e.request) for e in recent) / len(recent)
        if average_length > 500:
            patterns.append("User tends to provide detailed, complex requests")
        elif average_length < 100:
            patterns.append("User prefers concise, direct communication")

        mentions: Counter[str] = Counter()
        for entry in recent:
            text = entry.request.lower()
            mentions.update(tech for tech in TRACKED_TECHNOLOGIES if tech in text)
        if mentions:
            top_tech, _ = mentions.most_common(1)[0]
            patterns.append(f"Frequently mentions {top_tech} technology")

        return patterns
