"""
Prompt Engine

Builds the instruction text sent to the completion provider. A template is
selected for the requested category, adapted with rules driven by the
request, the user's preferences and the session's learning insights, and
then filled with ``${var}`` values.

Prompt synthesis never blocks execution: if anything fails, the raw request
is returned verbatim with ``optimization_score=50`` and
``metadata["fallback"] = True``.
"""

import json
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from string import Template
from typing import Any, Callable

import structlog

from adaptive_agent.core.domain.buffers import RingBuffer
from adaptive_agent.core.domain.errors import PromptSynthesisFallbackError
from adaptive_agent.core.domain.models import (
    ConversationEntry,
    LearningInsights,
    UserPreferences,
    new_id,
)
from adaptive_agent.core.memory.session_memory import SessionMemory
from adaptive_agent.core.prompts.templates import (
    COMPLEXITY_BOOST_SUFFIX,
    CONCISE_STYLE_SUFFIX,
    DETAILED_STYLE_SUFFIX,
    INSIGHTS_SUFFIX,
    PromptTemplate,
    default_templates,
)

FALLBACK_SCORE = 50.0
COMPLEX_REQUEST_LENGTH = 500
HISTORY_ENTRIES_IN_PROMPT = 5
DEFAULT_PROMPT_HISTORY = 50


@dataclass
class PromptContext:
    """Inputs for prompt synthesis."""

    session_id: str
    request: str
    project_state: dict[str, Any] | None = None
    current_step: str | None = None
    previous_results: list[Any] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    user_preferences: dict[str, Any] | None = None
    history: list[ConversationEntry] | None = None
    preferences: UserPreferences | None = None
    insights: LearningInsights | None = None


@dataclass(frozen=True)
class OptimizedPrompt:
    """
    Synthesized prompt.

    Attributes:
        prompt_id: Unique id of this prompt
        final_prompt: Text sent to the provider
        optimization_score: 0..100; exactly 50 for the fallback prompt
        template_id: Template used (None for the fallback)
        context_used: Names of the context sources that went into the prompt
        applied_rules: Adaptation rules that changed the template
        metadata: Free-form details; ``fallback`` is always present
    """

    prompt_id: str
    final_prompt: str
    optimization_score: float
    template_id: str | None = None
    context_used: tuple[str, ...] = ()
    applied_rules: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_fallback(self) -> bool:
        return bool(self.metadata.get("fallback"))


@dataclass
class _SynthesisInputs:
    context: PromptContext
    history: list[ConversationEntry]
    preferences: UserPreferences
    insights: LearningInsights


@dataclass(frozen=True)
class AdaptationRule:
    rule_id: str
    applies: Callable[[_SynthesisInputs], bool]
    adapt: Callable[[str, _SynthesisInputs], str]


def _complexity_boost(body: str, inputs: _SynthesisInputs) -> str:
    return body + COMPLEXITY_BOOST_SUFFIX


def _preference_alignment(body: str, inputs: _SynthesisInputs) -> str:
    style = inputs.preferences.communication_style
    if style == "detailed":
        return body + DETAILED_STYLE_SUFFIX
    if style == "concise":
        return body + CONCISE_STYLE_SUFFIX
    return body


def _learning_insights(body: str, inputs: _SynthesisInputs) -> str:
    patterns = ", ".join(inputs.insights.successful_patterns[:3])
    # Escape "$" in patterns so they survive the later substitution pass.
    return body + Template(INSIGHTS_SUFFIX).substitute(patterns=patterns.replace("$", "$$"))


DEFAULT_RULES = (
    AdaptationRule(
        "complexity_boost",
        lambda i: len(i.context.request) > COMPLEX_REQUEST_LENGTH,
        _complexity_boost,
    ),
    AdaptationRule(
        "preference_alignment",
        lambda i: bool(i.preferences.communication_style),
        _preference_alignment,
    ),
    AdaptationRule(
        "learning_insights",
        lambda i: bool(i.insights.successful_patterns),
        _learning_insights,
    ),
)


class PromptEngine:
    """
    Template registry plus adaptation rules.

    Args:
        memory: Session memory providing history, preferences and insights
        templates: Initial templates (defaults to one per category)
        history_size: Generated prompts kept per session
    """

    def __init__(
        self,
        memory: SessionMemory,
        templates: list[PromptTemplate] | None = None,
        history_size: int = DEFAULT_PROMPT_HISTORY,
    ):
        self.memory = memory
        self.history_size = history_size
        self._templates: dict[str, PromptTemplate] = {}
        self._history: dict[str, RingBuffer[OptimizedPrompt]] = {}
        self._rules: list[AdaptationRule] = list(DEFAULT_RULES)
        self._lock = threading.Lock()
        self.logger = structlog.get_logger().bind(component="prompt_engine")

        for template in default_templates() if templates is None else templates:
            self.add_template(template)

    def generate_optimized_prompt(self, kind: str, context: PromptContext) -> OptimizedPrompt:
        """
        Synthesize a prompt of category ``kind`` for the request.

        Returns:
            The optimized prompt, or the fallback prompt if synthesis failed.
        """
        try:
            prompt = self._synthesize(kind, context)
        except PromptSynthesisFallbackError as e:
            self.logger.warning(
                "prompt_synthesis_fallback",
                session_id=context.session_id,
                kind=kind,
                error=str(e),
            )
            prompt = OptimizedPrompt(
                prompt_id=new_id("prompt"),
                final_prompt=context.request,
                optimization_score=FALLBACK_SCORE,
                metadata={"fallback": True, "reason": str(e)},
            )

        self._store_history(context.session_id, prompt)
        self.logger.debug(
            "optimized_prompt_generated",
            session_id=context.session_id,
            kind=kind,
            template_id=prompt.template_id,
            optimization_score=prompt.optimization_score,
            fallback=prompt.is_fallback,
        )
        return prompt

    def learn_from_feedback(
        self, session_id: str, prompt_id: str, success: bool, quality: float | None = None
    ) -> bool:
        """
        Fold an outcome into the success rate of the template behind a prompt.

        Returns:
            False if the prompt is unknown or was a fallback prompt.
        """
        prompt = next(
            (p for p in self.get_prompt_history(session_id) if p.prompt_id == prompt_id), None
        )
        if prompt is None or prompt.template_id is None:
            return False

        with self._lock:
            template = self._templates.get(prompt.template_id)
            if template is None:
                return False
            uses = max(template.usage_count, 1)
            template.success_rate = (template.success_rate * uses + (1 if success else 0)) / (uses + 1)
            template.last_modified = datetime.now()
            new_rate = template.success_rate

        self.logger.debug(
            "prompt_feedback_learned",
            session_id=session_id,
            template_id=prompt.template_id,
            success=success,
            quality=quality,
            success_rate=round(new_rate, 3),
        )
        return True

    def get_prompt_history(self, session_id: str, limit: int = DEFAULT_PROMPT_HISTORY) -> list[OptimizedPrompt]:
        """Most recent prompts for a session, newest first."""
        with self._lock:
            history = self._history.get(session_id)
        if history is None:
            return []
        return list(reversed(history.latest(limit)))

    # ------------------------------------------------------------------
    # Template management
    # ------------------------------------------------------------------

    def add_template(self, template: PromptTemplate) -> None:
        with self._lock:
            self._templates[template.template_id] = template
        self.logger.debug("prompt_template_added", template_id=template.template_id, category=template.category)

    def remove_template(self, template_id: str) -> None:
        with self._lock:
            self._templates.pop(template_id, None)
        self.logger.debug("prompt_template_removed", template_id=template_id)

    def get_template(self, template_id: str) -> PromptTemplate | None:
        with self._lock:
            template = self._templates.get(template_id)
        return replace(template) if template else None

    def get_templates_by_category(self, category: str) -> list[PromptTemplate]:
        with self._lock:
            return [replace(t) for t in self._templates.values() if t.category == category]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _synthesize(self, kind: str, context: PromptContext) -> OptimizedPrompt:
        try:
            inputs = self._gather_inputs(context)
            template = self._select_template(kind, inputs)

            body = template.body
            applied = []
            for rule in self._rules:
                if rule.applies(inputs):
                    body = rule.adapt(body, inputs)
                    applied.append(rule.rule_id)

            final_prompt = Template(body).safe_substitute(self._variables(inputs))
            score = self._optimization_score(template, inputs)
        except Exception as e:
            raise PromptSynthesisFallbackError(f"Prompt synthesis failed for '{kind}': {e}") from e

        return OptimizedPrompt(
            prompt_id=new_id("prompt"),
            final_prompt=final_prompt,
            optimization_score=score,
            template_id=template.template_id,
            context_used=tuple(self._context_used(inputs)),
            applied_rules=tuple(applied),
            metadata={"fallback": False, "kind": kind, "template_name": template.name},
        )

    def _gather_inputs(self, context: PromptContext) -> _SynthesisInputs:
        """Use enriched values carried on the context; look up the rest in memory."""
        history = context.history
        if history is None:
            history = self.memory.get_relevant_context(context.session_id, context.request)
        preferences = context.preferences
        if preferences is None:
            preferences = self.memory.get_user_preferences()
        insights = context.insights
        if insights is None:
            insights = self.memory.get_learning_insights(context.session_id)
        return _SynthesisInputs(context, history, preferences, insights)

    def _select_template(self, kind: str, inputs: _SynthesisInputs) -> PromptTemplate:
        with self._lock:
            candidates = [t for t in self._templates.values() if t.category == kind]
            if not candidates:
                raise LookupError(f"No templates for category: {kind}")
            template = max(candidates, key=lambda t: self._template_fit(t, inputs))
            template.usage_count += 1
            return replace(template)

    @staticmethod
    def _template_fit(template: PromptTemplate, inputs: _SynthesisInputs) -> float:
        score = template.success_rate * 100
        if inputs.history:
            score += 10

        style = inputs.preferences.communication_style
        if style == "detailed" and template.complexity > 5:
            score += 15
        if style == "concise" and template.complexity < 5:
            score += 15

        words = template.body.lower().split()
        for pattern in inputs.insights.successful_patterns:
            if any(pattern.lower() in word for word in words):
                score += 5

        days_since_modified = (datetime.now() - template.last_modified).total_seconds() / 86400
        return score + max(0.0, 10 - days_since_modified)

    @staticmethod
    def _optimization_score(template: PromptTemplate, inputs: _SynthesisInputs) -> float:
        score = 50 + template.success_rate * 30 + min(20, template.usage_count / 10)
        if inputs.history:
            score += 15
        score += 10  # preference snapshot is always available
        if not inputs.insights.is_empty:
            score += 10
        return round(min(100.0, max(0.0, score)), 1)

    @staticmethod
    def _variables(inputs: _SynthesisInputs) -> dict[str, str]:
        context = inputs.context
        preferences = asdict(inputs.preferences)
        if context.user_preferences:
            preferences.update(context.user_preferences)
        return {
            "request": context.request,
            "session_id": context.session_id,
            "project_state": json.dumps(context.project_state or {}, default=str),
            "conversation_history": format_history(inputs.history),
            "user_preferences": json.dumps(preferences, default=str),
            "learning_insights": json.dumps(asdict(inputs.insights), default=str),
            "current_step": context.current_step or "unknown",
            "previous_results": json.dumps(context.previous_results, default=str),
            "constraints": ", ".join(context.constraints),
        }

    @staticmethod
    def _context_used(inputs: _SynthesisInputs) -> list[str]:
        used = ["user_preferences"]
        if inputs.history:
            used.append("conversation_history")
        if not inputs.insights.is_empty:
            used.append("learning_insights")
        if inputs.context.project_state:
            used.append("project_state")
        if inputs.context.previous_results:
            used.append("previous_results")
        if inputs.context.constraints:
            used.append("constraints")
        return used

    def _store_history(self, session_id: str, prompt: OptimizedPrompt) -> None:
        with self._lock:
            history = self._history.get(session_id)
            if history is None:
                history = RingBuffer(self.history_size)
                self._history[session_id] = history
        history.append(prompt)


def format_history(entries: list[ConversationEntry]) -> str:
    """Render up to five entries as ``User: ...`` / ``AI: ...`` pairs."""
    return "\n\n".join(
        f"User: {entry.request}\nAI: {entry.response}"
        for entry in entries[:HISTORY_ENTRIES_IN_PROMPT]
    )
