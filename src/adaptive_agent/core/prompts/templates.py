"""
Prompt Templates - Default Template Set

One template per category. Placeholders use ``${name}`` and are filled with
string.Template.safe_substitute, so a template may reference any subset of:
request, conversation_history, user_preferences, learning_insights,
project_state, current_step, previous_results, constraints, session_id.

Usage:
    from adaptive_agent.core.prompts.templates import default_templates

    for template in default_templates():
        engine.add_template(template)
"""

from dataclasses import dataclass, field
from datetime import datetime

ANALYSIS_BASIC_PROMPT = """Analyze the following user request and provide a structured breakdown:

User Request: ${request}

Please provide:
1. Main purpose and goals
2. Key features needed
3. Technical requirements
4. Potential challenges
5. Recommended approach

Format your response as a structured analysis."""

PLANNING_COMPREHENSIVE_PROMPT = """Create a detailed execution plan for the following request:

User Request: ${request}
Context: ${conversation_history}

Based on the analysis and context, create a step-by-step plan that includes:
1. Prerequisites and dependencies
2. Main implementation steps
3. Testing and validation steps
4. Risk mitigation strategies
5. Success criteria

Consider the user's preferences: ${user_preferences}
Learning from previous interactions: ${learning_insights}"""

EXECUTION_FOCUSED_PROMPT = """Execute the following task with precision and attention to detail:

Task: ${request}
Current Step: ${current_step}
Previous Results: ${previous_results}
Recent Conversation:
${conversation_history}

Requirements:
- Follow best practices for ${project_state}
- Consider user preferences: ${user_preferences}
- Apply lessons from similar tasks: ${learning_insights}
- Respect these constraints: ${constraints}

Provide a complete, working solution that meets all requirements."""

VALIDATION_THOROUGH_PROMPT = """Validate the following implementation thoroughly:

Implementation Details: ${previous_results}
Original Requirements: ${request}
Project Context: ${project_state}

Perform comprehensive validation including:
1. Functional correctness
2. Code quality and best practices
3. Error handling and edge cases
4. Performance considerations
5. Security implications
6. Compatibility with existing codebase

Provide detailed feedback and recommendations for improvements."""

COMPLEXITY_BOOST_SUFFIX = (
    "\n\nIMPORTANT: This is a complex request. Take extra time to ensure "
    "comprehensive coverage and consider edge cases."
)
DETAILED_STYLE_SUFFIX = "\n\nProvide detailed explanations and comprehensive documentation."
CONCISE_STYLE_SUFFIX = "\n\nBe concise and focus on essential information only."
INSIGHTS_SUFFIX = "\n\nBased on successful past interactions, consider incorporating: ${patterns}"


@dataclass
class PromptTemplate:
    """
    A prompt template.

    Attributes:
        template_id: Unique id
        name: Human-readable name
        category: analysis | planning | execution | validation
        body: Template text with ``${var}`` placeholders
        complexity: Nominal complexity 1..10 of the expected answer
        success_rate: Running success rate, updated from feedback
        usage_count: Number of prompts generated from this template
    """

    template_id: str
    name: str
    category: str
    body: str
    complexity: int = 5
    success_rate: float = 0.85
    usage_count: int = 0
    last_modified: datetime = field(default_factory=datetime.now)


def default_templates() -> list[PromptTemplate]:
    return [
        PromptTemplate(
            template_id="analysis_basic",
            name="Basic Request Analysis",
            category="analysis",
            body=ANALYSIS_BASIC_PROMPT,
            complexity=3,
            success_rate=0.85,
        ),
        PromptTemplate(
            template_id="planning_comprehensive",
            name="Comprehensive Planning",
            category="planning",
            body=PLANNING_COMPREHENSIVE_PROMPT,
            complexity=7,
            success_rate=0.90,
        ),
        PromptTemplate(
            template_id="execution_focused",
            name="Focused Execution",
            category="execution",
            body=EXECUTION_FOCUSED_PROMPT,
            complexity=6,
            success_rate=0.88,
        ),
        PromptTemplate(
            template_id="validation_thorough",
            name="Thorough Validation",
            category="validation",
            body=VALIDATION_THOROUGH_PROMPT,
            complexity=5,
            success_rate=0.92,
        ),
    ]
