"""Translator - natural language to SQL using an LLM.

The LLM proposes SQL; the SafetyValidator decides whether it may run.

Architecture:
    question + last 3 question/answer pairs
         |
    ContextBuilder (schema + curated metadata)  ->  system instruction
         |
    LLMProvider.complete (temperature 0)
         |
    extract_json  --(unparsable)-->  one retry with a JSON-only reminder
         |
    TranslationResult (exactly one of sql / error)

Failure semantics:
- Context-building failures (configuration, connection, introspection)
  propagate to the caller
- LLM transport failures and timeouts come back as TranslationResult.error,
  without retry
- Unparsable output is retried exactly once, then reported in-band with an
  excerpt of the last reply
"""
import json
import logging
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError

from .config import Settings, settings as default_settings
from .context_builder import ContextBuilder
from .deadline import Deadline
from .llm.base import LLMError, LLMProvider, LLMTimeoutError
from .schemas import ConversationTurn, PipelineState
from .schemas_translation import TranslationResult
from .tenants import TenantConfigResolver

logger = logging.getLogger(__name__)

RETRY_INSTRUCTION = (
    "\n\nIMPORTANT: Your previous response was not valid JSON. Return ONLY a JSON object "
    "with no other text, explanations, or markdown formatting."
)

REQUIRED_KEYS = ("explanation", "assumptions")


def build_system_prompt(context: str, database: str, schema: str, max_rows: int) -> str:
    """System instruction: schema context, SQL rules and the reply format."""
    return f"""You are an expert SQL analyst that translates natural language questions into Snowflake SQL queries.
You deeply understand the business context and data model described below.

{context}

## Rules

1. ONLY generate SELECT statements (or WITH ... SELECT). Never INSERT, UPDATE, DELETE, DROP, CREATE, ALTER, or any DDL/DML.
2. Always fully qualify table names: {database}.{schema}."TABLE_NAME"
3. Use double quotes around identifiers.
4. Limit results to {max_rows} rows unless the user specifies otherwise.
5. Use meaningful column aliases for aggregations (e.g. total_cost, member_count).
6. When the user uses business terms or synonyms, map them to the correct columns using the metadata above.
7. Respect the documented table grain; do not double-count by ignoring join cardinality.
8. Apply common filters when contextually appropriate.
9. Use the documented join paths when combining tables.
10. If a question is ambiguous, use the business glossary and column descriptions to make the best interpretation, and note your assumptions.
11. If you genuinely cannot answer with the available schema, explain why in "error".

## Response Format

CRITICAL: Respond with ONLY a JSON object. Do not include any text before or after the JSON. Do not wrap it in markdown code blocks.

Format for successful queries:
{{
    "sql": "YOUR SQL QUERY",
    "explanation": "Brief explanation in plain English",
    "assumptions": ["any assumptions you made"],
    "error": null
}}

Format when you cannot generate SQL:
{{
    "sql": null,
    "explanation": null,
    "assumptions": [],
    "error": "Why the query cannot be generated"
}}

Example valid response:
{{"sql": "SELECT COUNT(*) AS member_count FROM {database}.{schema}.\\"MEMBERS\\" LIMIT 100", "explanation": "Counts total members", "assumptions": ["All members in table"], "error": null}}"""


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if not cleaned.startswith("```"):
        return cleaned
    lines = cleaned.split("\n")
    lines.pop(0)
    if lines and lines[-1].strip() == "```":
        lines.pop()
    return "\n".join(lines).strip()


def _first_object(text: str) -> Optional[Dict[str, Any]]:
    """First decodable top-level JSON object in text, ignoring prose around it."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except ValueError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def extract_json(text: str) -> Optional[TranslationResult]:
    """Parse a model reply into a TranslationResult, or None if it is unusable.

    Handles raw JSON, fenced code blocks and prose around one object. The
    object must carry explanation, assumptions and one of sql / error, with
    exactly one of sql / error non-null.

    Example:
        >>> extract_json('Here you go: {"sql": "SELECT 1", "explanation": "one", '
        ...              '"assumptions": [], "error": null} Thanks!').sql
        'SELECT 1'
        >>> extract_json("I cannot help with that") is None
        True
    """
    if not text or not text.strip():
        return None

    parsed = _first_object(_strip_code_fence(text))
    if parsed is None:
        return None
    if not all(key in parsed for key in REQUIRED_KEYS):
        return None
    if "sql" not in parsed and "error" not in parsed:
        return None

    try:
        return TranslationResult(
            sql=parsed.get("sql"),
            explanation=parsed.get("explanation"),
            assumptions=parsed.get("assumptions"),
            error=parsed.get("error"),
        )
    except ValidationError:
        return None


def summarize_turn(turn: ConversationTurn) -> Optional[str]:
    """Reduce one prior turn to the text the model sees.

    User turns pass their question through. Assistant turns become a short
    summary of the earlier answer (error text, or SQL + explanation + row
    count) instead of the full JSON envelope. Returns None when there is
    nothing worth sending.
    """
    if turn.role == "user":
        return turn.text or None

    response = turn.response
    if response is None:
        return turn.text or None
    if response.error:
        return f"I encountered an error: {response.error}"
    if not response.sql:
        return None

    summary = f"I generated this SQL:\n{response.sql}"
    if response.explanation:
        summary += f"\n\nExplanation: {response.explanation}"
    if response.state != PipelineState.SKIP_EXECUTE:
        plural = "" if response.row_count == 1 else "s"
        summary += f"\n\nQuery returned {response.row_count} row{plural}."
    return summary


def build_history_messages(history: Sequence[ConversationTurn], max_turns: int = 6) -> list[Dict[str, str]]:
    """Chat messages for the last max_turns turns of a conversation.

    Older turns are discarded. Leading assistant turns are dropped and
    consecutive turns of the same role are merged so the list alternates and
    starts with a user message, as chat APIs require.
    """
    window = list(history)[-max_turns:] if max_turns > 0 else []
    messages: list[Dict[str, str]] = []
    for turn in window:
        content = summarize_turn(turn)
        if not content:
            continue
        if not messages and turn.role != "user":
            continue
        if messages and messages[-1]["role"] == turn.role:
            messages[-1]["content"] += "\n\n" + content
        else:
            messages.append({"role": turn.role, "content": content})
    return messages


class Translator:
    """Generate SQL from natural language for one tenant.

    Example:
        >>> from snowquery.llm.providers import MockProvider
        >>> provider = MockProvider(responses=[
        ...     '{"sql": "SELECT COUNT(*) FROM ANALYTICS_DB.PUBLIC.\\"MEMBERS\\"", '
        ...     '"explanation": "Counts members", "assumptions": [], "error": null}'
        ... ])
        >>> translator = Translator(resolver, context_builder, provider)
        >>> translator.translate("How many members are there?", "acme").sql
        'SELECT COUNT(*) FROM ANALYTICS_DB.PUBLIC."MEMBERS"'
    """

    def __init__(
        self,
        resolver: TenantConfigResolver,
        context_builder: ContextBuilder,
        llm_provider: LLMProvider,
        settings: Optional[Settings] = None
    ):
        """Initialize translator.

        Args:
            resolver: Tenant config resolver (database/schema/row cap for the rules)
            context_builder: Produces the schema document
            llm_provider: Language-model service
            settings: Timeouts, history window and attempt count (default: from env)
        """
        self._resolver = resolver
        self._context_builder = context_builder
        self._llm = llm_provider
        self._settings = settings or default_settings

    def translate(
        self,
        question: str,
        tenant_id: str,
        history: Sequence[ConversationTurn] = (),
        deadline: Optional[Deadline] = None
    ) -> TranslationResult:
        """Translate a question into a TranslationResult.

        Args:
            question: User's question in natural language
            tenant_id: Tenant whose schema to translate against
            history: Prior turns, oldest first; only the last window is used
            deadline: Request deadline; each model call gets
                min(translation timeout, time remaining)

        Returns:
            TranslationResult with sql set, or with error set
            and with the token counts and cost of every model call made

        Raises:
            ConfigurationError: No usable tenant config
            ConnectionError: Warehouse unreachable while refreshing the schema
            IntrospectionError: Schema refresh failed
            TimeoutError: Request deadline ran out before a model call
        """
        deadline = deadline or Deadline.unbounded()
        resolved = self._resolver.resolve(tenant_id)
        config = resolved.config
        context = self._context_builder.build(tenant_id, resolved=resolved)
        system = build_system_prompt(context, config.database, config.default_schema, config.max_rows_per_query)

        messages = build_history_messages(history, self._settings.history_turns)
        if messages and messages[-1]["role"] == "user":
            messages[-1] = {"role": "user", "content": messages[-1]["content"] + "\n\n" + question}
        else:
            messages.append({"role": "user", "content": question})

        attempts = self._settings.max_translation_attempts
        text = ""
        tokens_input = tokens_output = 0
        cost_usd = 0.0
        for attempt in range(1, attempts + 1):
            timeout = deadline.budget(self._settings.translation_timeout_seconds, stage="translation")
            try:
                text, usage = self._llm.complete(
                    system if attempt == 1 else system + RETRY_INSTRUCTION,
                    messages,
                    timeout=timeout,
                    temperature=0.0,
                    max_tokens=self._settings.llm_max_tokens,
                )
            except LLMTimeoutError:
                logger.warning("Translation timed out after %.1fs for tenant %s", timeout, tenant_id)
                return TranslationResult.failure(
                    f"Query generation timed out after {timeout:.0f}s. Please try a simpler question."
                ).with_usage(tokens_input, tokens_output, cost_usd)
            except LLMError as e:
                logger.error("Translation failed for tenant %s: %s", tenant_id, e)
                return TranslationResult.failure(
                    f"SQL generation error: {e.message}"
                ).with_usage(tokens_input, tokens_output, cost_usd)

            tokens_input += usage.input_tokens
            tokens_output += usage.output_tokens
            cost_usd += usage.estimated_cost_usd
            parsed = extract_json(text)
            if parsed is not None:
                logger.info("Translation succeeded for tenant %s on attempt %d", tenant_id, attempt)
                logger.debug("Generated SQL: %s", parsed.sql)
                return parsed.with_usage(tokens_input, tokens_output, cost_usd)
            logger.warning("Unparsable model reply for tenant %s (attempt %d/%d)", tenant_id, attempt, attempts)

        return TranslationResult.failure(
            f"Failed to parse response after {attempts} attempts. Last response: {text[:500]}"
        ).with_usage(tokens_input, tokens_output, cost_usd)

    @property
    def model_name(self) -> str:
        """Return the name of the underlying LLM model."""
        return self._llm.model_name
