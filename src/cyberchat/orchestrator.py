from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

import requests

from .attachments import Attachment
from .commands import check_control_phrase, is_control_turn
from .config import AppConfig, ChatSettings
from .error_log import RotatingErrorLogger
from .events import Listener, TurnEvent
from .generation import GenerationClient, GenerationError
from .query_refiner import refine_search_query
from .schemas import ChatMessage
from .settings_sync import SettingsService
from .stream import StreamSession
from .transcript import TranscriptStore
from .turns import PLACEHOLDER_TEXT, Turn
from .uncertainty import UNCERTAINTY_PHRASES, is_uncertain
from .util import elapsed_seconds
from .web_search import SearchProvider, is_usable_result

log = logging.getLogger(__name__)

TRANSPORT_ERRORS = (GenerationError, requests.RequestException)

SYSTEM_PROMPT = (
    "You are CyberChat AI, a helpful and slightly futuristic AI assistant. "
    "Provide concise and informative responses. Your responses should be formatted using basic "
    "markdown (bold, italics, newlines, code blocks, etc.). Incorporate friendly emojis where "
    "appropriate in your final answer, but not in the reasoning part. If you are unsure or don't "
    "know the answer, clearly state that."
)
UNRESTRICTED_CLAUSE = (
    " Unrestricted mode is active for this session: give complete, in-depth answers and do not "
    "shorten them for brevity."
)
SYNTHESIS_PROMPT = (
    'You are CyberChat AI. The user asked: "{question}". You previously responded with some '
    'uncertainty: "{answer}". Web search results related to "{query}" are provided below. Please '
    "synthesize this information to provide a comprehensive answer to the user's original question. "
    "If the search results are irrelevant, state that and try to answer from your general knowledge "
    "if possible, or indicate you still cannot provide a definitive answer. Format your response "
    "using basic markdown and friendly emojis."
)

DEFAULT_REASONING = (
    "The AI processed the input, considered relevant information from its knowledge base and the "
    "conversation history, and generated the most appropriate response according to its programming "
    "and the provided context."
)
EMPTY_REASONING = "The AI service did not return a valid response or the response was empty."
MISSING_KEY_TEXT = (
    "API key not set. Please configure your OpenRouter API key in the AI Provider Settings."
)
MISSING_KEY_REASONING = (
    "API key check failed: The API key is missing from the settings. AI communication cannot "
    "proceed without a valid API key."
)
NO_RESPONSE_TEXT = "No response generated, or an issue occurred. Please check settings."
SEARCH_FALLBACK_TEXT = "Could not perform web search due to an internal error."
SUMMARY_FAILED_NOTE = "I found some information online, but had trouble summarizing it."


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_PRIMARY = "awaiting_primary"
    STREAMING_PRIMARY = "streaming_primary"
    CLASSIFYING = "classifying"
    AWAITING_SEARCH = "awaiting_search"
    SEARCHING = "searching"
    AWAITING_SECONDARY = "awaiting_secondary"
    STREAMING_SECONDARY = "streaming_secondary"
    SETTLING = "settling"


class OrchestratorBusyError(RuntimeError):
    pass


@dataclass
class _Outcome:
    text: str
    kind: str
    reasoning: str


@dataclass
class _Run:
    """Per-run state. `settings` is a snapshot taken when the run starts."""
    user_text: str
    message: str
    attachment: Attachment | None
    elevated: bool
    settings: ChatSettings
    prior: list[Turn]
    placeholder: Turn
    started: float = field(default_factory=time.perf_counter)
    session: StreamSession | None = None


def collapsible_block(query: str, findings: str) -> str:
    return f':::collapsible Web Search Results for "{query}"\n{findings}\n:::'


class TurnOrchestrator:
    """
    Drives one user turn from submission to a settled transcript entry.

    Flow: primary completion is streamed into a live placeholder turn. For
    elevated callers without attachments, an answer that admits uncertainty
    triggers a web search and a second streamed completion that synthesizes
    the findings. Exactly one run may be in flight at a time.
    """

    def __init__(
        self,
        transcript: TranscriptStore,
        settings: SettingsService,
        generator: GenerationClient,
        searcher: SearchProvider,
        config: AppConfig | None = None,
        error_logger: RotatingErrorLogger | None = None,
        listener: Listener | None = None,
    ) -> None:
        self.transcript = transcript
        self.settings = settings
        self.generator = generator
        self.searcher = searcher
        self.error_logger = error_logger
        self.listener = listener
        self.history_limit = config.history_limit if config else 10
        self.unlock_phrase = config.unlock_phrase if config else None
        self.lock_phrase = config.lock_phrase if config else None
        self.uncertainty_phrases = config.uncertainty_phrases if config else UNCERTAINTY_PHRASES
        self.unrestricted = False
        self.state = TurnState.IDLE
        self._run: _Run | None = None

    @property
    def is_loading(self) -> bool:
        return self._run is not None

    # ---- public operations

    def submit(self, text: str, attachment: Attachment | None = None, elevated: bool = False) -> Turn | None:
        """
        Run one user turn.

        Args:
            text: The user's message (may be empty when an attachment is given)
            attachment: Optional file handed to the model
            elevated: Caller holds creator privilege

        Returns:
            The settled assistant turn, or None for an empty submission

        Raises:
            OrchestratorBusyError: Another run is still in flight
        """
        text = text or ""
        user_text = text or (f"Attached: {attachment.name}" if attachment else "")
        if not user_text.strip() and not attachment:
            return None
        self._ensure_idle()

        prior = self._prior_turns()
        self.transcript.append(Turn.create(
            user_text,
            "user",
            kind="file_upload_request" if attachment else "text",
            attachment_name=attachment.name if attachment else None,
            attachment_payload=attachment.data_uri if attachment else None,
            attachment_preview=attachment.preview if attachment else None,
        ))
        placeholder = self.transcript.begin_live(Turn.create(PLACEHOLDER_TEXT, "assistant"))
        run = _Run(
            user_text=user_text,
            message=text,
            attachment=attachment,
            elevated=elevated,
            settings=self.settings.get(),
            prior=prior,
            placeholder=placeholder,
        )
        return self._execute(run, self._dispatch)

    def search_web(self, query: str) -> Turn | None:
        """Direct web search: settle a turn holding the formatted findings."""
        query = (query or "").strip()
        if not query:
            return None
        self._ensure_idle()

        prior = self._prior_turns()
        self.transcript.append(Turn.create(f'Initiating web search for: "{query}"', "user"))
        placeholder = self.transcript.begin_live(
            Turn.create(f'Searching the web for "{query}"...', "assistant", kind="search_result")
        )
        run = _Run(
            user_text=query,
            message=query,
            attachment=None,
            elevated=False,
            settings=self.settings.get(),
            prior=prior,
            placeholder=placeholder,
        )
        return self._execute(run, self._direct_search)

    def clear(self) -> None:
        self._ensure_idle()
        self.transcript.clear()
        log.info("Transcript cleared")

    def close_stream(self) -> None:
        """Close the open stream, if any. Safe from any state."""
        run = self._run
        if run is not None and run.session is not None:
            run.session.close()

    # ---- run lifecycle

    def _ensure_idle(self) -> None:
        if self.is_loading:
            raise OrchestratorBusyError("A turn is already in progress")

    def _execute(self, run: _Run, step) -> Turn:
        self._run = run
        outcome: _Outcome | None = None
        try:
            outcome = step(run)
        except Exception as e:
            log.exception(f"Unexpected failure in turn {run.placeholder.id}")
            outcome = self._fail(run, e)
        finally:
            self.close_stream()
            if outcome is None:
                outcome = _Outcome("Error: internal failure while processing the message.", "error",
                                   "An unexpected internal error interrupted the response.")
            turn = self._settle(run, outcome)
        return turn

    def _settle(self, run: _Run, outcome: _Outcome) -> Turn:
        self._set_state(TurnState.SETTLING)
        text, kind, reasoning = outcome.text, outcome.kind, outcome.reasoning
        if not text.strip() and kind != "error":
            text = NO_RESPONSE_TEXT
            if reasoning == DEFAULT_REASONING:
                reasoning = EMPTY_REASONING
            kind = "error"

        try:
            turn = self.transcript.settle(
                text=text,
                kind=kind,
                reasoning=reasoning,
                duration_seconds=elapsed_seconds(run.started),
            )
        finally:
            self._run = None
            self._set_state(TurnState.IDLE)
        log.info(f"Settled turn {turn.id} kind={turn.kind} in {turn.duration_seconds}s")
        self._emit({"type": "settled", "turn_id": turn.id, "turn": turn})
        return turn

    def _fail(self, run: _Run, error: BaseException) -> _Outcome:
        message = str(error) or "Failed to connect to AI."
        log.error(f"Turn {run.placeholder.id} failed during {self.state.value}: {message}")
        if self.error_logger is not None:
            self.error_logger.log(run.placeholder.id, self.state.value, error)
        return _Outcome(f"Error: {message}", "error", f"An error occurred: {message}")

    # ---- uncertainty-aware chat

    def _dispatch(self, run: _Run) -> _Outcome:
        if run.attachment is None:
            intercept = check_control_phrase(
                run.message, run.elevated, self.unrestricted, self.unlock_phrase, self.lock_phrase
            )
            if intercept is not None:
                self.unrestricted = intercept.unrestricted
                return _Outcome(intercept.reply, intercept.kind, intercept.reasoning)

        if not run.settings.has_api_key:
            log.warning("No API key configured; skipping completion request")
            return _Outcome(MISSING_KEY_TEXT, "error", MISSING_KEY_REASONING)

        history = self._history_messages(run.prior)
        system = SYSTEM_PROMPT + (UNRESTRICTED_CLAUSE if self.unrestricted else "")
        messages = [
            ChatMessage(role="system", content=system),
            *history,
            self._current_message(run.message, run.attachment),
        ]

        try:
            primary = self._stream(run, messages, TurnState.AWAITING_PRIMARY, TurnState.STREAMING_PRIMARY)
        except TRANSPORT_ERRORS as e:
            return self._fail(run, e)

        self._set_state(TurnState.CLASSIFYING)
        if not run.elevated or run.attachment is not None:
            return _Outcome(primary, "text", DEFAULT_REASONING)
        if not is_uncertain(primary, self.uncertainty_phrases):
            return _Outcome(primary, "text", DEFAULT_REASONING)

        return self._augment_with_search(run, history, primary)

    def _augment_with_search(self, run: _Run, history: list[ChatMessage], primary: str) -> _Outcome:
        reasoning = DEFAULT_REASONING + " Detected uncertainty in the initial response."

        self._set_state(TurnState.AWAITING_SEARCH)
        query = refine_search_query(run.user_text, run.prior)
        self._status(run, primary + f'\n\nAttempting to find more information online for "{query}"... 🌐')

        self._set_state(TurnState.SEARCHING)
        findings = self._search(run, query)
        reasoning += f' Web search for "{query}" was performed.'

        if not is_usable_result(findings):
            log.warning(f"Web search for {query!r} returned nothing usable")
            reasoning += f' Web search for "{query}" did not yield usable results: "{findings or "Internal search error"}".'
            return _Outcome(primary + f"\n\n{findings or SEARCH_FALLBACK_TEXT}", "search_result", reasoning)

        self._status(run, primary + f'\n\nFound information online for "{query}". Now summarizing it for you... 🧐')
        messages = [
            ChatMessage(role="system", content=SYNTHESIS_PROMPT.format(
                question=run.user_text, answer=primary, query=query)),
            *history,
            ChatMessage(role="user", content=run.user_text),
            ChatMessage(role="assistant", content=f'Context from web search about "{query}":\n{findings}'),
            ChatMessage(role="user", content=(
                f'Based on the web search results provided, please answer my original question: "{run.user_text}"'
            )),
        ]

        try:
            summary = self._stream(run, messages, TurnState.AWAITING_SECONDARY, TurnState.STREAMING_SECONDARY)
        except TRANSPORT_ERRORS as e:
            return self._fail(run, e)

        if summary.strip():
            final = summary
            reasoning += " The AI then processed these web search results and incorporated them into its final answer."
        else:
            final = primary + f"\n\n{SUMMARY_FAILED_NOTE}"
            reasoning += " The summarization process did not yield content."
        final += "\n\n" + collapsible_block(query, findings)
        return _Outcome(final, "search_result", reasoning)

    def _search(self, run: _Run, query: str) -> str:
        """Call the search collaborator. A raised error becomes an empty result."""
        try:
            return self.searcher.search(query).search_results_markdown
        except Exception as e:
            log.error(f"Search collaborator failed for {query!r}: {e}")
            if self.error_logger is not None:
                self.error_logger.log(run.placeholder.id, self.state.value, e)
            return ""

    # ---- direct search

    def _direct_search(self, run: _Run) -> _Outcome:
        query = run.user_text
        self._set_state(TurnState.SEARCHING)
        findings = self._search(run, query)

        if is_usable_result(findings):
            text = f'Web search results for "{query}":\n\n' + collapsible_block(query, findings)
            return _Outcome(text, "search_result", (
                f'The AI initiated a web search for "{query}", retrieved relevant snippets from '
                "search results using an external API (DuckDuckGo), and then formatted this information."
            ))

        if "unable to find current information" in findings.lower():
            return _Outcome(
                "Unable to find current information online. Please check a reliable news source.",
                "error",
                f'The web search for "{query}" did not yield relevant results. The external API may '
                "not have found matching content.",
            )
        return _Outcome(
            "An error occurred while searching online.",
            "error",
            f'An error occurred while performing the web search for "{query}": "{findings or "no response"}".',
        )

    # ---- streaming

    def _stream(self, run: _Run, messages: list[ChatMessage], awaiting: TurnState, streaming: TurnState) -> str:
        """Stream one completion into the live turn. Returns the text of this session."""
        self._set_state(awaiting)
        session = self.generator.stream_chat(run.settings, messages)
        run.session = session
        self._set_state(streaming)

        received = ""
        live = self.transcript.live_turn.text
        try:
            for fragment in session:
                received += fragment.text
                live = fragment.text if fragment.replace else live + fragment.text
                self.transcript.update_live(live)
                self._emit({
                    "type": "token",
                    "turn_id": run.placeholder.id,
                    "text": fragment.text,
                    "replace": fragment.replace,
                })
        finally:
            session.close()
            run.session = None
        log.debug(f"{streaming.value} finished with {len(received)} chars ({session.finish_reason})")
        return received

    # ---- helpers

    def _prior_turns(self) -> list[Turn]:
        return [
            t for t in self.transcript.history()
            if not is_control_turn(t.text, self.unlock_phrase, self.lock_phrase)
        ]

    def _history_messages(self, prior: list[Turn]) -> list[ChatMessage]:
        recent = prior[-self.history_limit:] if self.history_limit else []
        return [self._turn_message(t) for t in recent]

    @staticmethod
    def _turn_message(turn: Turn) -> ChatMessage:
        if turn.sender != "user":
            return ChatMessage(role="assistant", content=turn.text)
        if turn.has_image:
            return ChatMessage(role="user", content=[
                {"type": "text", "text": turn.text or "Image attached"},
                {"type": "image_url", "image_url": {"url": turn.attachment_payload}},
            ])
        if turn.attachment_payload:
            return ChatMessage(
                role="user",
                content=f"User uploaded a file: {turn.attachment_name}. User's message: {turn.text}",
            )
        return ChatMessage(role="user", content=turn.text)

    @staticmethod
    def _current_message(text: str, attachment: Attachment | None) -> ChatMessage:
        if attachment is not None and attachment.is_image:
            return ChatMessage(role="user", content=[
                {"type": "text", "text": text or "Image attached"},
                {"type": "image_url", "image_url": {"url": attachment.data_uri}},
            ])
        if attachment is not None:
            return ChatMessage(role="user", content=f"User uploaded a file: {attachment.name}. User's message: {text}")
        return ChatMessage(role="user", content=text)

    def _set_state(self, state: TurnState) -> None:
        self.state = state

    def _status(self, run: _Run, text: str) -> None:
        self.transcript.update_live(text)
        self._emit({"type": "status", "turn_id": run.placeholder.id, "state": self.state.value, "text": text})

    def _emit(self, event: TurnEvent) -> None:
        if self.listener is not None:
            self.listener(event)
