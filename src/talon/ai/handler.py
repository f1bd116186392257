"""Message handler: receives incoming messages, runs the agent loop, sends responses."""

from __future__ import annotations

from talon.ai.loop import AgentLoop
from talon.ai.router import ProviderRouter
from talon.ai.tools.registry import ToolRegistry
from talon.core.models import ErrorResponse
from talon.core.session import SessionManager
from talon.core.types import ErrorCategory
from talon.log import get_logger
from talon.messenger.base import MessengerAdapter
from talon.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000

_ERROR_HINTS = {
    ErrorCategory.AUTH: "Check the provider API keys in your configuration.",
    ErrorCategory.BILLING: "Check the billing status or quota of your provider accounts.",
    ErrorCategory.RATE_LIMIT: "Please try again in a minute.",
    ErrorCategory.TIMEOUT: "Please try again shortly.",
    ErrorCategory.NETWORK: "Check the network connection and try again.",
    ErrorCategory.UNAVAILABLE: "Please try again after the restart.",
}


def render_error(response: ErrorResponse) -> str:
    """User-facing text for a failed turn."""
    hint = _ERROR_HINTS.get(response.category)
    if response.recoverable and hint:
        return f"{response.message} {hint}"
    if not response.recoverable and response.category == ErrorCategory.UNKNOWN:
        return f"{response.message} Use /reset to start a new conversation."
    return response.message


class MessageHandler:
    """Handles the full flow: message -> session -> agent loop -> response."""

    def __init__(
        self,
        adapter: MessengerAdapter,
        loop: AgentLoop,
        session_manager: SessionManager,
        router: ProviderRouter,
        tool_registry: ToolRegistry,
    ):
        self._adapter = adapter
        self._loop = loop
        self._session_manager = session_manager
        self._router = router
        self._tool_registry = tool_registry

    async def handle(self, message: IncomingMessage) -> None:
        """Process an incoming message end-to-end."""
        channel = message.channel
        chat_id = message.chat_id
        text = message.text.strip()

        if not text:
            return

        if text.lower() == "/reset":
            await self._session_manager.reset_session(channel, message.sender_id)
            await self._reply(chat_id, "Session reset. Starting fresh.")
            return

        if text.lower() == "/model":
            await self._reply(chat_id, self._model_info())
            return

        await self._adapter.send_typing_indicator(chat_id)
        session_id = await self._session_manager.get_session_id(channel, message.sender_id)

        try:
            outcome = await self._loop.handle_inbound_message(session_id, text)
        except Exception as e:
            logger.error("turn_crashed", channel=channel, session_id=session_id, error=str(e))
            await self._reply(chat_id, f"An error occurred: {e}")
            return

        if isinstance(outcome, ErrorResponse):
            logger.warning(
                "turn_error_response",
                channel=channel,
                session_id=session_id,
                category=outcome.category.value,
                recoverable=outcome.recoverable,
            )
            response_text = render_error(outcome)
        else:
            response_text = outcome.text

        await self._reply(chat_id, response_text)

    async def _reply(self, chat_id: str, text: str) -> None:
        for chunk in _split_message(text, max_length=MAX_MESSAGE_LENGTH):
            await self._adapter.send_message(OutgoingMessage(chat_id=chat_id, text=chunk))

    def _model_info(self) -> str:
        lines = ["Routes (in fallback order):"]
        for route in self._router.routes:
            tools = "tools" if route.supports_tools else "no tools"
            lines.append(f"  {route.priority}. {route.key} [cost {route.cost_rank}, {tools}]")
        if len(lines) == 1:
            lines.append("  (none configured)")
        names = ", ".join(t.name for t in self._tool_registry.all_tools()) or "(none)"
        lines.append(f"Tools: {names}")
        return "\n".join(lines)


def _split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split a message into chunks that fit within platform limits."""
    if len(text) <= max_length:
        return [text]

    chunks = []
    while text:
        if len(text) <= max_length:
            chunks.append(text)
            break
        # Try to split at a newline
        split_pos = text.rfind("\n", 0, max_length)
        if split_pos <= 0:
            split_pos = max_length
        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip("\n")
    return chunks
