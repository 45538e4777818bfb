"""Interactive chat interface for Firefly."""

import os
from typing import Any

from groq import AsyncGroq

from .agent import AgentConfig, AgentLoop, AgentResult
from .config import FireflyConfig, load_config
from .logging import JSONLLogger, configure_logger
from .memory.models import Owner
from .runtime import MemoryRuntime, build_runtime

BANNER = """
Firefly: a companion that remembers

Commands:
  /exit, /quit  - Exit the chat
  /memory       - Show what Firefly remembers
  /reset        - Clear the conversation (memories are kept)
  /help         - Show this help

Type your message and press Enter.
"""

MAX_HISTORY_MESSAGES = 20


class CLI:
    """Interactive command-line chat with memory."""

    def __init__(
        self,
        owner: Owner,
        config: FireflyConfig | None = None,
        runtime: MemoryRuntime | None = None,
        groq_client: AsyncGroq | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.config = config or load_config()
        self.owner = owner
        self.client = groq_client or AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
        self.event_log = event_log
        self.runtime = runtime or build_runtime(
            self.config, groq_client=self.client, event_log=event_log
        )
        self.agent = AgentLoop(
            owner,
            AgentConfig(model=self.config.groq_model),
            groq_client=self.client,
            memory=self.runtime.manager,
        )
        self._history: list[dict[str, Any]] = []

    def _format_response(self, result: AgentResult) -> str:
        output = ["\n" + "-" * 40]
        output.append(result.response)
        output.append("-" * 40)

        if result.report is not None:
            changed = [r for r in result.report.results if r.status.value != "skipped"]
            if changed:
                notes = ", ".join(f"{r.key} {r.status.value}" for r in changed)
                output.append(f"(memory: {notes})")
        if result.memory_error:
            output.append(f"(memory unavailable: {result.memory_error})")

        return "\n".join(output)

    def _show_memory(self) -> None:
        facts = self.runtime.manager.list_items(self.owner)
        if not facts:
            print("\nNothing remembered yet.")
            return
        print()
        for fact in facts:
            marker = "*" if fact.pinned else "-"
            print(f"{marker} {fact.display_text}  [{fact.strength:.2f}]")

    async def _process_message(self, message: str) -> None:
        try:
            result = await self.agent.run(message, history=self._history)
        except Exception as e:
            print(f"\nError: {e}")
            if self.event_log is not None:
                self.event_log.log("chat_error", user_id=self.owner.user_id, error=str(e))
            return

        self._history.append({"role": "user", "content": message})
        self._history.append({"role": "assistant", "content": result.response})
        self._history = self._history[-MAX_HISTORY_MESSAGES:]
        print(self._format_response(result))

    def _handle_command(self, command: str) -> bool:
        """Handle a special command. Returns True if should continue, False to exit."""
        cmd = command.lower().strip()

        if cmd in ("/exit", "/quit", "exit", "quit"):
            print("\nGoodbye!")
            return False

        if cmd == "/reset":
            self._history = []
            print("\nConversation cleared.")
            return True

        if cmd == "/memory":
            self._show_memory()
            return True

        if cmd == "/help":
            print(BANNER)
            return True

        return True

    async def run(self) -> None:
        """Run the interactive chat."""
        print(BANNER)

        try:
            while True:
                try:
                    user_input = input("you> ").strip()
                except (KeyboardInterrupt, EOFError):
                    print("\nGoodbye!")
                    break

                if not user_input:
                    continue

                if user_input.startswith("/") or user_input.lower() in ("exit", "quit"):
                    if not self._handle_command(user_input):
                        break
                    continue

                await self._process_message(user_input)
        finally:
            self.runtime.close()


async def run_cli() -> None:
    """Run the chat with configuration from the environment."""
    config = load_config()
    event_log = configure_logger(config.log_dir)

    if not os.getenv("GROQ_API_KEY"):
        print("Error: GROQ_API_KEY environment variable not set")
        print("Please set it in your .env file or environment")
        return

    owner = Owner(
        user_id=os.getenv("FIREFLY_USER_ID", "local"),
        project_id=os.getenv("FIREFLY_PROJECT_ID") or None,
    )
    cli = CLI(owner, config=config, event_log=event_log)
    await cli.run()
