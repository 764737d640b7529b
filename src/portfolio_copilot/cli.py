"""CLI interface for the portfolio copilot."""

import argparse
import logging
import sys

import uvicorn

from portfolio_copilot import rag_engine
from portfolio_copilot.client import QUICK_QUESTIONS, ChatSession
from portfolio_copilot.config import AgentConfig, AppConfig
from portfolio_copilot.errors import CopilotError
from portfolio_copilot.models import ChatMessage


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def serve(config: AppConfig | None = None) -> None:
    """Run the web app under uvicorn."""
    cfg = config or AppConfig()
    uvicorn.run(
        "portfolio_copilot.web:app",
        host=cfg.server.host,
        port=cfg.server.port,
        log_level="info",
    )


def ask(question: str, config: AgentConfig | None = None) -> int:
    """Answer one question directly, without the web server.

    Prints the answer, suggested pages and timings. Returns an exit code.
    """
    try:
        result = rag_engine.ask(question, config)
    except CopilotError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"\n{result.answer}\n")
    if result.suggestions:
        print("Related pages:")
        for page in result.suggestions:
            print(f"  - {page.title} ({page.href})")
    if result.metrics:
        m = result.metrics
        print(
            f"\n⏱  total {m.total_ms:.0f} ms · retrieval {m.retrieval_ms:.0f} ms"
            f" · model {m.model_ms:.0f} ms"
        )
    return 0


class _TerminalPrinter:
    """Prints each assistant message as it grows."""

    def __init__(self) -> None:
        self._shown = ""

    def __call__(self, message: ChatMessage) -> None:
        if message.streaming:
            print(message.content[len(self._shown):], end="", flush=True)
            self._shown = message.content
            return
        if message.content.startswith(self._shown):
            print(message.content[len(self._shown):])
        else:
            # Streamed text was replaced by a fallback message.
            if self._shown:
                print()
            print(message.content)
        if message.suggestions:
            print("\nRelated pages:")
            for page in message.suggestions:
                print(f"  - {page.title} ({page.href})")
        print()
        self._shown = ""


def chat(base_url: str, owner: str = "Amine") -> None:
    """Interactive chat against a running server.

    Type a question, a quick-question number, or 'quit' to exit.
    """
    printer = _TerminalPrinter()
    with ChatSession(base_url, on_update=printer, owner=owner) as session:
        print(f"\n{session.messages[0].content}\n")
        for i, (label, _) in enumerate(QUICK_QUESTIONS, start=1):
            print(f"  [{i}] {label}")
        print()

        while True:
            try:
                query = input("You: ").strip()
            except (EOFError, KeyboardInterrupt):
                print("\nGoodbye!")
                break

            if not query:
                continue
            if query.lower() in ("quit", "exit", "q"):
                print("Goodbye!")
                break
            if query.isdigit() and 1 <= int(query) <= len(QUICK_QUESTIONS):
                query = QUICK_QUESTIONS[int(query) - 1][1].format(owner=owner)
                print(f"You: {query}")

            print("\nAssistant:")
            session.submit(query)


def main() -> None:
    """CLI entry point: parse arguments and dispatch to a command."""
    parser = argparse.ArgumentParser(
        description="Portfolio Copilot: RAG assistant for a portfolio site",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Run the web server")

    ask_p = subparsers.add_parser("ask", help="Answer a single question")
    ask_p.add_argument("question", type=str, help="Question to ask")
    ask_p.add_argument("--model", type=str, default=None, help="Ollama model name")
    ask_p.add_argument("--temperature", type=float, default=None, help="Sampling temperature")
    ask_p.add_argument("--top-k", type=int, default=None, help="Passages to retrieve")

    chat_p = subparsers.add_parser("chat", help="Chat with a running server")
    chat_p.add_argument(
        "--url", type=str, default="http://127.0.0.1:8000", help="Server base URL"
    )

    args = parser.parse_args()
    _setup_logging(args.verbose)

    if args.command == "serve":
        serve()
    elif args.command == "ask":
        config = AgentConfig(model=args.model, temperature=args.temperature, top_k=args.top_k)
        sys.exit(ask(args.question, config))
    elif args.command == "chat":
        chat(args.url, owner=AppConfig().site_owner)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
