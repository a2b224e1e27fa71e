"""Command line interface for the brand assistant."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from .chat.engine import ChatEngine
from .config import Settings, load_settings
from .errors import AssistantError
from .ingestion.files import load_text_file
from .ingestion.pipeline import ingest_documents
from .ingestion.remote import push_documents
from .ingestion.web import crawl_website
from .models import Document


def _read_sources(path: Path | None) -> Dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():
        raise FileNotFoundError(f"Sources file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def _documents_from_sources(sources: Dict[str, Any]) -> List[Document]:
    """Collect documents from a ``{"web": [...], "files": [...]}`` mapping."""

    documents: List[Document] = []
    for site in sources.get("web", []):
        documents += crawl_website(
            site["url"],
            max_pages=site.get("max_pages", 50),
            delay=site.get("delay", 0.5),
            allowed_paths=site.get("allowed_paths"),
        )
    for entry in sources.get("files", []):
        documents += load_text_file(entry["path"], source_id=entry.get("id", "file"))
    return documents


async def _ingest_locally(engine: ChatEngine, documents: List[Document]) -> None:
    settings = engine.settings
    results = await ingest_documents(
        engine.store,
        engine.embedder,
        [{"content": doc.content, "metadata": doc.metadata} for doc in documents],
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
    )
    failed = [result for result in results if result.error]
    total = sum(result.chunks for result in results)
    print(f"Ingested {len(results) - len(failed)} documents ({total} chunks) into the vector store.")
    for result in failed:
        print(f"- failed: {result.error}")


async def _chat_loop(engine: ChatEngine) -> None:
    session_id = None
    print("Enter your questions. Press Ctrl+C or Ctrl+D to exit.\n")
    while True:
        question = (await asyncio.to_thread(input, "?> ")).strip()
        if not question:
            continue
        try:
            response = await engine.ask(question, session_id=session_id)
        except AssistantError as exc:
            print(f"\n[error] {exc}\n")
            continue
        session_id = response.session_id
        print(f"\n{response.answer}\n")
        if response.sources:
            print("Sources:")
            print("\n".join(f"- {url}" for url in response.sources) + "\n")
        await engine.log_interaction(response)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


def cmd_ingest(args: argparse.Namespace, settings: Settings) -> None:
    documents: List[Document] = []
    if args.web_url:
        documents += crawl_website(args.web_url, max_pages=args.max_pages)
    if args.file:
        documents += load_text_file(args.file)
    documents += _documents_from_sources(_read_sources(args.sources))

    if not documents:
        print("No documents found. Nothing to ingest.")
        return

    print(f"Collected {len(documents)} documents:")
    for document in documents:
        print(f"  - {document.metadata.get('title', document.id)}")

    if args.api_url:
        result = push_documents(args.api_url, documents)
        print(f"Ingested {result.get('total', 0)} chunks through {args.api_url}.")
        return
    asyncio.run(_ingest_locally(ChatEngine.from_settings(settings), documents))


def cmd_chat(args: argparse.Namespace, settings: Settings) -> None:
    engine = ChatEngine.from_settings(settings)
    try:
        asyncio.run(_chat_loop(engine))
    except (KeyboardInterrupt, EOFError):  # pragma: no cover - interactive session
        print("\nGoodbye!")


def cmd_stats(args: argparse.Namespace, settings: Settings) -> None:
    engine = ChatEngine.from_settings(settings)
    stats = asyncio.run(engine.store.stats())
    print(json.dumps({"vectorStore": settings.vector_store, **stats}, indent=2))


def cmd_web(args: argparse.Namespace, settings: Settings) -> None:
    import uvicorn

    from .web import create_app

    uvicorn.run(create_app(engine=ChatEngine.from_settings(settings)), host=args.host, port=args.port)


COMMANDS = {"ingest": cmd_ingest, "chat": cmd_chat, "stats": cmd_stats, "web": cmd_web}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Brand assistant CLI")
    parser.add_argument("--config", type=Path, help="JSON settings file applied over environment variables")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")

    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser("ingest", help="Add website pages or files to the knowledge base")
    ingest.add_argument("--web-url", help="Website to crawl")
    ingest.add_argument("--max-pages", type=int, default=50, help="Crawl limit for --web-url (default: 50)")
    ingest.add_argument("--file", type=Path, help="Text or Markdown file, or a directory of them")
    ingest.add_argument("--sources", type=Path, help="JSON file listing 'web' and 'files' sources")
    ingest.add_argument(
        "--api-url",
        help="Send the documents to a running server's /ingest/bulk instead of the local store",
    )

    commands.add_parser("chat", help="Start an interactive chat session")
    commands.add_parser("stats", help="Show vector store statistics")

    web = commands.add_parser("web", help="Serve the HTTP API")
    web.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    web.add_argument("--port", type=int, default=8000, help="Port to bind (default: 8000)")

    return parser


def main(argv: List[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    COMMANDS[args.command](args, load_settings(args.config))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
