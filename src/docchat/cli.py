"""Command line interface for docchat."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from docchat.chat.formatter import ConversationTurn
from docchat.chat.service import AnswerService
from docchat.config import AppConfig
from docchat.embedding.encoder import EmbeddingConfig, SentenceTransformerEmbedder
from docchat.index.pipeline import IndexReport, RetrievalPipeline

console = Console()
app = typer.Typer(help="docchat - ask questions about a folder of documents")

EXIT_WORDS = {"exit", "quit", ":q"}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_config(
    docs: Optional[Path],
    memory: bool,
    chunk_size: Optional[int],
    overlap: Optional[int],
    top_k: Optional[int],
    strict: bool,
) -> AppConfig:
    try:
        return AppConfig.from_env(
            corpus_root=docs,
            backend="memory" if memory else None,
            chunk_size=chunk_size,
            chunk_overlap=overlap,
            top_k=top_k,
            fingerprint_mode="content" if strict else None,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _print_report(report: IndexReport) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Files")
    table.add_column("Chunks")
    table.add_column("Skipped")
    table.add_column("Cache")
    table.add_column("Backend")
    table.add_row(
        str(report.files),
        str(report.chunks),
        str(len(report.skipped)),
        "hit" if report.cache_hit else "rebuilt",
        f"{report.backend} (degraded)" if report.degraded else report.backend,
    )
    console.print(table)
    for path in report.skipped:
        console.print(f"[yellow]Skipped:[/yellow] {path}")


DocsOption = typer.Option(None, "--docs", help="Corpus root directory")
MemoryOption = typer.Option(False, "--memory", help="Keep the index in memory only")
ChunkOption = typer.Option(None, help="Chunk size in characters")
OverlapOption = typer.Option(None, help="Chunk overlap in characters")
TopKOption = typer.Option(None, help="Number of chunks given to the model")
StrictOption = typer.Option(False, "--strict", help="Fingerprint files by content hash")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


@app.command()
def index(
    docs: Optional[Path] = DocsOption,
    memory: bool = MemoryOption,
    chunk_size: Optional[int] = ChunkOption,
    overlap: Optional[int] = OverlapOption,
    strict: bool = StrictOption,
    verbose: bool = VerboseOption,
) -> None:
    """Build the index, or confirm the cached one is current."""
    _setup_logging(verbose)
    config = _build_config(docs, memory, chunk_size, overlap, None, strict)
    root = config.resolve_corpus_root(Path.cwd())
    if not root.is_dir():
        raise typer.BadParameter(f"Corpus directory not found: {root}")

    embedder = SentenceTransformerEmbedder(EmbeddingConfig(model_name=config.model_name))
    pipeline = RetrievalPipeline(config, embedder, base_dir=Path.cwd())
    console.print(f"Indexing [bold]{root}[/bold]...")
    try:
        asyncio.run(pipeline.ensure_ready())
    except Exception as exc:
        console.print(f"[red]Indexing failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    _print_report(pipeline.report)


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to answer"),
    docs: Optional[Path] = DocsOption,
    memory: bool = MemoryOption,
    top_k: Optional[int] = TopKOption,
    verbose: bool = VerboseOption,
) -> None:
    """Answer a single question."""
    _setup_logging(verbose)
    if not question.strip():
        raise typer.BadParameter("Empty question")
    config = _build_config(docs, memory, None, None, top_k, False)
    service = AnswerService.from_config(config, base_dir=Path.cwd())
    console.print(asyncio.run(service.answer(question)))


@app.command()
def chat(
    docs: Optional[Path] = DocsOption,
    memory: bool = MemoryOption,
    top_k: Optional[int] = TopKOption,
    verbose: bool = VerboseOption,
) -> None:
    """Interactive conversation; the transcript lives only in this session."""
    _setup_logging(verbose)
    config = _build_config(docs, memory, None, None, top_k, False)
    service = AnswerService.from_config(config, base_dir=Path.cwd())
    asyncio.run(_chat_loop(service))


async def _chat_loop(service: AnswerService) -> None:
    history: List[ConversationTurn] = []
    console.print("[dim]Type 'exit' to leave.[/dim]")
    while True:
        question = (await asyncio.to_thread(Prompt.ask, "[bold cyan]You[/bold cyan]")).strip()
        if question.lower() in EXIT_WORDS:
            break
        if not question:
            continue
        answer = await service.answer(question, history)
        console.print(f"[bold green]Assistant[/bold green]: {answer}")
        history.append(ConversationTurn(role="user", content=question))
        history.append(ConversationTurn(role="assistant", content=answer))
