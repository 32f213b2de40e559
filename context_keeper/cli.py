"""Command line interface for context-keeper."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from context_keeper import config, constants, opts
from context_keeper.assembler import ContextProviders, ContextSelection, assemble
from context_keeper.chat import ChatEvent, ContextChat
from context_keeper.client import HttpAssistantClient
from context_keeper.compaction import CompactionEngine
from context_keeper.errors import ContextKeeperError
from context_keeper.persistence import ConversationRepository, export_markdown
from context_keeper.sources import LocalWorkspace
from context_keeper.store import ConversationStore
from context_keeper.tiers import collect_file_info, select_tier
from context_keeper.tokens import assess_message_size, conversation_stats, estimate_tokens
from context_keeper.tracker import SentStateTracker

if TYPE_CHECKING:
    from context_keeper.entities import Conversation

console = Console()
LOGGER = logging.getLogger(__name__)

app = typer.Typer(
    name="context-keeper",
    help="Manage the context window and token budget of long conversations with a remote assistant.",
    add_completion=True,
    rich_markup_mode="markdown",
    no_args_is_help=True,
)

_LEVEL_STYLES = {"ok": "green", "elevated": "yellow", "critical": "red"}
_EVENT_STYLES = {
    "token_warning": "yellow",
    "size_warning": "yellow",
    "files_unavailable": "yellow",
    "thread_recreated": "yellow",
    "file_request_failed": "red",
    "compaction_failed": "red",
    "compaction_complete": "green",
    "context_applied": "green",
}


def setup_logging(log_level: str, log_file: str | None, *, quiet: bool) -> None:
    """Route log records to a RichHandler on stderr and optionally a file."""
    level = getattr(logging, log_level.upper(), logging.WARNING)
    handlers: list[logging.Handler] = []
    if not quiet:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(handler)
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"),
        )
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))


def set_config_defaults(ctx: typer.Context, config_file: str | None) -> None:
    """Set the default values for the CLI based on the config file."""
    cfg = config.load_config(config_file)
    wildcard_config = cfg.get("defaults", {})
    commands = getattr(ctx.command, "commands", {})
    ctx.default_map = {
        name: {**wildcard_config, **cfg.get(name, {})} for name in commands
    }


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Annotated[
        str | None,
        typer.Option("--config", "-c", help="Path to config file"),
    ] = None,
) -> None:
    """Context window and token budget manager for remote assistants."""
    import dotenv  # noqa: PLC0415

    dotenv.load_dotenv()
    set_config_defaults(ctx, config_file)


# --- Helpers ---


def _fail(message: str) -> typer.Exit:
    console.print(f"[bold red]Error:[/bold red] {message}")
    return typer.Exit(1)


def _open_store(
    history_dir: Path | None,
    token_limit: int = constants.TOKEN_LIMIT,
    method: str = "fast",
) -> ConversationStore:
    storage = config.StorageSettings(history_dir=history_dir)
    store = ConversationStore(
        ConversationRepository(storage.history_dir),
        token_limit=token_limit,
        estimate_method=method,
    )
    store.load_all()
    return store


def _resolve(store: ConversationStore, conversation_id: str | None, *, create: bool) -> Conversation:
    """Pick the requested, most recent or (when ``create``) a new conversation."""
    if conversation_id:
        try:
            store.switch_to(conversation_id)
        except ContextKeeperError as e:
            raise _fail(str(e)) from e
        return store.get(conversation_id)
    recent = store.list_conversations(limit=1)
    if recent:
        store.switch_to(recent[0].id)
        return recent[0]
    if create:
        return store.create_new()
    raise _fail("No conversations found.")


def _providers(
    project_root: Path,
    data_dir: Path | None,
    skills_dir: Path | None,
) -> ContextProviders:
    settings = config.ContextSettings(
        project_root=project_root,
        data_dir=data_dir,
        skills_dir=skills_dir,
    )
    return ContextProviders.local(
        settings.project_root,
        data_dir=settings.data_dir,
        skills_dir=settings.skills_dir,
        recursive_memory=settings.recursive_memory,
        include_user_memory=settings.include_user_memory,
        git_commits=settings.git_commits,
    )


def _make_client(
    api_key: str | None,
    assistant_id: str | None,
    base_url: str,
    timeout: float,
    max_attempts: int,
) -> HttpAssistantClient:
    settings = config.AssistantSettings(
        api_key=api_key,
        assistant_id=assistant_id,
        base_url=base_url,
        timeout=timeout,
        max_attempts=max_attempts,
    )
    if not settings.api_key or not settings.assistant_id:
        msg = "An API key and assistant id are required (--api-key, --assistant-id)."
        raise _fail(msg)
    return HttpAssistantClient(
        settings.api_key,
        settings.assistant_id,
        base_url=settings.base_url,
        timeout=settings.timeout,
        max_attempts=settings.max_attempts,
    )


def _print_event(event: ChatEvent) -> None:
    style = _EVENT_STYLES.get(event.kind, "blue")
    console.print(f"[{style}]•[/{style}] {event.message}")


def _print_reply(title: str, content: str) -> None:
    console.print(Panel(Markdown(content), title=title, border_style="green"))


# --- Commands ---


@app.command("estimate")
def estimate_command(
    text: Annotated[str | None, typer.Argument(help="Text to estimate (default: stdin).")] = None,
    file: Annotated[Path | None, typer.Option("--file", "-f", help="Read text from a file.")] = None,
    method: str = opts.ESTIMATE_METHOD,
) -> None:
    """Estimate the token count of text, a file or stdin."""
    if file is not None:
        content = file.read_text(encoding="utf-8", errors="replace")
    elif text is not None:
        content = text
    else:
        content = sys.stdin.read()
    try:
        tokens = estimate_tokens(content, method=method)
    except ValueError as e:
        raise _fail(str(e)) from e
    size = assess_message_size(content)
    console.print(f"[bold]{tokens:,}[/bold] tokens ({size.size:,} characters, {size.risk} timeout risk)")


@app.command("tier")
def tier_command(
    files: Annotated[list[str], typer.Argument(help="Files in the batch.")],
    project_root: Path = opts.PROJECT_ROOT,
) -> None:
    """Show the detail tier a batch of files would be sent at."""
    infos = collect_file_info(LocalWorkspace(project_root), files)
    decision = select_tier(infos)
    table = Table(title=f"Tier: {decision.tier}")
    table.add_column("File")
    table.add_column("Lines", justify="right")
    table.add_column("KB", justify="right")
    for info in infos:
        table.add_row(info.path, f"{info.line_count:,}", f"{info.size_bytes / 1024:.1f}")
    console.print(table)
    console.print(decision.reason)


@app.command("context")
def context_command(
    files: list[str] | None = opts.FILES,
    data: list[str] | None = opts.DATA,
    skills: list[str] | None = opts.SKILLS,
    include_config: bool = opts.INCLUDE_CONFIG,
    include_session: bool = opts.INCLUDE_SESSION,
    include_git: bool = opts.INCLUDE_GIT,
    git_history: bool = opts.GIT_HISTORY,
    data_method: str = opts.DATA_METHOD,
    incremental: Annotated[
        bool,
        typer.Option(
            "--incremental/--all",
            help="Skip items already sent in the conversation.",
        ),
    ] = True,
    conversation_id: str | None = opts.CONVERSATION_ID,
    project_root: Path = opts.PROJECT_ROOT,
    data_dir: Path | None = opts.DATA_DIR,
    skills_dir: Path | None = opts.SKILLS_DIR,
    history_dir: Path | None = opts.HISTORY_DIR,
    show: Annotated[bool, typer.Option("--show", help="Print the assembled document.")] = False,
) -> None:
    """Preview the context document the next send would attach."""
    tracker = SentStateTracker()
    if incremental:
        store = _open_store(history_dir)
        if conversation_id or store.list_conversations(limit=1):
            tracker = store.tracker(_resolve(store, conversation_id, create=False).id)
    tracker.select("files", *(files or []))
    tracker.select("data_sources", *(data or []))
    tracker.select("skills", *(skills or []))
    delta = tracker.delta()

    selection = ContextSelection(
        config=include_config,
        session=include_session,
        git=include_git,
        git_history=git_history,
        files=list(delta.files),
        data_sources=list(delta.data_sources),
        skills=list(delta.skills),
        data_method=data_method,
    )
    try:
        document = assemble(selection, _providers(project_root, data_dir, skills_dir))
    except ContextKeeperError as e:
        raise _fail(str(e)) from e
    if document is None:
        console.print("[yellow]Nothing new to send.[/yellow]")
        return

    table = Table(title="Context sections")
    table.add_column("Section")
    table.add_column("Tier")
    table.add_column("Characters", justify="right")
    for section in document.sections:
        table.add_row(section.name, getattr(section, "tier", "full"), f"{len(section.text):,}")
    console.print(table)
    if document.tier_decision:
        console.print(document.tier_decision.reason)
    console.print(
        f"[bold]{document.char_count:,}[/bold] characters, ~{document.token_estimate:,} tokens",
    )
    if show:
        console.print(document.text, markup=False, highlight=False)


@app.command("conversations")
def conversations_command(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number to show.")] = 20,
    history_dir: Path | None = opts.HISTORY_DIR,
) -> None:
    """List conversations, most recently updated first."""
    store = _open_store(history_dir)
    conversations = store.list_conversations(limit=limit)
    if not conversations:
        console.print("[yellow]No conversations found.[/yellow]")
        return
    table = Table(title="Conversations")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Updated")
    for conversation in conversations:
        table.add_row(
            conversation.id,
            conversation.title,
            str(len(conversation.messages)),
            f"{conversation.token_estimate:,}",
            conversation.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command("stats")
def stats_command(
    conversation_id: Annotated[str | None, typer.Argument(help="Conversation id.")] = None,
    compact_at: float = opts.COMPACT_AT,
    warn_at: float = opts.WARN_AT,
    history_dir: Path | None = opts.HISTORY_DIR,
) -> None:
    """Show token usage statistics for a conversation."""
    store = _open_store(history_dir)
    try:
        conversation = _resolve(store, conversation_id, create=False)
    except ContextKeeperError as e:
        raise _fail(str(e)) from e
    stats = conversation_stats(conversation, compact_at=compact_at, warn_at=warn_at)
    style = _LEVEL_STYLES[stats.level]
    table = Table(title=conversation.title, show_header=False)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Conversation", stats.conversation_id)
    table.add_row("Thread", stats.thread_id or "-")
    table.add_row(
        "Messages",
        f"{stats.total_messages} ({stats.user_messages} user, "
        f"{stats.assistant_messages} assistant, {stats.system_messages} system)",
    )
    table.add_row(
        "Tokens",
        f"[{style}]{stats.token_estimate:,} / {stats.token_limit:,} ({stats.token_percentage}%)[/{style}]",
    )
    table.add_row("Remaining", f"{stats.tokens_remaining:,}")
    table.add_row("Compacts at", f"{stats.compact_at_tokens:,}")
    table.add_row("Compactions", str(stats.compaction_count))
    if stats.last_compaction_at:
        table.add_row("Last compaction", stats.last_compaction_at.strftime("%Y-%m-%d %H:%M"))
    console.print(table)
    if stats.should_compact:
        console.print("[red]Compaction recommended: run `context-keeper compact`.[/red]")
    elif stats.should_warn:
        console.print("[yellow]Approaching the token limit.[/yellow]")


@app.command("export")
def export_command(
    conversation_id: Annotated[str | None, typer.Argument(help="Conversation id.")] = None,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Write to a file.")] = None,
    history_dir: Path | None = opts.HISTORY_DIR,
) -> None:
    """Export a conversation as Markdown."""
    store = _open_store(history_dir)
    try:
        conversation = _resolve(store, conversation_id, create=False)
    except ContextKeeperError as e:
        raise _fail(str(e)) from e
    text = export_markdown(conversation)
    if output is None:
        console.print(text, markup=False, highlight=False)
        return
    output.write_text(text, encoding="utf-8")
    console.print(f"[green]Exported to {output}[/green]")


@app.command("delete")
def delete_command(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
    history_dir: Path | None = opts.HISTORY_DIR,
) -> None:
    """Delete a conversation."""
    store = _open_store(history_dir)
    recent = store.list_conversations(limit=1)
    if recent:
        store.switch_to(recent[0].id)
    try:
        current = store.delete(conversation_id)
    except ContextKeeperError as e:
        raise _fail(str(e)) from e
    console.print(f"[green]Deleted {conversation_id}[/green]")
    if current:
        console.print(f"Current conversation: {current}")


@app.command("send")
def send_command(  # noqa: PLR0913
    message: Annotated[str | None, typer.Argument(help="Message to send.")] = None,
    files: list[str] | None = opts.FILES,
    data: list[str] | None = opts.DATA,
    skills: list[str] | None = opts.SKILLS,
    include_config: bool = opts.INCLUDE_CONFIG,
    include_session: bool = opts.INCLUDE_SESSION,
    include_git: bool = opts.INCLUDE_GIT,
    git_history: bool = opts.GIT_HISTORY,
    data_method: str = opts.DATA_METHOD,
    refresh: Annotated[
        list[str] | None,
        typer.Option("--refresh", help="Re-send a file that was already sent (repeatable)."),
    ] = None,
    refresh_all: Annotated[
        bool,
        typer.Option("--refresh-all", help="Re-send everything already sent."),
    ] = False,
    new: Annotated[bool, typer.Option("--new", help="Start a new conversation.")] = False,
    conversation_id: str | None = opts.CONVERSATION_ID,
    project_root: Path = opts.PROJECT_ROOT,
    data_dir: Path | None = opts.DATA_DIR,
    skills_dir: Path | None = opts.SKILLS_DIR,
    history_dir: Path | None = opts.HISTORY_DIR,
    api_key: str | None = opts.API_KEY,
    assistant_id: str | None = opts.ASSISTANT_ID,
    base_url: str = opts.BASE_URL,
    timeout: float = opts.TIMEOUT,
    max_attempts: int = opts.MAX_ATTEMPTS,
    token_limit: int = opts.TOKEN_LIMIT,
    compact_at: float = opts.COMPACT_AT,
    warn_at: float = opts.WARN_AT,
    preserve_recent: int = opts.PRESERVE_RECENT,
    auto_compact: bool = opts.AUTO_COMPACT,
    method: str = opts.ESTIMATE_METHOD,
    log_level: str = opts.LOG_LEVEL,
    log_file: str | None = opts.LOG_FILE,
    quiet: bool = opts.QUIET,
) -> None:
    """Apply newly selected context and/or send a message."""
    general = config.General(log_level=log_level, log_file=log_file, quiet=quiet)
    setup_logging(general.log_level, general.log_file, quiet=general.quiet)
    try:
        budget = config.BudgetSettings(
            token_limit=token_limit,
            compact_at=compact_at,
            warn_at=warn_at,
            preserve_recent=preserve_recent,
            auto_compact=auto_compact,
            estimate_method=method,
        )
    except ValueError as e:
        raise _fail(str(e)) from e

    client = _make_client(api_key, assistant_id, base_url, timeout, max_attempts)
    store = _open_store(history_dir, budget.token_limit, budget.estimate_method)
    conversation = store.create_new() if new else _resolve(store, conversation_id, create=True)
    engine = CompactionEngine(
        store,
        client,
        compact_at=budget.compact_at,
        warn_at=budget.warn_at,
        preserve_recent=budget.preserve_recent,
        timeout=timeout,
    )
    chat = ContextChat(
        store,
        client,
        _providers(project_root, data_dir, skills_dir),
        engine=engine,
        auto_compact=budget.auto_compact,
        timeout=timeout,
        on_event=None if quiet else _print_event,
    )

    async def _run() -> None:
        cid = conversation.id
        if files:
            chat.select(cid, "files", *files)
        if data:
            chat.select(cid, "data_sources", *data)
        if skills:
            chat.select(cid, "skills", *skills)
        for item in refresh or []:
            chat.queue_refresh(cid, "files", item)
        if refresh_all:
            chat.refresh_all(cid)

        applied = await chat.apply_context(
            cid,
            config=include_config,
            session=include_session,
            git=include_git,
            git_history=git_history,
            data_method=data_method,
        )
        if applied.sent and applied.reply:
            _print_reply("Context acknowledged", applied.reply.content)
        elif not message:
            console.print(f"[yellow]{applied.message}.[/yellow]")

        if message:
            result = await chat.send(cid, message)
            _print_reply("Assistant", result.reply.content)
            if result.file_reply:
                _print_reply(f"Assistant ({', '.join(result.fetched_files)})", result.file_reply.content)

    try:
        asyncio.run(_run())
    except ContextKeeperError as e:
        LOGGER.debug("send failed", exc_info=True)
        raise _fail(str(e)) from e


@app.command("compact")
def compact_command(
    conversation_id: Annotated[str | None, typer.Argument(help="Conversation id.")] = None,
    preserve_recent: int = opts.PRESERVE_RECENT,
    history_dir: Path | None = opts.HISTORY_DIR,
    api_key: str | None = opts.API_KEY,
    assistant_id: str | None = opts.ASSISTANT_ID,
    base_url: str = opts.BASE_URL,
    timeout: float = opts.TIMEOUT,
    max_attempts: int = opts.MAX_ATTEMPTS,
    log_level: str = opts.LOG_LEVEL,
    log_file: str | None = opts.LOG_FILE,
    quiet: bool = opts.QUIET,
) -> None:
    """Summarize older history into a fresh thread, keeping recent messages."""
    setup_logging(log_level, log_file, quiet=quiet)
    client = _make_client(api_key, assistant_id, base_url, timeout, max_attempts)
    store = _open_store(history_dir)
    conversation = _resolve(store, conversation_id, create=False)
    engine = CompactionEngine(
        store,
        client,
        preserve_recent=preserve_recent,
        timeout=timeout,
        on_progress=None if quiet else lambda phase: console.print(f"[blue]•[/blue] {phase}"),
    )
    chat = ContextChat(store, client, ContextProviders(), engine=engine, timeout=timeout)
    try:
        result = asyncio.run(chat.compact(conversation.id))
    except ContextKeeperError as e:
        raise _fail(str(e)) from e
    console.print(
        f"[green]Compacted {result.messages_before} messages to {result.messages_after}; "
        f"tokens {result.tokens_before:,} -> {result.tokens_after:,}[/green]",
    )
    console.print(f"Thread: {result.old_thread_id} -> {result.new_thread_id}")


if __name__ == "__main__":
    app()
