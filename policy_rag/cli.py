"""
Command-line interface for the policy pipeline.

Commands:
    init     - Create relational tables and the vector index
    ingest   - Register a PDF as a policy and ingest it
    search   - Ranked semantic search over policy chunks
    ask      - Answer a question with citations
    facts    - Re-run fact extraction for a policy
    reembed  - Rebuild vector entries from stored chunks
    delete   - Delete a policy and its vectors
"""

import asyncio
from pathlib import Path
from typing import List, Optional
from uuid import UUID

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table as RichTable

from policy_rag.core.exceptions import AppError

app = typer.Typer(
    name="policy-rag",
    help="Policy document ingestion and cited question answering",
)
console = Console()


def _run(coro):
    """Run a coroutine and close database engines afterwards."""
    from policy_rag.core.database import close_database

    async def runner():
        try:
            return await coro
        finally:
            await close_database()

    try:
        return asyncio.run(runner())
    except AppError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        rprint(f"[red]Invalid policy id: {value}[/red]")
        raise typer.Exit(1)


@app.command()
def init():
    """Create relational tables and the pgvector index."""
    from policy_rag.core.database import init_database
    from policy_rag.services.indexing.vector_index_gateway import VectorIndexGateway

    async def setup():
        await init_database()
        await VectorIndexGateway().ensure_index()

    _run(setup())
    rprint("[green]Database and vector index ready[/green]")


@app.command()
def ingest(
    pdf_path: Path = typer.Argument(..., help="Path to the policy PDF"),
    state: str = typer.Option(..., "--state", "-s", help="State the policy belongs to"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Policy title (defaults to file name)"),
):
    """
    Register a PDF as a pending policy and run it through the ingestion queue.

    Examples:
        policy-rag ingest texas_telehealth.pdf --state Texas --title "Texas Telehealth Manual"
    """
    from policy_rag.database.models import PolicyStatus
    from policy_rag.pipeline import build_pipeline
    from policy_rag.repositories.policy_repository import PolicyRepository

    if not pdf_path.exists():
        rprint(f"[red]File not found: {pdf_path}[/red]")
        raise typer.Exit(1)

    async def run():
        from policy_rag.core.database import async_session_maker

        pipeline = build_pipeline()
        policy = await pipeline.policy_service.register_policy(
            state_name=state,
            title=title or pdf_path.stem,
            file_name=pdf_path.name,
        )
        pipeline.enqueue(policy.id, file_path=pdf_path)
        await pipeline.shutdown(drain=True)

        async with async_session_maker() as session:
            return await PolicyRepository(session).get_by_id(policy.id)

    policy = _run(run())
    if policy is None:
        rprint("[red]Policy was removed before ingestion finished[/red]")
        raise typer.Exit(1)
    color = "green" if policy.status == PolicyStatus.COMPLETED.value else "red"
    rprint(f"\n[{color}]Policy {policy.id}: {policy.status}[/{color}]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    state: Optional[List[str]] = typer.Option(None, "--state", "-s", help="Restrict to state (repeatable)"),
    top_k: int = typer.Option(5, "--top-k", "-k", help="Number of results"),
):
    """Search policy chunks by meaning."""
    from policy_rag.pipeline import build_pipeline

    results = _run(build_pipeline().search(query, state_filter=state or None, top_k=top_k))
    if not results:
        rprint("[yellow]No results above the similarity threshold[/yellow]")
        return

    table = RichTable(title=f"Results for: {query}")
    table.add_column("#", justify="right")
    table.add_column("Similarity", justify="right")
    table.add_column("State", style="cyan")
    table.add_column("Policy")
    table.add_column("Page", justify="right")
    table.add_column("Preview")
    for idx, result in enumerate(results, start=1):
        table.add_row(
            str(idx),
            f"{result.similarity:.3f}",
            result.state_name,
            result.policy_title,
            str(result.page_number),
            result.content[:120].replace("\n", " "),
        )
    console.print(table)


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to answer"),
    state: Optional[List[str]] = typer.Option(None, "--state", "-s", help="Restrict to state (repeatable)"),
):
    """Answer a question from policy documents with citations."""
    from policy_rag.pipeline import build_pipeline

    response = _run(build_pipeline().rag_query(question, state_filter=state or None))

    rprint(f"\n{response.answer}\n")
    rprint(f"[bold]Confidence:[/bold] {response.confidence:.2f}")
    for idx, citation in enumerate(response.citations, start=1):
        rprint(
            f"  [{idx}] {citation.state_name} - {citation.policy_title} (Page {citation.page_number})"
        )
    if response.suggested_queries:
        rprint("[bold]Try asking:[/bold]")
        for suggestion in response.suggested_queries:
            rprint(f"  - {suggestion}")


@app.command()
def facts(policy_id: str = typer.Argument(..., help="Policy id")):
    """Run fact extraction for one policy."""
    from policy_rag.pipeline import build_pipeline

    parsed_id = _parse_uuid(policy_id)
    records = _run(build_pipeline().extract_facts(parsed_id))

    table = RichTable(title=f"Facts for {policy_id}")
    table.add_column("Category", style="cyan")
    table.add_column("Field")
    table.add_column("Value")
    table.add_column("Confidence", justify="right")
    table.add_column("Page", justify="right")
    for fact in records:
        table.add_row(
            fact.category,
            fact.field,
            fact.value,
            f"{fact.confidence:.2f}",
            str(fact.page_number or "-"),
        )
    console.print(table)


@app.command()
def reembed():
    """Delete and rebuild every policy's vector entries from stored chunks."""
    from policy_rag.pipeline import build_pipeline

    summary = _run(build_pipeline().policy_service.reembed_all())
    rprint(
        f"[green]Processed {summary['processed']}[/green], "
        f"skipped {summary['skipped']}, "
        f"[red]failed {summary['failed']}[/red]"
    )


@app.command()
def delete(policy_id: str = typer.Argument(..., help="Policy id")):
    """Delete a policy and everything derived from it."""
    from policy_rag.pipeline import build_pipeline

    parsed_id = _parse_uuid(policy_id)
    removed = _run(build_pipeline().delete_policy(parsed_id))
    rprint(f"[green]Deleted policy {policy_id} ({removed} vectors removed)[/green]")
