"""CLI interface using typer + rich."""

from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from cv_tailor.clients.resolver import ConfigurationResolver, TierSettings
from cv_tailor.config import AppConfig, load_config
from cv_tailor.errors import CvTailorError
from cv_tailor.models.document import CvDocument
from cv_tailor.models.generation import (
    DEFAULT_SECTIONS,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    ImageAttachment,
    ProviderId,
    SectionId,
    TenantIdentity,
)
from cv_tailor.models.job import JobPosting
from cv_tailor.pipeline.cover_letter import CoverLetterWriter
from cv_tailor.pipeline.execution import ExecutionController
from cv_tailor.pipeline.keywords import KeywordExtractor
from cv_tailor.pipeline.orchestrator import CvRewritePipeline
from cv_tailor.pipeline.quality_assessor import QualityAssessor
from cv_tailor.store.document_store import SqliteDocumentStore
from cv_tailor.store.tenant_store import SqliteTenantStore
from cv_tailor.utils.crypto import ENCRYPTION_KEY_ENV, CredentialCipher, generate_secret

app = typer.Typer(
    name="cv-tailor",
    help="Tailor a structured CV to a job with the AI provider of your choice",
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger(__name__)


def _cipher() -> CredentialCipher | None:
    if not os.environ.get(ENCRYPTION_KEY_ENV):
        return None
    return CredentialCipher()


def _stores(config: AppConfig) -> tuple[SqliteDocumentStore, SqliteTenantStore]:
    db_path = config.store.resolved_db_path
    return SqliteDocumentStore(db_path), SqliteTenantStore(db_path, cipher=_cipher())


def _resolver(config: AppConfig, tenants: SqliteTenantStore) -> ConfigurationResolver:
    cipher = tenants.cipher

    def decrypt(ciphertext: str) -> str | None:
        if cipher is None:
            logger.warning("%s is not set; stored API keys cannot be decrypted", ENCRYPTION_KEY_ENV)
            return None
        return cipher.decrypt(ciphertext)

    return ConfigurationResolver(tenants, decrypt, config)


def _read_text(path: Path | None) -> str:
    if path is None:
        return ""
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


def _parse_sections(sections: list[str] | None) -> set[SectionId]:
    if not sections:
        return set(DEFAULT_SECTIONS)
    try:
        return {SectionId(s.strip().lower()) for s in sections}
    except ValueError:
        valid = ", ".join(s.value for s in SectionId)
        console.print(f"[red]Unknown section. Valid sections: {valid}[/red]")
        raise typer.Exit(1) from None


def _run_with_spinner(label: str, coro):
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(label, total=None)
        return asyncio.run(coro)


def _report_failure(result: GenerationResult) -> None:
    console.print(
        Panel(
            f"[red]{result.error_message}[/red]"
            + (f"\n\n[dim]{result.details['excerpt']}[/dim]" if result.details.get("excerpt") else ""),
            title=f"Failed: {result.error_kind}",
        )
    )
    raise typer.Exit(1)


def _report_deferred(result: GenerationResult, prompt_out: Path | None, follow_up: str) -> None:
    contract = result.deferred
    if prompt_out:
        prompt_out.parent.mkdir(parents=True, exist_ok=True)
        prompt_out.write_text(contract.prompt, encoding="utf-8")
        console.print(f"[green]Prompt saved: {prompt_out}[/green]")
    else:
        console.print(Panel(contract.prompt, title="Prompt for on-device execution"))
    console.print(
        f"Run it with model [bold]{contract.model_id}[/bold] ({contract.model_class.value} context), "
        f"then: [cyan]{follow_up}[/cyan]"
    )


def _report_rewrite(result: GenerationResult) -> None:
    if result.status is GenerationStatus.FAILED:
        _report_failure(result)
    report = result.merge_report
    table = Table(title="Merge report")
    table.add_column("Measure")
    table.add_column("Value", justify="right")
    table.add_row("Matched by id", str(report.matched_by_id))
    table.add_row("Matched by source id", str(report.matched_by_source_id))
    table.add_row("Matched by natural key", str(report.matched_by_natural_key))
    table.add_row("Discarded", str(report.discarded))
    table.add_row("Skills added", ", ".join(report.skills_appended) or "-")
    table.add_row("Summary updated", "yes" if report.summary_updated else "no")
    console.print(table)
    if result.outcome == "no_op":
        console.print("[yellow]Nothing in the AI response matched the document; it was left unchanged.[/yellow]")
    else:
        console.print("[green]Document updated.[/green]")
    if result.details.get("variant_id"):
        console.print(f"[green]Variant created: {result.details['variant_id']}[/green]")


@app.command("import-doc")
def import_doc(
    file: Path = typer.Argument(help="CV document as JSON"),
    user: str = typer.Option(..., "--user", "-u", help="Owner user id"),
    name: str = typer.Option(None, "--name", help="Display name"),
) -> None:
    """Import a CV document and print its ref."""
    try:
        document = CvDocument.model_validate_json(_read_text(file))
    except ValueError as e:
        console.print(f"[red]Invalid CV document: {e}[/red]")
        raise typer.Exit(1) from None
    docs, _ = _stores(load_config())
    ref = docs.create_document(user, document, name=name)
    console.print(f"[green]Imported {file.name}[/green] -> {ref}")


@app.command()
def rewrite(
    ref: str = typer.Argument(help="Document ref"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    org: str = typer.Option(None, "--org", help="Organisation id"),
    context: Path = typer.Option(None, "--context", "-c", help="Job description text file"),
    section: list[str] = typer.Option(None, "--section", "-s", help="Section to rewrite (repeatable)"),
    instructions: str = typer.Option(None, "--instructions", "-i", help="Extra instructions for the AI"),
    variant: str = typer.Option(None, "--variant", help="Create a tailored variant for this context key"),
    name: str = typer.Option(None, "--name", help="Variant name"),
    image: Path = typer.Option(None, "--image", help="Image attachment (e.g. a job ad screenshot)"),
    force_server: bool = typer.Option(False, "--force-server", help="Refuse on-device execution"),
    prompt_out: Path = typer.Option(None, "--prompt-out", help="Write a deferred prompt to this file"),
) -> None:
    """Rewrite CV sections for a job, or print the prompt for on-device execution."""
    config = load_config()
    docs, tenants = _stores(config)
    try:
        request = GenerationRequest(
            target_document_ref=ref,
            tenant=TenantIdentity(user_id=user, organisation_id=org),
            target_sections=_parse_sections(section),
            context_text=_read_text(context),
            custom_instructions=instructions,
            force_server=force_server,
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None

    attachment = None
    if image is not None:
        mime_type = mimetypes.guess_type(image.name)[0] or "application/octet-stream"
        attachment = ImageAttachment(mime_type=mime_type, data=image.read_bytes())

    pipeline = CvRewritePipeline(docs, _resolver(config, tenants), config)
    try:
        if variant:
            coro = pipeline.run_for_variant(request, variant, name=name, image=attachment)
        else:
            coro = pipeline.run(request, image=attachment)
        result = _run_with_spinner("Rewriting CV...", coro)
    except CvTailorError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from None

    if result.status is GenerationStatus.DEFERRED:
        follow_up = f"cv-tailor complete {ref} --user {user} --result <output file>"
        if variant:
            follow_up += f" --variant {variant}"
        _report_deferred(result, prompt_out, follow_up)
        return
    _report_rewrite(result)


@app.command()
def complete(
    ref: str = typer.Argument(help="Document ref"),
    result_file: Path = typer.Option(..., "--result", "-r", help="Model output from on-device execution"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    section: list[str] = typer.Option(None, "--section", "-s", help="Sections requested in the first call"),
    variant: str = typer.Option(None, "--variant", help="Context key used in the first call"),
    name: str = typer.Option(None, "--name", help="Variant name"),
) -> None:
    """Merge the output of an on-device run into the document."""
    config = load_config()
    docs, tenants = _stores(config)
    request = GenerationRequest(
        target_document_ref=ref,
        tenant=TenantIdentity(user_id=user),
        target_sections=_parse_sections(section),
        execution_result_text=_read_text(result_file),
    )
    pipeline = CvRewritePipeline(docs, _resolver(config, tenants), config)
    try:
        if variant:
            result = asyncio.run(pipeline.run_for_variant(request, variant, name=name))
        else:
            result = asyncio.run(pipeline.run(request))
    except CvTailorError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from None
    _report_rewrite(result)


@app.command()
def assess(
    ref: str = typer.Argument(help="Document ref"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    org: str = typer.Option(None, "--org", help="Organisation id"),
    context: Path = typer.Option(None, "--context", "-c", help="Job description text file"),
    result_file: Path = typer.Option(None, "--result", "-r", help="Model output from on-device execution"),
) -> None:
    """Score a CV and list concrete improvements."""
    config = load_config()
    docs, tenants = _stores(config)
    try:
        document = docs.load_document(ref)
    except CvTailorError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from None

    assessor = QualityAssessor(ExecutionController(_resolver(config, tenants), config))
    result = _run_with_spinner(
        "Assessing CV...",
        assessor.assess(
            document,
            TenantIdentity(user_id=user, organisation_id=org),
            context_text=_read_text(context) or None,
            execution_result_text=_read_text(result_file) if result_file else None,
        ),
    )
    if result.status is GenerationStatus.DEFERRED:
        _report_deferred(result, None, f"cv-tailor assess {ref} --user {user} --result <output file>")
        return
    if result.status is GenerationStatus.FAILED:
        _report_failure(result)

    data = result.parsed_payload
    scores = (
        f"Overall: {data['overall_score']} | ATS: {data['ats_score']} | "
        f"Content: {data['content_score']} | Consistency: {data['formatting_score']}"
    )
    if data.get("keyword_match_score") is not None:
        scores += f" | Keywords: {data['keyword_match_score']}"
    console.print(Panel(scores, title="CV quality"))
    for label, key, color in (("Strengths", "strengths", "green"), ("Weaknesses", "weaknesses", "yellow")):
        if data[key]:
            console.print(f"\n[bold {color}]{label}[/bold {color}]")
            for item in data[key]:
                console.print(f"  - {item}")
    for rec in data["enhanced_recommendations"]:
        body = rec["suggestion"]
        if rec["ai_generated_improvement"]:
            body += f"\n\n[cyan]{rec['ai_generated_improvement']}[/cyan]"
        console.print(Panel(body, title=rec["issue"] or "Recommendation"))


@app.command("cover-letter")
def cover_letter(
    ref: str = typer.Argument(help="Document ref"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    company: str = typer.Option(..., "--company", help="Company name"),
    title: str = typer.Option(..., "--title", help="Job title"),
    job: Path = typer.Option(None, "--job", "-j", help="Job description text file"),
    location: str = typer.Option(None, "--location", help="Job location"),
    instructions: str = typer.Option(None, "--instructions", "-i", help="Extra instructions for the AI"),
    output: Path = typer.Option(None, "--output", "-o", help="Write the letter to this file"),
    result_file: Path = typer.Option(None, "--result", "-r", help="Model output from on-device execution"),
) -> None:
    """Write a cover letter for a job."""
    config = load_config()
    docs, tenants = _stores(config)
    try:
        document = docs.load_document(ref)
    except CvTailorError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from None

    posting = JobPosting(
        company_name=company, job_title=title, job_description=_read_text(job), job_location=location
    )
    writer = CoverLetterWriter(ExecutionController(_resolver(config, tenants), config))
    result = _run_with_spinner(
        "Writing cover letter...",
        writer.generate(
            document,
            posting,
            TenantIdentity(user_id=user),
            custom_instructions=instructions,
            execution_result_text=_read_text(result_file) if result_file else None,
        ),
    )
    if result.status is GenerationStatus.DEFERRED:
        _report_deferred(result, None, "cv-tailor cover-letter ... --result <output file>")
        return
    if result.status is GenerationStatus.FAILED:
        _report_failure(result)

    letter = result.parsed_payload["cover_letter_text"]
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(letter, encoding="utf-8")
        console.print(f"[green]Cover letter saved: {output}[/green]")
    else:
        console.print(Panel(letter, title=f"{title} at {company}"))


@app.command()
def keywords(
    context: Path = typer.Argument(help="Job description text file"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
) -> None:
    """List the key skills and requirements in a job description."""
    config = load_config()
    _, tenants = _stores(config)
    extractor = KeywordExtractor(ExecutionController(_resolver(config, tenants), config))
    result = _run_with_spinner(
        "Extracting keywords...",
        extractor.extract_keywords(_read_text(context), TenantIdentity(user_id=user)),
    )
    if result.status is GenerationStatus.DEFERRED:
        _report_deferred(result, None, "run the prompt on your device")
        return
    if result.status is GenerationStatus.FAILED:
        _report_failure(result)
    console.print(", ".join(result.parsed_payload["keywords"]))


@app.command("set-provider")
def set_provider(
    provider: str = typer.Argument(help="ollama, openai, anthropic, gemini, grok or local-device"),
    user: str = typer.Option(None, "--user", "-u", help="Configure this user"),
    org: str = typer.Option(None, "--org", help="Configure this organisation (or the user's organisation)"),
    api_key: str = typer.Option(None, "--api-key", help="API key, stored encrypted"),
    ollama_url: str = typer.Option(None, "--ollama-url", help="Ollama base URL"),
    model: str = typer.Option(None, "--model", help="Ollama or on-device model id"),
    enable_org: bool = typer.Option(False, "--enable-org", help="Let the organisation's settings apply to members"),
) -> None:
    """Store an AI provider preference for a user or an organisation."""
    try:
        provider_id = ProviderId.parse(provider)
    except ValueError:
        console.print(f"[red]Unknown AI service: {provider}[/red]")
        raise typer.Exit(1) from None
    if not user and not org:
        console.print("[red]Pass --user or --org[/red]")
        raise typer.Exit(1)

    config = load_config()
    _, tenants = _stores(config)

    if user:
        settings = tenants.user_settings(user) or TierSettings()
        owner = {"user_id": user}
    else:
        settings = tenants.organisation_settings(org) or TierSettings()
        owner = {"organisation_id": org}

    settings.provider = provider_id.value
    if ollama_url:
        settings.ollama_base_url = ollama_url
    if model and provider_id is ProviderId.OLLAMA:
        settings.ollama_model = model
    elif model and provider_id is ProviderId.LOCAL_DEVICE:
        settings.device_model = model

    if user:
        tenants.save_user_settings(user, settings, org or tenants.user_organisation(user))
    else:
        settings.ai_enabled = enable_org or settings.ai_enabled
        tenants.save_organisation_settings(org, settings)

    if api_key:
        try:
            tenants.set_api_key(provider_id.value, api_key, **owner)
        except ValueError as e:
            console.print(f"[red]{e}. Run 'cv-tailor generate-key' and set {ENCRYPTION_KEY_ENV}.[/red]")
            raise typer.Exit(1) from None

    who = f"user {user}" if user else f"organisation {org}"
    console.print(f"[green]{who} now uses {provider_id.value}[/green]")


@app.command("generate-key")
def generate_key() -> None:
    """Print a new secret for encrypting stored API keys."""
    console.print(f"{ENCRYPTION_KEY_ENV}={generate_secret()}")


@app.command("show-doc")
def show_doc(ref: str = typer.Argument(help="Document ref")) -> None:
    """Print a stored document as JSON."""
    docs, _ = _stores(load_config())
    try:
        document = docs.load_document(ref)
    except CvTailorError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from None
    console.print_json(json.dumps(document.model_dump(mode="json")))


if __name__ == "__main__":
    app()
