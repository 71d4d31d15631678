"""
Document Assembler Module

Turns a validated POAContext into a finished PDF instrument.

Pipeline: select clauses -> render document plan -> lay out PDF (two pass).
Assembly is deterministic: the same context and generation timestamp give
byte-identical output. It performs no storage or network I/O; callers
persist the returned bytes.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from poa_builder.clause_logic import check_for_conflicts, select_clauses, validate_clause_order
from poa_builder.clause_renderer import document_title, render_document_plan, render_revocation_plan
from poa_builder.context_builder import POAContext
from poa_builder.pdf_generator import generate_pdf_with_footer
from poa_builder.utils import calculate_sha256, canonical_json, sanitize_filename_component

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
FILENAME_TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'


class AssemblyError(Exception):
    """Base class for document assembly failures."""
    retryable = True


class UnvalidatedPayloadError(AssemblyError):
    """The context did not pass full validation or lacks required parts."""
    retryable = False


class AssemblyTimeoutError(AssemblyError):
    """Assembly did not finish within the allowed time."""
    retryable = True


class RenderError(AssemblyError):
    """The layout engine failed while producing the PDF."""
    retryable = True


@dataclass
class AssembledDocument:
    content: bytes
    filename: str
    page_count: int
    sha256: str
    generated_at: datetime

    @property
    def size(self) -> int:
        return len(self.content)


def _check_assemblable(context: POAContext):
    if not context.validated:
        raise UnvalidatedPayloadError('Only a fully validated power of attorney can be assembled')
    if not context.agents:
        raise UnvalidatedPayloadError('At least one agent is required')
    if context.primary_agent is None:
        raise UnvalidatedPayloadError('A primary agent is required')
    if context.is_limited and context.expiration_date is None:
        raise UnvalidatedPayloadError('A limited power of attorney requires an expiration date')
    if context.is_springing and not context.springing_condition:
        raise UnvalidatedPayloadError('A springing power of attorney requires a triggering condition')

    clauses = select_clauses(context)
    problems = check_for_conflicts(clauses)
    if not validate_clause_order(clauses):
        problems.append('Clauses are out of order')
    if problems:
        raise UnvalidatedPayloadError('Inconsistent clause selection: ' + '; '.join(problems))


def default_disambiguator(context: POAContext, generation_timestamp: datetime) -> str:
    """First 8 hex characters of a SHA-256 over the canonical context and timestamp."""
    digest_input = canonical_json({
        'context': context.to_dict(),
        'generated_at': generation_timestamp.strftime(FILENAME_TIMESTAMP_FORMAT),
    })
    return calculate_sha256(digest_input.encode('utf-8'))[:8]


def build_filename(context: POAContext, generation_timestamp: datetime,
                   disambiguator: Optional[str] = None, prefix: str = 'poa') -> str:
    """
    Build a storage-safe filename.

    Format: <prefix>_<family>_<state>_<name>_<YYYYMMDDHHMMSS>_<disambiguator>.pdf
    """
    if disambiguator is None:
        disambiguator = default_disambiguator(context, generation_timestamp)

    parts = [
        prefix,
        sanitize_filename_component(context.family, fallback='poa'),
        sanitize_filename_component(context.state, fallback='xx'),
        sanitize_filename_component(context.principal.full_name),
        generation_timestamp.strftime(FILENAME_TIMESTAMP_FORMAT),
        sanitize_filename_component(disambiguator, fallback='0'),
    ]
    return '_'.join(parts) + '.pdf'


def build_storage_path(tenant_id: str, poa_id, filename: str) -> str:
    """Blob path for a document: poa/<tenant>/<poa id>/<filename>."""
    tenant = sanitize_filename_component(str(tenant_id), fallback='default')
    return f'poa/{tenant}/{poa_id}/{filename}'


def assemble(context: POAContext, generation_timestamp: datetime, disambiguator: Optional[str] = None,
             tz_name: str = 'UTC') -> AssembledDocument:
    """
    Assemble the instrument for a validated context.

    Args:
        context: POAContext produced by a successful full validation
        generation_timestamp: Stored timestamp; the only time the output depends on
        disambiguator: Filename suffix; defaults to a hash of context and timestamp
        tz_name: Timezone used to display the timestamp in the footer

    Returns:
        AssembledDocument

    Raises:
        UnvalidatedPayloadError: If the context is not assemblable
        RenderError: If PDF layout fails
    """
    _check_assemblable(context)

    document_plan = render_document_plan(context)
    try:
        content, sha256, page_count = generate_pdf_with_footer(
            document_plan, generation_timestamp, title=document_title(context).title(), tz_name=tz_name
        )
    except Exception as e:
        raise RenderError(f'PDF rendering failed: {e}') from e

    return AssembledDocument(
        content=content,
        filename=build_filename(context, generation_timestamp, disambiguator),
        page_count=page_count,
        sha256=sha256,
        generated_at=generation_timestamp,
    )


def assemble_with_timeout(context: POAContext, generation_timestamp: datetime,
                          timeout: float = DEFAULT_TIMEOUT_SECONDS, disambiguator: Optional[str] = None,
                          tz_name: str = 'UTC') -> AssembledDocument:
    """
    Run assemble() in a worker thread, giving up after timeout seconds.

    Raises:
        AssemblyTimeoutError: If the worker does not finish in time (retryable)
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='poa-assembly')
    future = executor.submit(assemble, context, generation_timestamp, disambiguator, tz_name)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        logger.warning(f'Document assembly exceeded {timeout}s')
        raise AssemblyTimeoutError(f'Document assembly did not finish within {timeout} seconds')
    finally:
        executor.shutdown(wait=False)


def assemble_revocation(context: POAContext, executed_on, revoked_at: datetime,
                        reason: str = '', tz_name: str = 'UTC') -> AssembledDocument:
    """
    Assemble a revocation notice for a previously generated instrument.

    Args:
        context: Context of the instrument being revoked
        executed_on: Date of the original instrument
        revoked_at: Revocation timestamp (also the generation timestamp)
        reason: Optional reason given by the principal
    """
    document_plan = render_revocation_plan(context, executed_on, revoked_at, reason)
    try:
        content, sha256, page_count = generate_pdf_with_footer(
            document_plan, revoked_at, title='Revocation of Power of Attorney', tz_name=tz_name
        )
    except Exception as e:
        raise RenderError(f'PDF rendering failed: {e}') from e

    return AssembledDocument(
        content=content,
        filename=build_filename(context, revoked_at, sha256[:8], prefix='revocation'),
        page_count=page_count,
        sha256=sha256,
        generated_at=revoked_at,
    )
