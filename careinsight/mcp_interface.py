"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from dataclasses import asdict
from datetime import date
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .models.core import InvalidRequestError, RetrievalContext
from .services.correlation import CorrelationDetector
from .services.record_cache import RecordCache
from .services.record_chat import ChatTurn, RecordChatError, RecordChatService
from .services.record_store import OpenSearchRecordStore, RecordStoreError
from .services.relevance import RecordRetrievalService
from .services.summarizer import HierarchicalSummarizer, SummaryGenerationError
from .services.summary_store import OpenSearchSummaryStore
from .services.sync_hooks import handle_sync_completed
from .utils.bedrock_llm import BedrockLLM
from .utils.categories import display_name
from .utils.config import config
from .utils.health_check import get_health_status
from .utils.logging_config import get_logger
from .utils.opensearch_client import OpenSearchClient
from .utils.timestamp_utils import fixed_offset

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Care Record Insight')

_services: Dict[str, Any] = {}


def _get_services() -> Dict[str, Any]:
    """Build the service graph on first use; later calls share it."""
    if _services:
        return _services

    tz = fixed_offset(config.summary.utc_offset_hours)
    client = OpenSearchClient(config.opensearch)
    llm = BedrockLLM(config.bedrock_llm)
    record_store = OpenSearchRecordStore(config.opensearch, tz=tz, client=client)
    cache = RecordCache(record_store,
                        ttl_seconds=config.record_cache.ttl_seconds,
                        max_batch_size=config.record_cache.max_batch_size)
    retrieval = RecordRetrievalService(cache,
                                       max_results=config.retrieval.max_results,
                                       strong_signal_bonus=config.retrieval.strong_signal_bonus,
                                       fetch_limit=config.record_cache.max_batch_size)
    detector = CorrelationDetector(high_threshold=config.correlation.high_threshold,
                                   medium_threshold=config.correlation.medium_threshold,
                                   min_trigger_events=config.correlation.min_trigger_events)
    summarizer = HierarchicalSummarizer(record_store,
                                        OpenSearchSummaryStore(config.opensearch, client=client),
                                        llm,
                                        detector=detector,
                                        max_records=config.summary.max_records,
                                        tz=tz)

    _services.update(cache=cache,
                     retrieval=retrieval,
                     chat=RecordChatService(retrieval, llm),
                     summarizer=summarizer)
    logger.info('Initialized care record services')
    return _services


def _parse_date(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidRequestError(f'{name} must be YYYY-MM-DD (got {value!r})')


@mcp.tool()
def search_care_records(query: str,
                        category: Optional[str] = None,
                        year: Optional[int] = None,
                        month: Optional[int] = None) -> Dict[str, Any]:
    """Find the care records most relevant to a question.

    Args:
        query: Natural language question
        category: Sheet name or category currently being viewed
        year: Restrict to this year
        month: Restrict to this month (with year)

    Returns:
        Relevant records, per-category source counts and cache metadata
    """
    if not query or not query.strip():
        raise InvalidRequestError('query is required')

    try:
        result = _get_services()['retrieval'].search(query, RetrievalContext(category=category, year=year, month=month))
    except RecordStoreError as e:
        logger.error(f'Record store error in MCP search: {e}')
        raise Exception(f'Record search failed: {e}')

    logger.debug(f'MCP search returned {len(result.records)} records')
    return {
        'records': [{
            'id': r.record_id,
            'timestamp': r.raw_timestamp,
            'sheet': display_name(r.category),
            'fields': r.fields
        } for r in result.records],
        'sources': [asdict(s) for s in result.sources],
        'from_cache': result.from_cache,
        'cache_age_seconds': result.cache_age_seconds
    }


@mcp.tool()
def ask_care_records(message: str,
                     category: Optional[str] = None,
                     year: Optional[int] = None,
                     month: Optional[int] = None,
                     history: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    """Answer a question about the care records.

    Args:
        message: The question
        category: Sheet name or category currently being viewed
        year: Year being viewed
        month: Month being viewed
        history: Earlier turns as {"role": "user"|"assistant", "content": ...}

    Returns:
        Answer text, cited sources and suggested follow-up questions
    """
    turns = [ChatTurn(role=t.get('role', 'user'), content=t.get('content', '')) for t in history or []]
    try:
        answer = _get_services()['chat'].answer(message, RetrievalContext(category=category, year=year, month=month),
                                                turns)
    except RecordChatError as e:
        logger.error(f'Record chat error in MCP ask: {e}')
        raise Exception(f'Record chat failed: {e}')

    return {
        'message': answer.message,
        'sources': [asdict(s) for s in answer.sources],
        'suggested_questions': answer.suggested_questions,
        'from_cache': answer.from_cache
    }


@mcp.tool()
def generate_summary(type: str, period_key: str, force_regenerate: bool = False) -> Dict[str, Any]:
    """Generate (or fetch the existing) daily, weekly or monthly summary.

    Args:
        type: daily | weekly | monthly
        period_key: YYYY-MM-DD, YYYY-Www or YYYY-MM
        force_regenerate: Replace an existing summary

    Returns:
        The summary, whether it was newly generated, and the processing time
    """
    try:
        result = _get_services()['summarizer'].generate(type, period_key, force_regenerate)
    except SummaryGenerationError as e:
        logger.error(f'Summary generation error in MCP: {e}')
        raise Exception(f'Summary generation failed: {e}')

    response = {
        'summary': result.summary.to_document(),
        'generated': result.generated,
        'processing_time_ms': result.processing_time_ms
    }
    if result.message:
        response['message'] = result.message
    return response


@mcp.tool()
def get_summaries(type: Optional[str] = None,
                  from_date: Optional[str] = None,
                  to_date: Optional[str] = None,
                  limit: int = 50) -> Dict[str, Any]:
    """List stored summaries, newest period first.

    Args:
        type: daily | weekly | monthly (all when omitted)
        from_date: Earliest period start, YYYY-MM-DD
        to_date: Latest period end, YYYY-MM-DD
        limit: Maximum number of summaries (default: 50)
    """
    summaries = _get_services()['summarizer'].list_summaries(type,
                                                             _parse_date(from_date, 'from_date'),
                                                             _parse_date(to_date, 'to_date'),
                                                             limit)
    return {'summaries': [s.to_document() for s in summaries], 'total_count': len(summaries)}


@mcp.tool()
def invalidate_record_cache() -> Dict[str, Any]:
    """Drop the cached record set so the next read refetches."""
    cache = _get_services()['cache']
    cache.invalidate()
    return cache.stats()


@mcp.tool()
def run_post_sync_summaries(today: Optional[str] = None) -> Dict[str, Any]:
    """Run the after-sync hooks: invalidate the cache and regenerate due summaries.

    Args:
        today: Override for the current date, YYYY-MM-DD
    """
    services = _get_services()
    report = handle_sync_completed(services['cache'], services['summarizer'], _parse_date(today, 'today'))
    return {
        'generated': {key: result.generated for key, result in report.results.items()},
        'failures': report.failures
    }


@mcp.tool()
def get_cache_stats() -> Dict[str, Any]:
    """Age, size and remaining TTL of the cached record set."""
    return _get_services()['cache'].stats()


@mcp.tool()
def get_health() -> Dict[str, Any]:
    """Health of the generation service and OpenSearch."""
    return get_health_status()


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
