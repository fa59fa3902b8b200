"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    service: str
    record_index: str
    summary_index: str


@dataclass
class RecordCacheConfig:
    """Configuration for the process-local record cache."""
    ttl_seconds: int
    max_batch_size: int


@dataclass
class RetrievalConfig:
    """Configuration for relevance-scored record retrieval."""
    max_results: int
    strong_signal_bonus: int


@dataclass
class CorrelationConfig:
    """Confidence tiering for correlation observations.

    The thresholds are product decisions, not derived constants.
    """
    high_threshold: float
    medium_threshold: float
    min_trigger_events: int


@dataclass
class SummaryConfig:
    """Configuration for hierarchical summary generation."""
    utc_offset_hours: int
    max_records: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    opensearch: OpenSearchConfig
    record_cache: RecordCacheConfig
    retrieval: RetrievalConfig
    correlation: CorrelationConfig
    summary: SummaryConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration (no automatic retry by default; a timeout is a failure)
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'ap-northeast-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.2')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '1')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          connect_timeout=int(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
                                          read_timeout=int(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '60')))

    # Record and summary store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'ap-northeast-1'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         record_index=os.getenv('OPENSEARCH_RECORD_INDEX', 'care_records'),
                                         summary_index=os.getenv('OPENSEARCH_SUMMARY_INDEX', 'care_record_summaries'))

    record_cache_config = RecordCacheConfig(ttl_seconds=int(os.getenv('RECORD_CACHE_TTL_SECONDS', '300')),
                                            max_batch_size=int(os.getenv('RECORD_CACHE_MAX_BATCH', '2000')))

    retrieval_config = RetrievalConfig(max_results=int(os.getenv('RETRIEVAL_MAX_RESULTS', '100')),
                                       strong_signal_bonus=int(os.getenv('RETRIEVAL_STRONG_SIGNAL_BONUS', '10')))

    correlation_config = CorrelationConfig(high_threshold=float(os.getenv('CORRELATION_HIGH_THRESHOLD', '0.8')),
                                           medium_threshold=float(os.getenv('CORRELATION_MEDIUM_THRESHOLD', '0.5')),
                                           min_trigger_events=int(os.getenv('CORRELATION_MIN_TRIGGER_EVENTS', '2')))

    summary_config = SummaryConfig(utc_offset_hours=int(os.getenv('SUMMARY_UTC_OFFSET_HOURS', '9')),
                                   max_records=int(os.getenv('SUMMARY_MAX_RECORDS', '2000')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     opensearch=opensearch_config,
                     record_cache=record_cache_config,
                     retrieval=retrieval_config,
                     correlation=correlation_config,
                     summary=summary_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
