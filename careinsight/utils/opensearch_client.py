"""
OpenSearch client wrapper for the care-record and summary indexes.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

RECORD_INDEX = 'record'
SUMMARY_INDEX = 'summary'

SUMMARY_MAPPING = {
    'mappings': {
        'properties': {
            'id': {
                'type': 'keyword'
            },
            'type': {
                'type': 'keyword'
            },
            'period_start': {
                'type': 'date',
                'format': 'yyyy-MM-dd'
            },
            'period_end': {
                'type': 'date',
                'format': 'yyyy-MM-dd'
            },
            'summary_text': {
                'type': 'text'
            },
            'key_insights': {
                'type': 'text'
            },
            'category_counts': {
                'type': 'object',
                'enabled': False
            },
            'correlations': {
                'type': 'object',
                'enabled': False
            },
            'related_dates': {
                'type': 'keyword'
            },
            'source_record_count': {
                'type': 'integer'
            },
            'generated_at': {
                'type': 'date'
            },
            'generated_by': {
                'type': 'keyword'
            }
        }
    }
}


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config

        credentials = boto3.Session().get_credentials()
        auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def index_name(self, index_type: str) -> str:
        """Resolve the configured index name for ``record`` or ``summary``."""
        if index_type == RECORD_INDEX:
            return self.config.record_index
        if index_type == SUMMARY_INDEX:
            return self.config.summary_index
        raise OpenSearchError(f'Unknown index type: {index_type}')

    def create_index_if_not_exists(self, index_type: str) -> str:
        """
        Create the summary index if it doesn't exist.

        The record index is created and mapped by the ingestion job; this
        service only reads it.

        Args:
            index_type: ``summary``

        Returns:
            'exists', 'created' or 'failed'
        """
        if index_type != SUMMARY_INDEX:
            raise OpenSearchError(f'Index type {index_type} is not managed by this service')
        index_name = self.index_name(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=SUMMARY_MAPPING)
            logger.info(f'Created index {index_name}')
            if not response.get('acknowledged', False):
                return 'failed'
            if self.config.service == 'aoss':
                # Serverless collections need a moment before new indexes accept writes
                logger.info(f'Waiting 15s for index {index_name} sync-up...')
                time.sleep(15)
            return 'created'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def put_document(self, doc_id: str, document: Dict[str, Any], index_type: str) -> bool:
        """
        Create or fully replace a document under a fixed id.

        Args:
            doc_id: Document ID
            document: Full document body
            index_type: ``record`` or ``summary``

        Returns:
            True if OpenSearch reported the document created or updated
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.index(index=index_name, id=doc_id, body=document)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Indexed document {doc_id} in {index_name}')
            else:
                logger.warning(f'Unexpected result indexing document: {response}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error indexing document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error indexing document: {e}')

    def get_document(self, doc_id: str, index_type: str) -> Optional[Dict[str, Any]]:
        """
        Get a document source by id.

        Returns:
            Document source if found, None otherwise
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.get(index=index_name, id=doc_id)
            if not response.get('found', False):
                return None
            return response['_source']

        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error getting document: {e}')

    def search(self, body: Dict[str, Any], index_type: str) -> List[Dict[str, Any]]:
        """
        Run a search and return hit sources in hit order.

        Args:
            body: OpenSearch query DSL body
            index_type: ``record`` or ``summary``

        Returns:
            List of ``_source`` dicts, each with ``id`` defaulted to the hit id
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.search(index=index_name, body=body)

            results = []
            for hit in response['hits']['hits']:
                source = dict(hit['_source'])
                source.setdefault('id', hit['_id'])
                results.append(source)

            logger.debug(f'Search on {index_name} returned {len(results)} hits')
            return results

        except NotFoundError:
            logger.warning(f'Index {index_name} does not exist yet')
            return []
        except OpenSearchException as e:
            logger.error(f'Error searching {index_name}: {e}')
            raise OpenSearchError(f'Search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error searching {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error in search: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.config.summary_index)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
