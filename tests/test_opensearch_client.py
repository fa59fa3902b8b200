import pytest

from careinsight.utils import opensearch_client
from careinsight.utils.config import OpenSearchConfig
from careinsight.utils.opensearch_client import (RECORD_INDEX, SUMMARY_INDEX, SUMMARY_MAPPING, OpenSearchClient,
                                                 OpenSearchError)


class FakeIndices:

    def __init__(self):
        self.created = {}

    def exists(self, index):
        return index in self.created

    def create(self, index, body):
        self.created[index] = body
        return {'acknowledged': True}


class FakeOpenSearch:

    def __init__(self, **kwargs):
        self.indices = FakeIndices()


class FakeSession:

    def get_credentials(self):
        return None


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(opensearch_client.boto3, 'Session', FakeSession)
    monkeypatch.setattr(opensearch_client, 'AWS4Auth', lambda **kwargs: None)
    monkeypatch.setattr(opensearch_client, 'OpenSearch', FakeOpenSearch)
    config = OpenSearchConfig(endpoint='https://search.example',
                              port=443,
                              region='ap-northeast-1',
                              service='es',
                              record_index='care_records',
                              summary_index='care_record_summaries')
    return OpenSearchClient(config)


def test_summary_index_is_created_once(client):
    assert client.create_index_if_not_exists(SUMMARY_INDEX) == 'created'
    assert client.create_index_if_not_exists(SUMMARY_INDEX) == 'exists'
    assert client.client.indices.created == {'care_record_summaries': SUMMARY_MAPPING}


def test_record_index_is_left_to_ingestion(client):
    with pytest.raises(OpenSearchError):
        client.create_index_if_not_exists(RECORD_INDEX)
    assert client.client.indices.created == {}


def test_index_names_come_from_config(client):
    assert client.index_name(RECORD_INDEX) == 'care_records'
    assert client.index_name(SUMMARY_INDEX) == 'care_record_summaries'
