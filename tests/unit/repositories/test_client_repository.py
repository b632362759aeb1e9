"""
Tests for ClientRepository
"""

import pytest

from repositories.client_repository import ClientRepository


@pytest.fixture
def repository(db_session):
    return ClientRepository(session=db_session)


class TestClientRepository:

    def test_roster_is_newest_first_and_scoped(self, repository, business, other_business, make_client):
        oldest = make_client(business, name='Oldest', created_days=300)
        newest = make_client(business, name='Newest', created_days=1)
        middle = make_client(business, name='Middle', created_days=30)
        make_client(other_business, name='Elsewhere')

        assert repository.find_by_business(business.id) == [newest, middle, oldest]
        assert repository.count_for_business(business.id) == 3

    def test_find_by_ids_ignores_other_businesses(self, repository, business, other_business, make_client):
        mine = make_client(business)
        theirs = make_client(other_business)

        assert repository.find_by_ids(business.id, [mine.id, theirs.id]) == [mine]
        assert repository.find_by_ids(business.id, []) == []

    def test_find_by_email_is_case_insensitive(self, repository, business, make_client):
        client = make_client(business, email='Jamie.Lee@Example.com')

        assert repository.find_by_email(business.id, ' jamie.lee@example.com ') == client
        assert repository.find_by_email(business.id, '') is None

    def test_find_by_external_id(self, repository, business, other_business, make_client):
        client = make_client(business, external_customer_id='SQ-CUST-1')
        make_client(other_business, external_customer_id='SQ-CUST-1')

        assert repository.find_by_external_id(business.id, 'SQ-CUST-1') == client
        assert repository.find_by_external_id(business.id, 'SQ-CUST-2') is None

    def test_search(self, repository, business, make_client):
        jamie = make_client(business, name='Jamie Lee', phone='503-555-0101')
        make_client(business, name='Morgan Diaz')

        assert repository.search('jamie', business.id) == [jamie]
        assert repository.search('555-0101', business.id) == [jamie]
