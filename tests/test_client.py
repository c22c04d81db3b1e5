"""Tests for the API client, with the HTTP session mocked out."""

from unittest.mock import Mock, patch

import pytest
import requests

from deckporter.client import REQUEST_TIMEOUT, ApiClient, Deadline
from deckporter.errors import CancelledError, NotFoundError, RemoteError


def ok_response(data=None, cookies=None, content=b''):
    response = Mock()
    response.status_code = 200
    response.json.return_value = data
    response.cookies = cookies or {}
    response.content = content
    return response


def error_response(status_code, data):
    failed = Mock()
    failed.status_code = status_code
    failed.json.return_value = data
    response = Mock()
    response.raise_for_status.side_effect = requests.HTTPError(response=failed)
    return response


@pytest.fixture
def session():
    session = Mock()
    session.headers = {}
    return session


@pytest.fixture
def client(session):
    return ApiClient('http://localhost:4000/api/', session=session)


class TestDeadline:
    """Test the run-wide cancellation token."""

    def test_no_limit(self):
        deadline = Deadline()
        assert deadline.remaining() is None
        assert deadline.timeout() == REQUEST_TIMEOUT

    def test_caps_timeout_by_remaining_time(self):
        now = [100.0]
        deadline = Deadline(10, clock=lambda: now[0])
        assert deadline.timeout() == 10
        now[0] = 105.0
        assert deadline.timeout() == 5
        assert deadline.timeout(default=2) == 2

    def test_expired(self):
        now = [100.0]
        deadline = Deadline(10, clock=lambda: now[0])
        now[0] = 111.0
        with pytest.raises(CancelledError, match="Deadline exceeded"):
            deadline.check()

    def test_cancelled(self):
        deadline = Deadline()
        deadline.cancel()
        with pytest.raises(CancelledError, match="cancelled"):
            deadline.timeout()


class TestRequests:
    """Test request plumbing and error mapping."""

    def test_url_and_timeout(self, client, session):
        session.request.return_value = ok_response({'data': []})
        client.get_cards(100)

        session.request.assert_called_once_with(
            'GET', 'http://localhost:4000/api/cards', params={'deckid': 100}, timeout=REQUEST_TIMEOUT)

    def test_http_error_becomes_remote_error(self, client, session):
        session.request.return_value = error_response(400, {'error': 'There are cards that reference'})

        with pytest.raises(RemoteError) as excinfo:
            client.delete_asset(8)

        assert excinfo.value.status_code == 400
        assert excinfo.value.method == 'DELETE'
        assert excinfo.value.url == 'http://localhost:4000/api/assets/8'
        assert 'There are cards that reference' in excinfo.value.message

    def test_transport_error_becomes_remote_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(RemoteError) as excinfo:
            client.get_card(1)
        assert excinfo.value.status_code is None

    def test_cancelled_run_sends_nothing(self, session):
        deadline = Deadline()
        deadline.cancel()
        client = ApiClient('http://localhost:4000/api', session=session, deadline=deadline)

        with pytest.raises(CancelledError):
            client.get_cards(1)
        session.request.assert_not_called()


class TestSignIn:

    def test_sets_session_cookie(self, client, session):
        session.request.return_value = ok_response({}, cookies={'connect.sid': 's%3Aabc'})
        client.sign_in('test_admin', 'secret')

        args, kwargs = session.request.call_args
        assert args == ('POST', 'http://localhost:4000/api/auth/signin')
        assert kwargs['json'] == {'username': 'test_admin', 'password': 'secret', 'withCredentials': True}
        assert session.headers['Cookie'] == 'connect.sid=s%3Aabc'

    def test_missing_cookie(self, client, session):
        session.request.return_value = ok_response({})
        with pytest.raises(RemoteError, match="connect.sid"):
            client.sign_in('test_admin', 'secret')


class TestLookups:
    """Test exact-match lookups over fuzzy searches."""

    def test_find_user_exact(self, client, session):
        session.request.return_value = ok_response(
            [{'id': 8, 'username': 'alice2'}, {'id': 7, 'username': 'alice'}])
        assert client.find_user('alice')['id'] == 7

    def test_find_user_missing(self, client, session):
        session.request.return_value = ok_response([{'id': 8, 'username': 'alice2'}])
        with pytest.raises(NotFoundError, match="User alice not found"):
            client.find_user('alice')

    def test_find_deck_matches_name_and_owner(self, client, session):
        session.request.return_value = ok_response({'results': [
            {'id': 101, 'name': 'Periodic Table', 'user_id': 8},
            {'id': 102, 'name': 'Periodic Table 2', 'user_id': 7},
            {'id': 100, 'name': 'Periodic Table', 'user_id': '7'},
        ]})
        deck = client.find_deck('Periodic Table', {'id': 7, 'username': 'alice'})
        assert deck['id'] == 100

        _, kwargs = session.request.call_args
        assert kwargs['params'] == {'filters[name]': 'Periodic Table'}

    def test_find_deck_missing(self, client, session):
        session.request.return_value = ok_response({'results': []})
        with pytest.raises(NotFoundError, match="with owner alice"):
            client.find_deck('Periodic Table', {'id': 7, 'username': 'alice'})


class TestAssets:
    """Test payload transfer through signed URLs."""

    def test_download_uses_signed_url_without_cookie(self, client, session):
        session.headers['Cookie'] = 'connect.sid=abc'
        session.request.return_value = ok_response({'url': 'https://storage.test/get/5'})

        with patch('deckporter.client.requests.request') as external:
            external.return_value = ok_response(content=b'H-bytes')
            data = client.download_asset({'id': 5, 'fileType': 'image/png'})

        assert data == b'H-bytes'
        _, kwargs = session.request.call_args
        assert kwargs['params'] == {'Key': 5, 'UrlType': 'get', 'ContentType': 'image/png'}
        external.assert_called_once_with('GET', 'https://storage.test/get/5', timeout=REQUEST_TIMEOUT)

    def test_upload_sets_content_type(self, client, session):
        session.request.return_value = ok_response({'url': 'https://storage.test/put/9'})

        with patch('deckporter.client.requests.request') as external:
            external.return_value = ok_response()
            client.upload_asset(9, b'bytes', 'image/png')

        external.assert_called_once_with(
            'PUT', 'https://storage.test/put/9', data=b'bytes',
            headers={'Content-Type': 'image/png'}, timeout=REQUEST_TIMEOUT)

    def test_get_asset_gone(self, client, session):
        session.request.return_value = ok_response([])
        assert client.get_asset(5) is None

    def test_study_session_payload_wrapped(self, client, session):
        session.request.return_value = ok_response({'id': 1})
        client.create_study_session({'deckId': 3})

        _, kwargs = session.request.call_args
        assert kwargs['json'] == {'contents': {'deckId': 3}}
