"""Thin wrapper around the deck content REST API.

Every call is synchronous and goes through ApiClient._request(), which
checks the shared Deadline before sending and converts requests failures
into RemoteError.
"""

import time

import requests

from deckporter.errors import CancelledError, NotFoundError, RemoteError

REQUEST_TIMEOUT = 30

SESSION_COOKIE = 'connect.sid'


class Deadline:
    """Cancellation token shared by every call of one run.

    Args:
        seconds: Overall time budget, or None for no limit
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(self, seconds=None, clock=time.monotonic):
        self._clock = clock
        self.expires_at = None if seconds is None else clock() + seconds
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def remaining(self):
        """Seconds left, or None when there is no time limit."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    def check(self):
        """Raise CancelledError if the run was cancelled or is out of time."""
        if self.cancelled:
            raise CancelledError("Run cancelled")
        if self.remaining() == 0:
            raise CancelledError("Deadline exceeded")

    def timeout(self, default=REQUEST_TIMEOUT):
        """Per-request timeout: default, capped by the remaining budget."""
        self.check()
        remaining = self.remaining()
        return default if remaining is None else min(default, remaining)


def _error_message(response):
    """Best-effort error text from a failed API response."""
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        return str(data.get('error') or data.get('message') or data)
    return str(data)


class ApiClient:
    """Client for one target environment.

    Args:
        api_url: Base URL ending in /api
        session: requests.Session to use (default: a new one)
        deadline: Shared Deadline (default: no limit)
    """

    def __init__(self, api_url, session=None, deadline=None):
        self.api_url = api_url.rstrip('/')
        self.session = session if session is not None else requests.Session()
        self.deadline = deadline if deadline is not None else Deadline()

    def _request(self, method, path, external=False, **kwargs):
        """Send one request and return the response.

        Args:
            method: HTTP method
            path: Path below api_url, or a full URL when external
            external: Signed storage URL; sent without the session cookie
        """
        url = path if external else f"{self.api_url}{path}"
        kwargs['timeout'] = self.deadline.timeout()
        send = requests.request if external else self.session.request

        try:
            response = send(method, url, **kwargs)
            response.raise_for_status()
        except requests.HTTPError as e:
            raise RemoteError(method, url, e.response.status_code, _error_message(e.response)) from e
        except requests.RequestException as e:
            raise RemoteError(method, url, None, str(e)) from e

        return response

    def _json(self, method, path, **kwargs):
        return self._request(method, path, **kwargs).json()

    # Authentication and users

    def sign_in(self, username, password):
        """Sign in and keep the session cookie for every later call."""
        response = self._request(
            'POST',
            '/auth/signin',
            json={'username': username, 'password': password, 'withCredentials': True},
        )
        cookie = response.cookies.get(SESSION_COOKIE)
        if not cookie:
            raise RemoteError('POST', f"{self.api_url}/auth/signin", response.status_code,
                              f"No {SESSION_COOKIE} cookie in sign-in response")
        self.session.headers['Cookie'] = f"{SESSION_COOKIE}={cookie}"

    def search_users(self, search):
        """Fuzzy user search; may return non-exact matches."""
        return self._json('GET', '/users', params={'search': search})

    def find_user(self, username):
        """Find a user by exact username.

        Raises:
            NotFoundError: If no user has exactly that username
        """
        user = next((u for u in self.search_users(username) if u.get('username') == username), None)
        if user is None:
            raise NotFoundError(f"User {username} not found.")
        return user

    # Decks

    def search_decks(self, name):
        return self._json('GET', '/decks/get2', params={'filters[name]': name}).get('results', [])

    def find_deck(self, name, owner):
        """Find a deck by exact name and owner user record.

        Raises:
            NotFoundError: If no deck matches both
        """
        deck = next((d for d in self.search_decks(name)
                     if d.get('name') == name and str(d.get('user_id')) == str(owner['id'])), None)
        if deck is None:
            raise NotFoundError(f"Deck {name} with owner {owner.get('username')} not found.")
        return deck

    def decks_for_owner(self, name, owner_id):
        """Decks of owner_id called name (used for conflict detection)."""
        return self._json('GET', '/decks', params={'deckName': name, 'ownerId': owner_id})

    def create_deck(self, payload):
        return self._json('POST', '/decks', json=payload)

    def update_deck(self, deck_id, payload):
        return self._json('PUT', f"/decks/{deck_id}", json=payload)

    def delete_deck(self, deck_id):
        self._request('DELETE', f"/decks/{deck_id}")
        return True

    # Cards and answers

    def get_cards(self, deck_id):
        """Fetch all cards (answers included) for a given deck."""
        return self._json('GET', '/cards', params={'deckid': deck_id}).get('data', [])

    def get_card(self, card_id):
        """Fetch one card, or None if the API returns nothing."""
        cards = self._json('GET', f"/cards/{card_id}").get('data', [])
        return cards[0] if cards else None

    def create_card(self, payload):
        return self._json('POST', '/cards', json=payload)

    def delete_card(self, card_id):
        self._request('DELETE', f"/cards/{card_id}")
        return True

    def create_answer(self, payload):
        return self._json('POST', '/answers', json=payload)

    # Assets

    def get_card_assets(self, card_id):
        return self._json('GET', '/assets', params={'cardId': card_id})

    def get_asset(self, asset_id):
        """Fetch one asset, or None once it no longer exists."""
        assets = self._json('GET', f"/assets/{asset_id}")
        return assets[0] if assets else None

    def create_asset(self, payload):
        return self._json('POST', '/assets', json=payload)

    def delete_asset(self, asset_id):
        self._request('DELETE', f"/assets/{asset_id}")
        return True

    def generate_url(self, asset_id, url_type, content_type):
        """Signed storage URL for downloading ('get') or uploading ('put')."""
        params = {'Key': asset_id, 'UrlType': url_type, 'ContentType': content_type}
        return self._json('GET', '/generate-url', params=params)['url']

    def download_asset(self, asset):
        """Return the binary payload of an asset record."""
        url = self.generate_url(asset['id'], 'get', asset.get('type') or asset.get('fileType'))
        return self._request('GET', url, external=True).content

    def upload_asset(self, asset_id, data, content_type):
        url = self.generate_url(asset_id, 'put', content_type)
        self._request('PUT', url, external=True, data=data, headers={'Content-Type': content_type})

    # Shares

    def get_shares(self, key):
        return self._json('GET', '/shares', params={'key': key})

    def create_share(self, payload):
        return self._json('POST', '/shares', json=payload)

    # Study sessions and responses

    def get_study_sessions(self, deck_id, user_id):
        return self._json('GET', '/study-sessions', params={'deckid': deck_id, 'userid': user_id})

    def create_study_session(self, payload):
        return self._json('POST', '/study-sessions', json={'contents': payload})

    def get_responses(self, study_session_id):
        return self._json('GET', '/responses', params={'studysessionid': study_session_id})

    def create_response(self, payload):
        return self._json('POST', '/responses', json=payload)
