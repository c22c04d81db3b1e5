"""Shared fixtures: an in-memory stand-in for the deck API."""

import io
import itertools

import pytest

from deckporter import links
from deckporter.client import ApiClient
from deckporter.errors import RemoteError
from deckporter.reporter import Reporter


class FakeApi(ApiClient):
    """ApiClient whose endpoints read and write in-memory tables.

    Lookup helpers (find_user, find_deck) are inherited unchanged. Every
    endpoint call is appended to ``calls`` as (name, arg).
    """

    def __init__(self, first_id=1000):
        super().__init__('http://fake.test/api')
        self._ids = itertools.count(first_id)
        self.users = []
        self.decks = {}
        self.cards = {}
        self.answers = {}
        self.assets = {}
        self.payloads = {}
        self.references = set()   # (card id, asset id)
        self.shares = []
        self.study_sessions = {}
        self.responses = {}
        self.calls = []
        self.fail_on = {}         # endpoint name -> exception to raise

    def _call(self, name, arg=None):
        self.calls.append((name, arg))
        if name in self.fail_on:
            raise self.fail_on[name]

    def next_id(self):
        return next(self._ids)

    def called(self, name):
        return [arg for call, arg in self.calls if call == name]

    # Seeding helpers

    def add_user(self, user_id, username):
        user = {'id': user_id, 'username': username}
        self.users.append(user)
        return user

    def add_deck(self, deck_id, name, user_id, **fields):
        self.decks[deck_id] = {'id': deck_id, 'name': name, 'user_id': user_id, **fields}
        return self.decks[deck_id]

    def add_card(self, card_id, deck_id, question, answers=(), **fields):
        self.cards[card_id] = {'id': card_id, 'deck_id': deck_id, 'question': question, **fields}
        for answer in answers:
            self.answers[answer['id']] = {'card_id': card_id, 'isCorrect': False, 'groupIndex': 1, **answer}
        self._link_text(card_id, question)
        for answer in answers:
            self._link_text(card_id, answer.get('text'))
        return self.cards[card_id]

    def add_asset(self, asset_id, file_name, user_id, payload=b'', card_id=None, **fields):
        self.assets[asset_id] = {'id': asset_id, 'file_name': file_name, 'name': file_name,
                                 'fileType': 'image/png', 'type': 'image/png',
                                 'user_id': user_id, 'card_id': card_id, **fields}
        self.payloads[asset_id] = payload
        if card_id is not None:
            self.references.add((card_id, asset_id))
        return self.assets[asset_id]

    def _link_text(self, card_id, text):
        for asset_id in links.extract_asset_ids(text):
            self.references.add((card_id, int(asset_id)))

    def _card_with_answers(self, card):
        answers = sorted((a for a in self.answers.values() if a['card_id'] == card['id']),
                         key=lambda a: a['id'])
        return {**card, 'answer': [dict(a) for a in answers]}

    # Users and decks

    def search_users(self, search):
        self._call('search_users', search)
        return [dict(u) for u in self.users if u['username'].startswith(search)]

    def search_decks(self, name):
        self._call('search_decks', name)
        return [dict(d) for d in self.decks.values() if name.lower() in d['name'].lower()]

    def decks_for_owner(self, name, owner_id):
        self._call('decks_for_owner', (name, owner_id))
        return [dict(d) for d in self.decks.values()
                if d['name'] == name and str(d['user_id']) == str(owner_id)]

    def create_deck(self, payload):
        self._call('create_deck', payload)
        deck_id = self.next_id()
        self.decks[deck_id] = {'id': deck_id, 'user_id': payload.get('userId'), **payload}
        return {'id': deck_id}

    def update_deck(self, deck_id, payload):
        self._call('update_deck', (deck_id, payload))
        self.decks[deck_id].update(payload)
        return dict(self.decks[deck_id])

    def delete_deck(self, deck_id):
        self._call('delete_deck', deck_id)
        del self.decks[deck_id]
        return True

    # Cards and answers

    def get_cards(self, deck_id):
        self._call('get_cards', deck_id)
        return [self._card_with_answers(c) for c in self.cards.values()
                if str(c['deck_id']) == str(deck_id)]

    def get_card(self, card_id):
        self._call('get_card', card_id)
        card = self.cards.get(int(card_id))
        return self._card_with_answers(card) if card else None

    def create_card(self, payload):
        self._call('create_card', payload)
        contents = payload['contents']
        card_id = self.next_id()
        self.cards[card_id] = {
            'id': card_id,
            'deck_id': contents['deck'],
            'question': contents['question'],
            'hint': contents.get('hint'),
            'explanation': contents.get('explanation'),
            'notes': contents.get('notes'),
            'algorithm_id': contents.get('verificationAlgorithm'),
            'algoSettings': contents.get('algoSettings'),
        }
        self._link_text(card_id, contents['question'])
        return {'id': card_id}

    def delete_card(self, card_id):
        self._call('delete_card', card_id)
        del self.cards[card_id]
        self.answers = {k: a for k, a in self.answers.items() if a['card_id'] != card_id}
        self.references = {r for r in self.references if r[0] != card_id}
        return True

    def create_answer(self, payload):
        self._call('create_answer', payload)
        answer_id = self.next_id()
        self.answers[answer_id] = {'id': answer_id, **payload}
        self._link_text(payload['card_id'], payload['text'])
        return {'id': answer_id}

    # Assets

    def get_card_assets(self, card_id):
        self._call('get_card_assets', card_id)
        return [dict(self.assets[a]) for c, a in sorted(self.references)
                if c == card_id and a in self.assets]

    def get_asset(self, asset_id):
        self._call('get_asset', asset_id)
        asset = self.assets.get(int(asset_id))
        return dict(asset) if asset else None

    def create_asset(self, payload):
        self._call('create_asset', payload)
        asset_id = self.next_id()
        self.assets[asset_id] = {'id': asset_id, 'file_name': payload['file_name'],
                                 'name': payload.get('name'), 'fileType': payload.get('fileType'),
                                 'user_id': payload.get('userId')}
        return {'id': asset_id}

    def delete_asset(self, asset_id):
        self._call('delete_asset', asset_id)
        if any(a == asset_id for _, a in self.references):
            raise RemoteError('DELETE', f"{self.api_url}/assets/{asset_id}", 400,
                              'There are cards that reference this asset')
        del self.assets[asset_id]
        return True

    def download_asset(self, asset):
        self._call('download_asset', asset['id'])
        return self.payloads[asset['id']]

    def upload_asset(self, asset_id, data, content_type):
        self._call('upload_asset', asset_id)
        self.payloads[asset_id] = data

    # Shares, study sessions, responses

    def get_shares(self, key):
        self._call('get_shares', key)
        return [dict(s) for s in self.shares if s.get('key') == key]

    def create_share(self, payload):
        self._call('create_share', payload)
        share = {'id': self.next_id(), 'key': f"key-{payload['deckId']}", **payload}
        self.shares.append(share)
        self.decks[payload['deckId']]['shareKey'] = share['key']
        return share

    def get_study_sessions(self, deck_id, user_id):
        self._call('get_study_sessions', (deck_id, user_id))
        return [dict(s) for s in self.study_sessions.values()
                if s['deck_id'] == deck_id and s['user_id'] == user_id]

    def create_study_session(self, payload):
        self._call('create_study_session', payload)
        session_id = self.next_id()
        self.study_sessions[session_id] = {'id': session_id, 'deck_id': payload['deckId'],
                                           'user_id': payload['userId'], **payload}
        return {'id': session_id}

    def get_responses(self, study_session_id):
        self._call('get_responses', study_session_id)
        return [dict(r) for r in self.responses.values()
                if r['study_session_id'] == study_session_id]

    def create_response(self, payload):
        self._call('create_response', payload)
        response_id = self.next_id()
        self.responses[response_id] = {'id': response_id, **payload}
        return {'id': response_id}


@pytest.fixture
def reporter():
    """Reporter that keeps the console quiet but records warnings."""
    return Reporter(stream=io.StringIO())


@pytest.fixture
def fake_api():
    """Empty target API."""
    return FakeApi()


@pytest.fixture
def source_api():
    """Source API holding one deck owned by alice.

    Deck 100 "Periodic Table":
        card 10: question links asset 5, answers 20 (correct) and 21
        card 11: answer 22 links asset 6
        card 12: asset 8 attached without any text link
        share with key "share-100"
        study session 300 with responses on cards 10 and 11
    """
    api = FakeApi(first_id=5000)
    api.add_user(1, 'test_admin')
    alice = api.add_user(7, 'alice')
    api.add_user(8, 'alice2')

    api.add_deck(100, 'Periodic Table', alice['id'], description='Elements', synopsis='All of them',
                 textToSpeech=True, preface=False, feedback=True, showDontKnow=True,
                 shareKey='share-100')
    api.add_deck(101, 'Periodic Table', 8)

    api.add_asset(5, 'hydrogen.png', 7, payload=b'H-bytes')
    api.add_asset(6, 'oxygen.png', 7, payload=b'O-bytes')
    api.add_asset(8, 'table.png', 7, payload=b'T-bytes', card_id=12)

    api.add_card(10, 100, '<p>Which element?</p><img src="/api/assets/5">',
                 answers=[{'id': 20, 'text': 'Hydrogen', 'isCorrect': True},
                          {'id': 21, 'text': 'Helium'}],
                 algorithm_id=1, hint='lightest', explanation='H is 1', notes='')
    api.add_card(11, 100, 'Symbol O?',
                 answers=[{'id': 22, 'text': '<img src="/api/assets/6">', 'isCorrect': True}],
                 algorithm_id=1)
    api.add_card(12, 100, 'Show the table', answers=[{'id': 23, 'text': 'ok', 'isCorrect': True}],
                 algorithm_id=2)

    api.shares.append({'key': 'share-100', 'expiration': '2030-01-02T03:04:05',
                       'defaultIsAdminMode': False, 'defaultIsRandomMode': True,
                       'defaultIsTextToSpeechMode': False, 'defaultIsSaveResponsesMode': True,
                       'default_layout_id': 2})

    api.study_sessions[300] = {'id': 300, 'deck_id': 100, 'user_id': 7,
                               'start_time': '2024-03-01T10:00:00', 'end_time': '2024-03-01T10:30:00',
                               'response_count': 2, 'response_duration_sum': 40,
                               'correct_count': 1, 'total_score': 1}
    api.responses[400] = {'id': 400, 'study_session_id': 300, 'card_id': 10, 'answer_id': 20,
                          'user_id': 7, 'created_on': '2024-03-01T10:01:00', 'duration': 15,
                          'username': 'alice', 'old_has_not_known': False}
    api.responses[401] = {'id': 401, 'study_session_id': 300, 'card_id': 11, 'answer_id': None,
                          'user_id': 7, 'created_on': '2024-03-01T10:02:00', 'duration': 25}
    return api
