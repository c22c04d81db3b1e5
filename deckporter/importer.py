"""Import a bundle directory into the API.

Records are created in dependency order: deck, assets, cards (with their
answers), share, then study sessions and their responses. Each new id is
written back onto the bundle record as ``newId`` and into a RemapTable, so
later records can resolve their relative (``_``) foreign keys.

Nothing is rolled back: a failed remote call aborts the import and leaves
whatever was already created in place.
"""

import secrets
import string
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from deckporter import ids, links
from deckporter.bundle import (ANSWER, ASSET, CARD, DECK, METADATA_FILE, RESPONSE, RESPONSES_FILE,
                               RESPONSES_NONE, RESPONSES_ONLY, STUDY_SESSION, Bundle, RemapTable,
                               find_answer, parse_responses_mode, payload_file_name, sort_by_id)
from deckporter.errors import DependencyError, OrdinalMismatchWarning, ValidationError
from deckporter.reporter import NullReporter

DB_TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

# Fields of a conflicting deck carried over when it is renamed
RENAME_KEEP_FIELDS = ('feedback', 'preface', 'showDuration', 'defaultPrefaceSettings',
                      'showDontKnow')
RENAME_PREFIX_LENGTH = 24
RENAME_SUFFIX_LENGTH = 5
RENAME_SUFFIX_ALPHABET = string.ascii_letters + string.digits + '_-'

SHARE_FLAGS = (
    ('checkedAdmin', 'defaultIsAdminMode'),
    ('checkedRandom', 'defaultIsRandomMode'),
    ('checkedSaveResponses', 'defaultIsSaveResponsesMode'),
    ('checkedTextToSpeech', 'defaultIsTextToSpeechMode'),
)

# Bundle bookkeeping and server-computed fields, never sent back
STUDY_SESSION_DROPPED = ('type', 'id', 'newId', 'deck_id', 'user_id', 'userId', 'response_count',
                         'response_duration_sum', 'correct_count', 'total_score',
                         'test_auto', 'testAuto')
RESPONSE_DROPPED = ('type', 'id', 'newId', 'card_id', 'answer_id', 'user_id', 'userId',
                    'test_auto', 'testAuto')


def to_db_timestamp(value):
    """Convert an exported timestamp to the target's 'YYYY-MM-DD HH:MM:SS'.

    Accepts ISO 8601 strings (with or without offset), datetimes and epoch
    milliseconds. Aware values are converted to local time. None stays None.
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)):
        moment = datetime.fromtimestamp(value / 1000)
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            moment = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}") from e

    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime(DB_TIMESTAMP_FORMAT)


def conflict_name(name):
    """New name for a deck that collides with an imported one."""
    suffix = ''.join(secrets.choice(RENAME_SUFFIX_ALPHABET) for _ in range(RENAME_SUFFIX_LENGTH))
    return f"{name[:RENAME_PREFIX_LENGTH]}_{suffix}"


def _without_none(payload):
    return {k: v for k, v in payload.items() if v is not None}


@dataclass
class ImportResult:
    deck_id: object
    remap: RemapTable
    counts: dict = field(default_factory=dict)
    skipped_responses: int = 0
    warnings: list = field(default_factory=list)


class Importer:
    """Creates the records of one bundle directory in the target API.

    Args:
        client: Signed-in ApiClient for the target environment
        bundle_dir: Directory holding metadata.json5 and the asset files
        owner: Target user record the deck is created for (None: the
            signed-in user, or the absolute user ids in the bundle)
        deck_name: Name for the new deck instead of the exported one
        rename_conflict: Rename an existing deck of the owner that has the
            same name. This modifies a deck unrelated to the import.
        test_auto: Tag stamped on every created record
        reporter: Progress reporter
    """

    def __init__(self, client, bundle_dir, owner=None, deck_name=None, rename_conflict=False,
                 test_auto=None, reporter=None):
        self.client = client
        self.bundle_dir = Path(bundle_dir)
        self.owner = owner or None
        self.deck_name = deck_name
        self.rename_conflict = rename_conflict
        self.test_auto = test_auto
        self.reporter = reporter or NullReporter()

        self.bundle = self._load(METADATA_FILE)
        self.responses_bundle = None
        self.remap = RemapTable()
        self.new_deck_id = None
        self.counts = {'decks': 0, 'cards': 0, 'answers': 0, 'assets': 0, 'shares': 0,
                       'studySessions': 0, 'responses': 0}
        self.skipped_responses = 0

        # Responses-only mode: live cards of the existing deck, sorted by id
        self._live_cards = None
        self._mismatched_cards = set()

    def _load(self, filename):
        path = self.bundle_dir / filename
        if not path.is_file():
            raise DependencyError(f"Bundle file not found: {path}")
        return Bundle.load(path)

    def _owner_id(self):
        return self.owner.get('id') if self.owner else None

    def _user_id(self, tag):
        """The owner override, else the absolute user id from the bundle."""
        owner_id = self._owner_id()
        if owner_id is not None:
            return owner_id
        return ids.untag(tag) if ids.is_absolute(tag) else tag

    def _test_auto(self):
        """The --test-auto tag; a record's own exported tag is never reused."""
        return self.test_auto or None

    def preflight(self):
        """Check the bundle before any remote record is created.

        Raises:
            ValidationError: Deck count, share count, an asset file name that is
                not a plain name, or a dangling asset link
            DependencyError: An asset payload file is missing
        """
        deck = self.bundle.deck()

        for asset in self.bundle.assets():
            path = self.bundle_dir / payload_file_name(asset.get('fileName'))
            if not path.is_file():
                raise DependencyError(f"Asset file not found for asset {asset.get('id')}: {path}")

        for card in self.bundle.cards():
            texts = [card.get('question')]
            texts += [a.get('text') for a in card.get('answers') or [] if isinstance(a, dict)]
            for text in texts:
                for asset_id in links.extract_asset_ids(text):
                    if self.bundle.find_asset(asset_id) is None:
                        raise ValidationError(
                            f"Card {card.get('id')} links to asset {asset_id}, "
                            f"which is not in the bundle"
                        )

        if len(self.bundle.shares()) > 1:
            raise ValidationError(f"At most one share expected, {len(self.bundle.shares())} found.")

        return deck

    def import_deck(self):
        """Create deck, assets, cards, answers and share. Returns the deck id."""
        deck = self.preflight()

        if ids.is_absolute(deck.get('id')):
            self.new_deck_id = ids.untag(deck['id'])
            self.reporter.report(f"Importing into existing deck {self.new_deck_id}")
        else:
            self.create_deck(deck)
            self.remap.record(DECK, deck['id'], self.new_deck_id)
        deck['newId'] = self.new_deck_id

        assets = self.bundle.assets()
        for idx, asset in enumerate(assets, 1):
            asset_id = self.create_asset(asset)
            asset['newId'] = asset_id
            self.remap.record(ASSET, asset['id'], asset_id)
            self.reporter.verbose(f"New asset created with id of {asset_id} ({idx} of {len(assets)} assets)")

        cards = self.bundle.cards()
        self.reporter.report(f"Creating {len(cards)} cards")
        for idx, card in enumerate(cards, 1):
            self.create_card(card)
            self.reporter.verbose(f"Card {idx} of {len(cards)} cards created")

        shares = self.bundle.shares()
        if shares:
            self.create_share(shares[0])

        self.reporter.succeed(
            f"Card import complete: {self.counts['cards']} cards, "
            f"{self.counts['answers']} answers, {self.counts['assets']} assets"
        )
        return self.new_deck_id

    def create_deck(self, deck):
        payload = _without_none({
            'name': self.deck_name or deck.get('name'),
            'testAuto': self._test_auto(),
            'textToSpeech': bool(deck.get('textToSpeech')),
            'description': deck.get('description') or None,
            'preface': bool(deck.get('preface')),
            'feedback': bool(deck.get('feedback')),
            'showDontKnow': bool(deck.get('showDontKnow')),
            'userId': self._user_id(deck.get('userId')),
            'answerLanguage': deck.get('answerLanguage') or None,
            'questionLanguage': deck.get('questionLanguage') or None,
        })

        if self.rename_conflict:
            self.rename_conflicting_decks(payload['name'], payload.get('userId'))

        created = self.client.create_deck(payload)
        self.new_deck_id = created['id']
        self.counts['decks'] += 1
        self.reporter.succeed(f"New deck created with id of {self.new_deck_id}")
        return self.new_deck_id

    def rename_conflicting_decks(self, name, owner_id):
        """Rename the owner's existing decks called name out of the way."""
        if owner_id is None:
            self.reporter.warn("No deck owner given, cannot check for deck name conflicts")
            return []

        renamed = []
        for existing in self.client.decks_for_owner(name, owner_id):
            if existing.get('name') != name:
                continue

            new_name = conflict_name(existing['name'])
            payload = {'name': new_name, 'userId': owner_id}
            payload.update({k: existing[k] for k in RENAME_KEEP_FIELDS if k in existing})

            self.client.update_deck(existing['id'], payload)
            self.reporter.warn(f"Existing deck {existing['id']} '{name}' renamed to '{new_name}'")
            renamed.append(existing['id'])
        return renamed

    def create_asset(self, asset):
        # Read the payload first so a missing file fails before the asset
        # record exists
        path = self.bundle_dir / payload_file_name(asset['fileName'])
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise DependencyError(f"Asset file not found for asset {asset['id']}: {path}") from e

        payload = _without_none({
            'name': asset.get('name'),
            'fileType': asset.get('fileType'),
            'file_name': asset['fileName'],
            'testAuto': self._test_auto(),
            'userId': self._user_id(asset.get('user_id')),
        })
        self.reporter.verbose(f"Uploading asset {asset['id']} from {path}")

        created = self.client.create_asset(payload)
        self.client.upload_asset(created['id'], data, asset.get('fileType'))
        self.counts['assets'] += 1
        return created['id']

    def relink(self, text):
        """Point every asset link in text at the newly created asset."""
        if not links.contains_asset_link(text):
            return text

        mapping = {k: str(v) for k, v in self.remap.mapping(ASSET).items()}
        for asset_id in links.extract_asset_ids(text):
            if asset_id not in mapping:
                raise ValidationError(f"Asset {asset_id} linked from text was not imported")
        return links.replace_asset_ids(text, mapping)

    def create_card(self, card):
        card['question'] = self.relink(card.get('question'))

        contents = _without_none({
            'question': card['question'],
            'deck': self.new_deck_id,
            'testAuto': self._test_auto(),
            'hint': card.get('hint'),
            'explanation': card.get('explanation'),
            'notes': card.get('notes'),
            'verificationAlgorithm': card.get('algo'),
            'algoSettings': card.get('algoSettings'),
        })
        # Answers are created separately, scoped to the new card
        contents['answer'] = None

        card_id = self.client.create_card({'contents': contents})['id']

        answers = card.get('answers') or []
        for idx, answer in enumerate(answers):
            # Legacy answers are plain strings without asset links
            if not isinstance(answer, dict):
                answer = {'text': answer, 'isCorrect': False}
                answers[idx] = answer
            answer['newId'] = self.create_answer(answer, card_id)
            if answer.get('id') is not None:
                self.remap.record(ANSWER, answer['id'], answer['newId'])

        card['newId'] = card_id
        self.remap.record(CARD, card['id'], card_id)
        self.counts['cards'] += 1
        return card_id

    def create_answer(self, answer, card_id):
        answer['text'] = self.relink(answer.get('text'))

        payload = {
            'text': answer['text'],
            'isCorrect': bool(answer.get('isCorrect')),
            'card_id': card_id,
            'groupIndex': answer.get('groupIndex') or 1,
        }
        answer_id = self.client.create_answer(payload)['id']
        self.counts['answers'] += 1
        self.reporter.verbose(f"Created answer {answer_id}")
        return answer_id

    def create_share(self, share):
        payload = {
            flag: share[flag] if flag in share else share.get(default)
            for flag, default in SHARE_FLAGS
        }
        payload['deckId'] = self.new_deck_id
        payload['expiration'] = to_db_timestamp(share.get('expiration'))
        if share.get('default_layout_id') is not None:
            payload['defaultLayoutId'] = share['default_layout_id']
        if self.test_auto:
            payload['testAuto'] = self.test_auto

        self.client.create_share(payload)
        self.counts['shares'] += 1
        self.reporter.succeed('Created deck share')

    # Study sessions and responses

    def import_responses(self, existing_deck_id=None):
        """Create study sessions and their responses from responses.json5.

        Args:
            existing_deck_id: Attach to this existing deck and match cards
                and answers by ordinal position (responses-only mode).
                Otherwise the deck imported by import_deck() is used.
        """
        self.responses_bundle = self._load(RESPONSES_FILE)
        responses_only = existing_deck_id is not None

        if responses_only:
            deck_id = existing_deck_id
            self._load_live_cards(deck_id)
        elif self.new_deck_id is None:
            raise ValidationError("No deck imported yet; responses need a deck id")
        else:
            deck_id = self.new_deck_id

        sessions = self.responses_bundle.study_sessions()
        self.reporter.report(f"Creating {len(sessions)} study sessions")

        for idx, session in enumerate(sessions, 1):
            session_id = self.create_study_session(session, deck_id)
            session['newId'] = session_id
            self.remap.record(STUDY_SESSION, session['id'], session_id)

            for response in self.responses_bundle.responses_for(session):
                response_id = self.create_response(response, session_id, responses_only)
                if response_id is None:
                    self.skipped_responses += 1
                    continue
                response['newId'] = response_id
                self.remap.record(RESPONSE, response['id'], response_id)

            self.reporter.verbose(f"Study session {idx} of {len(sessions)} study sessions created")

        message = (f"Import of study sessions and responses complete: "
                   f"{self.counts['studySessions']} study sessions, {self.counts['responses']} responses")
        if self.skipped_responses:
            message += f", {self.skipped_responses} skipped"
        self.reporter.succeed(message)

    def create_study_session(self, session, deck_id):
        payload = {k: v for k, v in session.items() if k not in STUDY_SESSION_DROPPED}
        payload['userId'] = self._user_id(session.get('user_id') or session.get('userId'))
        payload['deckId'] = deck_id
        payload['start_time'] = to_db_timestamp(session.get('start_time'))
        payload['end_time'] = to_db_timestamp(session.get('end_time'))
        if self.test_auto:
            payload['test_auto'] = self.test_auto

        session_id = self.client.create_study_session(payload)['id']
        self.counts['studySessions'] += 1
        self.reporter.verbose(f"Created study session {session_id}")
        return session_id

    def create_response(self, response, session_id, responses_only=False):
        """Create one response; returns None when its card/answer is unresolved."""
        if responses_only:
            linkage = self._resolve_by_ordinal(response)
        else:
            linkage = self._resolve_from_bundle(response)
        if linkage is None:
            return None
        card_id, answer_id = linkage

        payload = {k: v for k, v in response.items() if k not in RESPONSE_DROPPED}
        payload['cardId'] = card_id
        payload['answerId'] = answer_id
        payload['userId'] = self._user_id(response.get('user_id') or response.get('userId'))
        payload['study_session_id'] = session_id
        payload['created_on'] = to_db_timestamp(response.get('created_on'))
        if self.test_auto:
            payload['test_auto'] = self.test_auto

        response_id = self.client.create_response(payload)['id']
        self.counts['responses'] += 1
        self.reporter.verbose(f"Created response with bundle id {response.get('id')} and db id {response_id}")
        return response_id

    def _skip(self, response, what, tag):
        self.reporter.warn(
            f"Relative {what} id of {tag} not found for response {response.get('id')}. Skipping"
        )
        return None

    def _resolve_from_bundle(self, response):
        card_tag = response.get('card_id')
        card = self.bundle.find_card(card_tag) if ids.is_relative(card_tag) else None
        if card is None or card.get('newId') is None:
            return self._skip(response, 'card', card_tag)

        answer_tag = response.get('answer_id')
        if ids.is_null_relative(answer_tag):
            return card['newId'], None

        answer = find_answer(card, answer_tag) if ids.is_relative(answer_tag) else None
        if answer is None or answer.get('newId') is None:
            return self._skip(response, 'answer', answer_tag)
        return card['newId'], answer['newId']

    def _warn_mismatch(self, message):
        self.reporter.warn(message)
        warnings.warn(message, OrdinalMismatchWarning, stacklevel=3)

    def _load_live_cards(self, deck_id):
        """Fetch the existing deck's cards and check they can be aligned."""
        self._live_cards = sort_by_id(self.client.get_cards(deck_id))
        bundle_count = len(self.bundle.cards())
        if bundle_count != len(self._live_cards):
            self._warn_mismatch(
                f"Deck {deck_id} has {len(self._live_cards)} cards but the bundle has "
                f"{bundle_count}; responses are matched by position and may link to the wrong card"
            )

    def _resolve_by_ordinal(self, response):
        """Match card and answer by position in id order.

        Only valid when the existing deck's cards and answers were created
        from this bundle, in bundle order, and nothing was added or removed
        since.
        """
        card_tag = response.get('card_id')
        bundle_cards = sort_by_id(self.bundle.cards())
        raw_card = ids.untag(card_tag) if ids.is_relative(card_tag) else None
        card_index = next((i for i, c in enumerate(bundle_cards)
                           if raw_card is not None and ids.same_id(c['id'], raw_card)), None)
        if card_index is None or card_index >= len(self._live_cards):
            return self._skip(response, 'card', card_tag)

        bundle_card = bundle_cards[card_index]
        live_card = self._live_cards[card_index]

        answer_tag = response.get('answer_id')
        if ids.is_null_relative(answer_tag):
            return live_card['id'], None

        bundle_answers = sort_by_id([a for a in bundle_card.get('answers') or [] if isinstance(a, dict)])
        live_answers = sort_by_id(live_card.get('answer') or live_card.get('answers') or [])
        if len(bundle_answers) != len(live_answers) and live_card['id'] not in self._mismatched_cards:
            self._mismatched_cards.add(live_card['id'])
            self._warn_mismatch(
                f"Card {live_card['id']} has {len(live_answers)} answers but bundle card "
                f"{bundle_card['id']} has {len(bundle_answers)}"
            )

        raw_answer = ids.untag(answer_tag) if ids.is_relative(answer_tag) else None
        answer_index = next((i for i, a in enumerate(bundle_answers)
                             if raw_answer is not None and ids.same_id(a.get('id'), raw_answer)), None)
        if answer_index is None or answer_index >= len(live_answers):
            return self._skip(response, 'answer', answer_tag)
        return live_card['id'], live_answers[answer_index]['id']

    def result(self):
        return ImportResult(
            deck_id=self.new_deck_id,
            remap=self.remap,
            counts=dict(self.counts),
            skipped_responses=self.skipped_responses,
            warnings=list(self.reporter.warnings),
        )


def import_bundle(client, bundle_dir, owner=None, responses=RESPONSES_NONE, existing_deck_id=None,
                  deck_name=None, rename_conflict=False, test_auto=None, reporter=None):
    """Import a bundle directory: the deck, its responses, or both.

    Args:
        client: Signed-in ApiClient for the target environment
        bundle_dir: Bundle directory (metadata.json5, responses.json5, assets)
        owner: User record the records are created for
        responses: 'none', 'true' or 'only'
        existing_deck_id: Deck the responses attach to in 'only' mode
        deck_name: Override for the new deck's name
        rename_conflict: Rename an existing same-named deck of the owner
        test_auto: Tag stamped on created records
        reporter: Progress reporter

    Returns:
        ImportResult
    """
    mode = parse_responses_mode(responses)
    importer = Importer(client, bundle_dir, owner=owner, deck_name=deck_name,
                        rename_conflict=rename_conflict, test_auto=test_auto, reporter=reporter)

    if mode == RESPONSES_ONLY:
        if existing_deck_id is None:
            deck_id = importer.bundle.deck().get('id')
            if not ids.is_absolute(deck_id):
                raise ValidationError("Responses-only import needs an existing deck id")
            existing_deck_id = ids.untag(deck_id)
        importer.new_deck_id = existing_deck_id
        importer.import_responses(existing_deck_id=existing_deck_id)
    else:
        importer.import_deck()
        importer.reporter.succeed(f"Import of deck id {importer.new_deck_id} complete")
        if mode != RESPONSES_NONE:
            importer.import_responses()

    return importer.result()


def import_deck(client, bundle_dir, owner=None, deck_name=None, rename_conflict=False,
                test_auto=None, reporter=None):
    """Import only the deck of a bundle. Returns an ImportResult."""
    return import_bundle(client, bundle_dir, owner=owner, deck_name=deck_name,
                         rename_conflict=rename_conflict, test_auto=test_auto, reporter=reporter)


def import_responses(client, bundle_dir, existing_deck_id, owner=None, test_auto=None,
                     reporter=None):
    """Attach a bundle's study sessions and responses to an existing deck."""
    return import_bundle(client, bundle_dir, owner=owner, responses=RESPONSES_ONLY,
                         existing_deck_id=existing_deck_id, test_auto=test_auto,
                         reporter=reporter)
