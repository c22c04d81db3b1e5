"""Export a deck from the API into a bundle directory.

The bundle lands in ``<data_path>/<deck id>/``. Foreign keys are written with
sigils: ids of records inside the bundle are relative (``_``), ids that must
already exist in the target (users) are absolute (``&``).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from deckporter import ids, links
from deckporter.bundle import (ASSET, CARD, DECK, METADATA_FILE, RESPONSE, RESPONSES_FILE,
                               RESPONSES_NONE, RESPONSES_ONLY, SHARE, STUDY_SESSION, Bundle,
                               parse_responses_mode, payload_file_name)
from deckporter.errors import NotFoundError
from deckporter.reporter import NullReporter

DECK_FIELDS = ('name', 'id', 'description', 'synopsis', 'textToSpeech', 'preface',
               'feedback', 'showDontKnow')

SHARE_FIELDS = ('expiration', 'defaultIsAdminMode', 'defaultIsRandomMode',
                'defaultIsTextToSpeechMode', 'defaultIsSaveResponsesMode', 'default_layout_id')

# Computed by the server; never exported
STUDY_SESSION_AGGREGATES = ('response_count', 'response_duration_sum', 'correct_count',
                            'total_score')
RESPONSE_DROPPED = ('old_has_not_known', 'username')


@dataclass
class ExportResult:
    deck_id: object
    directory: Path
    metadata_path: Optional[Path] = None
    responses_path: Optional[Path] = None
    counts: dict = field(default_factory=dict)


class Exporter:
    """Walks one deck's object graph and writes it as a bundle.

    Args:
        client: ApiClient for the source environment
        data_path: Directory holding one bundle directory per deck id
        reporter: Progress reporter
    """

    def __init__(self, client, data_path, reporter=None):
        self.client = client
        self.data_path = Path(data_path)
        self.reporter = reporter or NullReporter()

        self.owner = None
        self.deck = None
        self.deck_path = None
        self.metadata_path = None
        self.responses_path = None

        self.bundle = Bundle()
        # asset id (str) -> exported asset record; an asset is exported once
        # whether reached as a card attachment or through a text link
        self.exported_assets = {}
        self.counts = {'decks': 0, 'cards': 0, 'answers': 0, 'assets': 0,
                       'studySessions': 0, 'responses': 0}

    def resolve(self, owner_username, deck_name):
        """Look up the owner (exact username) and their deck (exact name)."""
        self.reporter.report(f"Looking up deck '{deck_name}' of {owner_username}")
        self.owner = self.client.find_user(owner_username)
        self.deck = self.client.find_deck(deck_name, self.owner)
        self.deck_path = self.data_path / str(self.deck['id'])
        self.reporter.verbose(f"Found deck id {self.deck['id']}")
        return self.deck

    def prepare_directory(self, clean=True):
        """Create the bundle directory, emptying it first when clean."""
        if not self.deck_path.exists():
            self.reporter.verbose(f"Creating directory {self.deck_path}")
            self.deck_path.mkdir(parents=True)
        elif clean:
            self.reporter.verbose(f"Emptying directory {self.deck_path}")
            for path in self.deck_path.iterdir():
                if path.is_file():
                    path.unlink()

    def export_deck(self):
        """Export deck, cards, answers, assets and share to metadata.json5."""
        deck = self.deck
        record = {name: deck.get(name) for name in DECK_FIELDS}
        record['userId'] = ids.tag_absolute(self.owner['id'])
        self.bundle.add(DECK, record)
        self.counts['decks'] += 1

        cards = self.client.get_cards(deck['id'])
        self.reporter.report(f"Exporting {len(cards)} cards")
        for idx, card in enumerate(cards, 1):
            self.export_card(card)
            self.reporter.verbose(f"Exported card {idx} of {len(cards)} (id {card['id']})")

        self.export_share()

        # Written last so a failed export leaves no metadata file behind
        self.metadata_path = self.deck_path / METADATA_FILE
        self.bundle.save(self.metadata_path)
        self.reporter.succeed(
            f"Card export complete: {self.counts['cards']} cards, "
            f"{self.counts['answers']} answers, {self.counts['assets']} assets"
        )
        return self.metadata_path

    def export_card(self, card):
        card_id = card['id']

        for asset in self.client.get_card_assets(card_id):
            self.export_asset(asset, card_id)

        question = card.get('question')
        question_assets = links.extract_asset_ids(question)
        for asset_id in question_assets:
            self.export_asset_by_id(asset_id, card_id)

        answers = [self.export_answer(answer, card_id) for answer in card.get('answer') or []]

        record = {
            'algo': card.get('algorithm_id'),
            'deck': self.deck.get('name'),
            'question': question,
            'hint': card.get('hint'),
            'explanation': card.get('explanation'),
            'notes': card.get('notes'),
            'answers': answers,
            'testAuto': card.get('testAuto'),
            'algoSettings': card.get('algoSettings'),
            'id': card_id,
            'deckId': ids.tag_relative(self.deck['id']),
        }
        if question_assets:
            record['questionAssetId'] = ids.tag_relative(question_assets[0])

        self.bundle.add(CARD, record)
        self.counts['cards'] += 1
        return record

    def export_answer(self, answer, card_id):
        # Legacy answers are bare strings without markup
        if not isinstance(answer, dict):
            self.counts['answers'] += 1
            return answer

        record = dict(answer)
        if answer.get('card_id') is not None:
            record['card_id'] = ids.tag_relative(answer['card_id'])
        asset_ids = links.extract_asset_ids(answer.get('text'))
        for asset_id in asset_ids:
            self.export_asset_by_id(asset_id, card_id)
        if asset_ids:
            record['assetId'] = ids.tag_relative(asset_ids[0])

        self.counts['answers'] += 1
        return record

    def export_asset_by_id(self, asset_id, card_id):
        """Export an asset referenced from card or answer text."""
        existing = self.exported_assets.get(str(asset_id))
        if existing is not None:
            return existing

        asset = self.client.get_asset(asset_id)
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} referenced by card {card_id} not found.")
        return self.export_asset(asset, card_id)

    def export_asset(self, asset, card_id):
        """Download an asset payload next to the metadata and record it once."""
        existing = self.exported_assets.get(str(asset['id']))
        if existing is not None:
            self.reporter.verbose(f"Asset {asset['id']} already exported")
            return existing

        file_name = payload_file_name(asset['file_name'])
        data = self.client.download_asset(asset)
        (self.deck_path / file_name).write_bytes(data)

        record = self.bundle.add(ASSET, {
            'fileName': asset['file_name'],
            'name': asset.get('name'),
            'fileType': asset.get('fileType') or asset.get('type'),
            'user_id': ids.tag_absolute(asset['user_id']),
            'id': asset['id'],
            'cardId': ids.tag_relative(asset.get('card_id') or card_id),
        })
        self.exported_assets[str(asset['id'])] = record
        self.counts['assets'] += 1
        self.reporter.verbose(f"Exported asset with id of {asset['id']}")
        return record

    def export_share(self):
        share_key = self.deck.get('shareKey')
        if not share_key:
            return None

        shares = self.client.get_shares(share_key)
        if not shares:
            self.reporter.warn(f"Share {share_key} of deck {self.deck['id']} not found, skipping")
            return None

        record = self.bundle.add(SHARE, {name: shares[0].get(name) for name in SHARE_FIELDS})
        self.reporter.verbose('Exported deck share')
        return record

    def export_responses(self):
        """Export the owner's study sessions and responses to responses.json5."""
        deck, owner = self.deck, self.owner
        responses_bundle = Bundle()

        sessions = self.client.get_study_sessions(deck['id'], owner['id'])
        self.reporter.report(f"Exporting {len(sessions)} study sessions")

        for idx, session in enumerate(sessions, 1):
            record = {k: v for k, v in session.items() if k not in STUDY_SESSION_AGGREGATES}
            record['deck_id'] = ids.tag_relative(session.get('deck_id') or deck['id'])
            record['user_id'] = ids.tag_absolute(session.get('user_id') or owner['id'])
            responses_bundle.add(STUDY_SESSION, record)
            self.counts['studySessions'] += 1

            for response in self.client.get_responses(session['id']):
                self.reporter.verbose(f"Exporting response {response.get('id')}")
                item = {k: v for k, v in response.items() if k not in RESPONSE_DROPPED}
                item['card_id'] = ids.tag_relative(response['card_id'])
                answer_id = response.get('answer_id')
                item['answer_id'] = None if answer_id is None else ids.tag_relative(answer_id)
                item['study_session_id'] = ids.tag_relative(session['id'])
                if response.get('user_id') is not None:
                    item['user_id'] = ids.tag_absolute(response['user_id'])
                responses_bundle.add(RESPONSE, item)
                self.counts['responses'] += 1

            self.reporter.verbose(f"Exported study session {idx} of {len(sessions)}")

        self.responses_path = self.deck_path / RESPONSES_FILE
        responses_bundle.save(self.responses_path)
        self.reporter.succeed(
            f"Response export complete: {self.counts['studySessions']} study sessions, "
            f"{self.counts['responses']} responses"
        )
        return self.responses_path

    def result(self):
        return ExportResult(
            deck_id=self.deck['id'],
            directory=self.deck_path,
            metadata_path=self.metadata_path,
            responses_path=self.responses_path,
            counts=dict(self.counts),
        )


def export_deck(client, owner_username, deck_name, data_path, responses=RESPONSES_NONE,
                reporter=None):
    """Export one deck (and optionally its responses) to a bundle directory.

    Args:
        client: Signed-in ApiClient for the source environment
        owner_username: Exact username of the deck owner
        deck_name: Exact deck name
        data_path: Parent directory of the bundle directory
        responses: 'none', 'true' or 'only'
        reporter: Progress reporter

    Returns:
        ExportResult

    Raises:
        NotFoundError: If the owner or the deck does not exist
        RemoteError: If any API call fails
    """
    mode = parse_responses_mode(responses)
    exporter = Exporter(client, data_path, reporter)
    exporter.resolve(owner_username, deck_name)

    # Responses-only keeps the metadata file a later responses import needs
    exporter.prepare_directory(clean=mode != RESPONSES_ONLY)

    if mode != RESPONSES_ONLY:
        exporter.export_deck()
    if mode != RESPONSES_NONE:
        exporter.export_responses()

    exporter.reporter.succeed(f"Export of deck id {exporter.deck['id']} complete")
    return exporter.result()
