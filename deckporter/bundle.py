"""Bundle files: the on-disk form of one exported deck.

A bundle directory holds two JSON5 files and the binary asset payloads:

    metadata.json5   {objects: [deck, card..., asset..., share]}
    responses.json5  {objects: [studySession..., response...]}
    <fileName>       one file per asset, named by the asset's fileName

``objects`` is a flat list; each record's kind is given by its ``type`` tag.
"""

from pathlib import Path

import json5

from deckporter import ids
from deckporter.errors import ValidationError

METADATA_FILE = 'metadata.json5'
RESPONSES_FILE = 'responses.json5'

DECK = 'deck'
CARD = 'card'
ASSET = 'asset'
SHARE = 'share'
STUDY_SESSION = 'studySession'
RESPONSE = 'response'

KINDS = (DECK, CARD, ASSET, SHARE, STUDY_SESSION, RESPONSE)

# Inline in cards, never a top-level object; used as a remap table kind
ANSWER = 'answer'

# Which bundle files a command touches
RESPONSES_NONE = 'none'    # metadata only
RESPONSES_TRUE = 'true'    # metadata, then responses
RESPONSES_ONLY = 'only'    # responses only (import: against an existing deck)


def parse_responses_mode(value):
    """Normalize a --responses value ('none', 'false', 'true', 'only')."""
    if value is None:
        return RESPONSES_NONE
    mode = str(value).strip().lower()
    if mode in ('', 'none', 'false', 'null'):
        return RESPONSES_NONE
    if mode in (RESPONSES_TRUE, RESPONSES_ONLY):
        return mode
    raise ValueError(f"Invalid responses mode {value!r}: expected none, true or only")


class Bundle:
    """Typed view over the flat ``objects`` list of a bundle file.

    Lookups are linear scans; a bundle only ever holds a single deck.
    """

    def __init__(self, objects=None):
        self.objects = list(objects or [])

    @classmethod
    def load(cls, path):
        """Read a bundle file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValidationError: If the file is not JSON5 or has no ``objects`` list
        """
        path = Path(path)
        try:
            data = json5.loads(path.read_text(encoding='utf-8'))
        except ValueError as e:
            raise ValidationError(f"Cannot parse bundle file {path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get('objects'), list):
            raise ValidationError(f"Bundle file {path} has no 'objects' list")

        for idx, record in enumerate(data['objects']):
            if not isinstance(record, dict) or record.get('type') not in KINDS:
                raise ValidationError(f"Object {idx} in {path} has no valid type tag")

        return cls(data['objects'])

    def save(self, path):
        """Write the bundle to path as JSON5 (plain JSON compatible)."""
        text = json5.dumps(
            {'objects': self.objects},
            indent=1,
            quote_keys=True,
            trailing_commas=False,
        )
        Path(path).write_text(text + '\n', encoding='utf-8')

    def add(self, kind, record):
        """Append a record of the given kind and return it."""
        if kind not in KINDS:
            raise ValueError(f"Unknown bundle object type: {kind}")
        obj = {'type': kind, **{k: v for k, v in record.items() if k != 'type'}}
        self.objects.append(obj)
        return obj

    def of_type(self, kind):
        return [obj for obj in self.objects if obj.get('type') == kind]

    def deck(self):
        """Return the single deck record.

        Raises:
            ValidationError: If the bundle does not hold exactly one deck
        """
        decks = self.of_type(DECK)
        if len(decks) != 1:
            raise ValidationError(f"Exactly one deck expected in metadata file. {len(decks)} found.")
        return decks[0]

    def cards(self):
        return self.of_type(CARD)

    def assets(self):
        return self.of_type(ASSET)

    def shares(self):
        return self.of_type(SHARE)

    def study_sessions(self):
        return self.of_type(STUDY_SESSION)

    def responses(self):
        return self.of_type(RESPONSE)

    def responses_for(self, session):
        """Responses that belong to the given study session record."""
        tag = ids.tag_relative(session['id'])
        return [r for r in self.responses() if r.get('study_session_id') == tag]

    def find_asset(self, asset_id):
        """Find an asset by raw or relative id."""
        raw = ids.untag(asset_id) if ids.is_relative(asset_id) else asset_id
        return next((a for a in self.assets() if ids.same_id(a['id'], raw)), None)

    def find_card(self, card_id):
        """Find a card by raw or relative id."""
        raw = ids.untag(card_id) if ids.is_relative(card_id) else card_id
        return next((c for c in self.cards() if ids.same_id(c['id'], raw)), None)

    def counts(self):
        """Number of records of each kind, answers included."""
        result = {kind: len(self.of_type(kind)) for kind in KINDS}
        result['answer'] = sum(len(c.get('answers') or []) for c in self.cards())
        return result


def find_answer(card, answer_id):
    """Find an inline answer of a card by raw or relative id."""
    raw = ids.untag(answer_id) if ids.is_relative(answer_id) else answer_id
    for answer in card.get('answers') or []:
        if isinstance(answer, dict) and ids.same_id(answer.get('id'), raw):
            return answer
    return None


def payload_file_name(name):
    """Return name if it is a plain file name inside the bundle directory.

    Raises:
        ValidationError: If name is empty, absolute or has path components
    """
    if not isinstance(name, str) or name in ('', '.', '..') or Path(name).name != name \
            or '\\' in name:
        raise ValidationError(f"Asset file name {name!r} is not a plain file name")
    return name


def sort_by_id(records):
    """Sort records by id: numeric ids in numeric order, then the rest lexically."""
    def key(record):
        value = record.get('id') if isinstance(record, dict) else None
        try:
            return (0, int(value), '')
        except (TypeError, ValueError):
            return (1, 0, str(value))

    return sorted(records, key=key)


class RemapTable:
    """Bundle-local id -> newly created target id, per record kind.

    Keys include the kind so a card and an asset sharing a local id never
    collide. Ids are compared as strings.
    """

    def __init__(self):
        self._ids = {}

    def record(self, kind, original_id, new_id):
        self._ids[(kind, str(original_id))] = new_id

    def resolve(self, kind, original_id):
        """Return the new id for a raw or relative original id, or None."""
        raw = ids.untag(original_id) if ids.is_relative(original_id) else original_id
        return self._ids.get((kind, str(raw)))

    def mapping(self, kind):
        """Plain {original id: new id} dict for one kind."""
        return {orig: new for (k, orig), new in self._ids.items() if k == kind}

    def as_dict(self):
        return {orig: new for (_, orig), new in self._ids.items()}

    def __len__(self):
        return len(self._ids)
