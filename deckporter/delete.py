"""Cascade deletion of a deck (or a single card) and its assets."""

from dataclasses import dataclass, field

from deckporter.errors import NotFoundError, RemoteError
from deckporter.reporter import NullReporter

# Server message when an asset is still used by another card
ASSET_IN_USE_MESSAGE = 'There are cards that reference'


def is_asset_in_use(error):
    return isinstance(error, RemoteError) and ASSET_IN_USE_MESSAGE in error.message


@dataclass
class DeleteResult:
    deck_id: object = None
    cards_deleted: list = field(default_factory=list)
    assets_deleted: list = field(default_factory=list)
    assets_kept: list = field(default_factory=list)


def delete_card_and_assets(client, card, reporter, result):
    """Delete a card, then every asset it referenced that nothing else uses."""
    assets = client.get_card_assets(card['id'])
    reporter.report(f"Card {card['id']} has {len(assets)} asset references")

    client.delete_card(card['id'])
    result.cards_deleted.append(card['id'])
    reporter.verbose(f"Deleted card {card['id']}")

    for asset in assets:
        if client.get_asset(asset['id']) is None:
            reporter.verbose(f"Asset {asset['id']} already gone")
            continue

        try:
            client.delete_asset(asset['id'])
        except RemoteError as e:
            if not is_asset_in_use(e):
                reporter.fail(f"Failed to delete asset {asset['id']}: {e.message}")
                raise
            reporter.warn(f"Card references remain, skipping delete of asset id {asset['id']}")
            result.assets_kept.append(asset['id'])
            continue

        result.assets_deleted.append(asset['id'])
        reporter.verbose(f"Deleted asset id {asset['id']}")


def delete_deck(client, owner_username, deck_name, reporter=None):
    """Delete every card of a deck, their unshared assets, then the deck.

    Raises:
        NotFoundError: If the owner or the deck does not exist
        RemoteError: On any failure other than an asset still in use
    """
    reporter = reporter or NullReporter()
    owner = client.find_user(owner_username)
    deck = client.find_deck(deck_name, owner)
    result = DeleteResult(deck_id=deck['id'])

    cards = client.get_cards(deck['id'])
    reporter.report(f"Deck {deck['id']} contains {len(cards)} cards")

    for card in cards:
        delete_card_and_assets(client, card, reporter, result)

    client.delete_deck(deck['id'])
    reporter.succeed(
        f"Deck id {deck['id']} delete complete: {len(result.cards_deleted)} cards, "
        f"{len(result.assets_deleted)} assets deleted, {len(result.assets_kept)} shared assets kept"
    )
    return result


def delete_card(client, card_id, reporter=None):
    """Delete a single card and its unshared assets.

    Raises:
        NotFoundError: If the card does not exist
    """
    reporter = reporter or NullReporter()
    card = client.get_card(card_id)
    if card is None:
        raise NotFoundError(f"Card {card_id} not found.")

    result = DeleteResult()
    delete_card_and_assets(client, card, reporter, result)
    reporter.succeed(f"Card id {card_id} delete complete")
    return result
