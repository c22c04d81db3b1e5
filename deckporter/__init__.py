"""Move decks, with their cards, assets and study history, between deck API environments.

API usage:
    from deckporter import ApiClient, export_deck, import_bundle
    client = ApiClient("http://localhost:4000/api")
    client.sign_in("test_admin", password)
    result = export_deck(client, "alice", "Periodic Table", "data")
    import_bundle(target_client, result.directory)
"""

__version__ = "1.0.0"

from deckporter.client import ApiClient, Deadline
from deckporter.delete import delete_card, delete_deck
from deckporter.export import export_deck
from deckporter.importer import import_bundle, import_deck, import_responses

__all__ = [
    "ApiClient",
    "Deadline",
    "delete_card",
    "delete_deck",
    "export_deck",
    "import_bundle",
    "import_deck",
    "import_responses",
]
