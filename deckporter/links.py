"""Asset references embedded in card and answer text.

Rich text fields point at an asset through a quoted URL attribute, e.g.
``<img src="/api/assets/42">``. The id runs from the end of ASSET_URL up to
the next double quote.
"""

ASSET_URL = '/api/assets/'


def contains_asset_link(text):
    """Does the text contain an asset link?"""
    return isinstance(text, str) and ASSET_URL in text


def _id_end(text, begin):
    end = text.find('"', begin)
    return len(text) if end == -1 else end


def extract_asset_id(text):
    """Return the id of the first asset link in text, or None."""
    if not contains_asset_link(text):
        return None

    begin = text.index(ASSET_URL) + len(ASSET_URL)
    return text[begin:_id_end(text, begin)]


def extract_asset_ids(text):
    """Return the ids of every asset link in text, first occurrence order."""
    ids = []
    if not contains_asset_link(text):
        return ids

    position = text.find(ASSET_URL)
    while position != -1:
        begin = position + len(ASSET_URL)
        end = _id_end(text, begin)
        asset_id = text[begin:end]
        if asset_id not in ids:
            ids.append(asset_id)
        position = text.find(ASSET_URL, end)
    return ids


def replace_asset_id(text, new_id):
    """Point the first asset link in text at new_id.

    Returns the text unchanged when it has no asset link.
    """
    old_id = extract_asset_id(text)
    if old_id is None:
        return text
    return text.replace(f"{ASSET_URL}{old_id}", f"{ASSET_URL}{new_id}", 1)


def replace_asset_ids(text, mapping):
    """Rewrite every asset link in text through mapping (old id -> new id).

    Links whose id is not in mapping are left alone.
    """
    if not contains_asset_link(text):
        return text

    parts = []
    cursor = 0
    position = text.find(ASSET_URL)
    while position != -1:
        begin = position + len(ASSET_URL)
        end = _id_end(text, begin)
        old_id = text[begin:end]
        parts.append(text[cursor:begin])
        parts.append(str(mapping[old_id]) if old_id in mapping else old_id)
        cursor = end
        position = text.find(ASSET_URL, end)
    parts.append(text[cursor:])
    return ''.join(parts)
