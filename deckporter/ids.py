"""Id namespace sigils used in bundle files.

Primary key ids are written bare. Foreign key ids carry one sigil:

    & (ampersand)  absolute id, already valid in the target system (user ids)
    _ (underscore) relative id, only meaningful inside the bundle (card ids)

Relative ids are resolved through the remap table built during an import.
"""

ABSOLUTE = '&'
RELATIVE = '_'

# Null foreign keys are exported as the relative tag of the string "null"
NULL_RELATIVE = RELATIVE + 'null'


def tag_absolute(value):
    """Tag an id as absolute ("&42")."""
    return f"{ABSOLUTE}{value}"


def tag_relative(value):
    """Tag an id as relative ("_42")."""
    return f"{RELATIVE}{value}"


def is_absolute(tag):
    return isinstance(tag, str) and tag.startswith(ABSOLUTE)


def is_relative(tag):
    return isinstance(tag, str) and tag.startswith(RELATIVE)


def is_null_relative(tag):
    """True for a missing foreign key: None or the exported "_null" form."""
    return tag is None or tag == NULL_RELATIVE


def untag(tag):
    """Strip the sigil and return the raw id string.

    Raises:
        ValueError: If the value carries no sigil
    """
    if not (is_absolute(tag) or is_relative(tag)):
        raise ValueError(f"Id {tag!r} has no '{ABSOLUTE}' or '{RELATIVE}' sigil")
    return tag[1:]


def same_id(a, b):
    """Compare two raw ids that may be ints or strings."""
    return str(a) == str(b)
