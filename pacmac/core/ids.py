import uuid


def new_id() -> uuid.UUID:
    """Single source of identifiers for settlement records."""
    return uuid.uuid4()
