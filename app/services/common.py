import uuid


def as_uuid(value) -> uuid.UUID | None:
    """Accept a UUID or its string form; raise ValueError for anything else."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value).strip())
