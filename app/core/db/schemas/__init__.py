# Import models so Alembic and Base metadata are aware of them
from .auth import User  # noqa: F401
from .generations import (  # noqa: F401
    Flashcard,
    Generation,
    GenerationCandidate,
    GenerationErrorLog,
    Tag,
    card_tags,
)
