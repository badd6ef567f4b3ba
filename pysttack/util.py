import random
from typing import Collection, Optional, TypeVar

T = TypeVar('T')

# Short, unambiguous words for branch slugs
SLUG_WORDS = (
    "amber", "anchor", "arrow", "aspen", "basil", "beacon", "birch", "bright",
    "brook", "cedar", "cinder", "clover", "comet", "coral", "crane", "dawn",
    "delta", "dune", "ember", "falcon", "fern", "flint", "frost", "gale",
    "garnet", "glade", "granite", "harbor", "hazel", "heron", "indigo", "iris",
    "jade", "juniper", "kestrel", "lagoon", "lark", "linen", "maple", "marble",
    "meadow", "mesa", "nectar", "north", "oak", "onyx", "orbit", "otter",
    "pebble", "pine", "plum", "prairie", "quartz", "quill", "raven", "reef",
    "ridge", "river", "sable", "sage", "slate", "sparrow", "spruce", "summit",
    "thistle", "tide", "timber", "topaz", "tulip", "umber", "valley", "velvet",
    "willow", "wren", "yarrow", "zephyr",
)


def ensure(value: Optional[T], message: str = "Value is None") -> T:
    """Ensure a value is not None, raising RuntimeError if it is.

    Args:
        value: The value to check
        message: Error message used when the value is None

    Returns:
        The value if it is not None

    Raises:
        RuntimeError: If the value is None
    """
    if value is None:
        raise RuntimeError(message)
    return value


def random_slug(words: int = 3, taken: Collection[str] = (), prefix: str = "",
                rng: Optional[random.Random] = None) -> str:
    """Generate ``prefix`` + a random word-word-word slug not present in ``taken``."""
    rng = rng or random.Random()
    while True:
        slug = prefix + "-".join(rng.choice(SLUG_WORDS) for _ in range(words))
        if slug not in taken:
            return slug
