"""Friendly, stable display names for anonymous visitor chats."""

ADJECTIVES = [
    "cheerful", "nimble", "wise", "tiny", "brave",
    "quiet", "shiny", "funny", "swift", "dreamy",
    "gentle", "bold", "smiling", "bright", "sleepy",
    "lively", "curious", "thoughtful", "fluffy", "playful",
]

ANIMALS = [
    "panda", "fox", "kitten", "raccoon", "hamster",
    "dolphin", "giraffe", "capybara", "badger", "koala",
    "otter", "peacock", "puppy", "snail", "hedgehog",
    "meerkat", "beetle", "walrus", "owl", "penguin",
]


def _hash(value: str) -> int:
    h = 0
    for char in value:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    return h


def chat_display_name(chat_id) -> str:
    """Deterministic "adjective animal" label derived from the chat id."""
    h = _hash(str(chat_id))
    return f"{ADJECTIVES[h % len(ADJECTIVES)]} {ANIMALS[(h >> 8) % len(ANIMALS)]}"
