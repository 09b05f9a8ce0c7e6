import re
import unicodedata


def slugify(title: str) -> str:
    """"Le Héros 2" -> "le-heros-2"."""
    text = unicodedata.normalize("NFD", (title or "").lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")
