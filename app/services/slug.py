"""
Slug generation for article titles.

Slugs are not checked for uniqueness here: the unique constraint on
``articles.slug`` is the only authority, and a collision surfaces from the
insert as a ``ConflictError``.
"""
import re

from app.errors import ValidationError

# ``\w`` is Unicode-aware, so letters and digits of any script survive.
_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s_]+")
_SLUG_DASH_RE = re.compile(r"-+")


def slugify(text: str) -> str:
    """Return a URL-safe, lowercase slug derived from *text*."""
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    text = _SLUG_SPACE_RE.sub("-", text)
    return _SLUG_DASH_RE.sub("-", text).strip("-")


class SlugGenerator:
    def generate(self, title: str) -> str:
        if title is None or not title.strip():
            raise ValidationError("title")
        slug = slugify(title)
        if not slug:
            raise ValidationError("title", "must contain at least one letter or digit")
        return slug
