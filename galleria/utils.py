import re
import secrets

from passlib.context import CryptContext
from slugify import slugify

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def gen_slug(n: int = 4) -> str:
    # Short lowercase suffix for de-duplicating generated slugs
    return secrets.token_hex(n)


def slug_from_title(title: str) -> str:
    return slugify(title, max_length=80, word_boundary=True) or gen_slug()


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and SLUG_RE.fullmatch(slug) is not None


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)
