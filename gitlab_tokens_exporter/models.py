from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple

from gitlab_tokens_exporter.errors import TokenDataError


# ─── Kinds ───
class EntityKind(Enum):
    PROJECT = "project"
    GROUP = "group"
    USER = "user"


class TokenKind(Enum):
    PROJECT_ACCESS_TOKEN = "project"
    GROUP_ACCESS_TOKEN = "group"
    PERSONAL_ACCESS_TOKEN = "user"


TOKEN_KIND_BY_ENTITY = {
    EntityKind.PROJECT: TokenKind.PROJECT_ACCESS_TOKEN,
    EntityKind.GROUP: TokenKind.GROUP_ACCESS_TOKEN,
    EntityKind.USER: TokenKind.PERSONAL_ACCESS_TOKEN,
}


class AccessLevel(Enum):
    """cf https://docs.gitlab.com/api/project_access_tokens/"""

    GUEST = 10
    REPORTER = 20
    DEVELOPER = 30
    MAINTAINER = 40
    OWNER = 50

    def __str__(self):
        return self.name.lower()


# ─── Entities and tokens ───
@dataclass(frozen=True)
class EntityRef:
    id: int
    kind: EntityKind
    path: Optional[str]
    web_url: str = ""
    owned: bool = False
    # Groups only: used to rebuild `path` when GitLab did not send it
    name: str = ""
    parent_id: Optional[int] = None


@dataclass(frozen=True)
class Token:
    id: int
    name: str
    kind: TokenKind
    scopes: Tuple[str, ...]
    path: str
    web_url: str
    active: bool
    revoked: bool
    expires_at: Optional[date] = None
    access_level: Optional[AccessLevel] = None

    def days_left(self, today):
        if self.expires_at is None:
            return None
        return (self.expires_at - today).days


# ─── Raw GitLab JSON ───
def parse_date(value):
    """GitLab sends `YYYY-MM-DD` or null for tokens that never expire."""
    if value is None:
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except (AttributeError, ValueError) as e:
        raise TokenDataError(f"invalid expiration date {value!r}: {e}") from e


def entity_from_json(kind, raw, owned_only=False):
    if kind is EntityKind.PROJECT:
        path = raw.get("path_with_namespace")
    elif kind is EntityKind.GROUP:
        path = raw.get("full_path")
    else:
        path = raw.get("username")
    return EntityRef(
        id=int(raw["id"]),
        kind=kind,
        path=path,
        web_url=raw.get("web_url") or "",
        owned=owned_only,
        name=raw.get("path") or "",
        parent_id=raw.get("parent_id"),
    )


def token_from_json(kind, raw, path, web_url):
    """Builds a `Token` out of one element of an access token listing.

    Raises `TokenDataError` when the record misses a required field or holds a
    value we cannot interpret, so callers can skip that token only.
    """
    try:
        token_id = int(raw["id"])
        name = raw["name"]
        scopes = tuple(str(scope) for scope in raw.get("scopes") or ())
        active = bool(raw.get("active", False))
        revoked = bool(raw.get("revoked", False))
    except (KeyError, TypeError, ValueError) as e:
        raise TokenDataError(f"malformed token record {raw!r}: {e!r}") from e
    if not isinstance(name, str) or not name:
        raise TokenDataError(f"token {token_id} has no name")

    access_level = None
    if kind is not TokenKind.PERSONAL_ACCESS_TOKEN and raw.get("access_level") is not None:
        try:
            access_level = AccessLevel(raw["access_level"])
        except ValueError as e:
            raise TokenDataError(f"token {token_id}: {e}") from e

    return Token(
        id=token_id,
        name=name,
        kind=kind,
        scopes=scopes,
        path=path,
        web_url=web_url,
        active=active,
        revoked=revoked,
        expires_at=parse_date(raw.get("expires_at")),
        access_level=access_level,
    )
