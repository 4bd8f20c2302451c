"""
Data models for termstart.

Bookmarks come back from the remote store as JSON rows; these dataclasses give
them a stable shape for the rest of the session engine. Tags are not stored on
their own, they are derived from the union of every bookmark's tag set.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set


@dataclass
class Bookmark:
    """
    A named URL owned by a single user.

    Attributes:
        name: Identifier, unique within the owner's collection
        url: Absolute URL (normalized before it reaches the store)
        tags: Unordered, case-sensitive tag set
        id: Store-assigned primary key
        owner_id: Id of the owning user
        created_at: ISO timestamp set on creation
        updated_at: ISO timestamp refreshed on every update
    """
    name: str
    url: str
    tags: Set[str] = field(default_factory=set)
    id: str = ""
    owner_id: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_untagged(self) -> bool:
        return not self.tags

    def sorted_tags(self) -> List[str]:
        """Tags in alphabetical order, for stable output."""
        return sorted(self.tags)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bookmark":
        """Build a bookmark from a store row."""
        return cls(
            id=str(data.get('id') or ''),
            owner_id=str(data.get('user_id') or ''),
            name=data['name'],
            url=data['url'],
            tags=set(data.get('tags') or []),
            created_at=data.get('created_at') or '',
            updated_at=data.get('updated_at') or '',
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the store's row format."""
        return {
            'id': self.id,
            'user_id': self.owner_id,
            'name': self.name,
            'url': self.url,
            'tags': self.sorted_tags(),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


@dataclass
class Identity:
    """The signed-in user as reported by the auth collaborator."""
    id: str
    email: str
    token: str = ""
    is_admin: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        return cls(
            id=str(data['id']),
            email=data.get('email', ''),
            token=data.get('token', ''),
            is_admin=bool(data.get('is_admin', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'token': self.token,
            'is_admin': self.is_admin,
        }


def collect_tags(bookmarks: Iterable[Bookmark]) -> List[str]:
    """Return every tag used by the given bookmarks, sorted and de-duplicated."""
    tags: Set[str] = set()
    for bookmark in bookmarks:
        tags.update(bookmark.tags)
    return sorted(tags)


def filter_by_tag(bookmarks: Iterable[Bookmark], tag: str) -> List[Bookmark]:
    """Bookmarks carrying ``tag``, in their original order."""
    return [b for b in bookmarks if tag in b.tags]


