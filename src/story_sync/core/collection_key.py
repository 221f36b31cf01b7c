"""Composite identity for a collection: (owner, language, collection_id)."""

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class CollectionKey:
    """Canonical identity of a published collection.

    The string form ``owner/language/collection_id`` is used as the key in the
    downloaded-set index and as ``collection_id`` on every row of the content
    store. Build keys with the constructor or ``parse``; never concatenate.
    """

    owner: str
    language: str
    collection_id: str

    SEPARATOR = "/"

    def __post_init__(self) -> None:
        for name in ("owner", "language", "collection_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"CollectionKey.{name} must be a non-empty string")
            if self.SEPARATOR in value:
                raise ValueError(
                    f"CollectionKey.{name} must not contain '{self.SEPARATOR}': {value!r}"
                )

    @classmethod
    def parse(cls, text: str) -> "CollectionKey":
        """Parse the canonical ``owner/language/collection_id`` form.

        Raises:
            ValueError: If the text does not have exactly three components.
        """
        parts = (text or "").split(cls.SEPARATOR)
        if len(parts) != 3:
            raise ValueError(f"Invalid collection key: {text!r}")
        owner, language, collection_id = parts
        return cls(owner=owner, language=language, collection_id=collection_id)

    @classmethod
    def coerce(cls, value: "CollectionKey | str") -> "CollectionKey":
        if isinstance(value, CollectionKey):
            return value
        return cls.parse(value)

    @property
    def thumbnail_name(self) -> str:
        """File name of the cached preview image."""
        return f"{self.owner}_{self.language}_{self.collection_id}.jpg"

    def __str__(self) -> str:
        return self.SEPARATOR.join((self.owner, self.language, self.collection_id))
