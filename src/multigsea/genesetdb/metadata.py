"""Per-collection key/value metadata for a GeneSetDb.

Every collection carries the reserved variables ``id_type`` (feature
identifier type), ``org`` (organism) and ``url_function`` (a callable
``(collection, name) -> str`` used to build gene set URLs). Reserved
variables are pre-populated with ``None`` when a collection is
registered; any other variable must be added explicitly with
``allow_add=True``.
"""

import inspect
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import polars as pl
import structlog

from multigsea.errors import UnknownMetadataKeyError, ValidationError

logger = structlog.get_logger(__name__)

RESERVED_VARIABLES = ("id_type", "org", "url_function")

MSIGDB_CARD_URL = "http://www.broadinstitute.org/gsea/msigdb/cards/{name}.html"


def msigdb_url(collection: str, name: str) -> str:
    """URL of the MSigDB gene set card for ``name``."""
    return MSIGDB_CARD_URL.format(name=name)


def _is_string(value: Any) -> bool:
    return isinstance(value, str)


def _is_url_function(value: Any) -> bool:
    if not callable(value):
        return False
    try:
        inspect.signature(value).bind("collection", "name")
    except TypeError:
        return False
    except ValueError:
        # no introspectable signature (some builtins); accept any callable
        return True
    return True


RESERVED_VALIDATORS: dict[str, Callable[[Any], bool]] = {
    "id_type": _is_string,
    "org": _is_string,
    "url_function": _is_url_function,
}


class CollectionMetadataStore:
    """Key/value metadata scoped to gene set collections.

    Values are stored by reference, so ``url_function`` callables are kept
    as-is and only invoked when URLs are resolved.
    """

    def __init__(self, collections: Iterable[str] = ()):
        """Initialize the store.

        Args:
            collections: Collections to register with empty reserved variables
        """
        self._entries: dict[str, dict[str, Any]] = {}
        for collection in collections:
            self.register_collection(collection)

    def register_collection(self, collection: str) -> None:
        if collection not in self._entries:
            self._entries[collection] = {variable: None for variable in RESERVED_VARIABLES}

    @property
    def collections(self) -> list[str]:
        return list(self._entries)

    def has(self, collection: str, variable: str) -> bool:
        return variable in self._entries.get(collection, {})

    def variables(self, collection: str) -> list[str]:
        return list(self._entries.get(collection, {}))

    def get(self, collection: str, variable: str, strict: bool = False) -> Any:
        """Return a metadata value, or None when it is not set.

        Args:
            collection: Collection name
            variable: Metadata variable name
            strict: Raise for an unknown collection instead of returning None

        Raises:
            UnknownMetadataKeyError: If ``strict`` and the collection is unknown
        """
        entries = self._entries.get(collection)
        if entries is None:
            if strict:
                raise UnknownMetadataKeyError("Unknown collection", details=collection)
            return None
        return entries.get(variable)

    def set(
        self,
        collection: str,
        variable: str,
        value: Any,
        validate: Callable[[Any], Any] | None = None,
        allow_add: bool = False,
    ) -> None:
        """Set a metadata value.

        Reserved variables are checked by their built-in validators (string
        for ``id_type``/``org``, two-argument callable for ``url_function``;
        ``None`` clears them). ``validate`` is then invoked on ``value``; a
        falsy result or a raised exception rejects the write. Nothing is
        written unless every check passes.

        Args:
            collection: Collection name
            variable: Metadata variable name
            value: Value to store
            validate: Optional validation function applied to ``value``
            allow_add: Allow creating a (collection, variable) entry that
                does not exist yet

        Raises:
            UnknownMetadataKeyError: If the entry does not exist and
                ``allow_add`` is False
            ValidationError: If a validator rejects ``value``
        """
        if not self.has(collection, variable) and not allow_add:
            raise UnknownMetadataKeyError(
                "Metadata entry does not exist (use allow_add=True to create it)",
                details=f"{collection}/{variable}",
            )

        checks = []
        if variable in RESERVED_VALIDATORS and value is not None:
            checks.append(RESERVED_VALIDATORS[variable])
        if validate is not None:
            checks.append(validate)

        for check in checks:
            try:
                ok = check(value)
            except Exception as e:
                raise ValidationError(
                    f"Invalid value for '{variable}' in collection '{collection}'",
                    details=str(e),
                ) from e
            if not ok:
                raise ValidationError(
                    f"Invalid value for '{variable}' in collection '{collection}'",
                    details=_describe_value(value),
                )

        self.register_collection(collection)
        self._entries[collection][variable] = value
        logger.debug("collection_metadata_set", collection=collection, variable=variable)

    def resolve_url(self, collection: str, name: str) -> str | None:
        return self.resolve_urls([collection], [name])[0]

    def resolve_urls(
        self,
        collections: Sequence[str],
        names: Sequence[str],
    ) -> list[str | None]:
        """Build gene set URLs for parallel (collection, name) sequences.

        The ``url_function`` of each collection is looked up once and
        applied to every name in that collection. Collections without a
        URL function yield None. Output order matches input order.
        """
        collections = list(collections)
        names = list(names)
        if len(collections) != len(names):
            raise ValueError(
                f"collections and names lengths differ ({len(collections)} vs {len(names)})"
            )

        positions: dict[str, list[int]] = {}
        for i, collection in enumerate(collections):
            positions.setdefault(collection, []).append(i)

        urls: list[str | None] = [None] * len(names)
        for collection, idx in positions.items():
            url_function = self.get(collection, "url_function")
            if url_function is None:
                continue
            for i in idx:
                urls[i] = url_function(collection, names[i])
        return urls

    def as_frame(self) -> pl.DataFrame:
        """Tabular view with one row per (collection, variable).

        Values are rendered as text; callables appear as ``<function name>``.
        """
        rows = [
            (collection, variable, _describe_value(value))
            for collection, entries in self._entries.items()
            for variable, value in entries.items()
        ]
        return pl.DataFrame(
            rows,
            schema={"collection": pl.Utf8, "variable": pl.Utf8, "value": pl.Utf8},
            orient="row",
        )

    def items(self) -> list[tuple[str, str, Any]]:
        return [
            (collection, variable, value)
            for collection, entries in self._entries.items()
            for variable, value in entries.items()
        ]

    def copy(self) -> "CollectionMetadataStore":
        other = CollectionMetadataStore()
        other._entries = {
            collection: dict(entries) for collection, entries in self._entries.items()
        }
        return other

    def restricted_to(self, collections: Iterable[str]) -> "CollectionMetadataStore":
        keep = set(collections)
        other = self.copy()
        other._entries = {
            collection: entries
            for collection, entries in other._entries.items() if collection in keep
        }
        return other

    def merged(
        self,
        other: "CollectionMetadataStore",
        overwrite: bool = False,
    ) -> "CollectionMetadataStore":
        """Combine two stores.

        Entries only present in one store are kept. For entries present in
        both, this store's value wins unless ``overwrite`` is True; ``None``
        never replaces a set value.
        """
        result = self.copy()
        for collection, variable, value in other.items():
            current = result.get(collection, variable)
            if current is None or (overwrite and value is not None):
                result.register_collection(collection)
                result._entries[collection][variable] = value
            elif value is not None and value is not current and value != current:
                logger.warning(
                    "collection_metadata_conflict",
                    collection=collection,
                    variable=variable,
                    kept=_describe_value(current),
                )
        return result


def _describe_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if callable(value):
        return f"<function {getattr(value, '__qualname__', repr(value))}>"
    return str(value)
