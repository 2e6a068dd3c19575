"""Query string parameters, as returned by ``use_url("query")``."""

from collections.abc import Iterator, Mapping
from urllib.parse import parse_qsl


class QueryParams(Mapping[str, str]):
    """Read-only view of a decoded query string.

    Indexing gives the first value sent for a key. ``raw`` keeps the
    undecoded bytes for rebuilding the request URL.
    """

    __slots__ = ("_first", "raw")

    def __init__(self, query_string: bytes = b"") -> None:
        self.raw = query_string
        self._first: dict[str, str] = {}
        for key, value in parse_qsl(query_string.decode("latin-1"), keep_blank_values=True):
            self._first.setdefault(key, value)

    def __getitem__(self, key: str) -> str:
        return self._first[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._first)

    def __len__(self) -> int:
        return len(self._first)
