"""
The attribute bags of the resources, as seen by the reconciliation.

The host runtime owns the persisted attributes of every resource instance.
We only get & set them by their string keys, and get & set the identifier
of the resource. Nothing else is assumed about the host's storage.

There are two implementations:

* :class:`ResourceFields` for the host's records (a dict with an ``id``
  and the ``attributes``), as kept e.g. in the state file of the CLI host.
* :class:`MemoryFields` for the nested processing of the embedded entries,
  and for the newly imported resources (before the host stores them).

The lifecycle code accepts any object that satisfies the protocols,
so other hosts can provide their own bags without inheriting from ours.
"""
import copy
from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any, Protocol


class ReadableFields(Protocol):
    @property
    def id(self) -> str: ...

    def get(self, key: str, default: Any = None) -> Any: ...


class WritableFields(ReadableFields, Protocol):
    def set(self, key: str, value: Any) -> None: ...

    def set_id(self, id: str) -> None: ...


class MemoryFields(Mapping[str, Any]):
    """
    A detached in-memory bag of attributes.

    The initial attributes are deep-copied, so that the modifications
    of the bag never leak into the source (e.g. into the parent's list).
    """

    def __init__(self, attributes: Mapping[str, Any] | None = None, *, id: str = '') -> None:
        super().__init__()
        self._id = id
        self._attributes: dict[str, Any] = copy.deepcopy(dict(attributes or {}))

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._attributes!r}, id={self._id!r})'

    def __len__(self) -> int:
        return len(self._attributes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._attributes)

    def __getitem__(self, key: str) -> Any:
        return self._attributes[key]

    @property
    def id(self) -> str:
        return self._id

    def set(self, key: str, value: Any) -> None:
        self._attributes[key] = value

    def set_id(self, id: str) -> None:
        self._id = id


class ResourceFields(Mapping[str, Any]):
    """
    A live view of one host record: ``{'id': ..., 'attributes': {...}}``.

    All modifications go directly into the record, so the host sees them
    as soon as the lifecycle operation returns (or fails midway).
    An empty id means the resource does not exist yet or was deleted.
    """

    def __init__(self, record: MutableMapping[str, Any]) -> None:
        super().__init__()
        self._record = record
        self._record.setdefault('id', '')
        self._record.setdefault('attributes', {})

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._record!r})'

    def __len__(self) -> int:
        return len(self._record['attributes'])

    def __iter__(self) -> Iterator[str]:
        return iter(self._record['attributes'])

    def __getitem__(self, key: str) -> Any:
        return self._record['attributes'][key]

    @property
    def id(self) -> str:
        return str(self._record.get('id') or '')

    def set(self, key: str, value: Any) -> None:
        self._record['attributes'][key] = value

    def set_id(self, id: str) -> None:
        self._record['id'] = id
