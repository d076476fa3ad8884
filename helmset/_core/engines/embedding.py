"""
Release sets embedded into other resources as a list of nested attribute maps.

Some resources (e.g. a cluster with its initial workloads) carry the release
sets inside themselves instead of declaring them as the separate resources.
Every entry is reconciled with the same lifecycle as a standalone release set,
but through a detached in-memory bag, and the entries are written back
into the parent resource as a whole when done.

The entries are processed one by one, in the declared order: they usually
share the working directory, and would wait for each other anyway.
"""
from collections.abc import Iterable, Mapping

from helmset._cogs.clients import errors
from helmset._cogs.structs import fields
from helmset._core.engines import lifecycles

DEFAULT_ATTRIBUTE = 'embedded'


def extract_entries(d: fields.ReadableFields, attr: str = DEFAULT_ATTRIBUTE) -> list[fields.MemoryFields]:
    value = d.get(attr)
    if value is None:
        raise errors.InvalidConfigurationError(f"No attribute named {attr!r} is found.")
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise errors.InvalidConfigurationError(f"The attribute {attr!r} must be a list of maps.")
    entries: list[fields.MemoryFields] = []
    for item in value:
        if not isinstance(item, Mapping):
            raise errors.InvalidConfigurationError(f"The attribute {attr!r} must be a list of maps.")
        entries.append(fields.MemoryFields(item))
    return entries


def store_entries(d: fields.WritableFields, entries: Iterable[fields.MemoryFields],
                  attr: str = DEFAULT_ATTRIBUTE) -> None:
    d.set(attr, [dict(entry) for entry in entries])


class EmbeddedReleaseSets:
    """
    The lifecycle of a parent resource, delegated to its embedded release sets.
    """

    def __init__(self, reconciler: lifecycles.Reconciler, attr: str = DEFAULT_ATTRIBUTE) -> None:
        super().__init__()
        self.reconciler = reconciler
        self.attr = attr

    @lifecycles.guarded
    async def plan(
            self,
            d: fields.WritableFields,
            *,
            config: lifecycles.DiffConfig = lifecycles.DiffConfig(),
    ) -> bool:
        """ Plan all the entries; report if any of them has changes. """
        entries = extract_entries(d, self.attr)
        changed = False
        for entry in entries:
            diff = await self.reconciler.plan(entry, config=config)
            changed = changed or bool(diff)
        if changed:
            store_entries(d, entries, self.attr)
        return changed

    @lifecycles.guarded
    async def create(self, d: fields.WritableFields) -> None:
        entries = extract_entries(d, self.attr)
        try:
            for entry in entries:
                await self.reconciler.create(entry)
        finally:
            store_entries(d, entries, self.attr)
        d.set_id(lifecycles.new_id())

    @lifecycles.guarded
    async def read(self, d: fields.WritableFields) -> None:
        entries = extract_entries(d, self.attr)
        try:
            for entry in entries:
                await self.reconciler.read(entry)
        finally:
            store_entries(d, entries, self.attr)

    @lifecycles.guarded
    async def update(self, d: fields.WritableFields) -> None:
        entries = extract_entries(d, self.attr)
        try:
            for entry in entries:
                await self.reconciler.update(entry)
        finally:
            store_entries(d, entries, self.attr)

    @lifecycles.guarded
    async def delete(self, d: fields.WritableFields) -> None:
        entries = extract_entries(d, self.attr)
        for entry in entries:
            await self.reconciler.delete(entry)
        d.set_id('')