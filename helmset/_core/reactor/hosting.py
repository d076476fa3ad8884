"""
A minimal host runtime: declarations in YAML, the persisted state in JSON.

The host plays the role of a declarative-infrastructure orchestrator
for the command line: it reads the declared resources, keeps their ids
and the computed attributes in a state file between the runs, and drives
all the resources through their lifecycles concurrently.

The declarations file looks like this::

    release_sets:
      infra:
        path: ./infra/helmfile.yaml
        kubeconfig: ./kubeconfig
    releases:
      redis:
        chart: bitnami/redis
        kubeconfig: ./kubeconfig

The state file maps the kinds and the names to the host records,
each being ``{"id": ..., "attributes": {...}}``.
"""
import asyncio
import dataclasses
import enum
import json
import logging
import os
from collections.abc import Awaitable, Callable, Mapping, MutableMapping
from typing import Any

import yaml

from helmset._cogs.clients import errors
from helmset._cogs.configs import configuration
from helmset._cogs.structs import fields, releasesets
from helmset._core.engines import lifecycles
from helmset._core.intents import releases

logger = logging.getLogger(__name__)

# Kept from the previous runs, never declared.
COMPUTED_KEYS = frozenset({
    releasesets.KEY_DIFF_OUTPUT,
    releasesets.KEY_APPLY_OUTPUT,
    releasesets.KEY_ERROR,
})


class Kind(str, enum.Enum):
    RELEASE_SETS = 'release_sets'
    RELEASES = 'releases'


class Action(str, enum.Enum):
    NOOP = 'no changes'
    PLANNED = 'changes planned'
    CREATED = 'created'
    UPDATED = 'updated'
    DESTROYED = 'destroyed'
    IMPORTED = 'imported'
    FAILED = 'failed'


@dataclasses.dataclass(frozen=True)
class Result:
    kind: Kind
    name: str
    action: Action
    diff: str = ''
    message: str = ''

    @property
    def failed(self) -> bool:
        return self.action is Action.FAILED


State = MutableMapping[str, MutableMapping[str, MutableMapping[str, Any]]]
Declarations = Mapping[str, Mapping[str, Mapping[str, Any]]]


def load_declarations(path: str) -> Declarations:
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f.read()) or {}
    except OSError as e:
        raise errors.ResourceUnavailableError(f"Cannot read the declarations {path!r}: {e}") from e
    except yaml.YAMLError as e:
        raise errors.InvalidConfigurationError(f"Cannot parse the declarations {path!r}: {e}") from e
    if not isinstance(data, Mapping):
        raise errors.InvalidConfigurationError(f"The declarations {path!r} must be a map of kinds.")
    unknown = set(data) - {kind.value for kind in Kind}
    if unknown:
        raise errors.InvalidConfigurationError(f"Unknown kinds in {path!r}: {sorted(unknown)!r}")
    for kind in Kind:
        if not isinstance(data.get(kind) or {}, Mapping):
            raise errors.InvalidConfigurationError(f"The {kind.value!r} in {path!r} must be a map of names.")
    return {kind: dict(data.get(kind) or {}) for kind in Kind}


def load_state(path: str) -> State:
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        data = {}
    except OSError as e:
        raise errors.ResourceUnavailableError(f"Cannot read the state {path!r}: {e}") from e
    except ValueError as e:
        raise errors.InvalidConfigurationError(f"Cannot parse the state {path!r}: {e}") from e
    return {kind: dict(data.get(kind) or {}) for kind in Kind}


def save_state(path: str, state: State) -> None:
    tmppath = f'{path}.tmp'
    try:
        with open(tmppath, 'w', encoding='utf-8') as f:
            json.dump(state, f, indent=2, sort_keys=True)
        os.replace(tmppath, path)
    except OSError as e:
        raise errors.ResourceUnavailableError(f"Cannot write the state {path!r}: {e}") from e


def merge_record(declared: Mapping[str, Any], record: Mapping[str, Any] | None) -> dict[str, Any]:
    """ Combine the new declarations with the id & the computed attributes of the previous runs. """
    previous = dict((record or {}).get('attributes') or {})
    attributes = dict(declared)
    for key in COMPUTED_KEYS:
        if key in previous:
            attributes[key] = previous[key]
    if releasesets.KEY_DIRTY not in attributes and releasesets.KEY_DIRTY in previous:
        attributes[releasesets.KEY_DIRTY] = previous[releasesets.KEY_DIRTY]
    return {'id': (record or {}).get('id') or '', 'attributes': attributes}


class Host:
    """
    Drives the declared resources through their lifecycles, all concurrently.
    """

    def __init__(
            self,
            *,
            declarations: Declarations,
            state: State,
            reconciler: lifecycles.Reconciler | None = None,
            config: lifecycles.DiffConfig = lifecycles.DiffConfig(),
    ) -> None:
        super().__init__()
        self.declarations = declarations
        self.state = state
        self.config = config
        self.reconciler = reconciler if reconciler is not None else lifecycles.Reconciler()
        self.lifecycles: dict[Kind, Any] = {
            Kind.RELEASE_SETS: self.reconciler,
            Kind.RELEASES: releases.Releases(self.reconciler),
        }

    async def _each(
            self,
            targets: list[tuple[Kind, str]],
            fn: Callable[[Kind, str], Awaitable[Result]],
    ) -> list[Result]:
        async def _guarded(kind: Kind, name: str) -> Result:
            try:
                return await fn(kind, name)
            except errors.HelmsetError as e:
                return Result(kind=kind, name=name, action=Action.FAILED, message=str(e))
        return list(await asyncio.gather(*[_guarded(kind, name) for kind, name in targets]))

    def _declared(self) -> list[tuple[Kind, str]]:
        return [(kind, name) for kind in Kind for name in self.declarations.get(kind, {})]

    def _orphans(self) -> list[tuple[Kind, str]]:
        return [(kind, name) for kind in Kind for name in self.state.get(kind, {})
                if name not in self.declarations.get(kind, {})]

    def _fields(self, kind: Kind, name: str) -> fields.ResourceFields:
        declared = self.declarations[kind][name]
        if not isinstance(declared, Mapping):
            raise errors.InvalidConfigurationError(
                f"The declaration of {kind.value}.{name} must be a map of attributes, got {declared!r}.")
        if kind is Kind.RELEASES:
            declared = {releases.KEY_NAME: name, **declared}
        record = merge_record(declared, self.state[kind].get(name))
        self.state[kind][name] = record
        return fields.ResourceFields(record)

    async def _plan_one(self, kind: Kind, name: str) -> Result:
        d = self._fields(kind, name)
        lifecycle = self.lifecycles[kind]
        if d.id:
            await lifecycle.read(d)
        diff = await lifecycle.plan(d, config=self.config)
        action = Action.PLANNED if diff or not d.id or d.get(releasesets.KEY_DIRTY) else Action.NOOP
        return Result(kind=kind, name=name, action=action, diff=diff)

    async def _apply_one(self, kind: Kind, name: str) -> Result:
        result = await self._plan_one(kind, name)
        d = fields.ResourceFields(self.state[kind][name])
        lifecycle = self.lifecycles[kind]
        if not d.id:
            await lifecycle.create(d)
            return dataclasses.replace(result, action=Action.CREATED)
        elif result.action is Action.PLANNED:
            await lifecycle.update(d)
            return dataclasses.replace(result, action=Action.UPDATED)
        else:
            return result

    async def _destroy_one(self, kind: Kind, name: str) -> Result:
        record = self.state[kind][name]
        d = fields.ResourceFields(record)
        if d.id:
            await self.lifecycles[kind].delete(d)
        del self.state[kind][name]
        return Result(kind=kind, name=name, action=Action.DESTROYED)

    async def plan(self) -> list[Result]:
        results = await self._each(self._declared(), self._plan_one)
        results += [Result(kind=kind, name=name, action=Action.PLANNED, message='to be destroyed')
                    for kind, name in self._orphans()]
        return results

    async def apply(self) -> list[Result]:
        results = await self._each(self._declared(), self._apply_one)
        results += await self._each(self._orphans(), self._destroy_one)
        return results

    async def destroy(self) -> list[Result]:
        targets = [(kind, name) for kind in Kind for name in self.state.get(kind, {})]
        return await self._each(targets, self._destroy_one)

    def import_release_set(self, name: str, path: str) -> Result:
        if name in self.state[Kind.RELEASE_SETS]:
            raise errors.InvalidConfigurationError(f"The release set {name!r} is already in the state.")
        d = lifecycles.import_release_set(path)
        self.state[Kind.RELEASE_SETS][name] = {'id': d.id, 'attributes': dict(d)}
        return Result(kind=Kind.RELEASE_SETS, name=name, action=Action.IMPORTED)


def run(
        command: str,
        *,
        declarations_path: str,
        state_path: str,
        settings: configuration.ReconcilerSettings | None = None,
        config: lifecycles.DiffConfig = lifecycles.DiffConfig(),
        import_name: str | None = None,
        import_path: str | None = None,
) -> list[Result]:
    """
    Run one host command synchronously, and persist the state afterwards.

    The state is saved even if some resources fail, so that the ids
    of the successfully created resources are never lost.
    """
    declarations: Declarations
    if command == 'destroy' or command == 'import':
        declarations = {kind: {} for kind in Kind}
    else:
        declarations = load_declarations(declarations_path)
    state = load_state(state_path)
    host = Host(declarations=declarations, state=state, config=config,
                reconciler=lifecycles.Reconciler(settings=settings))
    try:
        match command:
            case 'plan':
                return asyncio.run(host.plan())
            case 'apply':
                return asyncio.run(host.apply())
            case 'destroy':
                return asyncio.run(host.destroy())
            case 'import' if import_name and import_path:
                return [host.import_release_set(import_name, import_path)]
            case _:
                raise ValueError(f"Unsupported command: {command!r}")
    finally:
        save_state(state_path, state)
