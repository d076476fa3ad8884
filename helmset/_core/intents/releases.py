"""
Single releases as resources: a one-release release set under the hood.

A single release is declared with the chart-level attributes (the chart,
its version, the values) instead of a manifest. The manifest is generated
from them, and the rest of the lifecycle is the same as for the release sets.

The chart-level keys overlap with the release-set keys (e.g. ``version`` is
the chart's version here, not the tool's), so the release's bag is never
read as a release set directly: it is wrapped into a view that presents
the generated release set, and forwards all the writes to the release's bag.
"""
import json
from collections.abc import Iterator, Mapping
from typing import Any

import yaml

from helmset._cogs.clients import errors
from helmset._cogs.structs import fields, releasesets
from helmset._core.engines import lifecycles

KEY_NAME = 'name'
KEY_NAMESPACE = 'namespace'
KEY_CHART = 'chart'
KEY_VERSION = 'version'
KEY_VALUES = 'values'
KEY_VERIFY = 'verify'
KEY_WAIT = 'wait'
KEY_FORCE = 'force'
KEY_ATOMIC = 'atomic'
KEY_CLEANUP_ON_FAIL = 'cleanup_on_fail'
KEY_TIMEOUT = 'timeout'
KEY_KUBECONTEXT = 'kubecontext'

DEFAULT_NAMESPACE = 'default'
DEFAULT_ENVIRONMENT = 'default'

# Passed through to the generated release set as is.
SHARED_KEYS = frozenset({
    releasesets.KEY_BINARY,
    releasesets.KEY_HELM_BINARY,
    releasesets.KEY_KUBECONFIG,
    releasesets.KEY_WORKING_DIRECTORY,
    releasesets.KEY_HELM_VERSION,
    releasesets.KEY_HELM_DIFF_VERSION,
    releasesets.KEY_DIFF_OUTPUT,
    releasesets.KEY_APPLY_OUTPUT,
    releasesets.KEY_ERROR,
    releasesets.KEY_DIRTY,
})


def render_content(d: fields.ReadableFields) -> str:
    """
    Generate the manifest of a release set with only this one release.
    """
    def _get(key: str, default: Any) -> Any:
        value = d.get(key)
        return default if value is None else value

    values: list[Any] = []
    for raw in _get(KEY_VALUES, []):
        try:
            parsed = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except ValueError as e:
            raise errors.InvalidConfigurationError(f"The values are not a valid JSON: {raw!r}: {e}") from e
        if not isinstance(parsed, Mapping):
            raise errors.InvalidConfigurationError(f"The values must be a JSON object: {raw!r}")
        values.append(dict(parsed))

    release = {
        'name': str(_get(KEY_NAME, '') or d.id),
        'namespace': str(_get(KEY_NAMESPACE, '') or DEFAULT_NAMESPACE),
        'chart': str(_get(KEY_CHART, '')),
        'version': str(_get(KEY_VERSION, '')),
        'values': values,
        'verify': bool(_get(KEY_VERIFY, False)),
        'wait': bool(_get(KEY_WAIT, True)),
        'force': bool(_get(KEY_FORCE, False)),
        'atomic': bool(_get(KEY_ATOMIC, True)),
        'cleanupOnFail': bool(_get(KEY_CLEANUP_ON_FAIL, True)),
        'timeout': int(_get(KEY_TIMEOUT, 0)),
        'kubeContext': str(_get(KEY_KUBECONTEXT, '')),
    }
    return yaml.safe_dump({'releases': [release]}, default_flow_style=False, sort_keys=True)


class ReleaseFields(Mapping[str, Any]):
    """
    The release's bag as seen as a release set's bag.

    The generated attributes are computed once, at construction. The writes
    (of the computed outputs and of the id) go directly to the release's bag.
    """

    def __init__(self, d: fields.WritableFields) -> None:
        super().__init__()
        self._d = d
        self._generated: dict[str, Any] = {
            releasesets.KEY_CONTENT: render_content(d),
            releasesets.KEY_ENVIRONMENT: DEFAULT_ENVIRONMENT,
        }

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self._d!r})'

    def __len__(self) -> int:
        return len(list(iter(self)))

    def __iter__(self) -> Iterator[str]:
        yield from self._generated
        for key in sorted(SHARED_KEYS):
            if self._d.get(key) is not None:
                yield key

    def __getitem__(self, key: str) -> Any:
        if key in self._generated:
            return self._generated[key]
        value = self._d.get(key) if key in SHARED_KEYS else None
        if value is None:
            raise KeyError(key)
        return value

    @property
    def id(self) -> str:
        return self._d.id

    def set(self, key: str, value: Any) -> None:
        self._d.set(key, value)

    def set_id(self, id: str) -> None:
        self._d.set_id(id)


class Releases:
    """
    The lifecycle of the single-release resources, via the release-set lifecycle.
    """

    def __init__(self, reconciler: lifecycles.Reconciler) -> None:
        super().__init__()
        self.reconciler = reconciler

    @lifecycles.guarded
    async def plan(
            self,
            d: fields.WritableFields,
            *,
            config: lifecycles.DiffConfig = lifecycles.DiffConfig(),
    ) -> str:
        return await self.reconciler.plan(ReleaseFields(d), config=config)

    @lifecycles.guarded
    async def create(self, d: fields.WritableFields) -> None:
        await self.reconciler.create(ReleaseFields(d))

    @lifecycles.guarded
    async def read(self, d: fields.WritableFields) -> None:
        await self.reconciler.read(ReleaseFields(d))

    @lifecycles.guarded
    async def update(self, d: fields.WritableFields) -> None:
        await self.reconciler.update(ReleaseFields(d))

    @lifecycles.guarded
    async def delete(self, d: fields.WritableFields) -> None:
        await self.reconciler.delete(ReleaseFields(d))
