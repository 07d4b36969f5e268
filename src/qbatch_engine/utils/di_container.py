import importlib
from typing import Any, NamedTuple

SCOPES = ("singleton", "prototype")


class ComponentSpec(NamedTuple):
    """One configured component: import path, lifetime and constructor kwargs."""

    target: str
    scope: str
    kwargs: dict[str, Any]


def load_target(target: str) -> type:
    """Import the object named by a dotted `module.Name` path.

    Raises:
        ImportError: If the path is malformed or does not resolve.

    """
    module_path, _, attr = target.rpartition(".")
    if not module_path:
        message = f"_target_ must be a dotted path, got {target!r}"
        raise ImportError(message)
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        message = f"cannot import module {module_path} for {target}"
        raise ImportError(message) from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        message = f"module {module_path} has no attribute {attr}"
        raise ImportError(message) from exc


class DiContainer:
    """Builds engine components named in the configuration.

    Each top-level entry with a `_target_` is a component: the remaining
    keys without a leading underscore become constructor kwargs, and
    `_scope_` picks between one shared instance (`singleton`, the default)
    and a fresh instance per lookup (`prototype`). Pipeline nodes, the
    exception handler, the job repository and the execution backend are all
    resolved this way::

        ready_buffer:
          _target_: qbatch_engine.buffers.ScoredBuffer
          max_concurrency: 4

    Tests pin fakes with `override()`.
    """

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config
        self._singletons: dict[str, Any] = {}

    def has(self, name: str) -> bool:
        return name in self._singletons or name in self._config

    def override(self, name: str, instance: Any) -> None:  # noqa: ANN401
        self._singletons[name] = instance

    def get(self, name: str) -> Any:  # noqa: ANN401
        """Return the component called `name`, building it if needed.

        Raises:
            KeyError: If nothing is configured under `name`.
            ValueError: If the entry has no `_target_` or an unknown scope.
            ImportError: If `_target_` does not resolve.
            TypeError: If the kwargs do not fit the constructor.

        """  # noqa: DOC502
        if name in self._singletons:
            return self._singletons[name]

        spec = self.spec(name)
        instance = self._build(spec)
        if spec.scope == "singleton":
            self._singletons[name] = instance
        return instance

    def spec(self, name: str) -> ComponentSpec:
        """Parse the configuration entry of a component."""
        if name not in self._config:
            message = f"no component configured under {name!r}"
            raise KeyError(message)
        entry = self._config[name]
        if not isinstance(entry, dict) or "_target_" not in entry:
            message = f"Missing _target_ for component {name!r}"
            raise ValueError(message)

        scope = entry.get("_scope_", "singleton")
        if scope not in SCOPES:
            message = f"component {name!r} has unknown _scope_ {scope!r}"
            raise ValueError(message)
        kwargs = {key: value for key, value in entry.items() if not key.startswith("_")}
        return ComponentSpec(target=entry["_target_"], scope=scope, kwargs=kwargs)

    @staticmethod
    def _build(spec: ComponentSpec) -> Any:  # noqa: ANN401
        factory = load_target(spec.target)
        try:
            return factory(**spec.kwargs)
        except TypeError as exc:
            message = f"Failed to instantiate {factory.__name__} with {sorted(spec.kwargs)}"
            raise TypeError(message) from exc
