# global_parameters.py
import os


def _default_workers():
    return os.cpu_count() or 1


class GlobalParameters:
    def __init__(self, initial_params=None):
        """
        all parameters are defined with underscore, _, instead of spaces
        """
        self._params = {
            # Size of the thread pool used by the parallel passes.
            "num_workers": _default_workers(),
            # Feed the midpoint registry in entity order so that node ids do
            # not depend on thread scheduling.
            "deterministic": True,
            # Abort when an edge is shared by more than two elements instead
            # of only warning about it.
            "strict_manifold": False,
            # Entities per task in the parallel passes; None splits the work
            # evenly across the workers.
            "chunk_size": None,
            "compact_output": False,
        }
        if initial_params:
            self.update(initial_params)

    def __getattr__(self, name):
        """Attribute access for known parameter keys."""
        params = self.__dict__.get("_params")
        if params is not None and name in params:
            return params[name]
        raise AttributeError(
            f"{type(self).__name__!s} object has no attribute {name!r}"
        )

    def __setattr__(self, name, value):
        if name == "_params":
            object.__setattr__(self, name, value)
            return
        params = self.__dict__.get("_params")
        if params is not None and name in params:
            params[name] = value
            return
        object.__setattr__(self, name, value)

    def get(self, key, default=None):
        """Retrieve a parameter value, or return a default if not found."""
        return self._params.get(key, default)

    def set(self, key, value):
        """Set or update a parameter."""
        self._params[key] = value

    def update(self, params):
        """Update multiple parameters at once."""
        self._params.update(params)

    def validate(self):
        """Coerce and check values that may come from YAML/JSON as strings."""
        workers = self._params.get("num_workers")
        if workers is None:
            workers = _default_workers()
        try:
            workers = int(workers)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"num_workers must be an integer; got {workers!r}") from exc
        if workers < 1:
            raise ValueError(f"num_workers must be at least 1; got {workers}")
        self._params["num_workers"] = workers

        chunk = self._params.get("chunk_size")
        if chunk is not None:
            chunk = int(chunk)
            if chunk < 1:
                raise ValueError(f"chunk_size must be at least 1; got {chunk}")
            self._params["chunk_size"] = chunk

        for key in ("deterministic", "strict_manifold", "compact_output"):
            value = self._params.get(key)
            if isinstance(value, str):
                self._params[key] = value.strip().lower() in {"1", "true", "yes", "on"}
            else:
                self._params[key] = bool(value)
        return self

    def __contains__(self, key):
        """Check if a parameter exists."""
        return key in self._params

    def __repr__(self):
        """String representation for debugging."""
        return f"GlobalParameters({self._params})"

    def to_dict(self):
        """Convert the parameters to a dictionary for serialization."""
        return dict(self._params)
