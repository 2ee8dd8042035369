"""Persistent fetch-strategy metadata.

Metadata lives in a small JSON state file, separate from the cache database,
keyed by ``"cache.strategy." + strategy_key``. Clearing the cache database
does not lose it and vice versa.
"""

import json
import logging
import os
from pathlib import Path
from threading import Lock

log = logging.getLogger(__name__)

METADATA_KEY_PREFIX = "cache.strategy."


def read_state(state_file):
    """Read the whole state file as a dict.

    A missing file reads as empty. A corrupt file is logged and also read
    as empty, so the next fetch simply starts from scratch.
    """
    path = Path(state_file)
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (ValueError, OSError) as exc:
        log.warning("Ignoring unreadable state file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        log.warning("Ignoring state file %s: expected a JSON object", path)
        return {}
    return data


def write_state(state, state_file):
    """Atomically replace the state file with *state*."""
    path = Path(state_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(state, indent=2, sort_keys=True))
    os.replace(tmp, path)


class MetadataStore:
    """Load, save and clear metadata for incremental fetch strategies."""

    def __init__(self, state_file):
        self.state_file = state_file
        self._lock = Lock()

    @staticmethod
    def key_for(strategy):
        return METADATA_KEY_PREFIX + strategy.strategy_key

    def load(self, strategy):
        """Return the stored metadata object for *strategy*, or None."""
        with self._lock:
            blob = read_state(self.state_file).get(self.key_for(strategy))
        if blob is None:
            return None
        try:
            return strategy.metadata_class.from_dict(blob)
        except (KeyError, TypeError, ValueError) as exc:
            log.warning(
                "Discarding malformed metadata for %s: %s", strategy.strategy_key, exc,
            )
            return None

    def save(self, strategy, metadata):
        with self._lock:
            state = read_state(self.state_file)
            state[self.key_for(strategy)] = metadata.to_dict()
            write_state(state, self.state_file)

    def clear(self, strategy):
        with self._lock:
            state = read_state(self.state_file)
            if state.pop(self.key_for(strategy), None) is not None:
                write_state(state, self.state_file)

    def clear_all(self):
        """Remove the metadata of every strategy, keeping unrelated keys."""
        with self._lock:
            state = read_state(self.state_file)
            kept = {k: v for k, v in state.items() if not k.startswith(METADATA_KEY_PREFIX)}
            if kept != state:
                write_state(kept, self.state_file)
