"""Refresh every cached kind of a source in parallel."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from .strategies import cached_fetch, fill_gaps

log = logging.getLogger(__name__)


def refresh_all(store, metadata_store, source, strategies, start, end, max_workers=4):
    """Run :func:`~goalcache.strategies.cached_fetch` once per kind.

    *strategies* maps kind names to their fetch strategy. Kinds are refreshed
    concurrently; a failure in one kind is logged and collected without
    affecting the others.

    Returns ``(counts, errors)``: *counts* maps each kind to the number of
    cached records in ``[start, end]`` after the refresh, *errors* is a list
    of ``(kind, exception)``.
    """
    counts = {}
    errors = []
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            pool.submit(
                cached_fetch, store, metadata_store, strategy, kind, source.fetch, start, end,
            ): kind
            for kind, strategy in strategies.items()
        }
        for future in as_completed(futures):
            kind = futures[future]
            try:
                records = future.result()
            except Exception as exc:
                log.warning("  %s: error — %s", kind, exc)
                errors.append((kind, exc))
                continue
            counts[kind] = len(records)
            log.info("  %s: %d cached record(s) in range", kind, len(records))
    return counts, errors


def refresh_gaps(store, source, kinds, start, end):
    """Fill missing days for each of *kinds* one after another.

    Returns ``(counts, errors)`` like :func:`refresh_all`, where counts are
    the numbers of records stored.
    """
    counts = {}
    errors = []
    for kind in kinds:
        try:
            counts[kind] = fill_gaps(store, kind, source.fetch, start, end)
            log.info("  %s: stored %d records", kind, counts[kind])
        except Exception as exc:
            log.warning("  %s: error — %s", kind, exc)
            errors.append((kind, exc))
    return counts, errors
