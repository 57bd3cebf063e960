"""
Caching of sampler output.

Long MCMC runs are expensive to repeat when re-running a walk-through.
`cached_run` stores a result dict as a compressed .npz file and loads it
on later calls instead of sampling again. A `cache_key` describing the
run settings is stored alongside; a checkpoint written under a different
key is stale and the run is repeated.
"""

from pathlib import Path

import numpy as np

KEY_FIELD = "_cache_key"


def _storable(key, value):
    arr = np.asarray(value)
    if arr.dtype == object:
        raise TypeError(f"Cannot checkpoint entry '{key}' of type {type(value).__name__}.")
    return arr


def save_result(path, result):
    """Write a dict of arrays / scalars to `path` (.npz)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    arrays = {k: _storable(k, v) for k, v in result.items()}
    np.savez_compressed(path, **arrays)


def load_result(path):
    """Read a checkpoint written by `save_result`; 0-d arrays come back as scalars."""
    with np.load(Path(path), allow_pickle=False) as f:
        return {k: f[k].item() if f[k].ndim == 0 else f[k] for k in f.files}


def cached_run(path, func, *args, overwrite=False, cache_key=None, **kwargs):
    """
    Return func(*args, **kwargs), reading it from / writing it to `path`.

    Parameters
    ----------
    path : str or Path
        Checkpoint file; a ".npz" suffix is added if missing.
    func : callable
        Returns a dict whose values are arrays or scalars (the samplers'
        output qualifies).
    overwrite : bool
        Ignore an existing checkpoint and run again.
    cache_key : str or None
        Run settings stored with the result. An existing checkpoint is
        only reused when its stored key equals this one.

    Returns
    -------
    dict
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_name(path.name + ".npz")
    if path.exists() and not overwrite:
        result = load_result(path)
        stored = result.pop(KEY_FIELD, None)
        if stored == cache_key:
            print(f"  [cache] Loaded {path}")
            return result
        print(f"  [cache] Stale {path} (settings changed), running again")

    result = func(*args, **kwargs)
    to_save = dict(result)
    if cache_key is not None:
        to_save[KEY_FIELD] = cache_key
    save_result(path, to_save)
    print(f"  [cache] Saved {path}")
    return result
