def handle_progress_bar(progress):
    r"""Takes a (potential) progress bar, if None, just returns an iterable that does nothing but return everything.

    Parameters
    ----------
    progress : progress bar or None, optional
        The progressbar

    Returns
    -------
    progress_bar : iterable
        A progress bar (or no/identity progress bar if input was None).
    """
    if progress is None:
        class progress:
            def __init__(self, x=None, **_):
                self._x = x
                self.total = None
                self.n = 0

            def __enter__(self): return self
            def __exit__(self, exc_type, exc_val, exc_tb): return False

            def __iter__(self):
                for x in self._x:
                    yield x

            def update(self, *_): pass
            def close(self): pass
            def set_description(self, *_): pass

    return progress
