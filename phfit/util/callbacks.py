from .platform import handle_progress_bar


def supports_progress_interface(bar) -> bool:
    r""" Whether `bar` can be driven by :class:`LikelihoodProgressCallback`, i.e., whether it has a counter `n`
    and the methods `update`, `close`, and `set_description`. """
    return hasattr(bar, 'n') and all(callable(getattr(bar, m, None)) for m in ('update', 'close', 'set_description'))


class LikelihoodProgressCallback:
    r""" Advances a tqdm-like progress bar by one per EM iteration and shows the current log-likelihood next to
    the description.

    Parameters
    ----------
    progress : type or None
        Progress bar type, instantiated with the keyword argument `total`. If None, nothing is displayed.
    description : str
        Text in front of the progress bar.
    total : int
        Maximum number of iterations.
    """

    def __init__(self, progress, description, total):
        self.progress_bar = handle_progress_bar(progress)(total=total)
        if not supports_progress_interface(self.progress_bar):
            raise TypeError(f"Progress bar of type {type(self.progress_bar).__name__} needs a counter 'n' and the "
                            f"methods update(), close(), and set_description().")
        self.description = description
        self.progress_bar.set_description(description)

    def __call__(self, llf: float):
        self.progress_bar.update(1)
        self.progress_bar.set_description(f"{self.description} - [llf: {llf:.6g}]")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            # converged early, the bar is complete nevertheless
            self.progress_bar.total = self.progress_bar.n
        self.progress_bar.close()
