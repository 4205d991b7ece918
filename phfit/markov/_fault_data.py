from typing import Optional

import numpy as np

from ..util.exceptions import DomainError
from ..util.types import ensure_floating_array, ensure_integer_array


class FaultData:
    r""" Grouped and censored fault detection data of a software test.

    The data consists of consecutive observation intervals. For each interval it holds the length of the interval,
    the number of faults detected strictly inside of it, and a flag indicating whether one additional fault was
    detected exactly at the end of the interval. Exact fault detection times are hence represented by intervals
    with no fault inside and the flag set.

    Parameters
    ----------
    time : array_like
        Lengths of the observation intervals, non-negative.
    fault : array_like, optional, default=None
        Number of faults detected inside the intervals. Defaults to zero for every interval.
    type : array_like, optional, default=None
        Either 0 or 1 for every interval, 1 meaning that a fault was detected exactly at the end of the interval.
        Defaults to zero for every interval.

    See Also
    --------
    from_interfailure_times, from_counts
    """

    def __init__(self, time, fault=None, type=None):
        try:
            time = np.array(ensure_floating_array(time, ndim=1), dtype=float)
            if fault is None:
                fault = np.zeros(len(time), dtype=int)
            if type is None:
                type = np.zeros(len(time), dtype=int)
            fault = np.array(ensure_integer_array(fault, ndim=1), dtype=int)
            type = np.array(ensure_integer_array(type, ndim=1), dtype=int)
        except ValueError as e:
            raise DomainError(f"Invalid fault data: {e}") from e

        if len(time) == 0:
            raise DomainError("Fault data must contain at least one observation interval.")
        if not len(time) == len(fault) == len(type):
            raise DomainError(f"time, fault and type must be aligned, but have lengths "
                              f"{len(time)}, {len(fault)}, {len(type)}.")
        bad = np.flatnonzero(~np.isfinite(time) | (time < 0))
        if bad.size > 0:
            raise DomainError(f"Interval lengths must be non-negative and finite, but time[{bad[0]}] = "
                              f"{time[bad[0]]}.")
        bad = np.flatnonzero(fault < 0)
        if bad.size > 0:
            raise DomainError(f"Fault counts must be non-negative, but fault[{bad[0]}] = {fault[bad[0]]}.")
        bad = np.flatnonzero((type != 0) & (type != 1))
        if bad.size > 0:
            raise DomainError(f"Type flags must be 0 or 1, but type[{bad[0]}] = {type[bad[0]]}.")
        self._time = time
        self._fault = fault
        self._type = type

    @staticmethod
    def from_interfailure_times(intervals, te: Optional[float] = None) -> "FaultData":
        r""" Creates fault data from exact detection times.

        Parameters
        ----------
        intervals : array_like
            Times between consecutive fault detections, the first one measured from the start of the test.
        te : float, optional, default=None
            Time from the last detection to the end of the observation, no fault being detected in between.

        Returns
        -------
        data : FaultData
            The fault data.
        """
        try:
            intervals = ensure_floating_array(intervals, ndim=1)
        except ValueError as e:
            raise DomainError(f"Invalid interfailure times: {e}") from e
        time = np.array(intervals, dtype=float)
        type = np.ones(len(time), dtype=int)
        if te is not None:
            time = np.append(time, te)
            type = np.append(type, 0)
        return FaultData(time, np.zeros(len(time), dtype=int), type)

    @staticmethod
    def from_counts(fault, time=None) -> "FaultData":
        r""" Creates fault data from counts per observation interval.

        Parameters
        ----------
        fault : array_like
            Number of faults detected in every interval.
        time : array_like, optional, default=None
            Lengths of the intervals, defaults to unit lengths.

        Returns
        -------
        data : FaultData
            The fault data.
        """
        try:
            fault = ensure_integer_array(fault, ndim=1)
        except ValueError as e:
            raise DomainError(f"Invalid fault counts: {e}") from e
        if time is None:
            time = np.ones(len(fault))
        return FaultData(time, fault, np.zeros(len(fault), dtype=int))

    @property
    def time(self) -> np.ndarray:
        r""" Lengths of the observation intervals.

        :type: (K,) ndarray
        """
        return self._time

    @property
    def fault(self) -> np.ndarray:
        r""" Number of faults detected strictly inside of the intervals.

        :type: (K,) ndarray
        """
        return self._fault

    @property
    def type(self) -> np.ndarray:
        r""" Flags of faults detected exactly at the end of the intervals.

        :type: (K,) ndarray
        """
        return self._type

    @property
    def n_records(self) -> int:
        r""" Number of observation intervals. """
        return len(self._time)

    @property
    def total(self) -> int:
        r""" Total number of detected faults. """
        return int(self._fault.sum() + self._type.sum())

    @property
    def cumulative_time(self) -> np.ndarray:
        r""" Time points at which the intervals end. """
        return np.cumsum(self._time)

    @property
    def max_time(self) -> float:
        r""" End of the observation. """
        return float(self.cumulative_time[-1])

    @property
    def mean_time(self) -> float:
        r""" Mean detection time of the observed faults, faults inside of an interval counted at its midpoint. """
        if self.total == 0:
            raise DomainError("The fault data contains no detected fault.")
        end = self.cumulative_time
        mid = end - .5 * self._time
        return float((self._fault @ mid + self._type @ end) / self.total)

    @property
    def flags(self):
        r""" Flags of the underlying arrays, see :meth:`setflags`. """
        return self._time.flags

    def setflags(self, write=True):
        r""" Sets the writeable flags of the contained arrays. """
        for arr in (self._time, self._fault, self._type):
            arr.setflags(write=write)

    def __len__(self):
        return self.n_records

    def __repr__(self):
        return f"FaultData(n_records={self.n_records}, total={self.total}, max_time={self.max_time:g})"
