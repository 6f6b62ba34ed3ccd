"""
Row subsampling for stochastic gradient boosting (Friedman, 2002).
"""

import logging
from typing import Optional
import numpy as np

logger = logging.getLogger(__name__)


class RowSampler:
    """
    Draws in-sample row masks from a single seeded generator.

    The generator is created once and consumed sequentially, so the same
    seed always yields the same sequence of masks.

    Parameters
    ----------
    random_state : int, optional
        Seed for ``np.random.default_rng``.
    """

    def __init__(self, random_state: Optional[int] = None):
        self.random_state = random_state
        self.rng = np.random.default_rng(random_state)

    def sample(
        self,
        sample_size: int,
        candidate_indices: np.ndarray,
        total_row_count: int
    ) -> np.ndarray:
        """
        Mark ``sample_size`` randomly chosen candidates as in-sample.

        ``candidate_indices`` is shuffled in place and its first
        ``sample_size`` entries are set in a fresh all-False mask. Repeated
        calls keep shuffling the same array, so each draw depends on the
        previous permutation as well as the generator state.

        Parameters
        ----------
        sample_size : int
            Number of rows to select, at most ``len(candidate_indices)``.
        candidate_indices : np.ndarray of int
            Rows eligible for selection (modified in place).
        total_row_count : int
            Length of the returned mask.

        Returns
        -------
        in_sample : np.ndarray of bool, shape (total_row_count,)
        """
        sample_size = min(sample_size, len(candidate_indices))
        in_sample = np.zeros(total_row_count, dtype=bool)
        self.rng.shuffle(candidate_indices)
        in_sample[candidate_indices[:sample_size]] = True
        logger.debug(f"Sampled {sample_size}/{len(candidate_indices)} rows")
        return in_sample
