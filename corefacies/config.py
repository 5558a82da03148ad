"""
Run configuration for downcore facies clustering.

A PipelineConfig describes one complete run (input columns, robust PCA,
mixture and Ward clustering grids, worker pool). ParallelConfig is the small
piece of it that is handed to the parallel driver so the driver never reads
global state.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional

from corefacies.errors import InputError

BACKENDS = ('process', 'thread')


@dataclass(frozen=True)
class ParallelConfig:
    """Worker pool settings for the mixture-model fan-out.

    Args:
        n_workers: Number of iteration shares (and independent random streams).
        seed: Root entropy for the per-worker streams. None draws fresh entropy.
        backend: 'process' for a process pool, 'thread' for a thread pool.
    """
    n_workers: int = 4
    seed: Optional[int] = None
    backend: str = 'process'

    def __post_init__(self):
        if self.n_workers < 1:
            raise InputError(f"n_workers must be >= 1, got {self.n_workers}")
        if self.backend not in BACKENDS:
            raise InputError(f"backend must be one of {BACKENDS}, got {self.backend!r}")


@dataclass
class PipelineConfig:
    run_id: str = 'run'
    output_dir: str = 'corefacies_outputs'

    # Input table
    data_path: Optional[str] = None
    depth_column: str = 'Depth CSF-A (m)'
    lithology_column: str = 'Principal'
    composition_columns: List[str] = field(default_factory=list)
    physical_columns: List[str] = field(default_factory=list)

    # Robust PCA
    alpha: float = 0.98
    mcd_random_state: Optional[int] = 0
    mcd_reweighted: bool = True
    pc_counts: List[int] = field(default_factory=lambda: [2, 3])

    # Mixture models
    pdf_counts: List[int] = field(default_factory=lambda: [2, 3, 4, 5])
    n_iter: int = 1000
    subsample_fraction: float = 0.75
    max_iter: int = 100
    reg_covar: float = 0.0

    # Ward clustering
    hierarchical_counts: List[int] = field(default_factory=lambda: [2, 3, 4, 5])

    # Worker pool
    n_workers: int = 4
    seed: Optional[int] = None
    backend: str = 'process'

    make_plots: bool = True

    @classmethod
    def from_json(cls, path) -> 'PipelineConfig':
        """Load a configuration from a JSON file; unknown keys are an error."""
        with open(path, 'r') as f:
            raw = json.load(f)
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(raw) - known)
        if unknown:
            raise InputError(f"Unknown configuration keys in {path}: {unknown}")
        return cls(**raw)

    def to_json(self, path):
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    @property
    def feature_columns(self) -> List[str]:
        return list(self.composition_columns) + list(self.physical_columns)

    @property
    def parallel(self) -> ParallelConfig:
        return ParallelConfig(n_workers=self.n_workers, seed=self.seed, backend=self.backend)

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)

    def validate(self):
        """Check value ranges before any data is touched."""
        if not 0.0 < self.alpha < 1.0:
            raise InputError(f"alpha must lie in (0, 1), got {self.alpha}")
        if not 0.0 < self.subsample_fraction <= 1.0:
            raise InputError(f"subsample_fraction must lie in (0, 1], got {self.subsample_fraction}")
        if self.n_iter < 1:
            raise InputError(f"n_iter must be >= 1, got {self.n_iter}")
        if self.max_iter < 1:
            raise InputError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.reg_covar < 0:
            raise InputError(f"reg_covar must be >= 0, got {self.reg_covar}")
        if not self.feature_columns:
            raise InputError("At least one composition or physical column is required")
        if len(self.composition_columns) == 1:
            raise InputError("ILR needs at least two composition columns")
        if any(n < 1 for n in self.pc_counts):
            raise InputError(f"pc_counts must be positive, got {self.pc_counts}")
        if any(k < 1 for k in self.pdf_counts):
            raise InputError(f"pdf_counts must be positive, got {self.pdf_counts}")
        if any(k < 1 for k in self.hierarchical_counts):
            raise InputError(f"hierarchical_counts must be positive, got {self.hierarchical_counts}")
        # ParallelConfig checks workers and backend
        self.parallel
        return self
