"""Shared fixtures for the delimitation test suite."""

import logging
import pytest
import numpy as np
import pandas as pd

from somdelim.config import DelimitationConfig, reset_delimitation_config
from somdelim.infrastructure.logging import (
    experiment_context, node_context, stage_context, replicate_context
)


def make_structured_genotypes(n_per_group=(20, 15, 15), n_loci=30, seed=42, noise=0.1):
    """Genotype-like matrix with values in {0, 0.5, 1} and clear group structure."""
    rng = np.random.default_rng(seed)
    blocks = []
    for g, n in enumerate(n_per_group):
        centre = rng.choice([0.0, 0.5, 1.0], size=n_loci)
        block = np.tile(centre, (n, 1))
        flip = rng.random(block.shape) < noise
        block[flip] = rng.choice([0.0, 0.5, 1.0], size=flip.sum())
        blocks.append(block)
    return np.vstack(blocks)


@pytest.fixture
def genotypes():
    """50 x 30 genotype matrix with three groups."""
    return make_structured_genotypes()


@pytest.fixture
def group_labels():
    """True group membership matching ``genotypes``."""
    return np.repeat([1, 2, 3], [20, 15, 15])


@pytest.fixture
def genotype_frame(genotypes):
    """Genotypes as a DataFrame indexed by individual."""
    return pd.DataFrame(
        genotypes,
        index=[f"ind_{i + 1}" for i in range(genotypes.shape[0])],
        columns=[f"locus_{j + 1}" for j in range(genotypes.shape[1])]
    )


@pytest.fixture
def environment_frame(genotype_frame, group_labels):
    """Environmental layer on an arbitrary scale, aligned with the genotypes."""
    rng = np.random.default_rng(7)
    values = np.column_stack([
        group_labels * 10.0 + rng.normal(0, 1, len(group_labels)),
        group_labels * -3.0 + rng.normal(0, 0.5, len(group_labels)),
        rng.normal(100, 5, len(group_labels))
    ])
    return pd.DataFrame(values, index=genotype_frame.index,
                        columns=['temperature', 'precipitation', 'elevation'])


@pytest.fixture
def fast_config():
    """Small configuration that trains in well under a second per replicate."""
    return DelimitationConfig(
        n_steps=5,
        n_replicates=3,
        max_k=4,
        kmeans_n_init=2,
        kmeans_max_iter=100,
        random_seed=1
    )


@pytest.fixture(autouse=True)
def clean_logging_context():
    """Reset context variables and the shared configuration around each test."""
    yield
    experiment_context.set(None)
    node_context.set(None)
    stage_context.set(None)
    replicate_context.set(None)
    reset_delimitation_config()


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo handler changes made by setup_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
