"""
pytest configuration and shared fixtures.
"""

import textwrap

import numpy as np
import pytest


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def mouse_tsv(tmp_path):
    """Small tab-separated mouse-model file, two treatment arms.

    The status column uses a "<code>:<label>" convention.
    """
    content = textwrap.dedent("""\
        Mouse ID\ttime\tcensor\tgroup\tWeight (g)
        m01\t12\t1:dead\tIsotype\t20.1
        m02\t14\t1:dead\tIsotype\t19.5
        m03\t15\t1:dead\tIsotype\t21.0
        m04\t17\t1:dead\tIsotype\t20.4
        m05\t19\t1:dead\tIsotype\t18.9
        m06\t21\t0:alive\tIsotype\t22.3
        m07\t18\t1:dead\tICB\t20.0
        m08\t22\t1:dead\tICB\t21.7
        m09\t27\t1:dead\tICB\t19.8
        m10\t31\t0:alive\tICB\t20.6
        m11\t35\t0:alive\tICB\t18.8
        m12\t35\t0:alive\tICB\t21.2
        """)
    path = tmp_path / "mice.txt"
    path.write_text(content)
    return path


@pytest.fixture
def synthetic_cohort(rng):
    """Two-arm exponential survival data with a known hazard ratio of 2.

    Returns time, event, x (1 = higher-hazard arm).
    """
    n = 400
    x = np.repeat([0.0, 1.0], n // 2)
    rate = 0.1 * np.exp(np.log(2.0) * x)
    event_time = rng.exponential(1.0 / rate)
    censor_time = rng.uniform(0, 30, n)
    time = np.minimum(event_time, censor_time)
    event = (event_time <= censor_time).astype(np.float64)
    return time, event, x
