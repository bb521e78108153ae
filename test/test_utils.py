import pytest  # noqa: F401
import logging
import numpy as np
import polars as pl

from temperature_kriging.io import get_recurse
from temperature_kriging.utils import (
    ColumnNotFoundError,
    adjust_small_negative,
    batched,
    check_cols,
    deg_to_km,
    find_nearest,
    init_logging,
    km_to_deg,
)


def test_nested_dict() -> None:
    test_dict = {
        "nested": {"a": 4, "nested_2": {"a": 6, "b": 3}},
        "a": 2,
        "b": 9,
        "empty": None,
    }

    assert get_recurse(test_dict, "c") is None
    assert get_recurse(test_dict, "a") == 2
    assert get_recurse(test_dict, "nested", "a") == 4
    assert get_recurse(test_dict, "nested", "b") is None
    assert get_recurse(test_dict, "nested", "b", default="DEFAULT") == "DEFAULT"
    assert get_recurse(test_dict, "nested", "nested_2", "a") == 6
    # Empty sections in YAML load as None
    assert get_recurse(test_dict, "empty", "a", default=1) == 1
    return None


def test_batched() -> None:
    assert list(batched(range(5), 2)) == [(0, 1), (2, 3), (4,)]
    assert list(batched([], 3)) == []
    with pytest.raises(ValueError):
        list(batched(range(5), 0))
    return None


def test_check_cols() -> None:
    df = pl.DataFrame({"lon": [0.0], "lat": [1.0]})
    check_cols(df, ["lon", "lat"])
    with pytest.raises(ColumnNotFoundError, match="value"):
        check_cols(df, ["lon", "value"])
    return None


def test_adjust_small_negative() -> None:
    arr = np.array([1.0, -1e-12, 0.0, 2.0])
    out = adjust_small_negative(arr)
    assert np.all(out >= 0)
    assert out[1] == 0.0
    # Input is not modified
    assert arr[1] < 0

    with pytest.warns(UserWarning):
        out = adjust_small_negative(np.array([1.0, -0.5]))
    assert np.all(out == [1.0, 0.0])
    return None


def test_find_nearest() -> None:
    idx, vals = find_nearest(np.arange(0, 10, 2.0), [3.1, 8.9, -4])
    assert idx == [2, 4, 0]
    assert np.allclose(vals, [4.0, 8.0, 0.0])
    return None


def test_deg_km() -> None:
    assert deg_to_km(1.0) == pytest.approx(111.12)
    assert km_to_deg(deg_to_km(2.5)) == pytest.approx(2.5)
    return None


def test_init_logging(tmp_path) -> None:
    log_file = tmp_path / "log.txt"
    init_logging(str(log_file), "warn")
    assert logging.getLogger().level == logging.WARNING
    with pytest.raises(ValueError):
        init_logging(None, "verbose")
    init_logging(None, "info")
    return None
