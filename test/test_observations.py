import pytest  # noqa: F401
import numpy as np
import polars as pl

from temperature_kriging.errors import MissingCovariate
from temperature_kriging.grid import (
    CovariateGrid,
    assign_to_grid,
    grid_from_resolution,
)
from temperature_kriging.observations import (
    CovariateSubstitution,
    attach_residuals,
    complete_cases,
    extract_covariates,
    split_validation,
    stratum_view,
    substitute_missing,
)


def stations() -> pl.DataFrame:
    return pl.DataFrame(
        {
            "id": ["s1", "s2", "s3", "s4", "s5"],
            "lon": [10.2, 11.0, 12.9, 13.1, 30.0],
            "lat": [0.1, 1.0, 2.2, 0.0, 1.0],
            "t1970w": [1.0, None, 3.0, 4.0, 5.0],
            "t2010w": [2.0, 3.0, float("nan"), 5.0, 6.0],
        }
    )


def test_complete_cases() -> None:
    df = stations()

    out = complete_cases(df)
    assert out.get_column("id").to_list() == ["s1", "s4", "s5"]

    out = complete_cases(df, ["id", "lon", "lat", "t1970w"])
    assert out.height == 4


def test_split_validation() -> None:
    df = pl.DataFrame({"id": range(100), "value": np.arange(100.0)})

    fit, holdout = split_validation(df, 0.05, seed=1)
    assert holdout.height == 5
    assert fit.height == 95
    assert set(fit["id"]).isdisjoint(set(holdout["id"]))

    # Same seed, same split
    _, again = split_validation(df, 0.05, seed=1)
    assert again["id"].to_list() == holdout["id"].to_list()

    _, none = split_validation(df.head(10), 0.05, seed=1)
    assert none.height == 0

    with pytest.raises(ValueError):
        split_validation(df, 1.0)


def test_stratum_view() -> None:
    view = stratum_view(stations(), "t2010w")
    assert view.columns == ["id", "lon", "lat", "value"]
    assert view.schema["value"] == pl.Float64
    assert view.get_column("value")[0] == 2.0


def test_substitute_missing() -> None:
    values = np.array([[1.0, np.nan], [np.nan, np.nan], [3.0, 4.0]])

    with pytest.warns(MissingCovariate):
        out, counts = substitute_missing(values, ["elev", "cont"])

    assert counts.counts == {"elev": 1, "cont": 2}
    assert counts.total == 3
    assert np.all(out[1] == 0.0)
    # Input is not modified
    assert np.isnan(values[0, 1])

    out, counts = substitute_missing(values[2:], ["elev", "cont"])
    assert counts.total == 0

    combined = CovariateSubstitution({"elev": 1}) + CovariateSubstitution(
        {"elev": 2, "cont": 1}
    )
    assert combined.counts == {"elev": 3, "cont": 1}


def test_extract_covariates() -> None:
    grid = grid_from_resolution(1, [(0, 3), (10, 14)], ["lat", "lon"])
    cgrid = CovariateGrid.from_layers(
        {"elev": assign_to_grid(np.arange(12.0), grid)}
    )

    with pytest.warns(MissingCovariate):
        out, counts = extract_covariates(stations(), cgrid, ["elev"])

    # s2 is at (11, 1), s5 is outside of the grid
    assert out.get_column("elev").to_list() == [0.0, 5.0, 11.0, 3.0, 0.0]
    assert counts.counts == {"elev": 1}


def test_attach_residuals() -> None:
    df = pl.DataFrame({"value": [2.0, 4.0]})
    out = attach_residuals(df, np.array([1.0, -1.0]))
    assert out.get_column("residual").to_list() == [1.0, -1.0]
    assert out.get_column("relative_residual").to_list() == [0.5, -0.25]

    with pytest.raises(ValueError):
        attach_residuals(df, np.ones(3))
