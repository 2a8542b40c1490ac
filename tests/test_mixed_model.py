import numpy as np
import pytest
from scipy import stats

from analysis_pipeline import compute_distances, summarize_distances
from mixed_model import (
    _single_step_pvalues,
    _term_columns,
    anova_table,
    build_formula,
    fit_mixed_model,
    fit_summary,
    method_contrasts,
    residual_normality,
)


@pytest.fixture
def summary(positions):
    return summarize_distances(compute_distances(positions))


@pytest.fixture
def model(summary):
    return fit_mixed_model(summary)


def test_build_formula_full(summary):
    assert build_formula(summary) == "Distance ~ Method + Marker + Group"


def test_build_formula_drops_single_level_factor(summary):
    one_group = summary[summary["Group"] == "A"]
    assert build_formula(one_group) == "Distance ~ Method + Marker"


def test_fit_uses_reml_and_subject_groups(model):
    info = fit_summary(model)
    assert info["reml"] is True
    assert info["n_subjects"] == 8
    assert info["n_obs"] == 8 * 2 * 3
    assert info["residual_variance"] > 0


def test_ml_fit(summary):
    info = fit_summary(fit_mixed_model(summary, reml=False))
    assert info["reml"] is False


def test_residual_normality(model):
    result = residual_normality(model)
    assert 0.0 < result["statistic"] <= 1.0
    assert 0.0 <= result["p_value"] <= 1.0
    assert result["n"] == 48


def test_anova_table(model):
    table = anova_table(model)
    assert list(table.index) == ["Method", "Marker", "Group"]
    assert table.loc["Method", "NumDF"] == 2
    assert table.loc["Marker", "NumDF"] == 1
    assert table.loc["Group", "NumDF"] == 1
    assert (table["F_value"] >= 0).all()
    assert table["p_value"].between(0, 1).all()
    # Simulated motion differs strongly between methods
    assert table.loc["Method", "p_value"] < 0.05


def test_method_contrasts_cover_all_pairs(model):
    table = method_contrasts(model)
    assert len(table) == 3
    pairs = {frozenset(label.split(" - ")) for label in table.index}
    assert pairs == {
        frozenset({"MC-MoCo", "MCFLIRT"}),
        frozenset({"MC-MoCo", "Pre-MoCo"}),
        frozenset({"MCFLIRT", "Pre-MoCo"}),
    }
    assert list(table.index) == [
        "MCFLIRT - Pre-MoCo",
        "MC-MoCo - Pre-MoCo",
        "MC-MoCo - MCFLIRT",
    ]


def test_method_contrast_estimates_match_coefficients(model):
    table = method_contrasts(model)
    fe = model.fe_params
    assert table.loc["MCFLIRT - Pre-MoCo", "Estimate"] == pytest.approx(fe["Method[T.MCFLIRT]"])
    assert table.loc["MC-MoCo - MCFLIRT", "Estimate"] == pytest.approx(
        fe["Method[T.MC-MoCo]"] - fe["Method[T.MCFLIRT]"]
    )
    assert np.allclose(table["z_value"], table["Estimate"] / table["Std_Error"])
    assert table.loc["MC-MoCo - Pre-MoCo", "Estimate"] < 0


def test_single_step_adjustment(model):
    table = method_contrasts(model, adjust="single-step")
    assert (table["p_value_adj"] >= table["p_value_raw"]).all()
    assert table["p_value_adj"].between(0, 1).all()
    # Single-step is never more conservative than Bonferroni
    bonferroni = np.minimum(table["p_value_raw"] * 3, 1.0)
    assert (table["p_value_adj"] <= bonferroni + 1e-3).all()
    assert table.loc["MC-MoCo - Pre-MoCo", "Significant"]


def test_holm_adjustment(model):
    table = method_contrasts(model, adjust="holm", alpha=0.01)
    assert (table["p_value_adj"] >= table["p_value_raw"]).all()
    assert table["Significant"].tolist() == (table["p_value_adj"] < 0.01).tolist()


def test_level_order_changes_labels_not_pairs(summary):
    reordered = summary.copy()
    reordered["Method"] = reordered["Method"].cat.reorder_categories(["MC-MoCo", "MCFLIRT", "Pre-MoCo"])
    table = method_contrasts(fit_mixed_model(reordered))
    assert list(table.index) == [
        "MCFLIRT - MC-MoCo",
        "Pre-MoCo - MC-MoCo",
        "Pre-MoCo - MCFLIRT",
    ]
    original = method_contrasts(fit_mixed_model(summary))
    assert table.loc["Pre-MoCo - MC-MoCo", "Estimate"] == pytest.approx(
        -original.loc["MC-MoCo - Pre-MoCo", "Estimate"], rel=1e-3, abs=1e-4
    )


def _balanced_pairwise_corr(n_levels):
    # Pairwise differences of independent, equal-variance level means
    means = np.eye(n_levels)
    rows = [means[j] - means[i] for i in range(n_levels) for j in range(i + 1, n_levels)]
    contrasts = np.vstack(rows)
    return contrasts @ contrasts.T / 2.0


def test_balanced_pairwise_corr_three_levels():
    expected = np.array([[1.0, 0.5, -0.5], [0.5, 1.0, 0.5], [-0.5, 0.5, 1.0]])
    assert np.allclose(_balanced_pairwise_corr(3), expected)


@pytest.mark.parametrize("z", [2.5, 3.0, 3.5])
def test_single_step_matches_tukey_three_levels(z):
    corr = _balanced_pairwise_corr(3)
    adjusted = _single_step_pvalues(np.array([z, 0.0, 0.0]), corr)[0]
    expected = stats.studentized_range.sf(z * np.sqrt(2), 3, 1e6)
    assert adjusted == pytest.approx(expected, rel=0.02)


def test_single_step_matches_tukey_four_levels():
    corr = _balanced_pairwise_corr(4)
    z = np.array([3.0] + [0.0] * 5)
    adjusted = _single_step_pvalues(z, corr)[0]
    expected = stats.studentized_range.sf(3.0 * np.sqrt(2), 4, 1e6)
    assert adjusted == pytest.approx(expected, rel=0.05)


def test_single_step_single_contrast_is_two_sided_normal():
    adjusted = _single_step_pvalues(np.array([1.96]), np.array([[1.0]]))
    assert adjusted[0] == pytest.approx(2 * stats.norm.sf(1.96), rel=1e-6)


def test_term_columns_follow_exog_names(model):
    columns = _term_columns(model)
    assert list(columns) == ["Method", "Marker", "Group"]
    names = list(model.model.exog_names)
    assert [names[i] for i in columns["Method"]] == ["Method[T.MCFLIRT]", "Method[T.MC-MoCo]"]
    assert len(columns["Marker"]) == 1
    assert len(columns["Group"]) == 1


def test_fit_records_method_levels(summary):
    subset = summary[summary["Method"] != "MCFLIRT"]
    model = fit_mixed_model(subset)
    assert model.model.method_levels == ["Pre-MoCo", "MC-MoCo"]
    table = method_contrasts(model)
    assert list(table.index) == ["MC-MoCo - Pre-MoCo"]


def test_string_method_column_uses_sorted_levels(summary):
    plain = summary.copy()
    plain["Method"] = plain["Method"].astype(str)
    model = fit_mixed_model(plain)
    assert model.model.method_levels == ["MC-MoCo", "MCFLIRT", "Pre-MoCo"]
    assert len(method_contrasts(model)) == 3
