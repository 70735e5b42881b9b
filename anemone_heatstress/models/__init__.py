"""Statistical models fitted per dataset."""

from .anova import (
    add_effect_sizes,
    compact_letter_display,
    mixed_anova_timecourse,
    mixed_model,
    per_timepoint_tests,
    tukey_groups,
    twoway_anova,
)
from .assumptions import (
    apply_transform,
    levene_test,
    normality_by_group,
    select_transformation,
    variance_overview,
)
from .binary import fed_logistic
from .gamlss import (
    LocationScaleFit,
    fit_beta_regression,
    fit_distributions,
    fit_location_scale,
    select_family,
    time_term,
)
from .ordinal import CumulativeLinkFit, fit_cumulative_link, per_timepoint_rank_tests

__all__ = [
    "CumulativeLinkFit",
    "LocationScaleFit",
    "add_effect_sizes",
    "apply_transform",
    "compact_letter_display",
    "fed_logistic",
    "fit_beta_regression",
    "fit_cumulative_link",
    "fit_distributions",
    "fit_location_scale",
    "levene_test",
    "mixed_anova_timecourse",
    "mixed_model",
    "normality_by_group",
    "per_timepoint_rank_tests",
    "per_timepoint_tests",
    "select_family",
    "select_transformation",
    "time_term",
    "tukey_groups",
    "twoway_anova",
    "variance_overview",
]
