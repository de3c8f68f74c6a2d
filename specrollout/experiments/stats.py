"""Summary statistics and significance testing for experiment metrics.

Samples are grouped by variant, summarized, and the two highest-mean
variants are compared with Welch's t-test. The highest-mean variant is the
comparison baseline regardless of which variant is the real control, and
only the top two variants are tested for significance.

The p-value uses the Student's t distribution through the regularized
incomplete beta function, evaluated with a continued fraction.
"""

import math
from collections import defaultdict
from collections.abc import Iterable, Sequence

from specrollout.experiments.models import (
    MetricSample,
    MetricSummary,
    VariantMetricSummary,
)

DEFAULT_SIGNIFICANCE_LEVEL = 0.05

_BETACF_MAX_ITERATIONS = 200
_BETACF_EPSILON = 3e-14
_FPMIN = 1e-300


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _sample_variance(values: Sequence[float], mean: float) -> float:
    """Bessel-corrected variance, 0 for fewer than two values."""
    n = len(values)
    if n <= 1:
        return 0.0
    return sum((x - mean) ** 2 for x in values) / (n - 1)


def _beta_continued_fraction(a: float, b: float, x: float) -> float:
    """Continued fraction for the incomplete beta function (modified Lentz)."""
    qab = a + b
    qap = a + 1.0
    qam = a - 1.0
    c = 1.0
    d = 1.0 - qab * x / qap
    if abs(d) < _FPMIN:
        d = _FPMIN
    d = 1.0 / d
    h = d

    for m in range(1, _BETACF_MAX_ITERATIONS + 1):
        m2 = 2 * m
        aa = m * (b - m) * x / ((qam + m2) * (a + m2))
        d = 1.0 + aa * d
        if abs(d) < _FPMIN:
            d = _FPMIN
        c = 1.0 + aa / c
        if abs(c) < _FPMIN:
            c = _FPMIN
        d = 1.0 / d
        h *= d * c

        aa = -(a + m) * (qab + m) * x / ((a + m2) * (qap + m2))
        d = 1.0 + aa * d
        if abs(d) < _FPMIN:
            d = _FPMIN
        c = 1.0 + aa / c
        if abs(c) < _FPMIN:
            c = _FPMIN
        d = 1.0 / d
        delta = d * c
        h *= delta
        if abs(delta - 1.0) < _BETACF_EPSILON:
            break

    return h


def regularized_incomplete_beta(x: float, a: float, b: float) -> float:
    """Regularized incomplete beta function I_x(a, b) for a, b > 0."""
    if x <= 0.0:
        return 0.0
    if x >= 1.0:
        return 1.0

    log_front = (
        math.lgamma(a + b)
        - math.lgamma(a)
        - math.lgamma(b)
        + a * math.log(x)
        + b * math.log1p(-x)
    )
    front = math.exp(log_front)

    # The continued fraction converges quickly only below this point;
    # use the symmetry I_x(a, b) = 1 - I_{1-x}(b, a) above it.
    if x < (a + 1.0) / (a + b + 2.0):
        return front * _beta_continued_fraction(a, b, x) / a
    return 1.0 - front * _beta_continued_fraction(b, a, 1.0 - x) / b


def students_t_two_sided_p(t_stat: float, df: float) -> float:
    """Two-sided p-value of a t statistic with ``df`` degrees of freedom."""
    if not math.isfinite(df) or df <= 0:
        return 1.0
    if math.isnan(t_stat):
        return 1.0
    if math.isinf(t_stat):
        return 0.0
    x = df / (df + t_stat * t_stat)
    p_value = regularized_incomplete_beta(x, df / 2.0, 0.5)
    return min(1.0, max(0.0, p_value))


def welchs_t_test(
    mean1: float,
    var1: float,
    n1: int,
    mean2: float,
    var2: float,
    n2: int,
) -> tuple[float, float, float]:
    """Perform Welch's t-test for two samples with unequal variances.

    Degenerate inputs (fewer than two observations in a group, zero
    standard error, or an undefined degrees-of-freedom estimate) are
    reported as not significant rather than raising.

    Args:
        mean1: Mean of first sample.
        var1: Sample variance of first sample.
        n1: Size of first sample.
        mean2: Mean of second sample.
        var2: Sample variance of second sample.
        n2: Size of second sample.

    Returns:
        Tuple of (t_statistic, degrees_of_freedom, p_value).
    """
    if n1 < 2 or n2 < 2:
        return (0.0, 0.0, 1.0)

    se1 = var1 / n1
    se2 = var2 / n2
    se_sum = se1 + se2
    if se_sum <= 0 or not math.isfinite(se_sum):
        return (0.0, 0.0, 1.0)

    t_stat = abs(mean1 - mean2) / math.sqrt(se_sum)

    denominator = (se1**2 / (n1 - 1)) + (se2**2 / (n2 - 1))
    if denominator <= 0:
        return (t_stat, 0.0, 1.0)
    df = se_sum**2 / denominator
    if not math.isfinite(df):
        return (t_stat, df, 1.0)

    return (t_stat, df, students_t_two_sided_p(t_stat, df))


class StatsEngine:
    """Summarizes metric samples per variant and tests for a winner."""

    def __init__(self, significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL) -> None:
        """Initialize the engine.

        Args:
            significance_level: p-value below which the top variant wins.
        """
        self.significance_level = significance_level

    def summarize(self, samples: Iterable[MetricSample], metric: str) -> MetricSummary:
        """Summarize one metric across variants.

        Args:
            samples: Samples of any metric; only ``metric`` is considered.
            metric: Metric name to summarize.

        Returns:
            Summaries sorted by mean descending, with ``winner`` and
            ``p_value`` when at least two variants have data.
        """
        grouped: dict[str, list[float]] = defaultdict(list)
        for sample in samples:
            if sample.metric == metric:
                grouped[sample.variant_id].append(sample.value)

        summaries: list[VariantMetricSummary] = []
        for variant_id, values in grouped.items():
            mean = _mean(values)
            summaries.append(
                VariantMetricSummary(
                    variant_id=variant_id,
                    count=len(values),
                    mean=mean,
                    variance=_sample_variance(values, mean),
                )
            )
        summaries.sort(key=lambda s: s.mean, reverse=True)

        if not summaries:
            return MetricSummary(metric=metric)

        top_mean = summaries[0].mean
        baseline = top_mean if top_mean != 0 else 1.0
        for summary in summaries:
            summary.improvement = (summary.mean - top_mean) / baseline

        if len(summaries) < 2:
            return MetricSummary(metric=metric, summaries=summaries)

        top, runner_up = summaries[0], summaries[1]
        _, _, p_value = welchs_t_test(
            top.mean,
            top.variance,
            top.count,
            runner_up.mean,
            runner_up.variance,
            runner_up.count,
        )
        winner = top.variant_id if p_value < self.significance_level else None

        return MetricSummary(
            metric=metric,
            summaries=summaries,
            winner=winner,
            p_value=p_value,
        )
