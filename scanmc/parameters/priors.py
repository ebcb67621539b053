"""
Prior distributions for scan and nuisance parameters.

Every prior owns a hard range; densities vanish outside of it and the
log-density is ``-inf`` there. Priors only ever get narrower: combining a
prior with a partition bound intersects the two ranges.
"""

from __future__ import annotations

import math
import sys
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional, Tuple

import numpy as np
from scipy import optimize, special

from ..samplers.exceptions import ConfigurationError


# Probability mass of a standard normal within one sigma of the mean
ONE_SIGMA = float(special.ndtr(1.0) - special.ndtr(-1.0))

# Log-Gamma shapes beyond this are indistinguishable from a Gaussian
_LOG_GAMMA_SHAPE_BOUNDS = (1e-2, 1e4)

# exp(y) overflows beyond this
_MAX_EXPONENT = math.log(sys.float_info.max)


class LogPrior(ABC):
    """
    Abstract prior over a single parameter.

    Parameters
    ----------
    name : str
        Name of the parameter this prior describes.
    minimum, maximum : float
        Hard range of the parameter.
    """

    kind = ""

    def __init__(self, name: str, minimum: float, maximum: float):
        self.name = name
        self.minimum = float(minimum)
        self.maximum = float(maximum)

    @property
    def range(self) -> Tuple[float, float]:
        return (self.minimum, self.maximum)

    def in_range(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum

    @abstractmethod
    def log_density(self, value: float) -> float:
        """Normalized log-density, ``-inf`` outside the support."""

    def density(self, value: float) -> float:
        return math.exp(self.log_density(value))

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> float:
        """Draw one value from the prior using ``rng``."""

    @abstractmethod
    def variance(self) -> float:
        """Variance of the prior, used to size the initial proposal."""

    @abstractmethod
    def narrowed(self, minimum: float, maximum: float) -> "LogPrior":
        """Copy of this prior restricted to the intersection with ``[minimum, maximum]``."""

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        pass

    def _check_range(self):
        if math.isnan(self.minimum) or math.isnan(self.maximum) or not self.minimum < self.maximum:
            raise ConfigurationError(
                f"Invalid range [{self.minimum}, {self.maximum}] for parameter '{self.name}'"
            )

    def _narrowed_range(self, minimum: float, maximum: float) -> Tuple[float, float]:
        lo = max(self.minimum, float(minimum))
        hi = min(self.maximum, float(maximum))
        if not lo < hi:
            raise ConfigurationError(
                f"Range [{minimum}, {maximum}] does not overlap the range "
                f"[{self.minimum}, {self.maximum}] of parameter '{self.name}'"
            )
        return lo, hi

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_dict()})"


class FlatPrior(LogPrior):
    """Uniform prior on a finite range."""

    kind = "flat"

    def __init__(self, name: str, minimum: float, maximum: float):
        super().__init__(name, minimum, maximum)
        self._check_range()
        if not (math.isfinite(self.minimum) and math.isfinite(self.maximum)):
            raise ConfigurationError(f"Flat prior for '{name}' needs a finite range")
        self._log_density = -math.log(self.maximum - self.minimum)

    def log_density(self, value: float) -> float:
        if not self.in_range(value):
            return -math.inf
        return self._log_density

    def sample(self, rng: np.random.Generator) -> float:
        return float(rng.uniform(self.minimum, self.maximum))

    def variance(self) -> float:
        return (self.maximum - self.minimum) ** 2 / 12.0

    def narrowed(self, minimum: float, maximum: float) -> "FlatPrior":
        return FlatPrior(self.name, *self._narrowed_range(minimum, maximum))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "name": self.name, "min": self.minimum, "max": self.maximum}


class GaussianPrior(LogPrior):
    """
    Asymmetric Gaussian prior described by its 68% interval.

    Below ``central`` the width is ``central - lower``, above it
    ``upper - central``. The two half-Gaussians join continuously at
    ``central`` and the density is truncated to the parameter range.
    """

    kind = "gaussian"

    def __init__(self, name: str, minimum: float, maximum: float,
                 lower: float, central: float, upper: float):
        super().__init__(name, minimum, maximum)
        self._check_range()
        self.lower = float(lower)
        self.central = float(central)
        self.upper = float(upper)
        if not self.lower < self.central < self.upper:
            raise ConfigurationError(
                f"Gaussian prior for '{name}' needs lower < central < upper, "
                f"got ({lower}, {central}, {upper})"
            )
        self.sigma_lower = self.central - self.lower
        self.sigma_upper = self.upper - self.central

        c = self.central
        self._left = (
            (min(self.minimum, c) - c) / self.sigma_lower,
            (min(self.maximum, c) - c) / self.sigma_lower,
        )
        self._right = (
            (max(self.minimum, c) - c) / self.sigma_upper,
            (max(self.maximum, c) - c) / self.sigma_upper,
        )
        mass_left = self.sigma_lower * float(special.ndtr(self._left[1]) - special.ndtr(self._left[0]))
        mass_right = self.sigma_upper * float(special.ndtr(self._right[1]) - special.ndtr(self._right[0]))
        total = mass_left + mass_right
        if total <= 0.0:
            raise ConfigurationError(f"Gaussian prior for '{name}' has no mass within its range")
        self._p_left = mass_left / total
        self._log_norm = math.log(math.sqrt(2.0 * math.pi) * total)

    def log_density(self, value: float) -> float:
        if not self.in_range(value):
            return -math.inf
        sigma = self.sigma_lower if value < self.central else self.sigma_upper
        z = (value - self.central) / sigma
        return -0.5 * z * z - self._log_norm

    def sample(self, rng: np.random.Generator) -> float:
        if rng.random() < self._p_left:
            (z_lo, z_hi), sigma = self._left, self.sigma_lower
        else:
            (z_lo, z_hi), sigma = self._right, self.sigma_upper
        u = rng.uniform(special.ndtr(z_lo), special.ndtr(z_hi))
        value = self.central + sigma * float(special.ndtri(u))
        return float(np.clip(value, self.minimum, self.maximum))

    def variance(self) -> float:
        var = (0.5 * (self.sigma_lower + self.sigma_upper)) ** 2
        if math.isfinite(self.maximum - self.minimum):
            var = min(var, (self.maximum - self.minimum) ** 2 / 12.0)
        return var

    def narrowed(self, minimum: float, maximum: float) -> "GaussianPrior":
        lo, hi = self._narrowed_range(minimum, maximum)
        return GaussianPrior(self.name, lo, hi, self.lower, self.central, self.upper)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind, "name": self.name, "min": self.minimum, "max": self.maximum,
            "lower": self.lower, "central": self.central, "upper": self.upper,
        }


@lru_cache(maxsize=None)
def _log_gamma_interval(shape: float) -> Tuple[float, float, float]:
    """
    Equal-density interval of the standard log-gamma distribution with
    one-sigma coverage.

    The standard log-gamma density is ``exp(shape * y - exp(y)) / Gamma(shape)``
    with its mode at ``log(shape)``.

    Returns
    -------
    left, right, mode : float
    """
    mode = math.log(shape)
    h_max = shape * mode - shape

    def h(y):
        return shape * y - math.exp(y)

    def endpoints(depth):
        level = h_max - depth
        step = 1.0
        while h(mode - step) > level:
            step *= 2.0
        left = optimize.brentq(lambda y: h(y) - level, mode - step, mode)
        step = 1.0
        while h(mode + step) > level:
            step *= 2.0
        right = optimize.brentq(lambda y: h(y) - level, mode, mode + step)
        return left, right

    def excess_coverage(depth):
        left, right = endpoints(depth)
        return float(special.gammainc(shape, math.exp(right)) - special.gammainc(shape, math.exp(left))) - ONE_SIGMA

    depth = optimize.brentq(excess_coverage, 1e-8, 50.0)
    left, right = endpoints(depth)
    return left, right, mode


def _log_gamma_asymmetry(shape: float) -> float:
    left, right, mode = _log_gamma_interval(shape)
    return (mode - left) / (right - mode)


class LogGammaPrior(LogPrior):
    """
    Skewed prior built from a scaled and shifted log-gamma distribution.

    The shape and scale are chosen such that the mode sits at ``central``
    and the equal-density interval ``[lower, upper]`` holds 68.27% of the
    probability. The longer side of the interval becomes the long tail.
    """

    kind = "log-gamma"

    def __init__(self, name: str, minimum: float, maximum: float,
                 lower: float, central: float, upper: float):
        super().__init__(name, minimum, maximum)
        self._check_range()
        self.lower = float(lower)
        self.central = float(central)
        self.upper = float(upper)
        if not self.lower < self.central < self.upper:
            raise ConfigurationError(
                f"Log-gamma prior for '{name}' needs lower < central < upper, "
                f"got ({lower}, {central}, {upper})"
            )
        dl = self.central - self.lower
        du = self.upper - self.central
        target = max(dl, du) / min(dl, du)

        lo_shape, hi_shape = _LOG_GAMMA_SHAPE_BOUNDS
        r_max = _log_gamma_asymmetry(lo_shape)
        r_min = _log_gamma_asymmetry(hi_shape)
        if not r_min < target < r_max:
            raise ConfigurationError(
                f"Interval ({lower}, {central}, {upper}) of '{name}' is too "
                f"{'symmetric' if target <= r_min else 'asymmetric'} for a log-gamma prior; "
                f"use a gaussian prior instead"
            )
        log_shape = optimize.brentq(
            lambda t: _log_gamma_asymmetry(math.exp(t)) - target,
            math.log(lo_shape), math.log(hi_shape),
        )
        self.shape = math.exp(log_shape)
        left, _, self._mode = _log_gamma_interval(self.shape)
        # Long lower side maps onto the long left tail of the standard distribution
        self._sign = 1.0 if dl > du else -1.0
        self.scale = max(dl, du) / (self._mode - left)

        y_bounds = sorted((self._to_standard(self.minimum), self._to_standard(self.maximum)))
        self._cdf_bounds = (self._cdf(y_bounds[0]), self._cdf(y_bounds[1]))
        mass = self._cdf_bounds[1] - self._cdf_bounds[0]
        if mass <= 0.0:
            raise ConfigurationError(f"Log-gamma prior for '{name}' has no mass within its range")
        self._log_norm = math.log(self.scale) + math.log(mass) + float(special.gammaln(self.shape))

    def _to_standard(self, value: float) -> float:
        return self._mode + self._sign * (value - self.central) / self.scale

    def _cdf(self, y: float) -> float:
        if y == -math.inf:
            return 0.0
        if y == math.inf:
            return 1.0
        return float(special.gammainc(self.shape, math.exp(y)))

    def log_density(self, value: float) -> float:
        if not self.in_range(value):
            return -math.inf
        y = self._to_standard(value)
        if y > _MAX_EXPONENT:
            return -math.inf
        return self.shape * y - math.exp(y) - self._log_norm

    def sample(self, rng: np.random.Generator) -> float:
        u = rng.uniform(*self._cdf_bounds)
        y = math.log(float(special.gammaincinv(self.shape, u)))
        value = self.central + self._sign * self.scale * (y - self._mode)
        return float(np.clip(value, self.minimum, self.maximum))

    def variance(self) -> float:
        var = self.scale ** 2 * float(special.polygamma(1, self.shape))
        if math.isfinite(self.maximum - self.minimum):
            var = min(var, (self.maximum - self.minimum) ** 2 / 12.0)
        return var

    def narrowed(self, minimum: float, maximum: float) -> "LogGammaPrior":
        lo, hi = self._narrowed_range(minimum, maximum)
        return LogGammaPrior(self.name, lo, hi, self.lower, self.central, self.upper)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind, "name": self.name, "min": self.minimum, "max": self.maximum,
            "lower": self.lower, "central": self.central, "upper": self.upper,
        }


class DiscretePrior(LogPrior):
    """Uniform prior over a finite set of values."""

    kind = "discrete"

    def __init__(self, name: str, values: Iterable[float]):
        support = tuple(sorted({float(v) for v in values}))
        if not support:
            raise ConfigurationError(f"Discrete prior for '{name}' needs at least one value")
        if not all(math.isfinite(v) for v in support):
            raise ConfigurationError(f"Discrete prior for '{name}' has non-finite values")
        super().__init__(name, support[0], support[-1])
        self.values = support
        self._members = frozenset(support)
        self._log_density = -math.log(len(support))

    def log_density(self, value: float) -> float:
        if float(value) not in self._members:
            return -math.inf
        return self._log_density

    def sample(self, rng: np.random.Generator) -> float:
        return self.values[int(rng.integers(len(self.values)))]

    def variance(self) -> float:
        return float(np.var(self.values))

    def narrowed(self, minimum: float, maximum: float) -> "DiscretePrior":
        kept = [v for v in self.values if minimum <= v <= maximum]
        if not kept:
            raise ConfigurationError(
                f"Range [{minimum}, {maximum}] excludes every value of discrete parameter '{self.name}'"
            )
        return DiscretePrior(self.name, kept)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "name": self.name, "values": list(self.values)}


def make_prior(name: str, spec: Dict[str, Any]) -> LogPrior:
    """
    Build a prior from a declaration dictionary.

    Parameters
    ----------
    name : str
        Parameter name.
    spec : dict
        ``{"type": "flat", "min": ..., "max": ...}``,
        ``{"type": "gaussian" | "log-gamma", "lower": ..., "central": ...,
        "upper": ..., "min": ..., "max": ..., "n_sigmas": ...}`` or
        ``{"type": "discrete", "values": [...]}``. For the Gaussian kinds the
        hard range defaults to the real line and ``n_sigmas`` narrows it to
        ``central -/+ n_sigmas`` widths, staying within the hard range.

    Returns
    -------
    LogPrior
    """
    if not isinstance(spec, dict) or "type" not in spec:
        raise ConfigurationError(f"Prior for '{name}' must be a dictionary with a 'type' key")

    kind = str(spec["type"]).lower().replace("_", "-")
    n_sigmas: Optional[float] = spec.get("n_sigmas")

    try:
        if kind == "flat":
            if n_sigmas is not None:
                raise ConfigurationError(f"Can't specify number of sigmas for flat prior of '{name}'")
            return FlatPrior(name, spec["min"], spec["max"])

        if kind == "discrete":
            return DiscretePrior(name, spec["values"])

        if kind in ("gaussian", "log-gamma"):
            lower, central, upper = float(spec["lower"]), float(spec["central"]), float(spec["upper"])
            minimum = float(spec.get("min", -math.inf))
            maximum = float(spec.get("max", math.inf))
            if n_sigmas is not None:
                n_sigmas = float(n_sigmas)
                if not 0.0 < n_sigmas <= 10.0:
                    raise ConfigurationError(f"Number of sigmas for '{name}' must lie in (0, 10], got {n_sigmas}")
                minimum = max(minimum, central - n_sigmas * (central - lower))
                maximum = min(maximum, central + n_sigmas * (upper - central))
            cls = GaussianPrior if kind == "gaussian" else LogGammaPrior
            return cls(name, minimum, maximum, lower, central, upper)
    except KeyError as e:
        raise ConfigurationError(f"Prior '{kind}' for '{name}' missing required key {e}") from e

    raise ConfigurationError(f"Unknown prior distribution '{spec['type']}' for '{name}'")
