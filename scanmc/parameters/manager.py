"""
Parameter manager for handling scan and nuisance parameters.
"""

from typing import Any, Callable, Dict, List, Union

import yaml

from ..samplers.exceptions import ConfigurationError
from .priors import LogPrior, make_prior


class ParameterManager:
    """
    Ordered collection of the parameters of an analysis.

    Features:
    - Scan and nuisance parameter declarations
    - Prior distribution specification (flat, gaussian, log-gamma, discrete)
    - Range narrowing through ``n_sigmas``
    - YAML configuration support
    """

    def __init__(self):
        """Initialize parameter manager."""
        self.params = {}
        self.param_order = []

    def add_param(self,
                  name: str,
                  prior: Union[Dict[str, Any], LogPrior],
                  nuisance: bool = False) -> LogPrior:
        """
        Add a parameter to the manager.

        Args:
            name: Parameter name
            prior: Prior declaration dictionary or prior instance
            nuisance: Whether this is a nuisance parameter

        Returns:
            The prior assigned to the parameter
        """
        if name in self.params:
            raise ConfigurationError(
                f"Error in assigning prior distribution to '{name}'. "
                f"Perhaps '{name}' appears twice in the list of parameters?"
            )

        if not isinstance(prior, LogPrior):
            prior = make_prior(name, prior)
        elif prior.name != name:
            raise ConfigurationError(f"Prior for '{prior.name}' assigned to parameter '{name}'")

        self.params[name] = {'prior': prior, 'nuisance': bool(nuisance)}
        self.param_order.append(name)
        return prior

    def add_scan(self, name: str, prior: Union[Dict[str, Any], LogPrior]) -> LogPrior:
        return self.add_param(name, prior, nuisance=False)

    def add_nuisance(self, name: str, prior: Union[Dict[str, Any], LogPrior]) -> LogPrior:
        return self.add_param(name, prior, nuisance=True)

    def add_discrete(self, name: str, values) -> LogPrior:
        """Discrete parameters are nuisance parameters with a finite support."""
        return self.add_param(name, {'type': 'discrete', 'values': list(values)}, nuisance=True)

    @property
    def names(self) -> List[str]:
        return list(self.param_order)

    def __len__(self) -> int:
        return len(self.param_order)

    def __contains__(self, name: str) -> bool:
        return name in self.params

    def get_prior(self, name: str) -> LogPrior:
        if name not in self.params:
            raise ConfigurationError(f"Unknown parameter: {name}")
        return self.params[name]['prior']

    def get_priors(self) -> List[LogPrior]:
        return [self.params[name]['prior'] for name in self.param_order]

    def get_scan_params(self) -> List[str]:
        return [name for name in self.param_order if not self.params[name]['nuisance']]

    def get_nuisance_params(self) -> List[str]:
        return [name for name in self.param_order if self.params[name]['nuisance']]

    def build_posterior(self, log_likelihood: Callable):
        """
        Combine the declared priors with a log-likelihood.

        Args:
            log_likelihood: Callable mapping a parameter vector (ordered as
                ``self.names``) to a log-likelihood value

        Returns:
            Posterior evaluator
        """
        from ..samplers.posterior import Posterior

        if not self.param_order:
            raise ConfigurationError("At least one parameter must be declared")
        return Posterior(log_likelihood, self.get_priors())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'parameters': [
                {**self.params[name]['prior'].to_dict(), 'nuisance': self.params[name]['nuisance']}
                for name in self.param_order
            ]
        }

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ParameterManager':
        """
        Create a manager from a dictionary.

        Parameters are given as an ordered list, each entry holding the
        prior declaration plus ``name`` and an optional ``nuisance`` flag::

            {'parameters': [
                {'name': 'c9', 'type': 'flat', 'min': 0.0, 'max': 15.0},
                {'name': 'm_b', 'type': 'gaussian', 'lower': 4.14, 'central': 4.27,
                 'upper': 4.37, 'nuisance': True},
            ]}
        """
        manager = cls()
        for entry in config.get('parameters', []):
            entry = dict(entry)
            if 'name' not in entry:
                raise ConfigurationError(f"Parameter declaration without a name: {entry}")
            name = entry.pop('name')
            nuisance = entry.pop('nuisance', False)
            manager.add_param(name, entry, nuisance=nuisance)
        return manager

    def to_yaml(self, filename: str) -> None:
        """
        Save parameter configuration to YAML file.

        Args:
            filename: Output YAML file path
        """
        with open(filename, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_yaml(cls, filename: str) -> 'ParameterManager':
        """
        Load parameter configuration from YAML file.

        Args:
            filename: Input YAML file path

        Returns:
            ParameterManager instance
        """
        with open(filename, 'r') as f:
            config = yaml.safe_load(f) or {}
        return cls.from_dict(config)

    def get_summary_table(self) -> str:
        """
        Get a summary table of all parameters.

        Returns:
            Formatted parameter table string
        """
        lines = []
        lines.append("Parameter Summary:")
        lines.append("-" * 60)
        lines.append(f"{'Name':<20} {'Type':<10} {'Prior':<30}")
        lines.append("-" * 60)

        for name in self.param_order:
            info = self.params[name]
            prior = info['prior']
            param_type = "Nuisance" if info['nuisance'] else "Scan"

            if prior.kind == 'flat':
                prior_str = f"U({prior.minimum:.4g}, {prior.maximum:.4g})"
            elif prior.kind == 'discrete':
                prior_str = "{" + ", ".join(f"{v:.4g}" for v in prior.values) + "}"
            else:
                prior_str = (f"{prior.kind}({prior.lower:.4g}, {prior.central:.4g}, {prior.upper:.4g}) "
                             f"in [{prior.minimum:.4g}, {prior.maximum:.4g}]")

            lines.append(f"{name:<20} {param_type:<10} {prior_str:<30}")

        lines.append("-" * 60)
        lines.append(f"Scan parameters: {len(self.get_scan_params())}")
        lines.append(f"Nuisance parameters: {len(self.get_nuisance_params())}")

        return "\n".join(lines)
