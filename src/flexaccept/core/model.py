"""Model containers for the Krinsky-Robb simulation pipeline.

This module provides the immutable value objects passed between pipeline
stages. There is no "currently loaded model": every stage receives the
ModelArtifact it operates on as an explicit argument.

    - PointEstimate: coefficient vector b and covariance V of a fitted model
    - ModelSpecification: which attributes enter utility and which of them
      carry a normally distributed random coefficient
    - ModelArtifact: a specification frozen at one realized coefficient
      vector (the point estimate or a replicate draw)

Parameter vector layout:
    One mean per attribute, in attribute order. Then, for the random
    attributes, either one standard deviation each (uncorrelated) or the
    lower-triangular Cholesky factor of their covariance in column-major
    vech order, l11, l21, ..., lK1, l22, l32, ..., lKK (correlated).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from flexaccept.core.exceptions import (
    DimensionError,
    NaNInfError,
    SpecificationMismatchError,
)
from flexaccept.core.types import VALIDATED_INDEX


def _frozen_array(values: Any, name: str) -> NDArray[np.float64]:
    """Copy to a read-only float64 array, rejecting NaN/Inf."""
    arr = np.array(values, dtype=np.float64, copy=True)
    if not np.all(np.isfinite(arr)):
        n_bad = int(np.sum(~np.isfinite(arr)))
        raise NaNInfError(f"{name} contains {n_bad} NaN/Inf values")
    arr.setflags(write=False)
    return arr


# =============================================================================
# MODEL SPECIFICATION
# =============================================================================


@dataclass(frozen=True)
class ModelSpecification:
    """
    Utility specification of a mixed-logit model.

    Attributes:
        attributes: Ordered attribute names entering the utility of every
            alternative (an alternative-specific constant is just an
            attribute column that is 1 on the contract row).
        random: Subset of attributes with normally distributed coefficients.
            Listed in attribute order.
        correlated: Whether random coefficients have a full covariance
            (Cholesky parameters) or independent standard deviations.

    Example:
        >>> spec = ModelSpecification(
        ...     attributes=("contract", "range_km", "compensation"),
        ...     random=("contract", "range_km"),
        ...     correlated=True,
        ... )
        >>> spec.n_parameters
        6
    """

    attributes: tuple[str, ...]
    random: tuple[str, ...] = ()
    correlated: bool = False

    def __post_init__(self) -> None:
        attributes = tuple(str(a) for a in self.attributes)
        requested = {str(r) for r in self.random}
        object.__setattr__(self, "attributes", attributes)

        if not attributes:
            raise SpecificationMismatchError("Model specification has no attributes")
        if len(set(attributes)) != len(attributes):
            raise SpecificationMismatchError(
                f"Duplicate attribute names in specification: {list(attributes)}"
            )
        unknown = sorted(requested - set(attributes))
        if unknown:
            raise SpecificationMismatchError(
                f"Random coefficients {unknown} are not among the attributes "
                f"{list(attributes)}"
            )
        # Keep random attributes in attribute order so parameter layout is stable
        object.__setattr__(
            self, "random", tuple(a for a in attributes if a in requested)
        )

    @property
    def n_attributes(self) -> int:
        """Number of attributes K."""
        return len(self.attributes)

    @property
    def n_random(self) -> int:
        """Number of random coefficients."""
        return len(self.random)

    @property
    def fixed(self) -> tuple[str, ...]:
        """Attributes with a fixed coefficient."""
        return tuple(a for a in self.attributes if a not in self.random)

    @property
    def random_indices(self) -> NDArray[np.int64]:
        """Positions of the random attributes within `attributes`."""
        return np.array(
            [self.attributes.index(a) for a in self.random], dtype=np.int64
        )

    @property
    def parameter_names(self) -> tuple[str, ...]:
        """Names of the entries of the coefficient vector, in order."""
        names = [f"mean:{a}" for a in self.attributes]
        if self.correlated:
            for j in range(self.n_random):
                for i in range(j, self.n_random):
                    names.append(f"chol:{self.random[i]}:{self.random[j]}")
        else:
            names.extend(f"sd:{a}" for a in self.random)
        return tuple(names)

    @property
    def n_parameters(self) -> int:
        """Length of the coefficient vector."""
        k = self.n_random
        n_dist = k * (k + 1) // 2 if self.correlated else k
        return self.n_attributes + n_dist

    def index_of(self, attribute: str) -> int:
        """Position of an attribute, raising SpecificationMismatchError if absent."""
        try:
            return self.attributes.index(attribute)
        except ValueError:
            raise SpecificationMismatchError(
                f"Attribute '{attribute}' is not in the model specification "
                f"{list(self.attributes)}"
            ) from None

    def unpack(
        self, coefficients: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Split a coefficient vector into means and the Cholesky factor.

        Args:
            coefficients: Vector of length n_parameters

        Returns:
            Tuple of (means of length K, lower-triangular Kr x Kr factor)
        """
        coefficients = np.asarray(coefficients, dtype=np.float64)
        if coefficients.shape != (self.n_parameters,):
            raise SpecificationMismatchError(
                f"Expected {self.n_parameters} coefficients for "
                f"{list(self.parameter_names)}, got shape {coefficients.shape}"
            )
        k = self.n_attributes
        means = coefficients[:k].copy()
        dist = coefficients[k:]
        chol = np.zeros((self.n_random, self.n_random), dtype=np.float64)
        if self.correlated:
            pos = 0
            for j in range(self.n_random):
                for i in range(j, self.n_random):
                    chol[i, j] = dist[pos]
                    pos += 1
        else:
            chol[np.diag_indices(self.n_random)] = dist
        return means, chol

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "attributes": list(self.attributes),
            "random": list(self.random),
            "correlated": self.correlated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelSpecification":
        """Rebuild a specification from `to_dict` output."""
        return cls(
            attributes=tuple(data["attributes"]),
            random=tuple(data.get("random", ())),
            correlated=bool(data.get("correlated", False)),
        )


# =============================================================================
# POINT ESTIMATE
# =============================================================================


@dataclass(frozen=True, eq=False)
class PointEstimate:
    """
    Summary of a fitted discrete-choice model: mean vector b and covariance V.

    Produced once by the maximum-likelihood estimator and immutable
    afterwards (the arrays are stored read-only).

    Attributes:
        coefficients: Length-k coefficient vector b
        covariance: k x k covariance matrix V
        parameter_names: Optional names of the k parameters
        experiment: Optional experiment label ("EV" or "HP")
    """

    coefficients: NDArray[np.float64]
    covariance: NDArray[np.float64]
    parameter_names: tuple[str, ...] | None = None
    experiment: str | None = None

    def __post_init__(self) -> None:
        b = _frozen_array(self.coefficients, "coefficients")
        V = _frozen_array(self.covariance, "covariance")
        if b.ndim != 1 or b.size == 0:
            raise DimensionError(
                f"coefficients must be a non-empty 1D vector, got shape {b.shape}"
            )
        if V.shape != (b.size, b.size):
            raise DimensionError(
                f"covariance shape {V.shape} does not match {b.size} coefficients"
            )
        object.__setattr__(self, "coefficients", b)
        object.__setattr__(self, "covariance", V)
        if self.parameter_names is not None:
            names = tuple(str(n) for n in self.parameter_names)
            if len(names) != b.size:
                raise DimensionError(
                    f"{len(names)} parameter names for {b.size} coefficients"
                )
            object.__setattr__(self, "parameter_names", names)

    @property
    def n_parameters(self) -> int:
        """Number of parameters k."""
        return int(self.coefficients.size)

    @property
    def standard_errors(self) -> NDArray[np.float64]:
        """Square roots of the covariance diagonal."""
        return np.sqrt(np.clip(np.diag(self.covariance), 0.0, None))

    def check_against(self, specification: ModelSpecification) -> None:
        """Verify this estimate fits the given specification.

        Raises:
            SpecificationMismatchError: If the parameter count or the
                stored parameter names disagree with the specification.
        """
        if self.n_parameters != specification.n_parameters:
            raise SpecificationMismatchError(
                f"Point estimate has {self.n_parameters} parameters but the "
                f"specification needs {specification.n_parameters}: "
                f"{list(specification.parameter_names)}"
            )
        if (
            self.parameter_names is not None
            and self.parameter_names != specification.parameter_names
        ):
            raise SpecificationMismatchError(
                f"Point estimate parameters {list(self.parameter_names)} do not "
                f"match specification {list(specification.parameter_names)}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "experiment": self.experiment,
            "parameter_names": (
                list(self.parameter_names) if self.parameter_names else None
            ),
            "coefficients": [float(x) for x in self.coefficients],
            "covariance": [[float(x) for x in row] for row in self.covariance],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PointEstimate":
        """Rebuild a point estimate from `to_dict` output."""
        names = data.get("parameter_names")
        return cls(
            coefficients=np.asarray(data["coefficients"], dtype=np.float64),
            covariance=np.asarray(data["covariance"], dtype=np.float64),
            parameter_names=tuple(names) if names else None,
            experiment=data.get("experiment"),
        )

    def __repr__(self) -> str:
        """Compact string representation."""
        return f"PointEstimate(k={self.n_parameters}, experiment={self.experiment!r})"


# =============================================================================
# MODEL ARTIFACT
# =============================================================================


@dataclass(frozen=True, eq=False)
class ModelArtifact:
    """
    A mixed-logit specification frozen at one realized coefficient vector.

    The validated artifact (replicate_index 0) is built from the point
    estimate; replicate artifacts 1..R from Krinsky-Robb draws. Artifacts are
    never mutated: consumers load their own copy from the store.

    Attributes:
        specification: Utility specification
        coefficients: Realized coefficient vector (length n_parameters)
        experiment: Experiment label
        replicate_index: 0 for the validated artifact, 1..R for replicates
        log_likelihood: Simulated log-likelihood at these coefficients, if
            evaluated when the artifact was frozen
    """

    specification: ModelSpecification
    coefficients: NDArray[np.float64]
    experiment: str
    replicate_index: int
    log_likelihood: float | None = None

    def __post_init__(self) -> None:
        b = _frozen_array(self.coefficients, "coefficients")
        if b.shape != (self.specification.n_parameters,):
            raise SpecificationMismatchError(
                f"Artifact has {b.size} coefficients but the specification "
                f"needs {self.specification.n_parameters}"
            )
        if int(self.replicate_index) < 0:
            raise ValueError(f"replicate_index must be >= 0, got {self.replicate_index}")
        object.__setattr__(self, "coefficients", b)
        object.__setattr__(self, "replicate_index", int(self.replicate_index))
        if self.log_likelihood is not None:
            object.__setattr__(self, "log_likelihood", float(self.log_likelihood))

    @property
    def is_validated(self) -> bool:
        """True for the artifact frozen at the point estimate."""
        return self.replicate_index == VALIDATED_INDEX

    @property
    def means(self) -> NDArray[np.float64]:
        """Mean coefficient of every attribute."""
        return self.specification.unpack(self.coefficients)[0]

    @property
    def cholesky(self) -> NDArray[np.float64]:
        """Lower-triangular factor of the random-coefficient covariance."""
        return self.specification.unpack(self.coefficients)[1]

    @property
    def random_covariance(self) -> NDArray[np.float64]:
        """Covariance matrix of the random coefficients (L @ L.T)."""
        L = self.cholesky
        return L @ L.T

    def coefficient(self, attribute: str) -> float:
        """Mean coefficient of one attribute."""
        return float(self.means[self.specification.index_of(attribute)])

    def draw_coefficients(
        self, standard_normals: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        """Map standard-normal draws to coefficient vectors.

        Args:
            standard_normals: S x Kr matrix of standard-normal draws, one
                column per random attribute

        Returns:
            S x K matrix where row s is b + L z_s on the random attributes
            and the fixed mean elsewhere
        """
        z = np.asarray(standard_normals, dtype=np.float64)
        spec = self.specification
        if z.ndim != 2 or z.shape[1] != spec.n_random:
            raise DimensionError(
                f"Expected draws of shape (S, {spec.n_random}), got {z.shape}"
            )
        means, chol = spec.unpack(self.coefficients)
        betas = np.tile(means, (z.shape[0], 1))
        if spec.n_random:
            betas[:, spec.random_indices] += z @ chol.T
        return betas

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "experiment": self.experiment,
            "replicate_index": self.replicate_index,
            "specification": self.specification.to_dict(),
            "coefficients": [float(x) for x in self.coefficients],
            "log_likelihood": self.log_likelihood,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelArtifact":
        """Rebuild an artifact from `to_dict` output."""
        return cls(
            specification=ModelSpecification.from_dict(data["specification"]),
            coefficients=np.asarray(data["coefficients"], dtype=np.float64),
            experiment=str(data["experiment"]),
            replicate_index=int(data["replicate_index"]),
            log_likelihood=data.get("log_likelihood"),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModelArtifact):
            return NotImplemented
        return (
            self.specification == other.specification
            and self.experiment == other.experiment
            and self.replicate_index == other.replicate_index
            and self.log_likelihood == other.log_likelihood
            and np.array_equal(self.coefficients, other.coefficients)
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        """Compact string representation."""
        kind = "validated" if self.is_validated else f"replicate {self.replicate_index}"
        return f"ModelArtifact({self.experiment}, {kind}, k={self.coefficients.size})"

