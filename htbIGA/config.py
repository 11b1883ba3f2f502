"""
Options for hierarchical spline bases and loading them from files.

Example JSON file:
    {
      "basis": {
        "degree": [2, 2],
        "elements": [4, 4],
        "domain": [[0.0, 1.0], [0.0, 1.0]]
      },
      "options": {
        "num_levels": 4,
        "truncate": true,
        "batch_refinement": false,
        "direct_transfer": true,
        "ref_ext": 0
      },
      "refine": [[0.25, 0.75], [0.25, 0.75]]
    }

The "refine" entry is optional and holds physical boxes as a (dim, 2n)
array, two columns per box.
"""

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Union, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .hierarchical.htensor_basis import HTensorBasis

logger = logging.getLogger(__name__)


@dataclass
class HSplineOptions:
    """
    Tunable behaviour of a hierarchical basis.

    Attributes:
        num_levels: Levels instantiated up front (more are created lazily)
        truncate: Build THB-splines (True) or HB-splines (False)
        batch_refinement: Rebuild the structure once per refine call
            instead of once per box
        direct_transfer: Use the level-wise transfer instead of the
            projection
        ref_ext: Default number of cells a refinement box is grown by
    """
    num_levels: int = 3
    truncate: bool = True
    batch_refinement: bool = False
    direct_transfer: bool = True
    ref_ext: int = 0

    def __post_init__(self):
        if self.num_levels < 1:
            raise ValueError(f"num_levels must be at least 1, got {self.num_levels}")
        if self.ref_ext < 0:
            raise ValueError(f"ref_ext must be non-negative, got {self.ref_ext}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HSplineOptions':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown option(s): {', '.join(sorted(unknown))}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(filename: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a basis configuration from a JSON file.

    Raises:
        ValueError: if the file is not valid JSON or lacks a "basis" section
    """
    path = Path(filename)
    try:
        config = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(config, dict) or 'basis' not in config:
        raise ValueError(f"{path} has no 'basis' section")
    logger.debug("Loaded configuration from %s", path)
    return config


def make_basis_from_config(config: Dict[str, Any]) -> 'HTensorBasis':
    """
    Build an HB- or THB-spline basis from a configuration dictionary
    and apply the optional initial refinement.
    """
    from .discretization.knot_vector import make_uniform_knot_vector
    from .geometry.bspline import TensorBSplineBasis
    from .hierarchical.hbspline import HBSplineBasis
    from .hierarchical.thbspline import THBSplineBasis

    spec = config['basis']
    degrees = spec['degree']
    elements = spec['elements']
    if len(degrees) != len(elements):
        raise ValueError(f"degree and elements differ in length: {degrees}, {elements}")
    domain = spec.get('domain', [[0.0, 1.0]] * len(degrees))
    options = HSplineOptions.from_dict(config.get('options', {}))

    tbasis = TensorBSplineBasis([
        make_uniform_knot_vector(n, p, tuple(d))
        for n, p, d in zip(elements, degrees, domain)
    ])
    cls = THBSplineBasis if options.truncate else HBSplineBasis
    basis = cls(tbasis, options.num_levels, options=options)

    if 'refine' in config:
        basis.refine(np.asarray(config['refine'], dtype=float))
    return basis
