"""
Torch Heat Deposition
=====================
Turns torch definitions into a per-cell source term in W.

Each torch assigns a non-negative weight w to every cell from the distance d
between the cell centre and the torch tip. The deposited power is
``P·η · w·V / Σ(w·V)``, so the total always equals the effective torch power
regardless of mesh resolution.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence
import logging

import numpy as np

from plasmafurnace.errors import EvalError, EvalErrorKind
from plasmafurnace.model.torches import HeatDistribution, PlasmaTorch
from plasmafurnace.utils import cylindrical_to_cartesian

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.fea.pre.mesh import CylindricalMesh
    from plasmafurnace.formula.engine import BoundFormula, FormulaEngine

logger = logging.getLogger(__name__)


def torch_weights(
    mesh: CylindricalMesh,
    torch: PlasmaTorch,
    formula: Optional[BoundFormula] = None,
    engine: Optional[FormulaEngine] = None,
) -> npt.NDArray[np.float64]:
    """
    Un-normalized distribution weights of one torch.

    Args:
        mesh: Furnace mesh.
        torch: Torch definition.
        formula: Formula bound to the heat-source distribution slot; replaces
            the torch's own distribution law when given.
        engine: Engine used to evaluate ``formula``.

    Returns:
        Weight per cell in linear order.

    Raises:
        EvalError: If the formula fails or yields negative weights.
    """
    tip = cylindrical_to_cartesian(*torch.position)
    d = np.linalg.norm(mesh.cartesian_centres - tip, axis=1)

    if formula is not None and engine is not None:
        r, theta, z = mesh.centres
        values = engine.evaluate_formula(formula, {
            "d": d,
            "sigma": torch.spread,
            "r": r,
            "theta": theta,
            "z": z,
            "power": torch.power,
            "efficiency": torch.efficiency,
        })
        weights = np.broadcast_to(np.asarray(values, dtype=np.float64), d.shape).copy()
        if np.any(weights < 0):
            raise EvalError(
                EvalErrorKind.DOMAIN_ERROR,
                f"heat distribution '{formula.formula_id}' produced negative weights",
            )
        return weights

    if torch.distribution == HeatDistribution.GAUSSIAN:
        return np.exp(-d ** 2 / (2.0 * torch.spread ** 2))
    if torch.distribution == HeatDistribution.UNIFORM:
        return (d <= torch.spread).astype(np.float64)

    # POINT: everything into the enclosing cell
    weights = np.zeros(mesh.n_cells, dtype=np.float64)
    weights[mesh.nearest_cell(*torch.position)] = 1.0
    return weights


def torch_heat_source(
    mesh: CylindricalMesh,
    torch: PlasmaTorch,
    formula: Optional[BoundFormula] = None,
    engine: Optional[FormulaEngine] = None,
) -> npt.NDArray[np.float64]:
    """Power (W) deposited by one torch in every cell; sums to P·η."""
    weighted = torch_weights(mesh, torch, formula, engine) * mesh.cell_volumes
    total = weighted.sum()
    if not total > 0:
        # Distribution narrower than a cell: fall back to the enclosing cell
        weighted = np.zeros(mesh.n_cells, dtype=np.float64)
        weighted[mesh.nearest_cell(*torch.position)] = 1.0
        total = 1.0
    return torch.effective_power * weighted / total


def heat_source_field(
    mesh: CylindricalMesh,
    torches: Sequence[PlasmaTorch],
    formula: Optional[BoundFormula] = None,
    engine: Optional[FormulaEngine] = None,
) -> npt.NDArray[np.float64]:
    """Sum of all torch contributions in W per cell."""
    sources = np.zeros(mesh.n_cells, dtype=np.float64)
    for torch in torches:
        sources += torch_heat_source(mesh, torch, formula, engine)
    return sources
