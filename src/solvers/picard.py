"""
Picard (fixed-point) iteration for the steady Navier-Stokes equations.

Each step linearizes the convective term about the previous iterate and walks
through the phases

    START -> ASSEMBLE -> SOLVE -> CONSTRAIN -> MEASURE -> {CONTINUE | CONVERGED | MAX_ITER_REACHED}

The controller holds no iteration state of its own: ``step`` takes an
IterationState and returns a new one. ``run`` loops until a terminal phase
and reports the outcome as Converged or IterationCapReached.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Tuple, Union
import logging

import numpy as np

from fem.assembly import ConvectiveForm, Linearization
from fem.boundary_conditions import ConstraintMode
from parallel.communicator import SerialCommunicator
from parallel.reductions import distributed_l2_norm

from .datastructures import LinearSolverParameters, picard_solver_defaults
from .linear_solvers import solve_block_system

log = logging.getLogger(__name__)


class PicardPhase(str, Enum):
    START = "start"
    ASSEMBLE = "assemble"
    SOLVE = "solve"
    CONSTRAIN = "constrain"
    MEASURE = "measure"
    CONTINUE = "continue"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"


TERMINAL_PHASES = (PicardPhase.CONVERGED, PicardPhase.MAX_ITER_REACHED)


def _frozen(x):
    x = np.array(x, dtype=float, copy=True)
    x.flags.writeable = False
    return x


@dataclass(frozen=True)
class IterationState:
    """Snapshot of the Picard iteration after a step.

    ``update = current - previous``, where ``previous`` is the iterate the
    step linearized about. ``history`` holds (update_norm, linear_iterations)
    of every completed step.
    """

    previous: np.ndarray
    current: np.ndarray
    update: np.ndarray
    iteration: int = 0
    update_norm: float = float("inf")
    linear_iterations: int = 0
    converged: bool = False
    phase: PicardPhase = PicardPhase.START
    history: Tuple[Tuple[float, int], ...] = field(default=())

    @property
    def terminated(self) -> bool:
        return self.phase in TERMINAL_PHASES


@dataclass(frozen=True)
class Converged:
    state: IterationState
    iterations: int


@dataclass(frozen=True)
class IterationCapReached:
    state: IterationState
    iterations: int


PicardOutcome = Union[Converged, IterationCapReached]


class PicardController:
    """Drives assemble -> solve -> constrain -> measure cycles.

    Parameters
    ----------
    assembler : WeakFormAssembler
    partition : DofPartition
    constraints : ConstraintSet
    comm : Communicator, optional
    linear_solver : LinearSolverParameters, optional
        Settings of every Picard linear solve (identity preconditioner,
        absolute tolerance 1e-4 by default).
    max_iterations : int
        Iteration cap (default 10).
    tolerance : float
        The loop converges once ||current - previous||_2 < tolerance.
    convective_form : str
        ``newton`` or ``oseen`` linearization.
    constraint_mode : str
        How constraints enter each linear system.
    """

    def __init__(
        self,
        assembler,
        partition,
        constraints,
        comm=None,
        linear_solver: LinearSolverParameters = None,
        max_iterations: int = 10,
        tolerance: float = 1e-7,
        convective_form=ConvectiveForm.NEWTON,
        constraint_mode=ConstraintMode.DISTRIBUTE,
    ):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.assembler = assembler
        self.partition = partition
        self.constraints = constraints
        self.comm = comm if comm is not None else SerialCommunicator()
        self.linear_solver = linear_solver if linear_solver is not None else picard_solver_defaults()
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.convective_form = ConvectiveForm(convective_form)
        self.constraint_mode = ConstraintMode(constraint_mode)
        self._owned = partition.owned(self.comm.rank)

    def start(self, initial) -> IterationState:
        """Initial state: previous iterate = ``initial``, counter 0."""
        initial = _frozen(initial)
        return IterationState(
            previous=initial,
            current=initial,
            update=_frozen(np.zeros_like(initial)),
            phase=PicardPhase.START,
        )

    def step(self, state: IterationState) -> IterationState:
        """One full Picard cycle; returns the new state."""
        if state.terminated:
            raise ValueError(f"Picard iteration already terminated ({state.phase.value})")

        # Linearize about the newest accepted iterate
        previous = state.previous if state.phase is PicardPhase.START else state.current
        iteration = state.iteration + 1

        # ASSEMBLE
        system = self.assembler.assemble(
            Linearization.picard(previous, self.convective_form),
            self.partition,
            self.constraints,
            self.comm,
            self.constraint_mode,
        )

        # SOLVE: the guess starts at zero on constrained dofs
        guess = self.constraints.set_zero(previous)
        result = solve_block_system(system, guess, self.linear_solver, label=f"Picard {iteration} GMRES")

        # CONSTRAIN
        current = self.constraints.distribute(result.solution)

        # MEASURE
        update = current - previous
        norm = distributed_l2_norm(update, self._owned, self.comm)

        converged = norm < self.tolerance
        if converged:
            phase = PicardPhase.CONVERGED
        elif iteration >= self.max_iterations:
            phase = PicardPhase.MAX_ITER_REACHED
        else:
            phase = PicardPhase.CONTINUE

        log.info(f"Picard iter {iteration}: ||du||={norm:.6e}, GMRES its={result.iterations}, phase={phase.value}")

        return replace(
            state,
            previous=_frozen(previous),
            current=_frozen(current),
            update=_frozen(update),
            iteration=iteration,
            update_norm=norm,
            linear_iterations=result.iterations,
            converged=converged,
            phase=phase,
            history=state.history + ((norm, result.iterations),),
        )

    def run(self, initial) -> PicardOutcome:
        """Iterate from ``initial`` until convergence or the iteration cap."""
        state = self.start(initial)
        while not state.terminated:
            state = self.step(state)

        if state.converged:
            log.info(f"Picard converged in {state.iteration} iterations (||du||={state.update_norm:.3e})")
            return Converged(state=state, iterations=state.iteration)

        log.warning(
            f"Picard did not converge in {self.max_iterations} iterations "
            f"(||du||={state.update_norm:.3e} >= {self.tolerance:.1e})"
        )
        return IterationCapReached(state=state, iterations=state.iteration)
