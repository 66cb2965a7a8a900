"""Solver factory: the single owner of the Z3 context for a verification run.

A factory is created once per run, hands out independent solver scopes
(one per VC), builds symbols and constants in its own context and is closed
at the end of the run. Nothing here is process-global, so several factories
can live side by side (one per worker process in parallel mode).
"""

from __future__ import annotations

import logging
from typing import Optional

import z3

from wpverify.ast_nodes import INT_ARRAY

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000


class SolverFactory:
    """Creates solver scopes and terms inside one ``z3.Context``."""

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        self.timeout_ms = timeout_ms
        self._ctx: Optional[z3.Context] = z3.Context()
        self.scopes_opened = 0

    @property
    def ctx(self) -> z3.Context:
        if self._ctx is None:
            raise RuntimeError("solver factory has been closed")
        return self._ctx

    @property
    def closed(self) -> bool:
        return self._ctx is None

    def new_solver(self) -> z3.Solver:
        """Open a fresh, independent solver scope."""
        solver = z3.Solver(ctx=self.ctx)
        if self.timeout_ms:
            solver.set("timeout", self.timeout_ms)
        self.scopes_opened += 1
        return solver

    # -- sorts and terms --------------------------------------------------

    def int_sort(self) -> z3.SortRef:
        return z3.IntSort(self.ctx)

    def array_sort(self) -> z3.SortRef:
        return z3.ArraySort(self.int_sort(), self.int_sort())

    def sort_for(self, type_name: str) -> z3.SortRef:
        return self.array_sort() if type_name == INT_ARRAY else self.int_sort()

    def symbol(self, name: str, type_name: str) -> z3.ExprRef:
        return z3.Const(name, self.sort_for(type_name))

    def int_const(self, name: str) -> z3.ArithRef:
        return z3.Int(name, self.ctx)

    def int_val(self, value: int) -> z3.ArithRef:
        return z3.IntVal(value, self.ctx)

    def bool_val(self, value: bool) -> z3.BoolRef:
        return z3.BoolVal(value, self.ctx)

    def function(self, name: str, domain: list, range_sort: z3.SortRef) -> z3.FuncDeclRef:
        return z3.Function(name, *domain, range_sort)

    def close(self) -> None:
        """Release the factory's reference to its context.

        ``z3.Context`` frees the native context in ``__del__``. Every term
        and solver made here holds a reference to it, so the native context
        goes away with the last of those, never while one is still usable.
        Freeing it directly would leave such terms dangling.
        """
        if self._ctx is None:
            return
        logger.debug("closing solver factory after %d scope(s)", self.scopes_opened)
        ctx, self._ctx = self._ctx, None
        del ctx

    def __enter__(self) -> "SolverFactory":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
