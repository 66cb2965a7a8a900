"""Verification driver: per-function VC generation and discharge.

For each function:
  1. Check every formula/function reference (specification errors surface
     here, before any solver call)
  2. Build the symbol environment: one Z3 symbol per parameter, return and
     local, arrays as Array(Int, Int)
  3. Compute the VC set with the wp-calculus
  4. For each VC, in a fresh solver scope: assert requires, assert the
     negated VC, check satisfiability

     unsat    the VC holds; move on
     sat      FALSIFIED, with the model's values as counterexample
     unknown  INCONCLUSIVE, with the solver's reason

The first falsified or inconclusive VC decides the verdict; the VCs after it
are listed as unchecked. Functions are verified independently of each
other.
"""

from __future__ import annotations

import json
import logging
import time as _time
from dataclasses import dataclass, field
from enum import Enum
from multiprocessing import Pool, cpu_count
from typing import Any, Dict, List, Optional, Tuple

import z3

from wpverify.ast_nodes import AnnotatedFunctionDef, Module
from wpverify.axioms import AxiomRegistry
from wpverify.config import VerifierConfig
from wpverify.counterexample import Counterexample, extract_counterexample
from wpverify.encoder import Encoder, validate_references
from wpverify.errors import (
    ErrorKind, SpecificationError, VerificationFailed, VerifierError,
)
from wpverify.solver import SolverFactory
from wpverify.wp import VerificationCondition, generate_vcs

logger = logging.getLogger(__name__)


class Status(Enum):
    VERIFIED = "verified"
    FALSIFIED = "falsified"
    INCONCLUSIVE = "inconclusive"
    SPEC_ERROR = "specification_error"


@dataclass
class VCResult:
    vc: VerificationCondition
    outcome: str            # "proved" | "falsified" | "unknown"
    duration_ms: float = 0.0
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.vc.name,
            "kind": self.vc.kind,
            "outcome": self.outcome,
            "duration_ms": round(self.duration_ms, 3),
        }
        if self.reason:
            d["reason"] = self.reason
        return d


@dataclass
class FunctionVerdict:
    function: str
    status: Status
    results: List[VCResult] = field(default_factory=list)
    failed_vc: Optional[VerificationCondition] = None
    counterexample: Optional[Counterexample] = None
    reason: str = ""
    error: Optional[VerifierError] = None
    unchecked: List[str] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return self.status == Status.VERIFIED

    def to_error(self) -> Optional[VerifierError]:
        if self.status == Status.VERIFIED:
            return None
        if self.error is not None:
            return self.error
        details: Dict[str, Any] = {}
        if self.failed_vc is not None:
            details["vc"] = self.failed_vc.name
        if self.counterexample is not None:
            details["counterexample"] = self.counterexample.to_dict()
        if self.unchecked:
            details["unchecked"] = list(self.unchecked)
        if self.status == Status.FALSIFIED:
            return VerifierError(ErrorKind.VERIFICATION_FAILED,
                                 f"Verification failed: {self.reason}",
                                 function=self.function, details=details)
        return VerifierError(ErrorKind.INCONCLUSIVE,
                             f"Solver could not decide: {self.reason}",
                             function=self.function, details=details)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "function": self.function,
            "status": self.status.value,
            "vcs": [r.to_dict() for r in self.results],
        }
        if self.failed_vc is not None:
            d["failed_vc"] = self.failed_vc.name
            d["failed_formula"] = str(self.failed_vc.formula)
        if self.counterexample is not None:
            d["counterexample"] = self.counterexample.to_dict()
        if self.reason:
            d["reason"] = self.reason
        if self.error is not None:
            d["error"] = self.error.to_dict()
        if self.unchecked:
            d["unchecked"] = list(self.unchecked)
        return d


@dataclass
class ModuleReport:
    verdicts: List[FunctionVerdict] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return all(v.verified for v in self.verdicts)

    @property
    def failures(self) -> List[FunctionVerdict]:
        return [v for v in self.verdicts if not v.verified]

    def verdict(self, function: str) -> FunctionVerdict:
        for v in self.verdicts:
            if v.function == function:
                return v
        raise KeyError(function)

    def raise_for_status(self) -> None:
        errors = [e for e in (v.to_error() for v in self.verdicts) if e is not None]
        if errors:
            raise VerificationFailed(errors, report=self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "functions": [v.to_dict() for v in self.verdicts],
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class Verifier:
    """Verifies annotated modules against their contracts.

    Without an explicit ``solver_factory`` a factory is created per run and
    closed when the run ends.
    """

    def __init__(
        self,
        config: Optional[VerifierConfig] = None,
        solver_factory: Optional[SolverFactory] = None,
        axioms: Optional[AxiomRegistry] = None,
    ) -> None:
        self.config = config or VerifierConfig()
        self._factory = solver_factory
        self.axioms = axioms if axioms is not None else AxiomRegistry.from_config(self.config.axioms)

    def verify_module(self, module: Module) -> ModuleReport:
        functions = [f for f in module.functions if self.config.selects(f.name)]
        if self.config.parallel and self._factory is None and len(functions) > 1:
            return ModuleReport(_verify_parallel(module, functions, self.config))

        factory = self._factory or SolverFactory(self.config.timeout_ms)
        try:
            verdicts = [self._verify(factory, func, module) for func in functions]
        finally:
            if self._factory is None:
                factory.close()
        return ModuleReport(verdicts)

    def verify_function(self, func: AnnotatedFunctionDef, module: Module) -> FunctionVerdict:
        factory = self._factory or SolverFactory(self.config.timeout_ms)
        try:
            return self._verify(factory, func, module)
        finally:
            if self._factory is None:
                factory.close()

    def _verify(self, factory: SolverFactory, func: AnnotatedFunctionDef,
                module: Module) -> FunctionVerdict:
        try:
            verdict = self.check_function(factory, func, module)
        except SpecificationError as e:
            logger.error("%s", e)
            return FunctionVerdict(function=func.name, status=Status.SPEC_ERROR,
                                   reason=e.error.message, error=e.error)
        logger.info("%s: %s", func.name, verdict.status.value)
        return verdict

    def check_function(self, factory: SolverFactory, func: AnnotatedFunctionDef,
                       module: Module) -> FunctionVerdict:
        """Discharge every VC of ``func``; raises SpecificationError."""
        validate_references(func, module)
        encoder = Encoder(factory, max_depth=self.config.max_unfold_depth,
                          exists_mode=self.config.exists_mode, axioms=self.axioms)
        env = {p.name: factory.symbol(p.name, p.type) for p in func.declared()}
        vcs = generate_vcs(func)
        logger.debug("%s: %d verification condition(s)", func.name, len(vcs))

        results: List[VCResult] = []
        for index, vc in enumerate(vcs):
            result, model = self._discharge(factory, encoder, func, module, env, vc)
            results.append(result)
            logger.debug("%s -> %s (%.1f ms)", vc.name, result.outcome, result.duration_ms)
            if result.outcome == "proved":
                continue

            unchecked = [later.name for later in vcs[index + 1:]]
            if result.outcome == "falsified":
                return FunctionVerdict(
                    function=func.name, status=Status.FALSIFIED, results=results,
                    failed_vc=vc,
                    counterexample=extract_counterexample(model, func, env),
                    reason=_explain(vc), unchecked=unchecked,
                )
            return FunctionVerdict(
                function=func.name, status=Status.INCONCLUSIVE, results=results,
                failed_vc=vc, reason=result.reason or "unknown", unchecked=unchecked,
            )

        return FunctionVerdict(function=func.name, status=Status.VERIFIED, results=results)

    def _discharge(
        self,
        factory: SolverFactory,
        encoder: Encoder,
        func: AnnotatedFunctionDef,
        module: Module,
        env: Dict[str, z3.ExprRef],
        vc: VerificationCondition,
    ) -> Tuple[VCResult, Optional[z3.ModelRef]]:
        """Check: (requires AND NOT vc) is UNSAT?"""
        t0 = _time.perf_counter()
        solver = factory.new_solver()
        ctx = encoder.context(func, module, env, solver)
        if func.requires is not None:
            solver.add(encoder.predicate(func.requires, ctx))
        solver.add(z3.Not(encoder.predicate(vc.formula, ctx)))

        result = solver.check()
        duration_ms = (_time.perf_counter() - t0) * 1000
        if result == z3.unsat:
            return VCResult(vc, "proved", duration_ms), None
        if result == z3.sat:
            return VCResult(vc, "falsified", duration_ms), solver.model()
        return VCResult(vc, "unknown", duration_ms, reason=solver.reason_unknown()), None


def _explain(vc: VerificationCondition) -> str:
    if vc.kind == "loop-preservation":
        return f"loop invariant not preserved by the body ({vc.name})"
    if vc.kind == "loop-exit":
        return f"loop invariant and exit condition do not imply what follows ({vc.name})"
    return f"postcondition not established from the precondition ({vc.name})"


# ---------------------------------------------------------------------------
# Parallel mode (worker must be top-level for pickling)
# ---------------------------------------------------------------------------

def _verify_worker(args: Tuple[Module, VerifierConfig, str]) -> FunctionVerdict:
    module, config, name = args
    func = module.function(name)
    with SolverFactory(config.timeout_ms) as factory:
        return Verifier(config, solver_factory=factory).verify_function(func, module)


def _verify_parallel(module: Module, functions: List[AnnotatedFunctionDef],
                     config: VerifierConfig) -> List[FunctionVerdict]:
    workers = config.parallel_workers or cpu_count()
    workers = max(1, min(workers, len(functions)))
    logger.info("verifying %d function(s) on %d worker(s)", len(functions), workers)
    with Pool(processes=workers) as pool:
        return pool.map(_verify_worker, [(module, config, f.name) for f in functions])


def verify_module(module: Module, config: Optional[VerifierConfig] = None) -> ModuleReport:
    """Verify every function of ``module``; the module verifies iff all do."""
    return Verifier(config).verify_module(module)
