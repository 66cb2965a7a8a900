"""Axiom suppliers for calls that appear inside specifications.

When the encoder unfolds a call ``f(args)`` it asserts ``f``'s own
postcondition for that call site. That is one level of unfolding; it does
not reason inductively about recursive specifications. Suppliers registered
here may add further, function-specific facts for a call site without
touching the encoder.

Suppliers are heuristics. Nothing here is a general VC rule for recursion.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence, Type

import z3

from wpverify.ast_nodes import AnnotatedFunctionDef
from wpverify.errors import ConfigError, config_error

if TYPE_CHECKING:
    from wpverify.encoder import Encoder, EncodingContext
    from wpverify.solver import SolverFactory


@dataclass
class CallSite:
    """An unfolded call: encoded arguments and fresh result symbols."""
    callee: AnnotatedFunctionDef
    args: tuple
    results: tuple
    recursive: bool = False


class AxiomSupplier(ABC):
    """Supplies extra axioms for calls to one function."""

    name: str = ""

    @abstractmethod
    def axioms(self, site: CallSite, encoder: "Encoder",
               ctx: "EncodingContext") -> List[z3.BoolRef]:
        ...


class UniversalEnsuresAxiom(AxiomSupplier):
    """Reads the callee as an uninterpreted function constrained by its contract.

    Asserts, once per solver scope,

        forall x. requires(x) => ensures(x, f(x))

    and ties every call site's result symbols to ``f(args)``. This lets the
    solver relate calls whose arguments only coincide after reasoning,
    which per-site unfolding cannot do.
    """

    name = "universal-ensures"

    def axioms(self, site: CallSite, encoder: "Encoder",
               ctx: "EncodingContext") -> List[z3.BoolRef]:
        callee = site.callee
        if callee.ensures is None or not callee.returns:
            return []
        funcs = self.result_functions(callee, encoder.factory)
        facts: List[z3.BoolRef] = [
            res == f(*site.args) for f, res in zip(funcs, site.results)
        ]
        contract = self.contract(callee, encoder, ctx)
        if contract is None:
            return facts
        return [contract, *facts]

    @staticmethod
    def result_functions(callee: AnnotatedFunctionDef,
                         factory: "SolverFactory") -> List[z3.FuncDeclRef]:
        """One uninterpreted function per return binding of ``callee``."""
        domain = [factory.sort_for(p.type) for p in callee.params]
        return [
            factory.function(f"{callee.name}.{r.name}", domain, factory.sort_for(r.type))
            for r in callee.returns
        ]

    def contract(self, callee: AnnotatedFunctionDef, encoder: "Encoder",
                 ctx: "EncodingContext") -> Optional[z3.BoolRef]:
        """The quantified contract of ``callee``, or None once already asserted.

        The key is recorded before the contract is encoded, so a contract
        that calls its own function terminates.
        """
        if callee.ensures is None or not callee.returns:
            return None
        key = f"{self.name}:{callee.name}"
        if key in ctx.state.axioms_asserted:
            return None
        ctx.state.axioms_asserted.add(key)

        factory = encoder.factory
        funcs = self.result_functions(callee, factory)
        bound = [
            factory.symbol(f"{p.name}!{ctx.state.next_id()}", p.type)
            for p in callee.params
        ]
        env = {p.name: b for p, b in zip(callee.params, bound)}
        env.update({r.name: f(*bound) for r, f in zip(callee.returns, funcs)})
        inner = ctx.nested(env).quantify(*bound)

        body = encoder.predicate(callee.ensures, inner)
        if callee.requires is not None:
            body = z3.Implies(encoder.predicate(callee.requires, inner), body)
        if bound:
            body = z3.ForAll(bound, body)
        return body


BUILTIN_SUPPLIERS: Dict[str, Type[AxiomSupplier]] = {
    UniversalEnsuresAxiom.name: UniversalEnsuresAxiom,
}


class AxiomRegistry:
    """Maps function names to the axiom suppliers consulted for their calls."""

    def __init__(self) -> None:
        self._suppliers: Dict[str, List[AxiomSupplier]] = {}

    def register(self, function_name: str, supplier: AxiomSupplier) -> None:
        self._suppliers.setdefault(function_name, []).append(supplier)

    def for_function(self, function_name: str) -> List[AxiomSupplier]:
        return list(self._suppliers.get(function_name, ()))

    def __len__(self) -> int:
        return sum(len(v) for v in self._suppliers.values())

    @classmethod
    def from_config(cls, mapping: Mapping[str, Sequence[str]]) -> "AxiomRegistry":
        registry = cls()
        for function_name, names in mapping.items():
            for name in names:
                supplier_cls = BUILTIN_SUPPLIERS.get(name)
                if supplier_cls is None:
                    raise ConfigError(config_error(
                        f"Unknown axiom supplier '{name}' for function '{function_name}'",
                        key="axioms",
                    ))
                registry.register(function_name, supplier_cls())
        return registry
