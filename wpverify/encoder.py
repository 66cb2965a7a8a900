"""Lowering of predicates and expressions to Z3 terms.

Comparisons, connectives and arithmetic map one-to-one onto Z3. The
interesting cases are the ones a solver cannot take directly:

  FORALL    native quantifier over a fresh bound constant.

  EXISTS    native quantifier by default. In ``approximate`` mode the body
            alone is checked in an independent sub-query and the quantifier
            collapses to the constant true/false. That ignores whatever the
            surrounding formula says about the body's free symbols and is
            unsound in general.

  FORMULA   a formula macro is inlined by simultaneous substitution of its
            parameters. A reference naming a function with an ensures clause
            reads that postcondition as an axiom over fresh result symbols.

  CALLS     a call in an expression becomes a fresh symbol per result;
            when the callee has a contract, requires => ensures is asserted
            on the live solver for that call site. Self-recursive calls see
            the caller's own symbol environment. Registered axiom suppliers
            may add more facts. A call whose arguments mention a quantified
            variable is an application of the callee's uninterpreted result
            function instead, constrained by the callee's contract asserted
            for all arguments.

Formula inlining and call unfolding are bounded by ``max_depth``: past the
bound formula references collapse to ``true`` and calls stay unconstrained.
Unconstrained call results are never memoised.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Mapping, Optional, Set, Tuple

import z3

from wpverify.ast_nodes import (
    Module, AnnotatedFunctionDef, Param, Statement, Assign, Block, If, While, ExprStmt,
    Expr, IntLiteral, Var, Neg, BinaryOp, FuncCall, ArrayAccess, ArrayUpdate,
    Predicate, TrueCond, FalseCond, Comparison, Not, And, Or, Implies, Paren,
    Quantifier, FormulaRef, LArray,
)
from wpverify.axioms import AxiomRegistry, CallSite, UniversalEnsuresAxiom
from wpverify.errors import (
    SpecificationError, undefined_reference_error, undefined_variable_error,
    arity_error, missing_ensures_error, output_index_error,
)
from wpverify.solver import SolverFactory
from wpverify.substitution import substitute_many

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10
EXISTS_NATIVE = "native"
EXISTS_APPROXIMATE = "approximate"
EXISTS_MODES = (EXISTS_NATIVE, EXISTS_APPROXIMATE)


@dataclass
class ScopeState:
    """Mutable state shared by every context encoding into one solver scope."""
    solver: z3.Solver
    counter: Iterator[int] = field(default_factory=lambda: itertools.count(1))
    call_memo: Dict[Tuple, Tuple[z3.ExprRef, ...]] = field(default_factory=dict)
    axioms_asserted: Set[str] = field(default_factory=set)

    def next_id(self) -> int:
        return next(self.counter)


@dataclass(frozen=True)
class EncodingContext:
    env: Mapping[str, z3.ExprRef]
    module: Module
    function: AnnotatedFunctionDef
    state: ScopeState
    depth: int = 0
    bound: Tuple[z3.ExprRef, ...] = ()

    @property
    def solver(self) -> z3.Solver:
        """The live assertion sink for side axioms."""
        return self.state.solver

    def bind(self, name: str, term: z3.ExprRef) -> "EncodingContext":
        return replace(self, env={**self.env, name: term})

    def quantify(self, *terms: z3.ExprRef) -> "EncodingContext":
        """Mark ``terms`` as quantifier-bound for everything encoded below."""
        return replace(self, bound=self.bound + terms)

    def mentions_bound(self, terms: List[z3.ExprRef]) -> bool:
        """True when any of ``terms`` contains a quantifier-bound constant."""
        if not self.bound:
            return False
        bound_ids = {b.get_id() for b in self.bound}
        seen: Set[int] = set()
        todo = list(terms)
        while todo:
            term = todo.pop()
            term_id = term.get_id()
            if term_id in bound_ids:
                return True
            if term_id in seen:
                continue
            seen.add(term_id)
            if z3.is_app(term):
                todo.extend(term.children())
        return False

    def nested(self, env: Mapping[str, z3.ExprRef]) -> "EncodingContext":
        """A context one unfolding level deeper with its own environment."""
        return replace(self, env=dict(env), depth=self.depth + 1)

    def deeper(self) -> "EncodingContext":
        return replace(self, depth=self.depth + 1)


class Encoder:
    """Encodes predicates to Z3 booleans and expressions to Z3 ints/arrays."""

    def __init__(
        self,
        factory: SolverFactory,
        max_depth: int = DEFAULT_MAX_DEPTH,
        exists_mode: str = EXISTS_NATIVE,
        axioms: Optional[AxiomRegistry] = None,
    ) -> None:
        if exists_mode not in EXISTS_MODES:
            raise ValueError(f"unknown exists mode '{exists_mode}'")
        self.factory = factory
        self.max_depth = max_depth
        self.exists_mode = exists_mode
        self.axioms = axioms if axioms is not None else AxiomRegistry()

    def context(self, func: AnnotatedFunctionDef, module: Module,
                env: Mapping[str, z3.ExprRef], solver: z3.Solver) -> EncodingContext:
        return EncodingContext(env=dict(env), module=module, function=func,
                               state=ScopeState(solver))

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def predicate(self, pred: Predicate, ctx: EncodingContext) -> z3.BoolRef:
        if isinstance(pred, TrueCond):
            return self.factory.bool_val(True)
        if isinstance(pred, FalseCond):
            return self.factory.bool_val(False)
        if isinstance(pred, Comparison):
            return self._comparison(pred, ctx)
        if isinstance(pred, Not):
            return z3.Not(self.predicate(pred.operand, ctx))
        if isinstance(pred, And):
            return z3.And(self.predicate(pred.left, ctx), self.predicate(pred.right, ctx))
        if isinstance(pred, Or):
            return z3.Or(self.predicate(pred.left, ctx), self.predicate(pred.right, ctx))
        if isinstance(pred, Implies):
            return z3.Implies(self.predicate(pred.left, ctx), self.predicate(pred.right, ctx))
        if isinstance(pred, Paren):
            return self.predicate(pred.inner, ctx)
        if isinstance(pred, Quantifier):
            return self._quantifier(pred, ctx)
        if isinstance(pred, FormulaRef):
            return self._formula_ref(pred, ctx)
        raise TypeError(f"unsupported predicate node {type(pred).__name__}")

    def _comparison(self, pred: Comparison, ctx: EncodingContext) -> z3.BoolRef:
        left = self.expr(pred.left, ctx)
        right = self.expr(pred.right, ctx)
        op = pred.op
        if op == "==":
            return left == right
        if op == "!=":
            return z3.Not(left == right)
        if op == ">":
            return left > right
        if op == "<":
            return left < right
        if op == ">=":
            return left >= right
        if op == "<=":
            return left <= right
        raise ValueError(f"unknown comparison operator '{op}'")

    def _quantifier(self, q: Quantifier, ctx: EncodingContext) -> z3.BoolRef:
        bound = self.factory.symbol(f"{q.var}!{ctx.state.next_id()}", q.var_type)
        if q.quant == "forall":
            body = self.predicate(q.body, ctx.bind(q.var, bound).quantify(bound))
            return z3.ForAll([bound], body)
        if q.quant != "exists":
            raise ValueError(f"unknown quantifier '{q.quant}'")

        if self.exists_mode == EXISTS_NATIVE:
            body = self.predicate(q.body, ctx.bind(q.var, bound).quantify(bound))
            return z3.Exists([bound], body)

        sub_solver = self.factory.new_solver()
        sub_ctx = replace(ctx, state=ScopeState(sub_solver, counter=ctx.state.counter))
        sub_solver.add(self.predicate(q.body, sub_ctx.bind(q.var, bound)))
        result = sub_solver.check()
        logger.debug("approximated exists %s over '%s': %s", q.var, q.body, result)
        return self.factory.bool_val(result != z3.unsat)

    def _formula_ref(self, ref: FormulaRef, ctx: EncodingContext) -> z3.BoolRef:
        module = ctx.module
        formula = module.formula(ref.name)
        if formula is not None:
            _check_arity(ref.name, formula.params, ref.args, ctx.function.name)
            if ctx.depth >= self.max_depth:
                logger.debug("depth bound reached at formula %s; reading it as true", ref.name)
                return self.factory.bool_val(True)
            body = substitute_many(
                formula.body, {p.name: a for p, a in zip(formula.params, ref.args)})
            return self.predicate(body, ctx.deeper())

        func = module.function(ref.name)
        if func is None:
            raise SpecificationError(undefined_reference_error(ref.name, ctx.function.name))
        if func.ensures is None:
            raise SpecificationError(missing_ensures_error(ref.name, ctx.function.name))
        _check_arity(ref.name, func.params, ref.args, ctx.function.name)
        if ctx.depth >= self.max_depth:
            logger.debug("depth bound reached at %s postcondition; reading it as true", ref.name)
            return self.factory.bool_val(True)

        args = [self.expr(a, ctx) for a in ref.args]
        if ctx.mentions_bound(args):
            # results must vary with the bound variable
            prefix = f"{ctx.function.name}_post_{func.name}"
            domain = [a.sort() for a in args]
            results = tuple(
                self.factory.function(f"{prefix}_{r.name}!{ctx.state.next_id()}", domain,
                                      self.factory.sort_for(r.type))(*args)
                for r in func.returns
            )
        else:
            results = self._fresh_results(func, ctx)
        env = self._callee_env(func, args, results, ctx)
        return self.predicate(func.ensures, ctx.nested(env))

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def expr(self, expr: Expr, ctx: EncodingContext) -> z3.ExprRef:
        if isinstance(expr, IntLiteral):
            return self.factory.int_val(expr.value)
        if isinstance(expr, Var):
            term = ctx.env.get(expr.name)
            if term is None:
                raise SpecificationError(undefined_variable_error(expr.name, ctx.function.name))
            return term
        if isinstance(expr, Neg):
            return -self.expr(expr.operand, ctx)
        if isinstance(expr, BinaryOp):
            return self._binary(expr, ctx)
        if isinstance(expr, FuncCall):
            return self._call(expr, ctx)
        if isinstance(expr, ArrayAccess):
            return z3.Select(self.expr(expr.array, ctx), self.expr(expr.index, ctx))
        if isinstance(expr, ArrayUpdate):
            return z3.Store(self.expr(expr.array, ctx),
                            self.expr(expr.index, ctx),
                            self.expr(expr.value, ctx))
        raise TypeError(f"unsupported expression node {type(expr).__name__}")

    def _binary(self, expr: BinaryOp, ctx: EncodingContext) -> z3.ArithRef:
        left = self.expr(expr.left, ctx)
        right = self.expr(expr.right, ctx)
        op = expr.op
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            return left / right  # integer division on Int sorts
        raise ValueError(f"unknown arithmetic operator '{op}'")

    def _call(self, call: FuncCall, ctx: EncodingContext) -> z3.ExprRef:
        args = [self.expr(a, ctx) for a in call.args]
        callee = ctx.module.function(call.name)
        quantified = ctx.mentions_bound(args)
        if callee is None or not callee.returns:
            # host function or procedure: opaque value
            name = f"call_{call.name}!{ctx.state.next_id()}"
            if quantified:
                opaque = self.factory.function(name, [a.sort() for a in args],
                                               self.factory.sort_for("int"))
                return opaque(*args)
            return self.factory.int_const(name)
        _check_arity(call.name, callee.params, call.args, ctx.function.name)
        if call.output >= len(callee.returns):
            raise SpecificationError(output_index_error(
                call.name, call.output, len(callee.returns), ctx.function.name))
        if quantified:
            return self._quantified_call(callee, args, ctx)[call.output]

        key = (callee.name, tuple(a.sexpr() for a in args))
        results = ctx.state.call_memo.get(key)
        if results is not None:
            return results[call.output]
        results = self._fresh_results(callee, ctx)
        if ctx.depth >= self.max_depth:
            # not memoised: a shallower sighting must still get the contract
            logger.debug("depth bound reached at call to %s; result left unconstrained",
                         callee.name)
            return results[call.output]
        ctx.state.call_memo[key] = results
        self._assert_call_axioms(callee, args, results, ctx)
        return results[call.output]

    def _quantified_call(self, callee: AnnotatedFunctionDef, args: List[z3.ExprRef],
                         ctx: EncodingContext) -> Tuple[z3.ExprRef, ...]:
        """Results of a call whose arguments depend on a quantified variable.

        Fresh symbols would stand for one value shared by every instance of
        the bound variable. The results are instead applications of the
        callee's uninterpreted result functions, and the callee's contract
        is asserted once per scope as ``forall x. requires => ensures``.
        """
        supplier = UniversalEnsuresAxiom()
        results = tuple(f(*args) for f in supplier.result_functions(callee, self.factory))
        if ctx.depth >= self.max_depth:
            logger.debug("depth bound reached at quantified call to %s; result left "
                         "unconstrained", callee.name)
            return results
        contract = supplier.contract(callee, self, ctx)
        if contract is not None:
            ctx.solver.add(contract)
        return results

    def _assert_call_axioms(self, callee: AnnotatedFunctionDef, args: List[z3.ExprRef],
                            results: Tuple[z3.ExprRef, ...], ctx: EncodingContext) -> None:
        recursive = callee.name == ctx.function.name
        if callee.ensures is not None:
            inner = ctx.nested(self._callee_env(callee, args, results, ctx))
            fact = self.predicate(callee.ensures, inner)
            if callee.requires is not None:
                fact = z3.Implies(self.predicate(callee.requires, inner), fact)
            ctx.solver.add(fact)

        site = CallSite(callee=callee, args=tuple(args), results=results, recursive=recursive)
        for supplier in self.axioms.for_function(callee.name):
            for fact in supplier.axioms(site, self, ctx):
                ctx.solver.add(fact)

    def _fresh_results(self, callee: AnnotatedFunctionDef,
                       ctx: EncodingContext) -> Tuple[z3.ExprRef, ...]:
        prefix = f"{ctx.function.name}_call_{callee.name}"
        return tuple(
            self.factory.symbol(f"{prefix}_{r.name}!{ctx.state.next_id()}", r.type)
            for r in callee.returns
        )

    @staticmethod
    def _callee_env(callee: AnnotatedFunctionDef, args: List[z3.ExprRef],
                    results: Tuple[z3.ExprRef, ...],
                    ctx: EncodingContext) -> Dict[str, z3.ExprRef]:
        """Bindings for reading the callee's contract at a call site.

        Parameters are bound to the encoded arguments, which is substitution
        of the arguments without any risk of capture. A self-recursive call
        overlays these bindings on the caller's in-progress environment.
        """
        bindings: Dict[str, z3.ExprRef] = {p.name: a for p, a in zip(callee.params, args)}
        bindings.update({r.name: s for r, s in zip(callee.returns, results)})
        if callee.name == ctx.function.name:
            return {**ctx.env, **bindings}
        return bindings


def _check_arity(name: str, params: List[Param], args, function: str) -> None:
    if len(params) != len(args):
        raise SpecificationError(arity_error(name, len(params), len(args), function))


# ---------------------------------------------------------------------------
# Static reference checks
# ---------------------------------------------------------------------------

class ReferenceValidator:
    """Checks formula references and call arities before any solver call."""

    def __init__(self, func: AnnotatedFunctionDef, module: Module) -> None:
        self.func = func
        self.module = module
        self._visited: Set[str] = set()

    def validate(self) -> None:
        for pred in (self.func.requires, self.func.ensures):
            if pred is not None:
                self._predicate(pred, annotation=True)
        self._statement(self.func.body)

    def _statement(self, stmt: Statement) -> None:
        if isinstance(stmt, Block):
            for s in stmt.statements:
                self._statement(s)
        elif isinstance(stmt, Assign):
            for target in stmt.targets:
                if isinstance(target, LArray):
                    self._expr(target.index, annotation=False)
            for e in stmt.exprs:
                self._expr(e, annotation=False)
        elif isinstance(stmt, If):
            self._predicate(stmt.condition, annotation=False)
            self._statement(stmt.then)
            if stmt.else_ is not None:
                self._statement(stmt.else_)
        elif isinstance(stmt, While):
            self._predicate(stmt.condition, annotation=False)
            if stmt.invariant is not None:
                self._predicate(stmt.invariant, annotation=True)
            self._statement(stmt.body)
        elif isinstance(stmt, ExprStmt):
            self._expr(stmt.expr, annotation=False)
        else:
            raise TypeError(f"unsupported statement {type(stmt).__name__}")

    def _predicate(self, pred: Predicate, annotation: bool) -> None:
        if isinstance(pred, (TrueCond, FalseCond)):
            return
        if isinstance(pred, Comparison):
            self._expr(pred.left, annotation)
            self._expr(pred.right, annotation)
        elif isinstance(pred, Not):
            self._predicate(pred.operand, annotation)
        elif isinstance(pred, (And, Or, Implies)):
            self._predicate(pred.left, annotation)
            self._predicate(pred.right, annotation)
        elif isinstance(pred, Paren):
            self._predicate(pred.inner, annotation)
        elif isinstance(pred, Quantifier):
            self._predicate(pred.body, annotation)
        elif isinstance(pred, FormulaRef):
            self._formula_ref(pred)
        else:
            raise TypeError(f"unsupported predicate node {type(pred).__name__}")

    def _formula_ref(self, ref: FormulaRef) -> None:
        for a in ref.args:
            self._expr(a, annotation=True)
        formula = self.module.formula(ref.name)
        if formula is not None:
            _check_arity(ref.name, formula.params, ref.args, self.func.name)
            if ref.name not in self._visited:
                self._visited.add(ref.name)
                self._predicate(formula.body, annotation=True)
            return
        callee = self.module.function(ref.name)
        if callee is None:
            raise SpecificationError(undefined_reference_error(ref.name, self.func.name))
        if callee.ensures is None:
            raise SpecificationError(missing_ensures_error(ref.name, self.func.name))
        _check_arity(ref.name, callee.params, ref.args, self.func.name)

    def _expr(self, expr: Expr, annotation: bool) -> None:
        if isinstance(expr, (IntLiteral, Var)):
            return
        if isinstance(expr, Neg):
            self._expr(expr.operand, annotation)
        elif isinstance(expr, BinaryOp):
            self._expr(expr.left, annotation)
            self._expr(expr.right, annotation)
        elif isinstance(expr, ArrayAccess):
            self._expr(expr.array, annotation)
            self._expr(expr.index, annotation)
        elif isinstance(expr, ArrayUpdate):
            self._expr(expr.array, annotation)
            self._expr(expr.index, annotation)
            self._expr(expr.value, annotation)
        elif isinstance(expr, FuncCall):
            for a in expr.args:
                self._expr(a, annotation)
            callee = self.module.function(expr.name)
            if callee is None:
                if annotation:
                    raise SpecificationError(
                        undefined_reference_error(expr.name, self.func.name))
                return
            _check_arity(expr.name, callee.params, expr.args, self.func.name)
            if callee.returns and expr.output >= len(callee.returns):
                raise SpecificationError(output_index_error(
                    expr.name, expr.output, len(callee.returns), self.func.name))
        else:
            raise TypeError(f"unsupported expression node {type(expr).__name__}")


def validate_references(func: AnnotatedFunctionDef, module: Module) -> None:
    """Raise SpecificationError for any malformed reference in ``func``."""
    ReferenceValidator(func, module).validate()
