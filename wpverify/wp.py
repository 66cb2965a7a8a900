"""Weakest precondition calculus for annotated functions.

Implements Dijkstra's predicate transformer semantics, computed backwards
from the postcondition:

    wp(e, Q)                     = Q
    wp(S1; S2, Q)                = wp(S1, wp(S2, Q))
    wp(x1, .., xn := e1, .., en) = Q[x1/e1, .., xn/en]      (simultaneous)
    wp(a[i] := v, Q)             = Q[a / a{i -> v}]
    wp(if b then S1 else S2, Q)  = (b => wp(S1, Q)) /\\ (!b => wp(S2, Q))
    wp(while b inv I do S, Q)    = I

The loop rule cannot be expressed as a precondition alone; it emits two
side obligations:

    PRESERVATION:  (I /\\ b)  => wp(S, I)
    EXIT:          (I /\\ !b) => Q

A missing invariant defaults to ``true``, which is rarely provable.

The top-level VC set of a function is
    { requires => wp(body, ensures) } + side obligations
with absent clauses read as ``true``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from wpverify.ast_nodes import (
    AnnotatedFunctionDef, Statement, Assign, Block, If, While, ExprStmt,
    Expr, Var, FuncCall, ArrayUpdate, LVar, LArray, Predicate,
)
from wpverify.errors import SpecificationError, assignment_arity_error
from wpverify.logic import (
    TRUE, p_and, p_not, p_implies, condition_to_predicate,
)
from wpverify.substitution import substitute_many


ENTRY = "entry"
LOOP_PRESERVATION = "loop-preservation"
LOOP_EXIT = "loop-exit"


@dataclass
class VerificationCondition:
    """A closed obligation: valid iff its negation is unsatisfiable."""
    name: str
    kind: str
    formula: Predicate

    def __str__(self) -> str:
        return f"VC[{self.name}]: {self.formula}"


class WPCalculator:
    """Computes weakest preconditions for statements.

    ``wp`` never mutates its inputs; VCs are freshly built predicate trees.
    """

    def __init__(self, function_name: str = "") -> None:
        self.function_name = function_name
        self._loop_counter = 0

    def wp(self, stmt: Statement, post: Predicate,
           side_conditions: List[VerificationCondition]) -> Predicate:
        if isinstance(stmt, ExprStmt):
            return post
        if isinstance(stmt, Block):
            return self.wp_block(stmt.statements, post, side_conditions)
        if isinstance(stmt, Assign):
            return self._wp_assign(stmt, post)
        if isinstance(stmt, If):
            return self._wp_if(stmt, post, side_conditions)
        if isinstance(stmt, While):
            return self._wp_while(stmt, post, side_conditions)
        raise TypeError(f"unsupported statement {type(stmt).__name__}")

    def wp_block(self, stmts: List[Statement], post: Predicate,
                 side_conditions: List[VerificationCondition]) -> Predicate:
        result = post
        for stmt in reversed(stmts):
            result = self.wp(stmt, result, side_conditions)
        return result

    def _wp_assign(self, stmt: Assign, post: Predicate) -> Predicate:
        """All right-hand sides read the pre-assignment state.

        Targets are collected in reverse declaration order; element writes
        to the same array fold into one nested update term.
        """
        mapping: Dict[str, Expr] = {}
        for name, value in reversed(self.assignment_pairs(stmt, self.function_name)):
            mapping.setdefault(name, value)
        return substitute_many(post, mapping)

    @staticmethod
    def assignment_pairs(stmt: Assign, function: str = "") -> List[Tuple[str, Expr]]:
        """(variable, new value) pairs in declaration order."""
        exprs = list(stmt.exprs)
        if (len(stmt.targets) > 1 and len(exprs) == 1
                and isinstance(exprs[0], FuncCall)):
            call = exprs[0]
            exprs = [FuncCall(call.name, call.args, i)
                     for i in range(len(stmt.targets))]
        if len(exprs) != len(stmt.targets):
            raise SpecificationError(assignment_arity_error(
                len(stmt.targets), len(exprs), function or None))

        pairs: List[Tuple[str, Expr]] = []
        updates: Dict[str, Expr] = {}
        for target, value in zip(stmt.targets, exprs):
            if isinstance(target, LVar):
                pairs.append((target.name, value))
            elif isinstance(target, LArray):
                current = updates.get(target.name, Var(target.name))
                updates[target.name] = ArrayUpdate(current, target.index, value)
            else:
                raise TypeError(f"unsupported assignment target {type(target).__name__}")
        pairs.extend(updates.items())
        return pairs

    def _wp_if(self, stmt: If, post: Predicate,
               side_conditions: List[VerificationCondition]) -> Predicate:
        cond = condition_to_predicate(stmt.condition)
        wp_then = self.wp(stmt.then, post, side_conditions)
        if stmt.else_ is not None:
            wp_else = self.wp(stmt.else_, post, side_conditions)
        else:
            wp_else = post
        return p_and(p_implies(cond, wp_then), p_implies(p_not(cond), wp_else))

    def _wp_while(self, stmt: While, post: Predicate,
                  side_conditions: List[VerificationCondition]) -> Predicate:
        self._loop_counter += 1
        label = f"{self._prefix()}loop{self._loop_counter}"
        invariant = stmt.invariant if stmt.invariant is not None else TRUE
        cond = condition_to_predicate(stmt.condition)

        wp_body = self.wp(stmt.body, invariant, side_conditions)
        side_conditions.append(VerificationCondition(
            name=f"{label}:preservation",
            kind=LOOP_PRESERVATION,
            formula=p_implies(p_and(invariant, cond), wp_body),
        ))
        side_conditions.append(VerificationCondition(
            name=f"{label}:exit",
            kind=LOOP_EXIT,
            formula=p_implies(p_and(invariant, p_not(cond)), post),
        ))
        return invariant

    def _prefix(self) -> str:
        return f"{self.function_name}:" if self.function_name else ""


class VCGenerator:
    """Builds the verification conditions of one annotated function."""

    def generate(self, func: AnnotatedFunctionDef) -> List[VerificationCondition]:
        calc = WPCalculator(func.name)
        side: List[VerificationCondition] = []
        pre = func.requires if func.requires is not None else TRUE
        post = func.ensures if func.ensures is not None else TRUE

        body_wp = calc.wp(func.body, post, side)
        entry = VerificationCondition(
            name=f"{func.name}:entry",
            kind=ENTRY,
            formula=p_implies(pre, body_wp),
        )
        return [entry, *side]


def generate_vcs(func: AnnotatedFunctionDef) -> List[VerificationCondition]:
    return VCGenerator().generate(func)
