"""Substitution Q[x/e] over expressions and predicates.

This is the core operation of the wp-calculus:
  wp(x := e, Q) = Q[x/e]

Rules:
  - literals pass through unchanged
  - a variable is replaced iff its name matches
  - composite expressions and connectives recurse structurally
  - a quantifier binding x shadows it: the quantifier is returned unchanged
  - a formula reference substitutes into its arguments, never into the
    formula's own parameter names

Capture avoidance: before descending into a quantifier whose bound variable
occurs free in the replacement, the bound variable is renamed to a fresh
name occurring neither in the replacement nor in the quantifier body.
Input trees are never mutated.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Set, TypeVar, Union

from wpverify.ast_nodes import (
    Expr, IntLiteral, Var, Neg, BinaryOp, FuncCall, ArrayAccess, ArrayUpdate,
    Predicate, TrueCond, FalseCond, Comparison, Not, And, Or, Implies, Paren,
    Quantifier, FormulaRef,
)

Node = Union[Expr, Predicate]
N = TypeVar("N", Expr, Predicate)


# ---------------------------------------------------------------------------
# Variable collection
# ---------------------------------------------------------------------------

def free_vars(node: Node) -> Set[str]:
    """Collect all free variable names in an expression or predicate."""
    if isinstance(node, Var):
        return {node.name}
    if isinstance(node, (IntLiteral, TrueCond, FalseCond)):
        return set()
    if isinstance(node, Quantifier):
        inner = free_vars(node.body)
        inner.discard(node.var)
        return inner
    result: Set[str] = set()
    for child in _children(node):
        result |= free_vars(child)
    return result


def all_names(node: Node) -> Set[str]:
    """Free and bound variable names of a tree."""
    if isinstance(node, Var):
        return {node.name}
    result: Set[str] = set()
    if isinstance(node, Quantifier):
        result.add(node.var)
    for child in _children(node):
        result |= all_names(child)
    return result


def fresh_name(base: str, avoid: Iterable[str]) -> str:
    taken = set(avoid)
    k = 1
    while f"{base}_{k}" in taken:
        k += 1
    return f"{base}_{k}"


def _children(node: Node) -> tuple:
    if isinstance(node, Neg):
        return (node.operand,)
    if isinstance(node, BinaryOp):
        return (node.left, node.right)
    if isinstance(node, FuncCall):
        return node.args
    if isinstance(node, ArrayAccess):
        return (node.array, node.index)
    if isinstance(node, ArrayUpdate):
        return (node.array, node.index, node.value)
    if isinstance(node, Comparison):
        return (node.left, node.right)
    if isinstance(node, Not):
        return (node.operand,)
    if isinstance(node, (And, Or, Implies)):
        return (node.left, node.right)
    if isinstance(node, Paren):
        return (node.inner,)
    if isinstance(node, Quantifier):
        return (node.body,)
    if isinstance(node, FormulaRef):
        return node.args
    if isinstance(node, (IntLiteral, Var, TrueCond, FalseCond)):
        return ()
    raise TypeError(f"unsupported node {type(node).__name__}")


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------

def substitute(node: N, var: str, replacement: Expr) -> N:
    """Replace every free occurrence of ``var`` in ``node`` by ``replacement``."""
    if isinstance(node, Expr):
        return _subst_expr(node, var, replacement)
    return _subst_pred(node, var, replacement)


def substitute_many(node: N, mapping: Mapping[str, Expr]) -> N:
    """Simultaneous substitution: every right-hand side is read in the
    original tree, so {x: y, y: x} swaps the two names.

    Each name is first renamed to a fresh intermediate, then the
    intermediates are replaced; intermediates never occur in a replacement.
    """
    if not mapping:
        return node
    if len(mapping) == 1:
        (var, replacement), = mapping.items()
        return substitute(node, var, replacement)

    avoid = all_names(node) | set(mapping)
    for replacement in mapping.values():
        avoid |= all_names(replacement)

    staged = []
    for var, replacement in mapping.items():
        temp = fresh_name(f"{var}$", avoid)
        avoid.add(temp)
        node = substitute(node, var, Var(temp))
        staged.append((temp, replacement))
    for temp, replacement in staged:
        node = substitute(node, temp, replacement)
    return node


def _subst_expr(expr: Expr, var: str, repl: Expr) -> Expr:
    if isinstance(expr, IntLiteral):
        return expr
    if isinstance(expr, Var):
        return repl if expr.name == var else expr
    if isinstance(expr, Neg):
        return Neg(_subst_expr(expr.operand, var, repl))
    if isinstance(expr, BinaryOp):
        return BinaryOp(expr.op,
                        _subst_expr(expr.left, var, repl),
                        _subst_expr(expr.right, var, repl))
    if isinstance(expr, FuncCall):
        return FuncCall(expr.name,
                        tuple(_subst_expr(a, var, repl) for a in expr.args),
                        expr.output)
    if isinstance(expr, ArrayAccess):
        return ArrayAccess(_subst_expr(expr.array, var, repl),
                           _subst_expr(expr.index, var, repl))
    if isinstance(expr, ArrayUpdate):
        return ArrayUpdate(_subst_expr(expr.array, var, repl),
                           _subst_expr(expr.index, var, repl),
                           _subst_expr(expr.value, var, repl))
    raise TypeError(f"unsupported expression node {type(expr).__name__}")


def _subst_pred(pred: Predicate, var: str, repl: Expr) -> Predicate:
    if isinstance(pred, (TrueCond, FalseCond)):
        return pred
    if isinstance(pred, Comparison):
        return Comparison(_subst_expr(pred.left, var, repl), pred.op,
                          _subst_expr(pred.right, var, repl))
    if isinstance(pred, Not):
        return Not(_subst_pred(pred.operand, var, repl))
    if isinstance(pred, (And, Or, Implies)):
        return type(pred)(_subst_pred(pred.left, var, repl),
                          _subst_pred(pred.right, var, repl))
    if isinstance(pred, Paren):
        return Paren(_subst_pred(pred.inner, var, repl))
    if isinstance(pred, Quantifier):
        return _subst_quantifier(pred, var, repl)
    if isinstance(pred, FormulaRef):
        return FormulaRef(pred.name,
                          tuple(_subst_expr(a, var, repl) for a in pred.args))
    raise TypeError(f"unsupported predicate node {type(pred).__name__}")


def _subst_quantifier(q: Quantifier, var: str, repl: Expr) -> Predicate:
    if q.var == var:
        return q  # bound variable shadows
    if var not in free_vars(q.body):
        return q
    if q.var in free_vars(repl):
        renamed = fresh_name(q.var, all_names(repl) | all_names(q.body) | {var})
        body = _subst_pred(q.body, q.var, Var(renamed))
        return Quantifier(q.quant, renamed, q.var_type, _subst_pred(body, var, repl))
    return Quantifier(q.quant, q.var, q.var_type, _subst_pred(q.body, var, repl))
