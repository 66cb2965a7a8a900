"""Predicate constructors used by the wp-calculus.

The constructors fold the boolean constants away as they build, so the VCs
produced for straight-line code stay readable:

    p_and(true, Q)       = Q
    p_or(false, Q)       = Q
    p_not(p_not(Q))      = Q
    p_implies(true, Q)   = Q
    p_implies(P, true)   = true
"""

from __future__ import annotations

from wpverify.ast_nodes import (
    Predicate, TrueCond, FalseCond, Comparison, Not, And, Or, Implies, Paren,
    Quantifier, FormulaRef, CONDITION_TYPES,
)

TRUE = TrueCond()
FALSE = FalseCond()


def p_and(left: Predicate, right: Predicate) -> Predicate:
    if isinstance(left, TrueCond):
        return right
    if isinstance(right, TrueCond):
        return left
    if isinstance(left, FalseCond) or isinstance(right, FalseCond):
        return FALSE
    return And(left, right)


def p_or(left: Predicate, right: Predicate) -> Predicate:
    if isinstance(left, FalseCond):
        return right
    if isinstance(right, FalseCond):
        return left
    if isinstance(left, TrueCond) or isinstance(right, TrueCond):
        return TRUE
    return Or(left, right)


def p_not(pred: Predicate) -> Predicate:
    if isinstance(pred, TrueCond):
        return FALSE
    if isinstance(pred, FalseCond):
        return TRUE
    if isinstance(pred, Not):
        return pred.operand
    return Not(pred)


def p_implies(lhs: Predicate, rhs: Predicate) -> Predicate:
    if isinstance(lhs, TrueCond):
        return rhs
    if isinstance(lhs, FalseCond) or isinstance(rhs, TrueCond):
        return TRUE
    return Implies(lhs, rhs)


def p_all(*preds: Predicate) -> Predicate:
    result: Predicate = TRUE
    for p in preds:
        result = p_and(result, p)
    return result


def condition_to_predicate(cond: Predicate) -> Predicate:
    """Lift a guard condition into the predicate language.

    Every condition node is already a predicate node; this walks the tree to
    reject quantifiers and formula references, which are annotation-only.
    """
    if isinstance(cond, (TrueCond, FalseCond, Comparison)):
        return cond
    if isinstance(cond, Not):
        return Not(condition_to_predicate(cond.operand))
    if isinstance(cond, (And, Or, Implies)):
        return type(cond)(condition_to_predicate(cond.left),
                          condition_to_predicate(cond.right))
    if isinstance(cond, Paren):
        return Paren(condition_to_predicate(cond.inner))
    if isinstance(cond, (Quantifier, FormulaRef)):
        raise TypeError(f"{type(cond).__name__} is not allowed in a condition")
    raise TypeError(f"unsupported condition node {type(cond).__name__}")


def is_condition(pred: Predicate) -> bool:
    if not isinstance(pred, CONDITION_TYPES):
        return False
    if isinstance(pred, Not):
        return is_condition(pred.operand)
    if isinstance(pred, (And, Or, Implies)):
        return is_condition(pred.left) and is_condition(pred.right)
    if isinstance(pred, Paren):
        return is_condition(pred.inner)
    return True
