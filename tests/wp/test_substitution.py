"""Substitution Engine Tests — SUBST-001 through SUBST-006."""

import pytest

from wpverify.ast_nodes import (
    IntLiteral, Var, Neg, BinaryOp, FuncCall, ArrayAccess, ArrayUpdate,
    TrueCond, FalseCond, Comparison, Not, And, Or, Implies, Paren,
    Quantifier, FormulaRef,
)
from wpverify.substitution import (
    substitute, substitute_many, free_vars, all_names, fresh_name,
)


def gt(left, right):
    return Comparison(left, ">", right)


class TestExpressions:
    """SUBST-001: substitution in expressions."""

    def test_var_match(self):
        assert substitute(Var("x"), "x", IntLiteral(5)) == IntLiteral(5)

    def test_var_no_match(self):
        assert substitute(Var("y"), "x", IntLiteral(5)) == Var("y")

    def test_literal_unchanged(self):
        lit = IntLiteral(7)
        assert substitute(lit, "x", Var("z")) is lit

    def test_binary(self):
        e = BinaryOp("+", Var("x"), IntLiteral(1))
        assert str(substitute(e, "x", IntLiteral(3))) == "(3 + 1)"

    def test_neg_and_call_args(self):
        e = FuncCall("f", (Neg(Var("x")), Var("y")))
        result = substitute(e, "x", Var("k"))
        assert result == FuncCall("f", (Neg(Var("k")), Var("y")))

    def test_call_output_preserved(self):
        e = FuncCall("divmod", (Var("x"),), output=1)
        assert substitute(e, "x", IntLiteral(9)).output == 1

    def test_array_access_replaces_array_term(self):
        e = ArrayAccess(Var("a"), Var("i"))
        upd = ArrayUpdate(Var("a"), IntLiteral(0), Var("v"))
        assert substitute(e, "a", upd) == ArrayAccess(upd, Var("i"))

    def test_input_not_mutated(self):
        e = BinaryOp("*", Var("x"), Var("x"))
        substitute(e, "x", IntLiteral(2))
        assert e == BinaryOp("*", Var("x"), Var("x"))


class TestPredicates:
    """SUBST-002: substitution through connectives."""

    def test_constants_unchanged(self):
        for p in (TrueCond(), FalseCond()):
            assert substitute(p, "x", IntLiteral(1)) == p

    def test_connectives(self):
        p = Implies(And(gt(Var("x"), IntLiteral(0)), Not(gt(Var("y"), Var("x")))),
                    Paren(Or(gt(Var("x"), IntLiteral(1)), FalseCond())))
        result = substitute(p, "x", IntLiteral(4))
        assert "x" not in free_vars(result)
        assert free_vars(result) == {"y"}

    def test_formula_ref_substitutes_arguments_only(self):
        p = FormulaRef("sorted", (Var("a"), Var("n")))
        assert substitute(p, "n", IntLiteral(3)) == FormulaRef("sorted", (Var("a"), IntLiteral(3)))
        # the reference name is never a variable
        assert substitute(p, "sorted", IntLiteral(3)) == p


class TestNoOccurrence:
    """SUBST-003: substitute(p, x, e) == p when x is not free in p."""

    @pytest.mark.parametrize("pred", [
        gt(Var("y"), IntLiteral(0)),
        And(gt(Var("a"), Var("b")), Not(TrueCond())),
        Quantifier("forall", "i", "int", gt(ArrayAccess(Var("a"), Var("i")), Var("i"))),
        FormulaRef("F", (Var("y"), BinaryOp("-", Var("z"), IntLiteral(1)))),
    ])
    def test_idempotent(self, pred):
        assert substitute(pred, "x", BinaryOp("+", Var("i"), IntLiteral(1))) == pred


class TestShadowing:
    """SUBST-004: a quantifier binding x is never substituted into."""

    @pytest.mark.parametrize("quant", ["forall", "exists"])
    def test_bound_variable_shadows(self, quant):
        q = Quantifier(quant, "x", "int", gt(Var("x"), Var("y")))
        assert substitute(q, "x", IntLiteral(99)) == q

    def test_free_variable_in_body_substituted(self):
        q = Quantifier("forall", "i", "int", gt(ArrayAccess(Var("a"), Var("i")), Var("x")))
        result = substitute(q, "x", IntLiteral(0))
        assert result == Quantifier("forall", "i", "int",
                                    gt(ArrayAccess(Var("a"), Var("i")), IntLiteral(0)))


class TestCaptureAvoidance:
    """SUBST-005: bound variables are renamed away from the replacement."""

    def test_bound_variable_renamed(self):
        q = Quantifier("forall", "i", "int", gt(ArrayAccess(Var("a"), Var("i")), Var("x")))
        result = substitute(q, "x", BinaryOp("+", Var("i"), IntLiteral(1)))
        assert isinstance(result, Quantifier)
        assert result.var != "i"
        assert free_vars(result) == {"a", "i"}
        assert result.body == gt(ArrayAccess(Var("a"), Var(result.var)),
                                 BinaryOp("+", Var("i"), IntLiteral(1)))

    def test_fresh_name_avoids_taken(self):
        assert fresh_name("i", {"i", "i_1", "i_2"}) == "i_3"

    def test_all_names_includes_bound(self):
        q = Quantifier("exists", "k", "int", gt(Var("k"), Var("n")))
        assert all_names(q) == {"k", "n"}
        assert free_vars(q) == {"n"}


class TestSimultaneous:
    """SUBST-006: substitute_many reads every replacement in the original tree."""

    def test_swap(self):
        p = And(Comparison(Var("x"), "==", IntLiteral(1)),
                Comparison(Var("y"), "==", IntLiteral(2)))
        result = substitute_many(p, {"x": Var("y"), "y": Var("x")})
        assert result == And(Comparison(Var("y"), "==", IntLiteral(1)),
                             Comparison(Var("x"), "==", IntLiteral(2)))

    def test_chained_names_not_resubstituted(self):
        e = BinaryOp("+", Var("a"), Var("b"))
        result = substitute_many(e, {"a": Var("b"), "b": IntLiteral(0)})
        assert result == BinaryOp("+", Var("b"), IntLiteral(0))

    def test_empty_mapping(self):
        p = gt(Var("x"), IntLiteral(0))
        assert substitute_many(p, {}) is p
