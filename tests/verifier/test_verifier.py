"""Verification Driver Tests — VER-001 through VER-011."""

import json

import pytest
import z3

from wpverify import (
    ModuleReport, Status, Verifier, VerifierConfig, module_from_dict, verify_module,
)
from wpverify.errors import ErrorKind, VerificationFailed
from wpverify.solver import SolverFactory
from wpverify.wp import ENTRY, LOOP_EXIT


# ---------------------------------------------------------------------------
# Module document helpers
# ---------------------------------------------------------------------------

def b(op, left, right):
    return {"kind": "binary", "op": op, "left": left, "right": right}


def cmp(left, op, right):
    return {"kind": "cmp", "op": op, "left": left, "right": right}


def conj(*operands):
    return {"kind": "and", "operands": list(operands)}


def assign(target, value):
    return {"kind": "assign", "targets": [target], "exprs": [value]}


def call(name, *args):
    return {"kind": "call", "name": name, "args": list(args)}


def index(array, i):
    return {"kind": "index", "array": array, "index": i}


def while_(condition, invariant, body):
    return {"kind": "while", "condition": condition, "invariant": invariant, "body": body}


SUM_UP = {
    "name": "sum_up",
    "params": ["n"], "returns": ["sum"], "locals": ["i"],
    "requires": cmp("n", ">=", 0),
    "ensures": cmp(b("*", 2, "sum"), "==", b("*", "n", b("-", "n", 1))),
    "body": [
        assign("i", 0),
        assign("sum", 0),
        while_(cmp("i", "<", "n"),
               conj(cmp(0, "<=", "i"), cmp("i", "<=", "n"),
                    cmp(b("*", 2, "sum"), "==", b("*", "i", b("-", "i", 1)))),
               [assign("sum", b("+", "sum", "i")), assign("i", b("+", "i", 1))]),
    ],
}


def sum_down(invariant):
    return {
        "name": "sum_down",
        "params": ["n"], "returns": ["sum"], "locals": ["i"],
        "requires": cmp("n", ">=", 0),
        "ensures": cmp(b("*", 2, "sum"), "==", b("*", "n", b("-", "n", 1))),
        "body": [
            assign("i", "n"),
            assign("sum", 0),
            while_(cmp("i", ">", 0), invariant,
                   [assign("i", b("-", "i", 1)), assign("sum", b("+", "sum", "i"))]),
        ],
    }


SUM_DOWN_EQUATION = cmp(b("*", 2, "sum"), "==",
                        b("-", b("*", "n", b("-", "n", 1)), b("*", "i", b("-", "i", 1))))
SUM_DOWN = sum_down(conj(cmp(0, "<=", "i"), cmp("i", "<=", "n"), SUM_DOWN_EQUATION))
SUM_DOWN_NO_LOWER_BOUND = sum_down(conj(cmp("i", "<=", "n"), SUM_DOWN_EQUATION))


def double(step):
    return {
        "name": "double",
        "params": ["n"], "returns": ["r"],
        "requires": cmp("n", ">=", 0),
        "ensures": cmp("r", "==", b("*", 2, "n")),
        "body": {"kind": "if", "condition": cmp("n", "==", 0),
                 "then": assign("r", 0),
                 "else": assign("r", b("+", call("double", b("-", "n", 1)), step))},
    }


def verify(*functions, formulas=(), config=None, factory=None):
    module = module_from_dict({"formulas": list(formulas), "functions": list(functions)})
    return Verifier(config, solver_factory=factory).verify_module(module)


class UnknownSolver(z3.Solver):
    def check(self, *assumptions):
        return z3.unknown

    def reason_unknown(self):
        return "forced"


class UnknownFactory(SolverFactory):
    def new_solver(self):
        self.scopes_opened += 1
        return UnknownSolver(ctx=self.ctx)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestLoops:
    """VER-001: loop invariants discharge against their obligations."""

    def test_sum_counting_up(self):
        report = verify(SUM_UP)
        verdict = report.verdict("sum_up")
        assert verdict.status == Status.VERIFIED
        assert [r.outcome for r in verdict.results] == ["proved"] * 3
        assert report.verified

    def test_sum_counting_down(self):
        assert verify(SUM_DOWN).verdict("sum_down").verified

    def test_missing_lower_bound_falsified(self):
        verdict = verify(SUM_DOWN_NO_LOWER_BOUND).verdict("sum_down")
        assert verdict.status == Status.FALSIFIED
        assert verdict.failed_vc.kind == LOOP_EXIT
        assert verdict.counterexample["i"] < 0
        assert verdict.unchecked == []

    def test_short_circuit_lists_unchecked(self):
        func = {
            "name": "count", "params": ["n"], "returns": ["i"],
            "ensures": cmp("i", "==", "n"),
            "body": [assign("i", 0),
                     while_(cmp("i", "<", "n"), cmp("i", ">=", 1),
                            [assign("i", b("+", "i", 1))])],
        }
        verdict = verify(func).verdict("count")
        assert verdict.status == Status.FALSIFIED
        assert verdict.failed_vc.kind == ENTRY
        assert len(verdict.results) == 1
        assert verdict.unchecked == ["count:loop1:preservation", "count:loop1:exit"]


class TestArrays:
    """VER-002: element writes are visible to later reads."""

    def _writer(self, ensures):
        return {
            "name": "put",
            "params": ["i", "v", {"name": "a", "type": "int[]"}],
            "ensures": ensures,
            "body": {"kind": "assign", "targets": [{"array": "a", "index": "i"}],
                     "exprs": ["v"]},
        }

    def test_write_then_read(self):
        assert verify(self._writer(cmp(index("a", "i"), "==", "v"))).verified

    def test_other_index_falsified(self):
        verdict = verify(self._writer(cmp(index("a", 0), "==", "v"))).verdict("put")
        assert verdict.status == Status.FALSIFIED
        assert "a" in verdict.counterexample
        assert verdict.counterexample["i"] != 0

    def test_vacuous_forall_over_array(self):
        ensures = {"kind": "forall", "var": "j", "type": "int",
                   "body": {"kind": "implies",
                            "left": conj(cmp(0, "<=", "j"), cmp("j", "<", 0)),
                            "right": cmp(index("a", "j"), "==", 0)}}
        assert verify(self._writer(ensures)).verified


class TestCalls:
    """VER-003: calls read the callee contract, recursion included."""

    def test_recursive_contract(self):
        assert verify(double(2)).verdict("double").verified

    def test_recursive_contract_falsified(self):
        verdict = verify(double(1)).verdict("double")
        assert verdict.status == Status.FALSIFIED
        assert verdict.counterexample["n"] > 0

    def test_tuple_results(self):
        split = {
            "name": "split", "params": ["n"], "returns": ["q", "r"],
            "ensures": cmp("n", "==", b("+", "q", "r")),
            "body": {"kind": "assign", "targets": ["q", "r"], "exprs": ["n", 0]},
        }
        use = {
            "name": "use", "params": ["n"], "returns": ["x", "y"],
            "ensures": cmp(b("+", "x", "y"), "==", "n"),
            "body": {"kind": "assign", "targets": ["x", "y"], "exprs": [call("split", "n")]},
        }
        report = verify(split, use)
        assert report.verified, report.to_json()

    def test_universal_ensures_supplier(self):
        quad = {
            "name": "quad", "params": ["n"], "returns": ["r"],
            "requires": cmp("n", ">=", 0),
            "ensures": cmp("r", "==", b("*", 4, "n")),
            "body": assign("r", call("double", call("double", "n"))),
        }
        config = VerifierConfig(axioms={"double": ["universal-ensures"]})
        report = verify(double(2), quad, config=config)
        assert report.verdict("quad").verified


class TestQuantifiedContracts:
    """VER-004: quantifiers in requires and ensures."""

    def test_exists_in_requires(self):
        func = {
            "name": "even", "params": ["n"], "returns": ["r"],
            "requires": {"kind": "exists", "var": "k",
                         "body": cmp("n", "==", b("*", 2, "k"))},
            "ensures": cmp("r", "!=", 1),
            "body": assign("r", "n"),
        }
        assert verify(func).verified

    def test_formula_in_contract(self):
        pos = {"name": "pos", "params": ["x"], "body": cmp("x", ">", 0)}
        func = {
            "name": "inc", "params": ["x"], "returns": ["y"],
            "requires": {"kind": "formula", "name": "pos", "args": ["x"]},
            "ensures": {"kind": "formula", "name": "pos", "args": ["y"]},
            "body": assign("y", b("+", "x", 1)),
        }
        assert verify(func, formulas=[pos]).verified


class TestSpecificationErrors:
    """VER-005: malformed references fail before any solver call."""

    def test_arity_error(self):
        formula = {"name": "F", "params": ["x"], "body": cmp("x", ">", 0)}
        func = {
            "name": "f", "params": ["x"], "returns": ["y"],
            "ensures": {"kind": "formula", "name": "F", "args": [1, 2]},
            "body": assign("y", "x"),
        }
        factory = SolverFactory()
        verdict = verify(func, formulas=[formula], factory=factory).verdict("f")
        assert verdict.status == Status.SPEC_ERROR
        assert verdict.error.kind == ErrorKind.SPECIFICATION_ERROR
        assert verdict.results == []
        assert factory.scopes_opened == 0

    def test_spec_error_does_not_stop_other_functions(self):
        func = {
            "name": "broken", "params": ["x"],
            "ensures": {"kind": "formula", "name": "nowhere", "args": []},
            "body": [],
        }
        report = verify(func, SUM_UP)
        assert report.verdict("broken").status == Status.SPEC_ERROR
        assert report.verdict("sum_up").verified

    def test_assignment_arity_error(self):
        func = {
            "name": "f", "params": ["x"], "returns": ["y", "z"],
            "body": {"kind": "assign", "targets": ["y", "z"], "exprs": [1, 2, 3]},
        }
        factory = SolverFactory()
        report = verify(func, SUM_UP, factory=factory)
        verdict = report.verdict("f")
        assert verdict.status == Status.SPEC_ERROR
        assert verdict.error.details == {"targets": 2, "values": 3}
        assert report.verdict("sum_up").verified
        assert factory.scopes_opened == 3


class TestInconclusive:
    """VER-006: an unknown solver answer is never reported as verified."""

    def test_forced_unknown(self):
        factory = UnknownFactory()
        verdict = verify(SUM_UP, factory=factory).verdict("sum_up")
        assert verdict.status == Status.INCONCLUSIVE
        assert verdict.reason == "forced"
        assert verdict.counterexample is None
        assert len(verdict.unchecked) == 2
        assert not verdict.verified

    def test_inconclusive_error_kind(self):
        verdict = verify(SUM_UP, factory=UnknownFactory()).verdict("sum_up")
        assert verdict.to_error().kind == ErrorKind.INCONCLUSIVE


class TestReport:
    """VER-007: module reports aggregate independent verdicts."""

    def test_functions_independent(self):
        report = verify(SUM_UP, SUM_DOWN_NO_LOWER_BOUND)
        assert not report.verified
        assert report.verdict("sum_up").verified
        assert [v.function for v in report.failures] == ["sum_down"]

    def test_missing_verdict(self):
        with pytest.raises(KeyError):
            ModuleReport().verdict("nothing")

    def test_raise_for_status(self):
        report = verify(SUM_DOWN_NO_LOWER_BOUND)
        with pytest.raises(VerificationFailed) as exc:
            report.raise_for_status()
        assert exc.value.error.kind == ErrorKind.VERIFICATION_FAILED
        assert exc.value.report is report
        assert "counterexample" in exc.value.error.details

    def test_raise_for_status_when_verified(self):
        verify(SUM_UP).raise_for_status()

    def test_json(self):
        data = json.loads(verify(SUM_DOWN_NO_LOWER_BOUND).to_json())
        assert data["verified"] is False
        entry = data["functions"][0]
        assert entry["status"] == "falsified"
        assert entry["failed_vc"] == "sum_down:loop1:exit"
        assert entry["counterexample"]["i"] < 0

    def test_empty_module(self):
        assert verify().verified


class TestConfiguration:
    """VER-008: configuration selects functions and settings."""

    def test_function_filter(self):
        config = VerifierConfig(functions=["sum_up"])
        report = verify(SUM_UP, SUM_DOWN_NO_LOWER_BOUND, config=config)
        assert [v.function for v in report.verdicts] == ["sum_up"]

    def test_depth_zero_leaves_calls_unconstrained(self):
        config = VerifierConfig(max_unfold_depth=0)
        verdict = verify(double(2), config=config).verdict("double")
        assert verdict.status == Status.FALSIFIED


class TestSolverLifecycle:
    """VER-009: the verifier closes the factories it creates."""

    def test_own_factory_closed(self, monkeypatch):
        created = []

        class RecordingFactory(SolverFactory):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                created.append(self)

        monkeypatch.setattr("wpverify.verifier.SolverFactory", RecordingFactory)
        module = module_from_dict({"functions": [SUM_UP]})
        verdict = Verifier().verify_function(module.function("sum_up"), module)
        assert verdict.verified
        assert len(created) == 1
        assert created[0].closed
        assert created[0].scopes_opened == 3

    def test_given_factory_left_open(self):
        factory = SolverFactory()
        verify(SUM_UP, factory=factory)
        assert not factory.closed
        assert factory.scopes_opened == 3

    def test_module_level_helper(self):
        module = module_from_dict({"functions": [SUM_UP]})
        assert verify_module(module).verified


class TestParallel:
    """VER-010: functions verify in worker processes."""

    def test_parallel_matches_sequential(self):
        config = VerifierConfig(parallel=True, parallel_workers=2)
        report = verify(SUM_UP, SUM_DOWN_NO_LOWER_BOUND, config=config)
        assert [v.function for v in report.verdicts] == ["sum_up", "sum_down"]
        assert report.verdict("sum_up").verified
        assert report.verdict("sum_down").status == Status.FALSIFIED


INC_ANY = {
    "name": "inc", "params": ["x"], "returns": ["y"],
    "ensures": cmp("y", "==", b("+", "x", 1)),
    "body": assign("y", b("+", "x", 1)),
}

IDENT = {
    "name": "ident", "params": ["x"], "returns": ["y"],
    "ensures": cmp("y", "==", "x"),
    "body": assign("y", "x"),
}


def forall(var, body):
    return {"kind": "forall", "var": var, "body": body}


def exists(var, body):
    return {"kind": "exists", "var": var, "body": body}


class TestCallsOverQuantifiedVariables:
    """VER-011: a call over a quantified variable is read for every value."""

    def _check(self, callee, requires=None, ensures=None):
        func = {"name": "h", "params": ["n"], "body": []}
        if requires is not None:
            func["requires"] = requires
        if ensures is not None:
            func["ensures"] = ensures
        report = verify(callee, func)
        assert report.verdict(callee["name"]).verified
        return report.verdict("h")

    def test_forall_in_requires_is_not_vacuous(self):
        verdict = self._check(INC_ANY,
                              requires=forall("i", cmp(call("inc", "i"), ">", "i")),
                              ensures=cmp(1, "==", 0))
        assert verdict.status == Status.FALSIFIED

    def test_forall_in_ensures(self):
        verdict = self._check(INC_ANY, ensures=forall("i", cmp(call("inc", "i"), ">", "i")))
        assert verdict.verified

    def test_forall_in_ensures_falsified(self):
        verdict = self._check(INC_ANY,
                              ensures=forall("i", cmp(call("inc", "i"), ">", b("+", "i", 1))))
        assert verdict.status == Status.FALSIFIED

    def test_exists_in_ensures(self):
        verdict = self._check(IDENT, ensures=exists("i", cmp(call("ident", "i"), "==", "n")))
        assert verdict.verified

    def test_exists_in_ensures_falsified(self):
        verdict = self._check(IDENT,
                              ensures=exists("i", cmp(call("ident", "i"), "==", b("+", "i", 1))))
        assert verdict.status == Status.FALSIFIED
