"""Build a resolved Module from a JSON or YAML document.

The front end's parser is not part of wpverify; this loader reads the
module it hands over. Nodes are tagged mappings, with two shorthands: a
bare integer is a number literal and a bare string is a variable.

    {"formulas":  [{"name": "pos", "params": ["x"],
                    "body": {"kind": "cmp", "op": ">", "left": "x", "right": 0}}],
     "functions": [{"name": "inc", "params": ["x"], "returns": ["y"],
                    "requires": {"kind": "formula", "name": "pos", "args": ["x"]},
                    "ensures": {"kind": "cmp", "op": "==", "left": "y",
                                "right": {"kind": "binary", "op": "+",
                                          "left": "x", "right": 1}},
                    "body": {"kind": "assign", "targets": ["y"],
                             "exprs": [{"kind": "binary", "op": "+",
                                        "left": "x", "right": 1}]}}]}

Expressions:  number, var, neg, binary, call, index
Predicates:   true, false, cmp, not, and, or, implies, paren, forall,
              exists, formula (and/or take an "operands" list)
Statements:   assign, block, if, while, expr
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List

import yaml

from wpverify.ast_nodes import (
    INT, INT_ARRAY, ARITH_OPS, COMPARISON_OPS,
    Expr, IntLiteral, Var, Neg, BinaryOp, FuncCall, ArrayAccess,
    Predicate, TrueCond, FalseCond, Comparison, Not, And, Or, Implies, Paren,
    Quantifier, FormulaRef,
    Statement, Assign, Block, If, While, ExprStmt, LVar, LArray, LValue,
    Param, FormulaDef, AnnotatedFunctionDef, Module,
)
from wpverify.errors import ModuleLoadError, load_error
from wpverify.logic import is_condition

logger = logging.getLogger(__name__)


def load_module(path: str) -> Module:
    """Read a module document (.json, .yml or .yaml) from disk."""
    if not os.path.exists(path):
        raise ModuleLoadError(load_error(f"File not found: {path}", path))
    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as e:
        raise ModuleLoadError(load_error(f"Cannot read {path}: {e}", path)) from e

    try:
        if path.endswith((".yml", ".yaml")):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ModuleLoadError(load_error(f"Malformed module document: {e}", path)) from e

    module = module_from_dict(data)
    logger.debug("loaded %s: %d formula(s), %d function(s)",
                 path, len(module.formulas), len(module.functions))
    return module


def module_from_dict(data: Any) -> Module:
    return _ModuleReader().module(data)


class _ModuleReader:
    """Recursive-descent reader; tracks a path for error messages."""

    def __init__(self) -> None:
        self._path: List[str] = []

    def fail(self, message: str) -> ModuleLoadError:
        where = "/".join(self._path) or "<root>"
        return ModuleLoadError(load_error(f"{where}: {message}", where))

    def _at(self, data: Dict[str, Any], key: str, required: bool = True) -> Any:
        if key not in data:
            if required:
                raise self.fail(f"missing '{key}'")
            return None
        return data[key]

    def _mapping(self, data: Any, what: str) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise self.fail(f"expected a {what} object, got {type(data).__name__}")
        return data

    def _list(self, data: Any, what: str) -> list:
        if data is None:
            return []
        if not isinstance(data, list):
            raise self.fail(f"expected a list of {what}")
        return data

    def _nested(self, key: str, fn, data):
        self._path.append(key)
        try:
            return fn(data)
        finally:
            self._path.pop()

    # -- declarations -----------------------------------------------------

    def module(self, data: Any) -> Module:
        data = self._mapping(data, "module")
        formulas = [self._nested(f"formulas[{i}]", self.formula, f)
                    for i, f in enumerate(self._list(data.get("formulas"), "formulas"))]
        functions = [self._nested(f"functions[{i}]", self.function, f)
                     for i, f in enumerate(self._list(data.get("functions"), "functions"))]
        return Module(formulas=formulas, functions=functions)

    def formula(self, data: Any) -> FormulaDef:
        data = self._mapping(data, "formula")
        return FormulaDef(
            name=str(self._at(data, "name")),
            params=self.params(data.get("params")),
            body=self._nested("body", self.predicate, self._at(data, "body")),
        )

    def function(self, data: Any) -> AnnotatedFunctionDef:
        data = self._mapping(data, "function")
        name = str(self._at(data, "name"))
        requires = data.get("requires")
        ensures = data.get("ensures")
        return AnnotatedFunctionDef(
            name=name,
            params=self.params(data.get("params")),
            returns=self.params(data.get("returns")),
            locals=self.params(data.get("locals")),
            body=self._nested("body", self.statement, self._at(data, "body")),
            requires=None if requires is None else self._nested("requires", self.predicate, requires),
            ensures=None if ensures is None else self._nested("ensures", self.predicate, ensures),
        )

    def params(self, data: Any) -> List[Param]:
        result = []
        for item in self._list(data, "parameters"):
            if isinstance(item, str):
                result.append(Param(item, INT))
                continue
            item = self._mapping(item, "parameter")
            type_name = str(item.get("type", INT))
            if type_name not in (INT, INT_ARRAY):
                raise self.fail(f"unknown type '{type_name}'")
            result.append(Param(str(self._at(item, "name")), type_name))
        return result

    # -- expressions ------------------------------------------------------

    def expr(self, data: Any) -> Expr:
        if isinstance(data, bool):
            raise self.fail("booleans are not integer expressions")
        if isinstance(data, int):
            return IntLiteral(data)
        if isinstance(data, str):
            return Var(data)
        data = self._mapping(data, "expression")
        kind = self._at(data, "kind")
        if kind == "number":
            value = self._at(data, "value")
            if not isinstance(value, int) or isinstance(value, bool):
                raise self.fail("number value must be an integer")
            return IntLiteral(value)
        if kind == "var":
            return Var(str(self._at(data, "name")))
        if kind == "neg":
            return Neg(self._nested("operand", self.expr, self._at(data, "operand")))
        if kind == "binary":
            op = self._at(data, "op")
            if op not in ARITH_OPS:
                raise self.fail(f"unknown arithmetic operator '{op}'")
            return BinaryOp(op,
                            self._nested("left", self.expr, self._at(data, "left")),
                            self._nested("right", self.expr, self._at(data, "right")))
        if kind == "call":
            args = tuple(self._nested(f"args[{i}]", self.expr, a)
                         for i, a in enumerate(self._list(data.get("args"), "arguments")))
            return FuncCall(str(self._at(data, "name")), args, int(data.get("output", 0)))
        if kind == "index":
            return ArrayAccess(self._nested("array", self.expr, self._at(data, "array")),
                               self._nested("index", self.expr, self._at(data, "index")))
        raise self.fail(f"unknown expression kind '{kind}'")

    # -- predicates -------------------------------------------------------

    def predicate(self, data: Any) -> Predicate:
        if data is True:
            return TrueCond()
        if data is False:
            return FalseCond()
        data = self._mapping(data, "predicate")
        kind = self._at(data, "kind")
        if kind == "true":
            return TrueCond()
        if kind == "false":
            return FalseCond()
        if kind == "cmp":
            op = self._at(data, "op")
            if op not in COMPARISON_OPS:
                raise self.fail(f"unknown comparison operator '{op}'")
            return Comparison(self._nested("left", self.expr, self._at(data, "left")), op,
                              self._nested("right", self.expr, self._at(data, "right")))
        if kind == "not":
            return Not(self._nested("operand", self.predicate, self._at(data, "operand")))
        if kind in ("and", "or"):
            operands = [self._nested(f"operands[{i}]", self.predicate, p)
                        for i, p in enumerate(self._list(self._at(data, "operands"), "operands"))]
            if len(operands) < 2:
                raise self.fail(f"'{kind}' needs at least two operands")
            node = And if kind == "and" else Or
            result = operands[0]
            for p in operands[1:]:
                result = node(result, p)
            return result
        if kind == "implies":
            return Implies(self._nested("left", self.predicate, self._at(data, "left")),
                           self._nested("right", self.predicate, self._at(data, "right")))
        if kind == "paren":
            return Paren(self._nested("inner", self.predicate, self._at(data, "inner")))
        if kind in ("forall", "exists"):
            var_type = str(data.get("type", INT))
            if var_type not in (INT, INT_ARRAY):
                raise self.fail(f"unknown type '{var_type}'")
            return Quantifier(kind, str(self._at(data, "var")), var_type,
                              self._nested("body", self.predicate, self._at(data, "body")))
        if kind == "formula":
            args = tuple(self._nested(f"args[{i}]", self.expr, a)
                         for i, a in enumerate(self._list(data.get("args"), "arguments")))
            return FormulaRef(str(self._at(data, "name")), args)
        raise self.fail(f"unknown predicate kind '{kind}'")

    def condition(self, data: Any) -> Predicate:
        pred = self.predicate(data)
        if not is_condition(pred):
            raise self.fail("quantifiers and formula references are not allowed in conditions")
        return pred

    # -- statements -------------------------------------------------------

    def statement(self, data: Any) -> Statement:
        if isinstance(data, list):
            return Block([self._nested(f"[{i}]", self.statement, s) for i, s in enumerate(data)])
        data = self._mapping(data, "statement")
        kind = self._at(data, "kind")
        if kind == "assign":
            targets = [self._nested(f"targets[{i}]", self.lvalue, t)
                       for i, t in enumerate(self._list(self._at(data, "targets"), "targets"))]
            exprs = [self._nested(f"exprs[{i}]", self.expr, e)
                     for i, e in enumerate(self._list(self._at(data, "exprs"), "expressions"))]
            if not targets:
                raise self.fail("assignment without targets")
            return Assign(targets, exprs)
        if kind == "block":
            stmts = self._list(data.get("statements"), "statements")
            return Block([self._nested(f"statements[{i}]", self.statement, s)
                          for i, s in enumerate(stmts)])
        if kind == "if":
            else_ = data.get("else")
            return If(
                condition=self._nested("condition", self.condition, self._at(data, "condition")),
                then=self._nested("then", self.statement, self._at(data, "then")),
                else_=None if else_ is None else self._nested("else", self.statement, else_),
            )
        if kind == "while":
            invariant = data.get("invariant")
            return While(
                condition=self._nested("condition", self.condition, self._at(data, "condition")),
                body=self._nested("body", self.statement, self._at(data, "body")),
                invariant=None if invariant is None else self._nested(
                    "invariant", self.predicate, invariant),
            )
        if kind == "expr":
            return ExprStmt(self._nested("expr", self.expr, self._at(data, "expr")))
        raise self.fail(f"unknown statement kind '{kind}'")

    def lvalue(self, data: Any) -> LValue:
        if isinstance(data, str):
            return LVar(data)
        data = self._mapping(data, "assignment target")
        if "index" in data:
            return LArray(str(self._at(data, "array")),
                          self._nested("index", self.expr, data["index"]))
        return LVar(str(self._at(data, "name")))
