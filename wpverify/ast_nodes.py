"""wpverify AST node definitions.

The front end hands the verifier a resolved module built from these nodes:
integer expressions, guard conditions, annotation predicates (conditions
plus quantifiers and formula references), statements, annotated functions
and formula macros.

Expressions and predicates are frozen dataclasses with tuple children so
that the substitution engine can share unaffected subtrees and VC trees can
be compared structurally. The verifier never mutates a module.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

INT = "int"
INT_ARRAY = "int[]"

ARITH_OPS = ("+", "-", "*", "/")
COMPARISON_OPS = ("==", "!=", ">", "<", ">=", "<=")


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Expr:
    pass


@dataclass(frozen=True)
class IntLiteral(Expr):
    value: int = 0

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Var(Expr):
    name: str = ""

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Neg(Expr):
    operand: Expr = field(default_factory=Expr)

    def __str__(self) -> str:
        return f"-{self.operand}"


@dataclass(frozen=True)
class BinaryOp(Expr):
    op: str = "+"
    left: Expr = field(default_factory=Expr)
    right: Expr = field(default_factory=Expr)

    def __str__(self) -> str:
        return f"({self.left} {self.op} {self.right})"


@dataclass(frozen=True)
class FuncCall(Expr):
    """A call; ``output`` picks one return binding of a multi-result callee."""
    name: str = ""
    args: tuple[Expr, ...] = ()
    output: int = 0

    def __str__(self) -> str:
        args = ", ".join(str(a) for a in self.args)
        suffix = f"#{self.output}" if self.output else ""
        return f"{self.name}({args}){suffix}"


@dataclass(frozen=True)
class ArrayAccess(Expr):
    array: Expr = field(default_factory=Expr)
    index: Expr = field(default_factory=Expr)

    def __str__(self) -> str:
        return f"{self.array}[{self.index}]"


@dataclass(frozen=True)
class ArrayUpdate(Expr):
    """Functional array write ``array{index -> value}``."""
    array: Expr = field(default_factory=Expr)
    index: Expr = field(default_factory=Expr)
    value: Expr = field(default_factory=Expr)

    def __str__(self) -> str:
        return f"{self.array}{{{self.index} -> {self.value}}}"


# ---------------------------------------------------------------------------
# Conditions and predicates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Predicate:
    pass


@dataclass(frozen=True)
class TrueCond(Predicate):
    def __str__(self) -> str:
        return "true"


@dataclass(frozen=True)
class FalseCond(Predicate):
    def __str__(self) -> str:
        return "false"


@dataclass(frozen=True)
class Comparison(Predicate):
    left: Expr = field(default_factory=Expr)
    op: str = "=="
    right: Expr = field(default_factory=Expr)

    def __str__(self) -> str:
        return f"{self.left} {self.op} {self.right}"


@dataclass(frozen=True)
class Not(Predicate):
    operand: Predicate = field(default_factory=TrueCond)

    def __str__(self) -> str:
        return f"!({self.operand})"


@dataclass(frozen=True)
class And(Predicate):
    left: Predicate = field(default_factory=TrueCond)
    right: Predicate = field(default_factory=TrueCond)

    def __str__(self) -> str:
        return f"({self.left} && {self.right})"


@dataclass(frozen=True)
class Or(Predicate):
    left: Predicate = field(default_factory=TrueCond)
    right: Predicate = field(default_factory=TrueCond)

    def __str__(self) -> str:
        return f"({self.left} || {self.right})"


@dataclass(frozen=True)
class Implies(Predicate):
    left: Predicate = field(default_factory=TrueCond)
    right: Predicate = field(default_factory=TrueCond)

    def __str__(self) -> str:
        return f"({self.left} -> {self.right})"


@dataclass(frozen=True)
class Paren(Predicate):
    inner: Predicate = field(default_factory=TrueCond)

    def __str__(self) -> str:
        return f"({self.inner})"


@dataclass(frozen=True)
class Quantifier(Predicate):
    quant: str = "forall"           # "forall" | "exists"
    var: str = ""
    var_type: str = INT
    body: Predicate = field(default_factory=TrueCond)

    def __str__(self) -> str:
        return f"({self.quant} {self.var}: {self.var_type} | {self.body})"


@dataclass(frozen=True)
class FormulaRef(Predicate):
    name: str = ""
    args: tuple[Expr, ...] = ()

    def __str__(self) -> str:
        return f"{self.name}({', '.join(str(a) for a in self.args)})"


# Guards of if/while statements only ever use these node types.
Condition = Union[TrueCond, FalseCond, Comparison, Not, And, Or, Implies, Paren]

CONDITION_TYPES = (TrueCond, FalseCond, Comparison, Not, And, Or, Implies, Paren)


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LVar:
    name: str = ""

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class LArray:
    name: str = ""
    index: Expr = field(default_factory=Expr)

    def __str__(self) -> str:
        return f"{self.name}[{self.index}]"


LValue = Union[LVar, LArray]


@dataclass
class Statement:
    pass


@dataclass
class Assign(Statement):
    targets: list[LValue] = field(default_factory=list)
    exprs: list[Expr] = field(default_factory=list)


@dataclass
class Block(Statement):
    statements: list[Statement] = field(default_factory=list)


@dataclass
class If(Statement):
    condition: Predicate = field(default_factory=TrueCond)
    then: Statement = field(default_factory=Block)
    else_: Optional[Statement] = None


@dataclass
class While(Statement):
    condition: Predicate = field(default_factory=TrueCond)
    body: Statement = field(default_factory=Block)
    invariant: Optional[Predicate] = None


@dataclass
class ExprStmt(Statement):
    expr: Expr = field(default_factory=Expr)


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Param:
    name: str
    type: str = INT

    @property
    def is_array(self) -> bool:
        return self.type == INT_ARRAY

    def __str__(self) -> str:
        return f"{self.name}: {self.type}"


@dataclass
class FormulaDef:
    name: str
    params: list[Param] = field(default_factory=list)
    body: Predicate = field(default_factory=TrueCond)


@dataclass
class AnnotatedFunctionDef:
    name: str
    params: list[Param] = field(default_factory=list)
    returns: list[Param] = field(default_factory=list)
    locals: list[Param] = field(default_factory=list)
    body: Statement = field(default_factory=Block)
    requires: Optional[Predicate] = None
    ensures: Optional[Predicate] = None

    def declared(self) -> list[Param]:
        return [*self.params, *self.returns, *self.locals]

    def signature(self) -> str:
        params = ", ".join(str(p) for p in self.params)
        rets = ", ".join(str(r) for r in self.returns)
        return f"{self.name}({params}) returns ({rets})"


@dataclass
class Module:
    formulas: list[FormulaDef] = field(default_factory=list)
    functions: list[AnnotatedFunctionDef] = field(default_factory=list)

    def formula(self, name: str) -> Optional[FormulaDef]:
        for f in self.formulas:
            if f.name == name:
                return f
        return None

    def function(self, name: str) -> Optional[AnnotatedFunctionDef]:
        for f in self.functions:
            if f.name == name:
                return f
        return None
