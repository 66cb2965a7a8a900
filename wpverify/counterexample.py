"""Concrete witnesses read back from a satisfying model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import z3

from wpverify.ast_nodes import AnnotatedFunctionDef


@dataclass
class ArrayValue:
    """A model array: explicit entries over a default value."""
    entries: Dict[int, int] = field(default_factory=dict)
    default: Optional[int] = None

    def __getitem__(self, index: int) -> Optional[int]:
        return self.entries.get(index, self.default)

    def to_dict(self) -> Dict[str, Any]:
        return {"entries": {str(k): v for k, v in sorted(self.entries.items())},
                "default": self.default}

    def __str__(self) -> str:
        items = [f"{k}: {v}" for k, v in sorted(self.entries.items())]
        if self.default is not None:
            items.append(f"else: {self.default}")
        return "[" + ", ".join(items) + "]"


Value = Union[int, ArrayValue, str]


@dataclass
class Counterexample:
    """Values for the declared names of a function that falsify a VC."""
    function: str
    values: Dict[str, Value] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Value:
        return self.values[name]

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def to_dict(self) -> Dict[str, Any]:
        return {name: (v.to_dict() if isinstance(v, ArrayValue) else v)
                for name, v in self.values.items()}


def extract_counterexample(
    model: z3.ModelRef,
    func: AnnotatedFunctionDef,
    env: Mapping[str, z3.ExprRef],
) -> Counterexample:
    values: Dict[str, Value] = {}
    for param in func.declared():
        term = env.get(param.name)
        if term is None:
            continue
        values[param.name] = read_value(model, model.eval(term, model_completion=True))
    return Counterexample(function=func.name, values=values)


def read_value(model: z3.ModelRef, term: z3.ExprRef) -> Value:
    if z3.is_int_value(term):
        return term.as_long()
    if z3.is_array(term):
        return _read_array(model, term)
    return str(term)


def _read_array(model: z3.ModelRef, term: z3.ExprRef) -> Union[ArrayValue, str]:
    entries: Dict[int, int] = {}
    if z3.is_as_array(term):
        interp = model[z3.get_as_array_func(term)]
        listing = interp.as_list()
        for idx, val in listing[:-1]:
            if z3.is_int_value(idx) and z3.is_int_value(val):
                entries.setdefault(idx.as_long(), val.as_long())
        default = listing[-1] if listing else None
        return ArrayValue(entries, default.as_long() if z3.is_int_value(default) else None)

    stores: List[z3.ExprRef] = []
    while z3.is_store(term):
        stores.append(term)
        term = term.arg(0)
    for store in stores:
        idx, val = store.arg(1), store.arg(2)
        if z3.is_int_value(idx) and z3.is_int_value(val):
            entries.setdefault(idx.as_long(), val.as_long())
    if z3.is_K(term):
        base = term.arg(0)
        return ArrayValue(entries, base.as_long() if z3.is_int_value(base) else None)
    if entries:
        return ArrayValue(entries)
    return str(term)
