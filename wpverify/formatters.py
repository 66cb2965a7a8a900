"""wpverify Output Formatters — terminal and machine-readable reports.

Modes:
    pretty   — colored, one block per function with counterexamples (default)
    summary  — one line per function
    json     — machine-readable
"""

from __future__ import annotations

import os
import sys
from typing import List, Optional

from wpverify.ast_nodes import AnnotatedFunctionDef, Module
from wpverify.counterexample import Counterexample
from wpverify.verifier import FunctionVerdict, ModuleReport, Status


# ── ANSI color helpers ───────────────────────────────────────────────────

_NO_COLOR = os.environ.get("NO_COLOR") is not None or not sys.stdout.isatty()


def _c(code: str, text: str) -> str:
    if _NO_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def red(t: str) -> str:
    return _c("31", t)


def yellow(t: str) -> str:
    return _c("33", t)


def green(t: str) -> str:
    return _c("32", t)


def bold(t: str) -> str:
    return _c("1", t)


def dim(t: str) -> str:
    return _c("2", t)


_ICONS = {
    Status.VERIFIED: green("✔"),
    Status.FALSIFIED: red("✖"),
    Status.INCONCLUSIVE: yellow("?"),
    Status.SPEC_ERROR: red("!"),
}


# ── Counterexample rendering ────────────────────────────────────────────

def describe_call(func: AnnotatedFunctionDef, cex: Counterexample) -> str:
    """Render a witness as a call: ``f(x=1, y=2) => [r=3]`` plus locals."""
    def value(name: str) -> str:
        return str(cex.values[name]) if name in cex else "?"

    args = ", ".join(f"{p.name}={value(p.name)}" for p in func.params)
    results = ", ".join(f"{r.name}={value(r.name)}" for r in func.returns)
    text = f"{func.name}({args}) => [{results}]"
    local_lines = [f"  {v.name}={value(v.name)}" for v in func.locals if v.name in cex]
    if local_lines:
        text += "\n" + "\n".join(local_lines)
    return text


# ── Pretty formatter (default) ──────────────────────────────────────────

def format_pretty(report: ModuleReport, module: Optional[Module] = None,
                  filepath: Optional[str] = None) -> str:
    lines: List[str] = []
    if filepath:
        lines.append(bold(filepath))

    for verdict in report.verdicts:
        lines.extend(_pretty_verdict(verdict, module))

    total = len(report.verdicts)
    failed = len(report.failures)
    lines.append("")
    if report.verified:
        lines.append(green(f"All {total} function(s) verified."))
    else:
        lines.append(red(f"{failed} of {total} function(s) not verified."))
    return "\n".join(lines)


def _pretty_verdict(verdict: FunctionVerdict, module: Optional[Module]) -> List[str]:
    icon = _ICONS[verdict.status]
    proved = sum(1 for r in verdict.results if r.outcome == "proved")
    lines = [f"{icon} {bold(verdict.function)} {dim(f'{verdict.status.value}, {proved} VC(s) proved')}"]

    if verdict.status == Status.SPEC_ERROR:
        lines.append(f"    {red(verdict.reason)}")
        return lines
    if verdict.status == Status.VERIFIED:
        return lines

    lines.append(f"    {verdict.reason}")
    if verdict.failed_vc is not None:
        lines.append(f"    {dim(str(verdict.failed_vc.formula))}")
    if verdict.counterexample is not None:
        func = module.function(verdict.function) if module is not None else None
        if func is not None:
            text = describe_call(func, verdict.counterexample)
        else:
            text = ", ".join(f"{k}={v}" for k, v in verdict.counterexample.values.items())
        lines.append("    counterexample:")
        lines.extend(f"      {line}" for line in text.splitlines())
    if verdict.unchecked:
        lines.append(f"    {yellow('not checked:')} {', '.join(verdict.unchecked)}")
    return lines


# ── Summary formatter ───────────────────────────────────────────────────

def format_summary(report: ModuleReport) -> str:
    lines = []
    for verdict in report.verdicts:
        lines.append(f"{_ICONS[verdict.status]} {verdict.function}: {verdict.status.value}")
    return "\n".join(lines)


# ── JSON formatter ──────────────────────────────────────────────────────

def format_json(report: ModuleReport) -> str:
    return report.to_json()


def format_report(report: ModuleReport, fmt: str = "pretty",
                  module: Optional[Module] = None,
                  filepath: Optional[str] = None) -> str:
    if fmt == "json":
        return format_json(report)
    if fmt == "summary":
        return format_summary(report)
    return format_pretty(report, module=module, filepath=filepath)
