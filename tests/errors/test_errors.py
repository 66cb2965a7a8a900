"""Structured Error Tests — ERR-001 and ERR-002."""

import json

from wpverify.errors import (
    ErrorKind, VerifierError, SpecificationError, VerificationFailed,
    arity_error, assignment_arity_error, load_error, config_error,
    undefined_reference_error,
)


class TestVerifierError:
    """ERR-001: error records serialise to JSON."""

    def test_arity_error(self):
        e = arity_error("F", 1, 2, function="main")
        d = e.to_dict()
        assert d["kind"] == "specification_error"
        assert d["function"] == "main"
        assert d["details"] == {"name": "F", "expected": 1, "actual": 2}
        assert str(e) == "[specification_error] in 'main': 'F' expects 1 argument(s), got 2"

    def test_assignment_arity_error(self):
        d = assignment_arity_error(2, 3, function="f").to_dict()
        assert d["message"] == "Assignment of 3 value(s) to 2 target(s)"
        assert d["details"] == {"targets": 2, "values": 3}

    def test_optional_fields_omitted(self):
        d = load_error("boom").to_dict()
        assert d == {"kind": "load_error", "message": "boom"}

    def test_json(self):
        e = config_error("bad value", key="format")
        assert json.loads(e.to_json())["details"] == {"key": "format"}


class TestExceptions:
    """ERR-002: exceptions carry one or more error records."""

    def test_single_error(self):
        exc = SpecificationError(undefined_reference_error("G", "f"))
        assert exc.error.kind == ErrorKind.SPECIFICATION_ERROR
        assert "Unknown formula or function 'G'" in str(exc)

    def test_many_errors(self):
        errors = [VerifierError(ErrorKind.VERIFICATION_FAILED, "a", function="f"),
                  VerifierError(ErrorKind.INCONCLUSIVE, "b", function="g")]
        exc = VerificationFailed(errors)
        assert len(json.loads(exc.to_json())) == 2
        assert str(exc).splitlines()[1] == "[inconclusive] in 'g': b"
        assert exc.report is None
