"""wpverify — weakest-precondition verifier for annotated integer programs."""

__version__ = "0.1.0"

from wpverify.config import VerifierConfig, load_config
from wpverify.errors import SpecificationError, VerificationFailed
from wpverify.loader import load_module, module_from_dict
from wpverify.verifier import (
    FunctionVerdict, ModuleReport, Status, Verifier, verify_module,
)
from wpverify.wp import generate_vcs
