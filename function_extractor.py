"""
SigKit Function Extractor - Pattern-based extraction of player transform functions
Solves: "player script changes shape on every deployment"
"""
import logging
import re
from typing import List, Optional, Sequence

from config import SigKitConfig
from errors import DecipherExtractionError, FunctionNameNotFound
from models import ExtractedFunctionSet, ExtractionDiagnostics

logger = logging.getLogger(__name__)

# Name given to the anonymous n-transform function inside its snippet
N_FUNCTION_NAME = "sigkitNTransform"


class NameRule:
    """
    One detection strategy for a known historical shape of the decipher call site.
    Group 1 of the pattern captures the function identifier.
    """

    def __init__(self, name: str, pattern: str):
        self.name = name
        self.pattern = pattern
        self._regex = re.compile(pattern)

    def match(self, body: str) -> Optional[str]:
        found = self._regex.search(body)
        return found.group(1) if found else None

    def __repr__(self):
        return f"NameRule({self.name!r})"


# Ordered: the first rule that matches wins
DECIPHER_NAME_RULES: List[NameRule] = [
    NameRule(
        "decode_uri_h_s",
        r'\bm=([a-zA-Z0-9$]{2,})\(decodeURIComponent\(h\.s\)\)'
    ),
    NameRule(
        "decode_uri_c",
        r'\bc&&\(c=([a-zA-Z0-9$]{2,})\(decodeURIComponent\(c\)\)'
    ),
    NameRule(
        "split_arg_a",
        r'(?:\b|[^a-zA-Z0-9$])([a-zA-Z0-9$]{2,})\s*=\s*function\(\s*a\s*\)\s*\{\s*a\s*=\s*a\.split\(\s*""\s*\)'
    ),
    NameRule(
        "split_any_arg",
        r'([\w$]+)\s*=\s*function\((\w+)\)\{\s*\2=\s*\2\.split\(""\)\s*;'
    ),
]

N_TRANSFORM_PATTERN = re.compile(
    r'function\(\s*(\w+)\s*\)\s*\{'
    r'var\s*(\w+)=(?:\1\.split\(""\)|String\.prototype\.split\.call\(\1,""\)),'
    r'\s*(\w+)=(\[.*?]);\s*\3\[\d+]'
    r'(.*?try)(\{.*?})catch\(\s*(\w+)\s*\)\s*\{'
    r'\s*return"enhanced_except_([A-z0-9-]+)"\s*\+\s*\1\s*}'
    r'\s*return\s*(\2\.join\(""\)|Array\.prototype\.join\.call\(\2,""\))};',
    re.DOTALL
)

ARRAY_REFERENCE = re.compile(r'^([a-zA-Z0-9$]+)\[(\d+)\]$')
HELPER_REFERENCE = re.compile(r';([A-Za-z0-9_$]{2,})\.\w+\(')


def resolve_array_reference(identifier: str, body: str) -> str:
    """
    Resolve `arr[i]` through the array literal `arr=[...]` in the script.
    Identifiers without an index are returned unchanged.
    """
    ref = ARRAY_REFERENCE.match(identifier)
    if not ref:
        return identifier

    array_name, index = ref.group(1), int(ref.group(2))
    literal = re.search(rf'{re.escape(array_name)}=\[([a-zA-Z0-9$\[\],]{{2,}})\]', body)
    if not literal:
        return identifier

    elements = literal.group(1).split(",")
    if index >= len(elements):
        return identifier
    return elements[index]


def locate_decipher_name(body: str, rules: Sequence[NameRule] = DECIPHER_NAME_RULES) -> str:
    """Apply the name rules in order and return the decipher function identifier"""
    for rule in rules:
        identifier = rule.match(body)
        if identifier is None:
            continue

        logger.debug("[Extractor] Decipher name rule %s matched %r", rule.name, identifier)
        identifier = resolve_array_reference(identifier, body)
        if "[" in identifier:
            break
        return identifier

    raise FunctionNameNotFound(rule.name for rule in rules)


def extract_decipher(body: str, rules: Sequence[NameRule] = DECIPHER_NAME_RULES) -> str:
    """
    Build a self-contained decipher snippet:
    helper object + decipher function + call with the signature argument.
    """
    name = locate_decipher_name(body, rules)

    function_match = re.search(
        rf'({re.escape(name)}=function\([a-zA-Z0-9_]+\)\{{.+?\}})', body
    )
    if not function_match:
        raise DecipherExtractionError(f"Could not find body of decipher function {name}")
    decipher_function = f"var {function_match.group(1)};"

    helper_match = HELPER_REFERENCE.search(decipher_function)
    if not helper_match:
        raise DecipherExtractionError(f"Could not find helper object referenced by {name}")
    helper_name = helper_match.group(1)

    helper_object = re.search(rf'(var {re.escape(helper_name)}=\{{[\s\S]+?\}}\}};)', body)
    if not helper_object:
        raise DecipherExtractionError(f"Could not find definition of helper object {helper_name}")

    caller = f"{name}({SigKitConfig.DECIPHER_ARGUMENT});"
    return helper_object.group(1) + decipher_function + caller


def extract_n_transform(body: str) -> Optional[str]:
    """Build the n-transform snippet, or None when the function is not present"""
    n_match = N_TRANSFORM_PATTERN.search(body)
    if not n_match:
        return None

    declaration = f"var {N_FUNCTION_NAME}={n_match.group(0)}"
    caller = f"{N_FUNCTION_NAME}({SigKitConfig.N_ARGUMENT});"
    return declaration + caller


class FunctionExtractor:
    """
    Extracts transform functions from a player script body.
    Pure: identical text always yields identical results.
    """

    def __init__(self, name_rules: Optional[Sequence[NameRule]] = None):
        self.name_rules = list(name_rules) if name_rules is not None else DECIPHER_NAME_RULES

    def extract_functions(self, body: str) -> ExtractedFunctionSet:
        # Required: let extraction errors propagate
        functions = [extract_decipher(body, self.name_rules)]
        diagnostics = ExtractionDiagnostics()

        # Optional: missing n-transform only throttles downloads
        n_snippet = extract_n_transform(body)
        if n_snippet is None:
            diagnostics.n_transform_missing = True
            diagnostics.n_transform_error = "n-transform pattern did not match player script"
            logger.warning(
                "[Extractor] Could not parse n transform function, downloads may be throttled"
            )
        else:
            functions.append(n_snippet)

        return ExtractedFunctionSet(functions=functions, diagnostics=diagnostics)

    __call__ = extract_functions
