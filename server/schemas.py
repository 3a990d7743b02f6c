"""
API schema definitions for the Expression Equivalence API.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from enum import Enum


class Region(str, Enum):
    """Notation locales; some rules are only active for one of them."""
    US = "US"
    UK = "UK"
    EU = "EU"


class Method(str, Enum):
    """How an equivalence verdict was reached."""
    CANONICALIZATION = "canonicalization"
    ALGEBRITE_DIFFERENCE = "algebrite-difference"
    ALGEBRITE_SIMPLIFY = "algebrite-simplify"
    ALGEBRITE_NOT_EQUIVALENT = "algebrite-not-equivalent"
    PARSE_ERROR = "parse-error"
    ALGEBRITE_ERROR = "algebrite-error"
    CANONICALIZATION_FAILED = "canonicalization-failed"


class EquivalenceConfig(BaseModel):
    """Options for a single equivalence check."""
    region: Region = Field(default=Region.US, description="Notation locale used to pick rules")
    float_tolerance: float = Field(
        default=1e-6, ge=0, description="Tolerance for snapping numbers to integers and common fractions"
    )
    use_algebrite: bool = Field(
        default=True, description="Fall back to the symbolic engine when canonical forms differ"
    )
    algebrite_timeout: int = Field(
        default=2000, gt=0, description="Advisory symbolic engine timeout in milliseconds"
    )
    max_canonicalization_iterations: int = Field(
        default=100, ge=1, description="Cap on canonicalization sweeps"
    )
    debug: bool = Field(default=False, description="Log each stage of the check")
    force_algebrite: bool = Field(
        default=False, description="Skip canonicalization and always ask the symbolic engine"
    )
    strict_fixpoint: bool = Field(
        default=False, description="Keep every rule active until a full sweep changes nothing"
    )


class AppliedRule(BaseModel):
    """One rule application recorded during canonicalization."""
    iteration: int = Field(..., description="Sweep number, starting at 1")
    rule_name: str
    description: str = ""


class CanonicalizationResult(BaseModel):
    ast: Any = Field(..., description="Canonical expression tree")
    iterations: int
    applied_rules: List[AppliedRule] = Field(default_factory=list)
    converged: bool


class FallbackVerdict(BaseModel):
    """Verdict of the symbolic engine fallback."""
    equivalent: bool
    method: Method
    difference: Optional[str] = Field(None, description="Simplified difference of the two expressions")
    simplified: Optional[str] = Field(None, description="Common simplified form when both agree")
    expr1: Optional[str] = Field(None, description="Simplified first expression")
    expr2: Optional[str] = Field(None, description="Simplified second expression")
    time: float = Field(0.0, description="Time spent in the symbolic engine (ms)")
    timeout: int = Field(2000, description="Advisory timeout the caller configured (ms)")


class AppliedRulesPair(BaseModel):
    expr1: List[AppliedRule] = Field(default_factory=list)
    expr2: List[AppliedRule] = Field(default_factory=list)


class EquivalenceResult(BaseModel):
    """Outcome of one equivalence check."""
    equivalent: bool
    method: Method
    canonical1: Optional[str] = None
    canonical2: Optional[str] = None
    applied_rules: Optional[AppliedRulesPair] = None
    algebrite: Optional[FallbackVerdict] = None
    error: Optional[str] = None
    forced: bool = Field(False, description="Canonicalization was skipped on request")
    time: float = Field(0.0, description="Elapsed time from call entry (ms)")


class LineResult(EquivalenceResult):
    """Equivalence of one derivation line against the line before it."""
    line_number: int = Field(..., description="1-based number of the later line")
    previous: str
    current: str


class ParseResult(BaseModel):
    success: bool
    ast: Optional[Any] = None
    error: Optional[str] = None
    original: str = ""


class EquivalenceRequest(BaseModel):
    """Request model for checking two expressions."""
    expression1: str = Field(..., description="First expression (LaTeX)")
    expression2: str = Field(..., description="Second expression (LaTeX)")
    config: Optional[EquivalenceConfig] = None


class SequenceRequest(BaseModel):
    """Request model for validating a derivation line by line."""
    lines: List[str] = Field(..., description="Ordered expressions of the derivation")
    config: Optional[EquivalenceConfig] = None


class SequenceResponse(BaseModel):
    results: List[LineResult]
    all_valid: bool = Field(..., description="Every transition was judged equivalent")


class CanonicalizeRequest(BaseModel):
    """Request model for canonicalizing a single expression."""
    expression: str = Field(..., description="Expression to canonicalize (LaTeX)")
    region: Region = Field(default=Region.US)
    max_iterations: int = Field(default=100, ge=1)
    float_tolerance: float = Field(default=1e-6, ge=0)
    strict_fixpoint: bool = False


class CanonicalizeResponse(BaseModel):
    success: bool
    canonical: Optional[str] = None
    ast: Optional[Dict[str, Any]] = Field(None, description="Canonical tree as nested dicts")
    iterations: int = 0
    applied_rules: List[AppliedRule] = Field(default_factory=list)
    converged: bool = False
    error: Optional[str] = None


class RuleInfo(BaseModel):
    name: str
    description: str
    priority: int
    region: Optional[List[str]] = None


class RulesResponse(BaseModel):
    region: Region
    rules: List[RuleInfo]
