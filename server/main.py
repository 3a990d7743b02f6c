"""
Main FastAPI application for the Expression Equivalence API.
"""

import logging

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Dict
import sympy as sp

from equivalence import canonicalize_expression, check_equivalence, check_sequence, create_rule_engine
from latex_parser import parse_latex
from schemas import (
    CanonicalizeRequest, CanonicalizeResponse,
    EquivalenceRequest, EquivalenceResult,
    Region, RuleInfo, RulesResponse,
    SequenceRequest, SequenceResponse,
)

app = FastAPI(
    title="Expression Equivalence API",
    description="Validates each line of a handwritten derivation against the previous one",
    version="1.0.0",
)

# Configure CORS for frontend communication
app.add_middleware(
    CORSMiddleware,
    # Allow common local dev origins (localhost/127.0.0.1 on any port)
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str
    message: str
    services: Dict[str, str]


@app.get("/")
async def root() -> Dict[str, str]:
    """Root endpoint returning a banner."""
    return {
        "message": "Expression Equivalence API",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint with service status."""
    # Test SymPy functionality
    try:
        x = sp.Symbol('x')
        expr = sp.sin(x)**2 + sp.cos(x)**2
        sympy_status = f"OK - Test: {expr} -> {sp.simplify(expr)}"
    except Exception as e:
        sympy_status = f"ERROR - {str(e)}"

    # Test the LaTeX grammar
    parsed = parse_latex("\\frac{x^2}{2}")
    lark_status = "OK - LaTeX grammar loaded" if parsed.success else f"ERROR - {parsed.error}"

    return HealthResponse(
        status="healthy",
        message="Expression Equivalence API is running",
        services={
            "fastapi": "OK",
            "sympy": sympy_status,
            "lark": lark_status
        }
    )


@app.post("/api/equivalence", response_model=EquivalenceResult)
async def equivalence(request: EquivalenceRequest) -> EquivalenceResult:
    """Check whether two expressions are equivalent."""
    return check_equivalence(request.expression1, request.expression2, request.config)


@app.post("/api/sequence", response_model=SequenceResponse)
async def sequence(request: SequenceRequest) -> SequenceResponse:
    """Check every line of a derivation against the previous line."""
    results = check_sequence(request.lines, request.config)
    return SequenceResponse(results=results, all_valid=all(r.equivalent for r in results))


@app.post("/api/canonicalize", response_model=CanonicalizeResponse)
async def canonicalize(request: CanonicalizeRequest) -> CanonicalizeResponse:
    """Canonicalize a single expression and report the applied rules."""
    return canonicalize_expression(
        request.expression,
        region=request.region,
        max_iterations=request.max_iterations,
        float_tolerance=request.float_tolerance,
        strict=request.strict_fixpoint,
    )


@app.get("/api/rules", response_model=RulesResponse)
async def rules(region: Region = Query(Region.US, description="Notation locale")) -> RulesResponse:
    """List the rules an engine for ``region`` runs, in application order."""
    engine = create_rule_engine(region)
    return RulesResponse(
        region=region,
        rules=[
            RuleInfo(
                name=rule.name,
                description=rule.description,
                priority=rule.priority,
                region=sorted(rule.region) if rule.region is not None else None,
            )
            for rule in engine.rules
        ],
    )


if __name__ == "__main__":
    import sys
    import argparse
    import json
    import uvicorn

    from schemas import EquivalenceConfig

    parser = argparse.ArgumentParser(
        prog="python main.py",
        description=(
            "Run the Expression Equivalence API server or check a derivation.\n\n"
            "Examples:\n"
            "  python main.py serve --host 0.0.0.0 --port 8000 --reload\n"
            "  python main.py check 'x^2+4x+4' '(x+2)^2'\n"
            "  python -m uvicorn main:app --reload\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "command",
        nargs="?",
        help="Command to execute. Use 'serve' to start the API server or 'check' to validate lines.",
    )
    parser.add_argument("expressions", nargs="*", help="Derivation lines for 'check'")
    parser.add_argument("--host", default="0.0.0.0", help="Host address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port number (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (development)")
    parser.add_argument("--region", choices=[r.value for r in Region], default="US",
                        help="Notation locale for 'check' (default: US)")
    parser.add_argument("--no-fallback", action="store_true", help="Do not use the symbolic engine")
    parser.add_argument("--debug", action="store_true", help="Log every stage of each check")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # If run with no arguments, print usage and exit without starting the server
    if args.command is None:
        print("Usage: python main.py serve [--host HOST] [--port PORT] [--reload]")
        print("       python main.py check EXPR EXPR [EXPR ...] [--region US|UK|EU] [--no-fallback]")
        sys.exit(0)

    if args.command in {"serve", "run", "start"}:
        uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    elif args.command == "check":
        if len(args.expressions) < 2:
            print("check needs at least two expressions")
            sys.exit(2)
        config = EquivalenceConfig(region=args.region, use_algebrite=not args.no_fallback, debug=args.debug)
        results = check_sequence(args.expressions, config)
        print(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
        sys.exit(0 if all(r.equivalent for r in results) else 1)
    else:
        print(f"Unknown command: {args.command}")
        print("Use: python main.py serve [--host HOST] [--port PORT] [--reload]")
        sys.exit(1)
