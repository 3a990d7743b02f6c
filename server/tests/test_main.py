"""
Tests for the main FastAPI application endpoints.
"""

from fastapi.testclient import TestClient
from main import app

client = TestClient(app)


def test_root_endpoint():
    """Test the root endpoint returns the banner."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Expression Equivalence API"
    assert data["status"] == "running"
    assert data["version"] == "1.0.0"


def test_health_check_endpoint():
    """Test the health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "fastapi" in data["services"]
    assert data["services"]["sympy"].startswith("OK")
    assert data["services"]["lark"].startswith("OK")


def test_equivalence_endpoint_canonicalization():
    """Reordered polynomial is proven equal without the symbolic engine."""
    response = client.post("/api/equivalence", json={
        "expression1": "4x + x^2 + 4",
        "expression2": "x^2 + 4x + 4",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["equivalent"] is True
    assert data["method"] == "canonicalization"
    assert data["canonical1"] == data["canonical2"]
    assert isinstance(data["applied_rules"]["expr1"], list)
    assert data["time"] >= 0


def test_equivalence_endpoint_parse_error():
    """Malformed input is reported as a result, not an HTTP error."""
    response = client.post("/api/equivalence", json={
        "expression1": "\\frac{1}{",
        "expression2": "1",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["equivalent"] is False
    assert data["method"] == "parse-error"
    assert data["error"]


def test_equivalence_endpoint_without_fallback():
    response = client.post("/api/equivalence", json={
        "expression1": "x + 1",
        "expression2": "x + 2",
        "config": {"use_algebrite": False},
    })
    assert response.status_code == 200
    data = response.json()
    assert data["equivalent"] is False
    assert data["method"] == "canonicalization-failed"
    assert data["algebrite"] is None


def test_equivalence_endpoint_uses_fallback():
    """Difference of squares needs the symbolic engine."""
    response = client.post("/api/equivalence", json={
        "expression1": "\\frac{x^2-1}{x-1}",
        "expression2": "x+1",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["equivalent"] is True
    assert data["method"] in ("algebrite-difference", "algebrite-simplify")
    assert data["algebrite"]["timeout"] == 2000


def test_equivalence_endpoint_rejects_bad_config():
    """Invalid configuration is rejected before any check runs."""
    response = client.post("/api/equivalence", json={
        "expression1": "x",
        "expression2": "x",
        "config": {"region": "FR"},
    })
    assert response.status_code == 422


def test_sequence_endpoint():
    response = client.post("/api/sequence", json={
        "lines": ["x^2+4x+4", "(x+2)^2", "x^2+2\\cdot2x+2^2", "x^2+4x+4"],
    })
    assert response.status_code == 200
    data = response.json()
    assert data["all_valid"] is True
    assert [r["line_number"] for r in data["results"]] == [2, 3, 4]
    assert data["results"][0]["previous"] == "x^2+4x+4"
    assert data["results"][0]["current"] == "(x+2)^2"


def test_sequence_endpoint_reports_invalid_step():
    response = client.post("/api/sequence", json={
        "lines": ["2x + 3x", "5x", "6x"],
        "config": {"use_algebrite": False},
    })
    assert response.status_code == 200
    data = response.json()
    assert data["all_valid"] is False
    assert [r["equivalent"] for r in data["results"]] == [True, False]


def test_canonicalize_endpoint():
    response = client.post("/api/canonicalize", json={"expression": "x \\cdot x + 2x + x"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["canonical"] == "pow(sym:x,num:2)|op:+|num:3|op:\\cdot|sym:x"
    assert data["converged"] is True
    assert data["ast"]["kind"] == "sequence"
    assert any(step["rule_name"] == "combine-like-terms" for step in data["applied_rules"])


def test_canonicalize_endpoint_parse_error():
    response = client.post("/api/canonicalize", json={"expression": "\\unknown{x}"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error"]


def test_rules_endpoint_region_gating():
    us = client.get("/api/rules", params={"region": "US"}).json()
    eu = client.get("/api/rules", params={"region": "EU"}).json()
    us_names = [rule["name"] for rule in us["rules"]]
    eu_names = [rule["name"] for rule in eu["rules"]]
    assert "decimal-comma" not in us_names
    assert "decimal-comma" in eu_names
    priorities = [rule["priority"] for rule in us["rules"]]
    assert priorities == sorted(priorities, reverse=True)


def test_rules_endpoint_rejects_unknown_region():
    response = client.get("/api/rules", params={"region": "XX"})
    assert response.status_code == 422


def test_deeply_nested_input_is_reported_not_raised():
    deep = "(" * 700 + "x" + ")" * 700
    response = client.post("/api/equivalence", json={"expression1": deep, "expression2": "x"})
    assert response.status_code == 200
    assert response.json()["method"] == "parse-error"

    response = client.post("/api/canonicalize", json={"expression": "(" * 300 + "x" + ")" * 300})
    assert response.status_code == 200
    assert response.json()["success"] is False
