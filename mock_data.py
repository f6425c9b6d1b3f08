"""Mock responses for testing without API calls."""

# Shape of a real model reply for a small TypeScript hunk
MOCK_RESPONSE = """```json
[
  {
    "path": "src/api/client.ts",
    "start_line": 12,
    "end_line": 12,
    "category": "bug",
    "severity": "medium",
    "title": "Missing status check before parsing JSON",
    "rationale": "A non-2xx response is parsed as if it succeeded, so error bodies leak into callers as data.",
    "suggestion": "if (!res.ok) throw new Error(`HTTP ${res.status}`);\\nconst data = await res.json();",
    "references": ["https://developer.mozilla.org/docs/Web/API/Response/ok"]
  },
  {
    "path": "src/api/client.ts",
    "start_line": 20,
    "end_line": 21,
    "category": "style",
    "severity": "low",
    "title": "Prefer const for bindings that are never reassigned",
    "rationale": "`let` suggests the value changes later; it does not."
  }
]
```"""
