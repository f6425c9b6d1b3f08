"""Deterministic pattern checks over changed lines (no network, no disk).

Two dialect catalogs (ECMAScript-like and Python) plus credential checks
that apply to every file. Each rule produces one Finding per matching line.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass

from ast_context import detect_lang
from models import Category, Finding, Severity


@dataclass(frozen=True)
class Rule:
    """A single-line pattern check."""

    title: str
    category: Category
    severity: Severity
    rationale: str
    pattern: re.Pattern
    suggest: Callable[[str], str | None] = lambda line: None
    # Suppress the finding if this matches the line or the next `lookahead` lines
    unless: re.Pattern | None = None
    lookahead: int = 0
    # Skipped when debug output is explicitly allowed
    debug_output: bool = False


def _fixed(text: str) -> Callable[[str], str]:
    return lambda line: text


def _indent(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


# ---------------------------------------------------------------------------
# Credentials (every dialect)
# ---------------------------------------------------------------------------
def _secret_rules(comment: str) -> tuple[Rule, ...]:
    return (
        Rule(
            title="Possible AWS access key committed",
            category="security",
            severity="high",
            rationale="Hardcoded AWS keys can grant full account access. Rotate immediately and load from a secret store.",
            pattern=re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
            suggest=_fixed(f"{comment} Move this key to a secret manager or env var and rotate the credential."),
        ),
        Rule(
            title="Possible GitHub token committed",
            category="security",
            severity="high",
            rationale="Personal access tokens in code are a critical secret leak. Revoke the token and use repository secrets.",
            pattern=re.compile(r"\bghp_[A-Za-z0-9]{36}\b"),
            suggest=_fixed(f"{comment} Remove this token, read it from the environment, and rotate it."),
        ),
        Rule(
            title="Possible OpenAI API key committed",
            category="security",
            severity="high",
            rationale="API keys must not be in source control. Store them as secrets and read them at runtime.",
            pattern=re.compile(r"\bsk-[A-Za-z0-9]{20,}\b"),
            suggest=_fixed(f"{comment} Read the key from the environment and rotate the leaked one."),
        ),
        Rule(
            title="Possible Google API key committed",
            category="security",
            severity="high",
            rationale="Google API keys grant billable access to cloud services. Restrict, rotate and load from a secret store.",
            pattern=re.compile(r"\bAIza[0-9A-Za-z_-]{35}\b"),
            suggest=_fixed(f"{comment} Read the key from the environment and rotate the leaked one."),
        ),
        Rule(
            title="Private key committed",
            category="security",
            severity="high",
            rationale="A private key in the repository compromises every system that trusts it.",
            pattern=re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"),
            suggest=_fixed(f"{comment} Remove the key from the repository and issue a new one."),
        ),
    )


# ---------------------------------------------------------------------------
# ECMAScript dialect (.ts/.tsx/.js/.jsx/.mjs/.cjs)
# ---------------------------------------------------------------------------
ECMASCRIPT_RULES: tuple[Rule, ...] = _secret_rules("//") + (
    Rule(
        title="Use of eval / Function constructor",
        category="security",
        severity="high",
        rationale="`eval` executes arbitrary code and is a common injection vector.",
        pattern=re.compile(r"\beval\s*\(|\bnew\s+Function\s*\("),
        suggest=_fixed("// Replace eval with a lookup table or a safe parser."),
    ),
    Rule(
        title="Shell execution may be unsafe",
        category="security",
        severity="high",
        rationale="Passing user-controlled data to a shell can lead to command injection.",
        pattern=re.compile(
            r"\bchild_process\.(?:exec|execSync)\s*\("
            r"|\b(?:spawn|spawnSync|execFile|execFileSync)\s*\([^)]*\bshell\s*:\s*true"
        ),
        suggest=_fixed("// Prefer execFile/spawn with an argument array and no shell."),
    ),
    Rule(
        title="Unsafe deserialization",
        category="security",
        severity="high",
        rationale="Deserializing untrusted input with node-serialize can execute attacker code.",
        pattern=re.compile(r"\bserialize\.unserialize\s*\(|\bunserialize\s*\("),
        suggest=_fixed("// Parse untrusted input with JSON.parse and validate its shape."),
    ),
    Rule(
        title="Hardcoded JWT secret",
        category="security",
        severity="high",
        rationale="Signing secrets must be loaded from the environment or a secret store.",
        pattern=re.compile(r"\bjwt\.sign\s*\([^,]+,\s*['\"][^'\"]+['\"]"),
        suggest=_fixed("jwt.sign(payload, process.env.JWT_SECRET!)"),
    ),
    Rule(
        title="Weak hash algorithm (MD5/SHA-1)",
        category="security",
        severity="medium",
        rationale="MD5 and SHA-1 are broken. Use SHA-256 or a KDF like scrypt/argon2 for passwords.",
        pattern=re.compile(r"createHash\(\s*['\"](?:md5|sha1)['\"]\s*\)", re.IGNORECASE),
        suggest=lambda line: re.sub(
            r"(createHash\(\s*['\"])(?:md5|sha1)(['\"])", r"\1sha256\2", line, flags=re.IGNORECASE
        ),
    ),
    Rule(
        title="Insecure HTTP request",
        category="security",
        severity="medium",
        rationale="Unencrypted HTTP exposes credentials and data in transit. Prefer HTTPS.",
        pattern=re.compile(r"\b(?:fetch|axios(?:\.\w+)?)\s*\(\s*['\"`]http://"),
        suggest=lambda line: line.replace("http://", "https://", 1),
    ),
    Rule(
        title="TLS certificate verification disabled",
        category="security",
        severity="medium",
        rationale="Disabling certificate checks allows man-in-the-middle attacks.",
        pattern=re.compile(r"\brejectUnauthorized\s*:\s*false\b"),
        suggest=lambda line: re.sub(r"rejectUnauthorized\s*:\s*false", "rejectUnauthorized: true", line),
    ),
    Rule(
        title="Assignment to innerHTML",
        category="security",
        severity="medium",
        rationale="Writing unescaped strings into innerHTML enables cross-site scripting.",
        pattern=re.compile(r"\.innerHTML\s*=(?!=)"),
        suggest=lambda line: line.replace(".innerHTML", ".textContent", 1),
    ),
    Rule(
        title="Network request without timeout/abort",
        category="performance",
        severity="low",
        rationale="A stuck network call can hang forever. Pass `signal: AbortSignal.timeout(ms)` or use an AbortController.",
        pattern=re.compile(r"\bfetch\s*\("),
        unless=re.compile(r"AbortController|AbortSignal|\bsignal\s*:|\btimeout\b"),
        lookahead=3,
    ),
    Rule(
        title="Empty catch block",
        category="style",
        severity="low",
        rationale="Swallowing every error hides failures. Handle, log or rethrow.",
        pattern=re.compile(r"\bcatch\s*(?:\([^)]*\))?\s*\{\s*\}"),
    ),
    Rule(
        title="Loose `any` type",
        category="style",
        severity="low",
        rationale="`any` turns off type checking. Prefer generics or `unknown` with type guards.",
        pattern=re.compile(r":\s*any(?:\W|$)"),
        suggest=lambda line: re.sub(r":\s*any\b", ": unknown", line),
    ),
    Rule(
        title="Leftover console.log",
        category="style",
        severity="low",
        rationale="Console noise makes logs hard to read. Use a logger or remove before merge.",
        pattern=re.compile(r"\bconsole\.log\s*\("),
        suggest=lambda line: f"{_indent(line)}// {line.strip()}",
        debug_output=True,
    ),
)


# ---------------------------------------------------------------------------
# Python dialect (.py)
# ---------------------------------------------------------------------------
_PY_HTTP_CALL = r"\b(?:requests|httpx|session|client)\.(?:get|post|put|patch|delete|head|request)\s*\("

PYTHON_RULES: tuple[Rule, ...] = _secret_rules("#") + (
    Rule(
        title="Use of eval / exec",
        category="security",
        severity="high",
        rationale="`eval`/`exec` run arbitrary code and are a common injection vector.",
        pattern=re.compile(r"(?<![\w.])(?:eval|exec)\s*\("),
        suggest=_fixed("# Use ast.literal_eval or an explicit dispatch table instead."),
    ),
    Rule(
        title="Shell execution may be unsafe",
        category="security",
        severity="high",
        rationale="Passing user-controlled data to a shell can lead to command injection.",
        pattern=re.compile(
            r"\bsubprocess\.\w+\s*\([^#]*\bshell\s*=\s*True|\bos\.(?:system|popen)\s*\("
        ),
        suggest=_fixed("# Pass an argument list to subprocess.run and drop shell=True."),
    ),
    Rule(
        title="Unsafe deserialization",
        category="security",
        severity="high",
        rationale="Unpickling untrusted data can execute arbitrary code.",
        pattern=re.compile(r"\b(?:pickle|cPickle|dill|marshal)\.loads?\s*\("),
        suggest=_fixed("# Use json or a schema-validated format for untrusted input."),
    ),
    Rule(
        title="Unsafe YAML load",
        category="security",
        severity="medium",
        rationale="`yaml.load` without a safe loader can construct arbitrary Python objects.",
        pattern=re.compile(r"\byaml\.(?:load|load_all)\s*\("),
        unless=re.compile(r"\b(?:Safe|CSafe|Base)Loader\b"),
        lookahead=2,
        suggest=lambda line: line.replace("yaml.load_all(", "yaml.safe_load_all(").replace(
            "yaml.load(", "yaml.safe_load("
        ),
    ),
    Rule(
        title="Weak hash algorithm (MD5/SHA-1)",
        category="security",
        severity="medium",
        rationale="MD5 and SHA-1 are broken. Use hashlib.sha256 or a KDF for passwords.",
        pattern=re.compile(r"\bhashlib\.(?:md5|sha1)\s*\(|\bhashlib\.new\(\s*['\"](?:md5|sha1)['\"]"),
        suggest=lambda line: re.sub(
            r"\bhashlib\.(?:md5|sha1)\s*\(",
            "hashlib.sha256(",
            re.sub(r"(hashlib\.new\(\s*['\"])(?:md5|sha1)(['\"])", r"\1sha256\2", line),
        ),
    ),
    Rule(
        title="Insecure HTTP request",
        category="security",
        severity="medium",
        rationale="Unencrypted HTTP exposes credentials and data in transit. Prefer HTTPS.",
        pattern=re.compile(_PY_HTTP_CALL + r"\s*[rf]?['\"]http://|\burlopen\s*\(\s*['\"]http://"),
        suggest=lambda line: line.replace("http://", "https://", 1),
    ),
    Rule(
        title="TLS certificate verification disabled",
        category="security",
        severity="medium",
        rationale="`verify=False` allows man-in-the-middle attacks.",
        pattern=re.compile(r"\bverify\s*=\s*False\b"),
        suggest=lambda line: re.sub(r"\bverify\s*=\s*False\b", "verify=True", line),
    ),
    Rule(
        title="Network request without timeout",
        category="performance",
        severity="low",
        rationale="requests/httpx calls without `timeout=` can hang indefinitely.",
        pattern=re.compile(_PY_HTTP_CALL),
        unless=re.compile(r"\btimeout\s*="),
        lookahead=3,
    ),
    Rule(
        title="Bare except clause",
        category="style",
        severity="low",
        rationale="A bare `except:` also catches KeyboardInterrupt and SystemExit.",
        pattern=re.compile(r"^\s*except\s*:"),
        suggest=lambda line: re.sub(r"except\s*:", "except Exception:", line, count=1),
    ),
    Rule(
        title="Overly broad exception handler",
        category="style",
        severity="low",
        rationale="Catching Exception/BaseException hides unrelated failures. Catch the specific errors you expect.",
        pattern=re.compile(r"^\s*except\s+\(?\s*(?:Base)?Exception\s*\)?\s*(?:as\s+\w+\s*)?:"),
    ),
    Rule(
        title="Loose `Any` type",
        category="style",
        severity="low",
        rationale="`Any` turns off type checking. Prefer a precise type, a Protocol or `object`.",
        pattern=re.compile(r"(?::|->)\s*Any\b"),
        suggest=lambda line: re.sub(r"((?::|->)\s*)Any\b", r"\1object", line),
    ),
    Rule(
        title="Leftover print()",
        category="style",
        severity="low",
        rationale="Debug prints leak into production output. Use logging or remove before merge.",
        pattern=re.compile(r"^\s*print\s*\("),
        debug_output=True,
    ),
)

SHARED_RULES: tuple[Rule, ...] = _secret_rules("#")

_CATALOGS: dict[str, tuple[Rule, ...]] = {
    "ts": ECMASCRIPT_RULES,
    "js": ECMASCRIPT_RULES,
    "py": PYTHON_RULES,
}


def rules_for(path: str) -> tuple[Rule, ...]:
    """Catalog for *path*'s dialect; credential checks only for other files."""
    return _CATALOGS.get(detect_lang(path), SHARED_RULES)


def run_rules(
    path: str,
    source: str,
    start_line: int,
    end_line: int,
    allow_console: bool = False,
) -> list[Finding]:
    """
    Scan ONLY lines ``start_line..end_line`` of *source* for known patterns.

    Findings are ordered by line, then by catalog order.
    """
    lines = source.split("\n")
    start = max(1, start_line)
    end = min(len(lines), end_line)
    catalog = rules_for(path)

    findings: list[Finding] = []
    for line_no in range(start, end + 1):
        line = lines[line_no - 1]
        for rule in catalog:
            if rule.debug_output and allow_console:
                continue
            if not rule.pattern.search(line):
                continue
            if rule.unless is not None:
                window = "\n".join(lines[line_no - 1 : line_no + rule.lookahead])
                if rule.unless.search(window):
                    continue
            findings.append(
                Finding(
                    path=path,
                    start_line=line_no,
                    end_line=line_no,
                    category=rule.category,
                    severity=rule.severity,
                    title=rule.title,
                    rationale=rule.rationale,
                    suggestion=rule.suggest(line),
                )
            )
    return findings
