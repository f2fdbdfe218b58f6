#!/usr/bin/env python3
"""
OpenClaw × Google Antigravity patcher.

Finds the installed OpenClaw package, re-applies the Antigravity fixes to its
bundled dist files and seeds the user model configuration. Run it again after
every `npm update -g openclaw`: every patch detects its own completion, so
repeated runs are no-ops.

Usage:
    python3 antigravity_patch.py             # Apply all patches
    python3 antigravity_patch.py --dry-run   # Report what would change, write nothing
"""

import argparse
import fnmatch
import glob
import json
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ─── Constants ──────────────────────────────────────────────────────────────────

PACKAGE_NAME = "openclaw"
ANTIGRAVITY_VERSION = "1.18.4"
PLATFORM = "linux/amd64"
PROVIDER_ID = "google-antigravity"
ANTIGRAVITY_BASE_URL = "https://daily-cloudcode-pa.sandbox.googleapis.com"

BACKUP_SUFFIX = ".prepatch.bak"

# @mariozechner/pi-ai is found through this file; pnpm hides it under .pnpm/<name>@<ver>/
MARKER_FILENAME = "google-gemini-cli.js"
GEMINI_CLI_REL = os.path.join("dist", "providers", MARKER_FILENAME)
MODELS_JS_REL = os.path.join("dist", "models.generated.js")

VERSION_PATTERN = r'const DEFAULT_ANTIGRAVITY_VERSION = "(\d+\.\d+\.\d+)"'
PLATFORM_PATTERN = r'antigravity/\$\{version\} ([^\s\'"`/]+/[^\s\'"`]+)'

MODELS_ANCHOR = f'"{PROVIDER_ID}": {{\n'

ANTHROPIC_CHECK = f'options?.modelProvider?.toLowerCase().includes("{PROVIDER_ID}")'

ALLOWLIST_KEYS = ("agents", "defaults", "models")

GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
RED = "\033[0;31m"
NC = "\033[0m"


# ─── Data Classes ───────────────────────────────────────────────────────────────

class PatchResult(Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    WOULD_APPLY = "would_apply"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class InstallationPaths:
    """Resolved OpenClaw locations. Fixed once the locator has run."""
    base_dir: str
    pi_ai_dir: str

    @property
    def dist_dir(self):
        return os.path.join(self.base_dir, "dist")

    @property
    def gemini_cli(self):
        return os.path.join(self.pi_ai_dir, GEMINI_CLI_REL)

    @property
    def models_js(self):
        return os.path.join(self.pi_ai_dir, MODELS_JS_REL)


@dataclass
class ConfigPaths:
    """User configuration files read by the OpenClaw runtime."""
    allowlist: str
    overrides: str

    @classmethod
    def for_home(cls, home):
        root = os.path.join(home, ".openclaw")
        return cls(
            allowlist=os.path.join(root, "openclaw.json"),
            overrides=os.path.join(root, "agents", "main", "agent", "models.json"),
        )


@dataclass
class PatchSpec:
    """Definition of a single literal find-and-replace."""
    path: str
    search: str
    replace: str
    description: str
    # Marker that proves the patch is in place when `search` survives patching
    verify_present: Optional[str] = None


@dataclass
class DistTarget:
    """Hashed bundle files inside dist/, matched by basename."""
    subdir: str
    pattern: str
    exclude: list = field(default_factory=list)


@dataclass
class ModelRecord:
    id: str
    name: str
    reasoning: bool
    # (input, output, cacheRead, cacheWrite) in USD per million tokens
    cost: tuple
    context_window: int
    max_tokens: int
    input: tuple = ("text", "image")
    api: str = "google-gemini-cli"
    provider: str = PROVIDER_ID
    base_url: str = ANTIGRAVITY_BASE_URL

    def to_js(self, indent=8):
        """Render as an entry of the models.generated.js provider table."""
        pad = " " * indent
        inner = " " * (indent + 4)
        inputs = ", ".join(f'"{kind}"' for kind in self.input)
        cost = ", ".join(
            f"{key}: {value}"
            for key, value in zip(("input", "output", "cacheRead", "cacheWrite"), self.cost)
        )
        lines = [
            f'{pad}"{self.id}": {{',
            f'{inner}id: "{self.id}",',
            f'{inner}name: "{self.name}",',
            f'{inner}api: "{self.api}",',
            f'{inner}provider: "{self.provider}",',
            f'{inner}baseUrl: "{self.base_url}",',
            f'{inner}reasoning: {"true" if self.reasoning else "false"},',
            f"{inner}input: [{inputs}],",
            f"{inner}cost: {{ {cost} }},",
            f"{inner}contextWindow: {self.context_window},",
            f"{inner}maxTokens: {self.max_tokens},",
            f"{pad}}},",
        ]
        return "\n".join(lines) + "\n"


@dataclass
class RunReport:
    """Outcome of every bundle patch attempted in one run."""
    results: list = field(default_factory=list)

    def record(self, description, result):
        self.results.append((description, result))
        return result

    def count(self, result):
        return sum(1 for _, r in self.results if r is result)

    @property
    def failed(self):
        return [desc for desc, r in self.results if r is PatchResult.FAILED]


# Models missing from the pi-ai catalogue, inserted at the top of the provider table
MODEL_RECORDS = [
    ModelRecord("gemini-3.1-pro-high", "Gemini 3.1 Pro High (Antigravity)", True,
                (5, 25, 0.5, 6.25), 1000000, 65535),
    ModelRecord("gemini-3.1-pro-low", "Gemini 3.1 Pro Low (Antigravity)", True,
                (3, 15, 0.3, 3.75), 1000000, 65535),
    ModelRecord("gemini-2.5-pro", "Gemini 2.5 Pro (Antigravity)", True,
                (3, 15, 0.3, 3.75), 1000000, 65535),
    ModelRecord("gemini-2.5-flash", "Gemini 2.5 Flash (Antigravity)", True,
                (0.5, 3, 0.5, 0), 1000000, 65535),
    ModelRecord("gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite (Antigravity)", False,
                (0.1, 0.5, 0.1, 0), 1000000, 65535),
    ModelRecord("gemini-2.5-flash-thinking", "Gemini 2.5 Flash Thinking (Antigravity)", True,
                (0.5, 3, 0.5, 0), 1000000, 65535),
    ModelRecord("claude-opus-4-6-thinking", "Claude Opus 4.6 Thinking (Antigravity)", True,
                (5, 25, 0.5, 6.25), 200000, 64000),
    ModelRecord("claude-sonnet-4-6", "Claude Sonnet 4.6 (Antigravity)", False,
                (3, 15, 0.3, 3.75), 200000, 64000),
    ModelRecord("gpt-oss-120b-medium", "GPT-OSS 120B Medium (Antigravity)", True,
                (2, 8, 0.2, 0), 114000, 32768),
]

MODELS_MARKER = f'"{MODEL_RECORDS[0].id}"'

# Everything the user config must know about, including models pi-ai already ships
CONFIG_MODEL_IDS = [
    "gemini-3.1-pro-high",
    "gemini-3.1-pro-low",
    "gemini-3-pro-high",
    "gemini-3-flash",
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
    "gemini-2.5-flash-thinking",
    "claude-opus-4-6-thinking",
    "claude-sonnet-4-6",
    "gpt-oss-120b-medium",
]

DIST_TARGETS = [
    DistTarget("", "pi-embedded-*.js", ["pi-embedded-helpers-*", "*.bak"]),
    DistTarget("", "reply-*.js", ["reply-prefix-*", "*.bak"]),
    DistTarget("plugin-sdk", "reply-*.js", ["reply-prefix-*", "*.bak"]),
    DistTarget("", "subagent-registry-*.js", ["*.bak"]),
]


# ─── Utility Functions ──────────────────────────────────────────────────────────

def log(msg, level="INFO"):
    prefix = {
        "INFO": "   ",
        "OK": f"{GREEN}[✓]{NC}",
        "SKIP": f"{YELLOW}[!]{NC}",
        "WARN": f"{YELLOW}[!]{NC}",
        "FAIL": f"{RED}[✗]{NC}",
    }
    print(f"{prefix.get(level, '   ')} {msg}")


def fatal(msg):
    print(f"{RED}[✗]{NC} {msg}", file=sys.stderr)
    sys.exit(1)


def run_cmd(cmd, check=True, capture=True, timeout=120, **kwargs):
    """Run a shell command."""
    result = subprocess.run(
        cmd, shell=isinstance(cmd, str), check=check,
        capture_output=capture, text=True, timeout=timeout, **kwargs
    )
    return result


def which(cmd):
    """Check if command exists in PATH."""
    return shutil.which(cmd) is not None


def read_file(path):
    """Read file content, keeping line endings as they are on disk."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def write_file(path, content):
    """Write file content."""
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def backup_file(path):
    """Copy `path` to its .prepatch.bak sibling."""
    backup = path + BACKUP_SUFFIX
    shutil.copy2(path, backup)
    return backup


def commit_patch(path, content):
    backup_file(path)
    write_file(path, content)


# ─── Stage 1: Locate Installation ──────────────────────────────────────────────

def _from_npm_prefix(env, home):
    prefix = env.get("NPM_CONFIG_PREFIX")
    if not prefix:
        return None
    return os.path.join(prefix, "lib", "node_modules", PACKAGE_NAME)


def _from_npm_global(env, home):
    return os.path.join(home, ".npm-global", "lib", "node_modules", PACKAGE_NAME)


def _from_apps_dir(env, home):
    return os.path.join(home, "apps", PACKAGE_NAME)


def _global_root(tool):
    """Ask a package manager for its global node_modules; None if it can't say."""
    if not which(tool):
        return None
    try:
        result = run_cmd([tool, "root", "-g"], check=False, timeout=30)
    except (OSError, subprocess.TimeoutExpired):
        return None
    root = (result.stdout or "").strip()
    if result.returncode != 0 or not root:
        return None
    return os.path.join(root, PACKAGE_NAME)


def _from_pnpm_root(env, home):
    return _global_root("pnpm")


def _from_npm_root(env, home):
    return _global_root("npm")


# Evaluated in order until one yields an existing directory
LOCATOR_STRATEGIES = [
    ("NPM_CONFIG_PREFIX", _from_npm_prefix),
    ("~/.npm-global", _from_npm_global),
    ("~/apps", _from_apps_dir),
    ("pnpm root -g", _from_pnpm_root),
    ("npm root -g", _from_npm_root),
]


def locate_openclaw_dir(env=None, home=None, strategies=None):
    """Return the first existing OpenClaw directory, or None."""
    env = os.environ if env is None else env
    home = home or os.path.expanduser("~")
    strategies = LOCATOR_STRATEGIES if strategies is None else strategies

    for index, (label, strategy) in enumerate(strategies):
        candidate = strategy(env, home)
        if not candidate or not os.path.isdir(candidate):
            continue
        if index > 0:
            log(f"Using fallback location ({label}): {candidate}", "WARN")
        return candidate
    return None


def find_pi_ai_dir(openclaw_dir):
    """Find the pi-ai package root through its google-gemini-cli.js provider file.

    npm nests it at node_modules/@mariozechner/pi-ai; pnpm keeps the real
    directory under node_modules/.pnpm/<name>@<version>/node_modules/... and only
    symlinks it into place, so the whole tree is walked instead of guessing.
    """
    node_modules = os.path.join(openclaw_dir, "node_modules")
    for root, dirs, files in os.walk(node_modules):
        dirs.sort()
        if MARKER_FILENAME not in files:
            continue
        providers = os.path.basename(root)
        dist = os.path.basename(os.path.dirname(root))
        if providers == "providers" and dist == "dist":
            return os.path.dirname(os.path.dirname(root))
    return None


def locate_installation(env=None, home=None):
    """Resolve every path the patch stages need, aborting if anything is missing."""
    print("\n=== Stage 1: Locate Installation ===")

    base_dir = locate_openclaw_dir(env=env, home=home)
    if base_dir is None:
        fatal("Cannot find OpenClaw installation")
    log(f"OpenClaw dir: {base_dir}", "OK")

    pi_ai_dir = find_pi_ai_dir(base_dir)
    if pi_ai_dir is None:
        fatal(f"Cannot find @mariozechner/pi-ai in {base_dir}")
    log(f"pi-ai dir:    {pi_ai_dir}", "OK")

    return InstallationPaths(base_dir=base_dir, pi_ai_dir=pi_ai_dir)


# ─── Stage 2: Patch Bundles ────────────────────────────────────────────────────

def patch_file(spec, dry_run=False):
    """Replace the single occurrence of `spec.search` in `spec.path`.

    Already-applied patches are detected from the file itself (the
    `verify_present` marker, or the replacement text once the search text is
    gone). A search text that occurs more than once, or a replacement that
    would leave the file unchanged, is reported as FAILED and nothing is written.
    """
    name = os.path.basename(spec.path)
    content = read_file(spec.path)

    if spec.verify_present and spec.verify_present in content:
        log(f"{spec.description}: already patched, skipping", "SKIP")
        return PatchResult.ALREADY_APPLIED

    count = content.count(spec.search) if spec.search else 0
    if count == 0:
        if spec.replace and spec.replace in content:
            log(f"{spec.description}: already patched, skipping", "SKIP")
            return PatchResult.ALREADY_APPLIED
        log(f"{spec.description}: pattern not found in {name}, may need manual update", "WARN")
        return PatchResult.NOT_FOUND
    if count > 1:
        log(f"{spec.description}: {count} matches in {name}, expected exactly 1", "FAIL")
        return PatchResult.FAILED

    patched = content.replace(spec.search, spec.replace, 1)
    if patched == content:
        log(f"{spec.description}: replacement leaves {name} unchanged", "FAIL")
        return PatchResult.FAILED

    if dry_run:
        log(f"[DRY RUN] Would patch: {spec.description}", "OK")
        return PatchResult.WOULD_APPLY

    commit_patch(spec.path, patched)
    log(spec.description, "OK")
    return PatchResult.APPLIED


def patch_value(path, pattern, target, label, dry_run=False):
    """Rewrite the first capture group of every `pattern` match to `target`.

    The patch counts as applied only when every match already holds `target`.
    """
    content = read_file(path)
    matches = list(re.finditer(pattern, content))
    if not matches:
        log(f"{label} pattern not found, may need manual update", "WARN")
        return PatchResult.NOT_FOUND

    stale = [m for m in matches if m.group(1) != target]
    if not stale:
        log(f"{label} already {target}, skipping", "SKIP")
        return PatchResult.ALREADY_APPLIED

    if dry_run:
        log(f"[DRY RUN] Would patch: {label} → {target}", "OK")
        return PatchResult.WOULD_APPLY

    pieces = []
    last = 0
    for m in stale:
        pieces.append(content[last:m.start(1)])
        pieces.append(target)
        last = m.end(1)
    pieces.append(content[last:])
    commit_patch(path, "".join(pieces))

    current = ", ".join(sorted({m.group(1) for m in stale}))
    log(f"{label} {current} → {target} ({len(stale)} of {len(matches)})", "OK")
    return PatchResult.APPLIED


def patch_antigravity_version(path, version=ANTIGRAVITY_VERSION, dry_run=False):
    return patch_value(path, VERSION_PATTERN, version,
                       "google-gemini-cli: version", dry_run=dry_run)


def patch_platform(path, platform=PLATFORM, dry_run=False):
    return patch_value(path, PLATFORM_PATTERN, platform,
                       "google-gemini-cli: platform", dry_run=dry_run)


def add_models(path, records=None, dry_run=False):
    """Insert the missing Antigravity models at the top of the provider table."""
    records = MODEL_RECORDS if records is None else records
    block = "".join(record.to_js() for record in records)
    return patch_file(PatchSpec(
        path=path,
        search=MODELS_ANCHOR,
        replace=MODELS_ANCHOR + block,
        description="models.generated.js: add new models",
        verify_present=f'"{records[0].id}"',
    ), dry_run=dry_run)


def discover_dist_files(dist_dir, targets=None):
    """Find the hashed bundle files that carry the isAnthropicProvider check."""
    found = []
    for target in DIST_TARGETS if targets is None else targets:
        directory = os.path.join(dist_dir, target.subdir)
        for path in sorted(glob.glob(os.path.join(directory, target.pattern))):
            name = os.path.basename(path)
            if any(fnmatch.fnmatch(name, pattern) for pattern in target.exclude):
                continue
            found.append(path)
    return found


def patch_dist_files(paths, report, dry_run=False):
    for path in paths:
        if not os.path.isfile(path):
            continue
        name = os.path.basename(path)
        spec = PatchSpec(
            path=path,
            search=ANTHROPIC_CHECK,
            replace="false",
            description=f"{name}: isAnthropicProvider, remove {PROVIDER_ID}",
        )
        report.record(spec.description, patch_file(spec, dry_run=dry_run))


def patch_bundles(paths, report, dry_run=False):
    print("\n=== Stage 2: Patch Bundles ===")

    if not os.path.isfile(paths.gemini_cli):
        fatal(f"Not found: {paths.gemini_cli}")
    report.record("google-gemini-cli: version",
                  patch_antigravity_version(paths.gemini_cli, dry_run=dry_run))
    report.record("google-gemini-cli: platform",
                  patch_platform(paths.gemini_cli, dry_run=dry_run))

    if not os.path.isfile(paths.models_js):
        fatal(f"Not found: {paths.models_js}")
    report.record("models.generated.js: add new models",
                  add_models(paths.models_js, dry_run=dry_run))

    dist_files = discover_dist_files(paths.dist_dir)
    if not dist_files:
        log("No dist files matched, nothing to patch", "INFO")
    patch_dist_files(dist_files, report, dry_run=dry_run)


# ─── Stage 3: User Configuration ───────────────────────────────────────────────

def load_json(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        fatal(f"Cannot parse {path}: {e}")


def dump_json(path, data):
    write_file(path, json.dumps(data, indent=2) + "\n")


def merge_allowlist(path, model_ids=None, dry_run=False):
    """Add missing qualified model ids to agents.defaults.models.

    Returns the number of ids added (or that would be added), or None when the
    file does not exist. Existing keys and their values are never touched.
    """
    model_ids = CONFIG_MODEL_IDS if model_ids is None else model_ids
    name = os.path.basename(path)
    if not os.path.isfile(path):
        log(f"{path} not found, skipping allowlist update", "WARN")
        return None

    config = load_json(path)
    node = config
    for key in ALLOWLIST_KEYS:
        if not isinstance(node, dict):
            fatal(f"{path}: {'.'.join(ALLOWLIST_KEYS)} is not an object")
        node = node.setdefault(key, {})
    if not isinstance(node, dict):
        fatal(f"{path}: {'.'.join(ALLOWLIST_KEYS)} is not an object")

    qualified = [f"{PROVIDER_ID}/{model_id}" for model_id in model_ids]
    missing = [model for model in qualified if model not in node]

    if dry_run:
        log(f"[DRY RUN] Would add {len(missing)} missing models to {name} allowlist", "OK")
        return len(missing)

    if not missing:
        log(f"{name}: allowlist models already present, skipping", "SKIP")
        return 0

    for model in missing:
        node[model] = {}
    dump_json(path, config)
    log(f"{name}: added {len(missing)} missing models to allowlist", "OK")
    return len(missing)


def build_overrides_document(model_ids=None):
    model_ids = CONFIG_MODEL_IDS if model_ids is None else model_ids
    return {
        "providers": {
            PROVIDER_ID: {
                "modelOverrides": {model_id: {} for model_id in model_ids},
            },
        },
    }


def ensure_model_overrides(path, model_ids=None, dry_run=False):
    """Create models.json if it is absent. An existing file is never read or rewritten."""
    name = os.path.basename(path)
    if os.path.exists(path):
        log(f"{name} already exists, skipping", "OK")
        return PatchResult.ALREADY_APPLIED

    if dry_run:
        log(f"[DRY RUN] Would create {path}", "OK")
        return PatchResult.WOULD_APPLY

    os.makedirs(os.path.dirname(path), exist_ok=True)
    dump_json(path, build_overrides_document(model_ids))
    log(f"{name} created", "OK")
    return PatchResult.APPLIED


def update_user_config(config_paths, dry_run=False):
    print("\n=== Stage 3: User Configuration ===")
    merge_allowlist(config_paths.allowlist, dry_run=dry_run)
    ensure_model_overrides(config_paths.overrides, dry_run=dry_run)


# ─── Main ──────────────────────────────────────────────────────────────────────

def apply_all(paths, config_paths, dry_run=False):
    """Run the patch and configuration stages against resolved paths."""
    report = RunReport()
    patch_bundles(paths, report, dry_run=dry_run)
    update_user_config(config_paths, dry_run=dry_run)
    return report


def print_summary(report):
    counts = [
        (PatchResult.APPLIED, "applied"),
        (PatchResult.WOULD_APPLY, "would apply"),
        (PatchResult.ALREADY_APPLIED, "already patched"),
        (PatchResult.NOT_FOUND, "need manual update"),
        (PatchResult.FAILED, "failed"),
    ]
    parts = [f"{report.count(result)} {label}" for result, label in counts if report.count(result)]
    print(f"\n  Results: {', '.join(parts) or 'nothing to do'}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Re-apply the Google Antigravity fixes to an OpenClaw installation"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Show what would be done without modifying files"
    )
    args = parser.parse_args(argv)

    print("=" * 60)
    print("  OpenClaw Antigravity Patch")
    print("=" * 60)
    if args.dry_run:
        print(f"{YELLOW}DRY RUN MODE: no files will be modified{NC}")

    home = os.path.expanduser("~")
    paths = locate_installation(env=os.environ, home=home)
    report = apply_all(paths, ConfigPaths.for_home(home), dry_run=args.dry_run)
    print_summary(report)

    if report.failed:
        fatal("Some patches failed to apply. See errors above.")

    if args.dry_run:
        print("\n=== Dry Run Complete ===")
        print("  No files were modified.")
        return

    print(f"\n{GREEN}Patch complete.{NC} Restart OpenClaw to apply changes.")


if __name__ == "__main__":
    main()
