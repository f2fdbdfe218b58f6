"""Pytest configuration: synthetic OpenClaw installations under ``tmp_path``."""

from pathlib import Path
import json

import pytest

import antigravity_patch


GEMINI_CLI_JS = """\
const DEFAULT_ANTIGRAVITY_VERSION = "1.15.8";
function buildHeaders(version) {
    return {
        "User-Agent": `antigravity/${version} darwin/arm64`,
    };
}
"""

MODELS_JS = """\
export const MODELS = {
    "google-antigravity": {
        "gemini-3-pro-high": {
            id: "gemini-3-pro-high",
            name: "Gemini 3 Pro High (Antigravity)",
        },
    },
};
"""

DIST_JS = """\
function isAnthropicProvider(options) {
    return options?.modelProvider?.toLowerCase().includes("anthropic") || \
options?.modelProvider?.toLowerCase().includes("google-antigravity");
}
"""

PATCHED_DIST_FILES = [
    "dist/pi-embedded-a1b2c3.js",
    "dist/reply-d4e5f6.js",
    "dist/plugin-sdk/reply-778899.js",
    "dist/subagent-registry-0a0b0c.js",
]

EXCLUDED_DIST_FILES = [
    "dist/pi-embedded-helpers-123456.js",
    "dist/reply-prefix-654321.js",
    "dist/plugin-sdk/reply-prefix-111111.js",
]


def build_openclaw_tree(base: Path, pnpm: bool = False) -> Path:
    """Write a minimal OpenClaw install at ``base``; return the pi-ai root."""
    if pnpm:
        pi_ai = (
            base / "node_modules/.pnpm/@mariozechner+pi-ai@0.52.9"
            / "node_modules/@mariozechner/pi-ai"
        )
    else:
        pi_ai = base / "node_modules/@mariozechner/pi-ai"

    (pi_ai / "dist/providers").mkdir(parents=True)
    (pi_ai / "dist/providers/google-gemini-cli.js").write_text(GEMINI_CLI_JS)
    (pi_ai / "dist/models.generated.js").write_text(MODELS_JS)

    for rel in PATCHED_DIST_FILES + EXCLUDED_DIST_FILES:
        path = base / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(DIST_JS)
    return pi_ai


@pytest.fixture(autouse=True)
def no_package_managers(monkeypatch):
    """Never shell out to a real npm/pnpm from the suite."""
    monkeypatch.setattr(antigravity_patch, "which", lambda cmd: False)


@pytest.fixture
def home_dir(tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def npm_prefix(tmp_path: Path) -> Path:
    return tmp_path / "npm-prefix"


@pytest.fixture
def openclaw_dir(npm_prefix: Path) -> Path:
    base = npm_prefix / "lib/node_modules/openclaw"
    build_openclaw_tree(base)
    return base


@pytest.fixture
def install(openclaw_dir: Path) -> antigravity_patch.InstallationPaths:
    return antigravity_patch.InstallationPaths(
        base_dir=str(openclaw_dir),
        pi_ai_dir=str(openclaw_dir / "node_modules/@mariozechner/pi-ai"),
    )


@pytest.fixture
def config_paths(home_dir: Path) -> antigravity_patch.ConfigPaths:
    return antigravity_patch.ConfigPaths.for_home(str(home_dir))


@pytest.fixture
def user_allowlist(config_paths) -> Path:
    """An openclaw.json with one unrelated setting and one pre-allowed model."""
    path = Path(config_paths.allowlist)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({
        "gateway": {"port": 18789},
        "agents": {"defaults": {"models": {
            "google-antigravity/gemini-3-flash": {"alias": "flash"},
        }}},
    }, indent=2))
    return path


@pytest.fixture
def patch_env(monkeypatch, npm_prefix, openclaw_dir, home_dir):
    """Point main() at the synthetic install and home directory."""
    monkeypatch.setenv("NPM_CONFIG_PREFIX", str(npm_prefix))
    monkeypatch.setenv("HOME", str(home_dir))
    return openclaw_dir
