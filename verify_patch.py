#!/usr/bin/env python3
"""Verify the Antigravity patches are in place in the installed OpenClaw."""

import json
import os
import sys

from antigravity_patch import (
    ALLOWLIST_KEYS,
    ANTHROPIC_CHECK,
    ANTIGRAVITY_VERSION,
    CONFIG_MODEL_IDS,
    MODELS_MARKER,
    PLATFORM,
    PROVIDER_ID,
    ConfigPaths,
    discover_dist_files,
    locate_installation,
    read_file,
)


def build_checks(paths):
    """(description, path, must_contain, must_not_contain) for each bundle check."""
    checks = [
        (
            "google-gemini-cli: version",
            paths.gemini_cli,
            f'const DEFAULT_ANTIGRAVITY_VERSION = "{ANTIGRAVITY_VERSION}"',
            None,
        ),
        (
            "google-gemini-cli: platform",
            paths.gemini_cli,
            "antigravity/${version} " + PLATFORM,
            None,
        ),
        (
            "models.generated.js: new models",
            paths.models_js,
            MODELS_MARKER,
            None,
        ),
    ]
    for path in discover_dist_files(paths.dist_dir):
        checks.append((
            f"{os.path.basename(path)}: isAnthropicProvider",
            path,
            None,
            ANTHROPIC_CHECK,
        ))
    return checks


def check_user_config(config_paths):
    """(description, ok, detail) for the user config files."""
    results = []

    config = None
    if os.path.isfile(config_paths.allowlist):
        try:
            with open(config_paths.allowlist, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            results.append(("openclaw.json: allowlist", False, f"Cannot parse: {e}"))

    if config is not None:
        node = config
        for key in ALLOWLIST_KEYS:
            node = node.get(key, {}) if isinstance(node, dict) else {}
        missing = [
            model_id for model_id in CONFIG_MODEL_IDS
            if f"{PROVIDER_ID}/{model_id}" not in node
        ]
        detail = f"Missing: {', '.join(missing)}" if missing else ""
        results.append(("openclaw.json: allowlist", not missing, detail))

    results.append((
        "models.json: present",
        os.path.isfile(config_paths.overrides),
        f"File not found: {config_paths.overrides}",
    ))
    return results


def verify(paths, config_paths):
    """Print one line per check. Returns (passed count, failed descriptions)."""
    passed = 0
    errors = []

    for desc, path, must_contain, must_not_contain in build_checks(paths):
        if not os.path.exists(path):
            print(f"  MISSING  {desc}")
            print(f"           File not found: {path}")
            errors.append(desc)
            continue

        content = read_file(path)
        ok = True

        if must_contain and must_contain not in content:
            print(f"  FAIL     {desc}")
            print("           Expected pattern not found")
            ok = False

        if must_not_contain and must_not_contain in content:
            print(f"  FAIL     {desc}")
            print("           Old pattern still present")
            ok = False

        if ok:
            print(f"  OK       {desc}")
            passed += 1
        else:
            errors.append(desc)

    for desc, ok, detail in check_user_config(config_paths):
        if ok:
            print(f"  OK       {desc}")
            passed += 1
        else:
            print(f"  FAIL     {desc}")
            print(f"           {detail}")
            errors.append(desc)

    return passed, errors


def main():
    home = os.path.expanduser("~")
    paths = locate_installation(env=os.environ, home=home)
    print()
    passed, errors = verify(paths, ConfigPaths.for_home(home))

    failed = len(errors)
    print()
    print(f"Results: {passed} passed, {failed} failed, {passed + failed} total")

    if failed > 0:
        print()
        print("Failed checks:")
        for e in errors:
            print(f"  - {e}")
        sys.exit(1)
    else:
        print("All patches verified.")


if __name__ == "__main__":
    main()
