"""Stand-in package manager for end-to-end tests.

Keeps the installed packages in ``packages.json`` inside --working-dir:

    {"installed": [{"name": "drupal/core", "version": "9.8.0", "type": "core"}]}

Supported: require, update, remove, show --format=json.
Set FAKE_COMPOSER_FAIL=1 to make require fail like a dependency conflict.
"""

import json
import os
import sys
from pathlib import Path


def load(working_dir: Path) -> dict:
    path = working_dir / "packages.json"
    if not path.exists():
        return {"installed": []}
    return json.loads(path.read_text(encoding="utf-8"))


def save(working_dir: Path, data: dict) -> None:
    (working_dir / "packages.json").write_text(json.dumps(data, indent=2), encoding="utf-8")


def main(argv: list[str]) -> int:
    operation, args = argv[0], argv[1:]
    working_dir = Path(".")
    packages = []
    for arg in args:
        if arg.startswith("--working-dir="):
            working_dir = Path(arg.split("=", 1)[1])
        elif not arg.startswith("--"):
            packages.append(arg)

    data = load(working_dir)
    installed = {p["name"]: p for p in data["installed"]}

    if operation == "show":
        print(json.dumps(data))
        return 0

    if operation == "require":
        if os.environ.get("FAKE_COMPOSER_FAIL"):
            print(
                "Your requirements could not be resolved to an installable set of packages.",
                file=sys.stderr,
            )
            return 2
        for constraint in packages:
            name, _, version = constraint.partition(":")
            entry = installed.setdefault(name, {"name": name, "type": "library"})
            entry["version"] = version or entry.get("version", "1.0.0")
    elif operation == "remove":
        for name in packages:
            installed.pop(name, None)
    elif operation != "update":
        print(f'Command "{operation}" is not defined.', file=sys.stderr)
        return 1

    save(working_dir, {"installed": list(installed.values())})
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
