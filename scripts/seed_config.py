"""Writes a local client YAML seed pointing at the given API base URL."""

from pathlib import Path
import sys
import yaml


DEFAULTS = Path(__file__).resolve().parent.parent / "bidsync" / "config" / "client.yaml"


def main(target: str = "client.local.yaml", base_url: str = "http://localhost:3001") -> None:
    data = yaml.safe_load(DEFAULTS.read_text())
    data["api"]["base_url"] = base_url
    data["session"] = {"backend": "in_memory", "options": {}}
    Path(target).write_text(yaml.safe_dump(data, sort_keys=False))
    print(f"wrote {target}; export BIDSYNC_CONFIG_PATH={target}")


if __name__ == "__main__":
    main(*sys.argv[1:3])
