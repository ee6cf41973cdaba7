#!/usr/bin/env python3
from __future__ import annotations

import json
import sys
from pathlib import Path


def main(argv: list[str]) -> int:
    if len(argv) != 3:
        print("usage: external_generator_stub.py <model.json> <output_dir>", file=sys.stderr)
        return 2
    model_path = Path(argv[1]).resolve()
    output_dir = Path(argv[2]).resolve()
    if not model_path.exists():
        print(f"Model descriptor not found: {model_path}", file=sys.stderr)
        return 2

    payload = json.loads(model_path.read_text(encoding="utf-8"))
    model = payload.get("model") if isinstance(payload.get("model"), dict) else {}
    messages = model.get("messages")
    enums = model.get("enums")
    services = model.get("services")

    output_dir.mkdir(parents=True, exist_ok=True)
    summary_path = output_dir / "summary.txt"
    summary_path.write_text(
        f"file_key={payload.get('file_key') or 'unknown'}\n"
        f"revision={payload.get('revision') or 'unknown'}\n"
        f"message_count={len(messages) if isinstance(messages, list) else 0}\n"
        f"enum_count={len(enums) if isinstance(enums, list) else 0}\n"
        f"service_count={len(services) if isinstance(services, list) else 0}\n"
        f"source={model_path}\n",
        encoding="utf-8",
    )
    print(str(summary_path))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
