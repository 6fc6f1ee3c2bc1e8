"""Shape fingerprinting — structural variant analysis for row payloads.

Payloads are fingerprinted after ``raw_json`` unwrapping, so a wrapped
assistant envelope and a bare one share a shape.
"""
from __future__ import annotations

import hashlib
import json
from collections import Counter
from pathlib import Path

from unspool.decoder import DecodeError, resolve_role, unwrap
from unspool.session import load_rows, parse_object


def fingerprint(envelope: dict) -> str:
    """Create a structural fingerprint from a decoded envelope dict."""
    parts: list[str] = []

    # Sorted top-level keys
    parts.append(",".join(sorted(envelope.keys())))

    # Discriminators
    if "type" in envelope:
        parts.append(f"type:{envelope['type']}")
    if "role" in envelope:
        parts.append(f"role:{envelope['role']}")
    if "subtype" in envelope:
        parts.append(f"subtype:{envelope['subtype']}")

    # Content item types, top-level or under message.content
    content = envelope.get("content")
    if content is None:
        msg = envelope.get("message")
        if isinstance(msg, dict):
            content = msg.get("content")

    if isinstance(content, list):
        block_types: list[str] = []
        for block in content:
            if isinstance(block, dict):
                bt = block.get("type")
                if bt and bt not in block_types:
                    block_types.append(bt)
        if block_types:
            parts.append("blocks:" + "+".join(sorted(block_types)))

    raw = "|".join(parts)
    return hashlib.md5(raw.encode()).hexdigest()[:12]


def deep_walk(
    obj: object,
    path: str = "$",
    depth: int = 0,
    max_depth: int = 5,
) -> list[tuple[str, str]]:
    """Recursively walk a nested structure, producing (json_path, type_description) tuples."""
    results: list[tuple[str, str]] = []

    if depth > max_depth:
        return results

    if isinstance(obj, dict):
        results.append((path, "dict"))
        for key, value in obj.items():
            results.extend(deep_walk(value, f"{path}.{key}", depth + 1, max_depth))
    elif isinstance(obj, list):
        results.append((path, "list"))
        if obj:
            # first item stands for all of them
            results.extend(deep_walk(obj[0], f"{path}[*]", depth + 1, max_depth))
    else:
        results.append((path, type(obj).__name__))

    return results


def _verify_fingerprints(verify_file: str) -> set[str]:
    with open(Path(verify_file), encoding="utf-8") as f:
        data = json.load(f)

    fps: set[str] = set()
    if isinstance(data, list):
        # raw envelopes
        for item in data:
            if isinstance(item, dict):
                fps.add(fingerprint(item))
    elif isinstance(data, dict):
        # a previous cmd_shapes result
        for shape in data.get("shapes", []):
            if isinstance(shape, dict) and "fingerprint" in shape:
                fps.add(shape["fingerprint"])
    else:
        raise ValueError(f"{verify_file} is neither an envelope list nor a shapes result")
    return fps


def cmd_shapes(
    path: Path,
    deep: bool = False,
    verify_file: str | None = None,
) -> dict:
    """Shape inventory or verification for a row file."""
    path = Path(path)

    # fingerprint -> (type, role, keys_str, first row id, envelope)
    fp_info: dict[str, tuple[str, str, str, str, dict]] = {}
    fp_counts: Counter[str] = Counter()
    plain = 0
    broken = 0
    wrapped = 0

    for row in load_rows(path):
        obj = parse_object(row.payload)
        if obj is None:
            plain += 1
            continue
        try:
            envelope, _role = unwrap(obj)
        except DecodeError:
            broken += 1
            continue
        if envelope is not obj:
            wrapped += 1
        fp = fingerprint(envelope)
        fp_counts[fp] += 1
        if fp not in fp_info:
            etype = envelope.get("type")
            fp_info[fp] = (
                etype if isinstance(etype, str) else "",
                resolve_role(row.payload).value,
                ",".join(sorted(envelope.keys())),
                row.id,
                envelope,
            )

    if verify_file is not None:
        file_fps = _verify_fingerprints(verify_file)
        source_fps = set(fp_info.keys())
        matched = source_fps & file_fps
        coverage_ratio = len(matched) / len(source_fps) if source_fps else 0.0
        return {
            "source": str(path),
            "coverage": {
                "source_shapes": len(source_fps),
                "file_shapes": len(file_fps),
                "matched": len(matched),
                "missing_from_file": sorted(source_fps - file_fps),
                "extra_in_file": sorted(file_fps - source_fps),
                "coverage_ratio": round(coverage_ratio, 4),
            },
        }

    shapes = []
    for fp, count in fp_counts.most_common():
        etype, role, keys_str, first_id, envelope = fp_info[fp]
        entry: dict = {
            "fingerprint": fp,
            "type": etype,
            "role": role,
            "keys": keys_str,
            "count": count,
            "example_id": first_id,
        }
        if deep:
            entry["paths"] = [{"path": p, "type": t} for p, t in deep_walk(envelope)]
        shapes.append(entry)

    return {
        "source": str(path),
        "payloads": {"plain": plain, "broken": broken, "wrapped": wrapped},
        "shapes": shapes,
    }
