#!/usr/bin/env python3
"""Pull the timestamped transcript of the last call from Fly.io or a local log file.

Usage:
    python scripts/call_transcript.py                    # last call, human-readable
    python scripts/call_transcript.py --raw              # last call, raw JSON
    python scripts/call_transcript.py --call-id CA...    # specific call
    python scripts/call_transcript.py --gap-threshold 3  # custom gap threshold
    python scripts/call_transcript.py --since 2h         # look back 2 hours
    python scripts/call_transcript.py --log-file app.log # local uvicorn log
"""

import argparse
import json
import shutil
import subprocess
import sys


def parse_transcript_lines(lines: list[str], call_id: str | None = None) -> list[dict]:
    """Parse TRANSCRIPT_DUMP lines from log output into transcript dicts.

    Handles multi-chunk reassembly. Returns list of complete transcripts
    (most recent last). If call_id is specified, filters to that call only.
    """
    chunk_groups: dict[int, dict[int, str]] = {}
    group_counter = 0

    for line in lines:
        if "TRANSCRIPT_DUMP|" not in line:
            continue

        idx = line.index("TRANSCRIPT_DUMP|")
        dump_part = line[idx:]

        parts = dump_part.split("|", 2)
        if len(parts) < 3:
            continue

        try:
            chunk_info = parts[1]
            chunk_num, total = chunk_info.split("/")
            chunk_num = int(chunk_num)
            total = int(total)
        except (ValueError, IndexError):
            continue

        if chunk_num == 1:
            group_counter += 1

        if group_counter not in chunk_groups:
            chunk_groups[group_counter] = {}
        chunk_groups[group_counter][chunk_num] = parts[2]

    transcripts = []
    for group_id in sorted(chunk_groups.keys()):
        chunks = chunk_groups[group_id]
        if not chunks:
            continue

        try:
            first = json.loads(chunks.get(1, "{}"))
        except json.JSONDecodeError:
            continue

        if call_id and first.get("call_id") != call_id:
            continue

        all_entries = list(first.get("entries", []))
        for i in sorted(chunks.keys()):
            if i == 1:
                continue
            try:
                chunk_data = json.loads(chunks[i])
                all_entries.extend(chunk_data.get("entries", []))
            except json.JSONDecodeError:
                continue

        first["entries"] = all_entries
        transcripts.append(first)

    return transcripts


def format_transcript(transcript: dict, gap_threshold: float = 2.0) -> str:
    """Format a transcript dict into human-readable output with gap annotations."""
    lines = []

    call_id = transcript.get("call_id", "unknown")
    phone = transcript.get("phone", "unknown")
    duration = transcript.get("duration_s", 0)
    final_phase = transcript.get("final_phase", "unknown")
    end_reason = transcript.get("end_reason", "")
    header = f"Call {call_id} | {phone} | {duration}s | {final_phase}"
    if end_reason:
        header += f" | {end_reason}"
    lines.append(header)
    lines.append("\u2550" * 55)
    lines.append("")

    entries = transcript.get("entries", [])
    prev_t = None

    for entry in entries:
        t = entry.get("t", 0.0)
        role = entry.get("role", "")

        if prev_t is not None:
            gap = t - prev_t
            if gap >= gap_threshold:
                if gap >= 5.0:
                    lines.append(f"      \u2506 +{gap:.1f}s \u26a0 SLOW")
                else:
                    lines.append(f"      \u2506 +{gap:.1f}s")

        t_str = f"{t:5.1f}s"
        content = entry.get("content", "")

        if role == "agent":
            lines.append(f"{t_str}  Agent:    {content}")
        elif role == "customer":
            lines.append(f"{t_str}  Customer: {content}")

        prev_t = t

    if entries:
        lines.append(f"{duration:5.1f}s  \u260e Call ended")

    return "\n".join(lines)


def read_fly_logs(app: str, since: str) -> list[str]:
    """Fetch recent log lines from Fly.io. Exits with a message on failure."""
    fly_cmd = shutil.which("fly") or shutil.which("flyctl")
    if not fly_cmd:
        sys.exit("Error: flyctl not found. Install: https://fly.io/docs/flyctl/install/ (or pass --log-file)")

    try:
        result = subprocess.run(
            [fly_cmd, "logs", "-a", app, "--no-tail", "--since", since],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except subprocess.TimeoutExpired:
        sys.exit("Error: fly logs timed out after 30s")

    if result.returncode != 0:
        stderr = result.stderr.strip()
        if "not authenticated" in stderr.lower() or "login" in stderr.lower():
            sys.exit("Error: Not authenticated with Fly.io. Run: fly auth login")
        sys.exit(f"Error: fly logs failed: {stderr}")

    return result.stdout.strip().split("\n")


def main():
    parser = argparse.ArgumentParser(description="Pull timestamped transcript from last call")
    parser.add_argument("--raw", action="store_true", help="Output raw JSON")
    parser.add_argument("--call-id", type=str, default=None, help="Filter by specific call id")
    parser.add_argument("--gap-threshold", type=float, default=2.0, help="Gap threshold in seconds (default: 2.0)")
    parser.add_argument("--since", type=str, default="1h", help="How far back to search (default: 1h)")
    parser.add_argument("--app", type=str, default="salescall-agent", help="Fly.io app name")
    parser.add_argument("--log-file", type=str, default=None, help="Read a local log file instead of Fly.io")
    args = parser.parse_args()

    if args.log_file:
        with open(args.log_file, encoding="utf-8") as f:
            lines = f.read().splitlines()
    else:
        lines = read_fly_logs(args.app, args.since)

    transcripts = parse_transcript_lines(lines, call_id=args.call_id)

    if not transcripts:
        where = args.log_file or f"the last {args.since}"
        sys.exit(f"No calls found in {where}. Try --since 2h")

    transcript = transcripts[-1]

    if args.raw:
        print(json.dumps(transcript, indent=2))
    else:
        print(format_transcript(transcript, gap_threshold=args.gap_threshold))


if __name__ == "__main__":
    main()
