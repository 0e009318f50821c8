import json
from dataclasses import dataclass, field
from datetime import datetime, timezone

from salescall.states import Speaker


@dataclass(frozen=True)
class Turn:
    speaker: Speaker
    text: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Transcript:
    """Append-only, insertion-ordered log of one call's turns.

    Repeated identical utterances are distinct turns; nothing is ever
    removed or reordered.
    """

    def __init__(self):
        self._turns: list[Turn] = []

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def all(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def customer_turns(self) -> list[Turn]:
        return [t for t in self._turns if t.speaker is Speaker.CUSTOMER]

    def agent_turns(self) -> list[Turn]:
        return [t for t in self._turns if t.speaker is Speaker.AGENT]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(self.all())


def to_plain_text(turns) -> str:
    """Render turns as "Agent: ..." / "Customer: ..." lines."""
    if not turns:
        return ""
    lines = []
    for turn in turns:
        label = "Agent" if turn.speaker is Speaker.AGENT else "Customer"
        lines.append(f"{label}: {turn.text}")
    return "\n".join(lines)


def to_chat_messages(turns) -> list[dict]:
    """Map turns onto chat-completion roles (agent -> assistant)."""
    return [
        {
            "role": "assistant" if turn.speaker is Speaker.AGENT else "user",
            "content": turn.text,
        }
        for turn in turns
    ]


def to_json_array(turns) -> list[dict]:
    """Structured transcript for the call record store."""
    return [
        {"speaker": turn.speaker.value, "message": turn.text, "timestamp": turn.at.isoformat()}
        for turn in turns
    ]


def to_timestamped_dump(
    turns,
    started_at: datetime,
    call_id: str,
    phone: str,
    final_phase: str,
) -> dict:
    """Build a transcript dump dict with offsets relative to call start."""
    entries = []
    for turn in turns:
        entries.append({
            "t": round((turn.at - started_at).total_seconds(), 1),
            "role": turn.speaker.value,
            "content": turn.text,
        })
    return {
        "call_id": call_id,
        "phone": phone,
        "final_phase": final_phase,
        "entries": entries,
    }


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Split a transcript dump into chunks that fit within log line limits.

    Each chunk is a string: TRANSCRIPT_DUMP|N/M|{json}
    The first chunk carries the header fields; later chunks carry only entries.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    entries = dump.get("entries", [])

    if not entries:
        payload = json.dumps({**header, "entries": []})
        return [f"TRANSCRIPT_DUMP|1/1|{payload}"]

    chunks_entries: list[list[dict]] = []
    current_chunk: list[dict] = []
    current_size = len(json.dumps({**header, "entries": []}).encode("utf-8"))

    for entry in entries:
        entry_size = len(json.dumps(entry).encode("utf-8")) + 2  # comma + bracket overhead

        if current_chunk and (current_size + entry_size) > max_bytes:
            chunks_entries.append(current_chunk)
            current_chunk = []
            current_size = len(json.dumps({"entries": []}).encode("utf-8"))

        current_chunk.append(entry)
        current_size += entry_size

    if current_chunk:
        chunks_entries.append(current_chunk)

    total = len(chunks_entries)
    result = []
    for i, chunk_entries in enumerate(chunks_entries):
        if i == 0:
            payload = json.dumps({**header, "entries": chunk_entries})
        else:
            payload = json.dumps({"entries": chunk_entries})
        result.append(f"TRANSCRIPT_DUMP|{i + 1}/{total}|{payload}")

    return result
