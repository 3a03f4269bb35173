"""Integration tests for render_chat_schedule CLI."""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from typing import List


def run_render_chat_schedule(
    args: List[str], repo_root: Path
) -> subprocess.CompletedProcess[str]:
    """Run render_chat_schedule.py with the provided arguments."""
    return subprocess.run(
        [sys.executable, str(repo_root / "render_chat_schedule.py"), *args],
        cwd=repo_root,
        text=True,
        capture_output=True,
        check=False,
    )


def write_text_file(path: Path, content: str) -> None:
    """Write UTF-8 content to a file."""
    path.write_text(content, encoding="utf-8")


def test_text_script_plan_to_stdout(tmp_path: Path) -> None:
    """Plan a text script and print the JSON plan."""
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "chat.txt"
    write_text_file(
        script_path,
        "> Conversation with Alex <\nAlex: Hi\nMe: How are you\nAlex: Good\n",
    )

    result = run_render_chat_schedule(
        ["--input-script-file", str(script_path), "--outro-animation", "none"],
        repo_root,
    )

    assert result.returncode == 0, result.stderr
    payload = json.loads(result.stdout)
    assert [item["appear_frame"] for item in payload["messages"]] == [0, 4, 23]
    assert payload["total_frames"] == 130
    assert payload["screens"][0]["recipient_name"] == "Alex"
    assert payload["monetization"] is None
    assert "chat_schedule.plan" in result.stderr


def test_json_script_with_monetization(tmp_path: Path) -> None:
    """The monetization marker places the embedded segment."""
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "chat.json"
    output_path = tmp_path / "plan.json"
    script = {
        "messages": [
            {"text": "Hi", "sender": "them"},
            {"text": "How are you", "sender": "me"},
            {"text": "> Insert monetization <", "type": "command"},
            {"text": "Good", "sender": "them"},
        ],
        "monetization": {
            "mode": "single_reply",
            "intro": {"text": "Today's sponsor", "clip_duration_seconds": 1.5},
            "reply": {"text": "Nice", "sender": "me", "clip_duration_seconds": 1.0},
            "reply_start_seconds": 3.0,
        },
    }
    write_text_file(script_path, json.dumps(script))

    result = run_render_chat_schedule(
        [
            "--input-script-file",
            str(script_path),
            "--output-plan-file",
            str(output_path),
        ],
        repo_root,
    )

    assert result.returncode == 0, result.stderr
    payload = json.loads(output_path.read_text(encoding="utf-8"))
    segment = payload["monetization"]
    assert segment["start_frame"] == 23
    assert segment["duration_frames"] == 120
    assert payload["messages"][2]["appear_frame"] >= segment["end_frame"]
    assert payload["messages"][2]["starts_conversation"] is True
    assert len(payload["screens"]) == 2


def test_timeline_image_written(tmp_path: Path) -> None:
    """The optional timeline overview is written as PNG."""
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "chat.txt"
    image_path = tmp_path / "timeline.png"
    write_text_file(script_path, "Them: Hi\nMe: Hello\n")

    result = run_render_chat_schedule(
        [
            "--input-script-file",
            str(script_path),
            "--timeline-image",
            str(image_path),
            "--timeline-width",
            "200",
        ],
        repo_root,
    )

    assert result.returncode == 0, result.stderr
    assert image_path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


def test_missing_input_file(tmp_path: Path) -> None:
    """Fail with a file error when the script is missing."""
    repo_root = Path(__file__).resolve().parents[1]

    result = run_render_chat_schedule(
        ["--input-script-file", str(tmp_path / "missing.txt")], repo_root
    )

    assert result.returncode != 0
    assert "chat_schedule.input.file_error" in result.stderr


def test_invalid_utf8_input(tmp_path: Path) -> None:
    """Fail when the script is not valid UTF-8."""
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "bad.txt"
    script_path.write_bytes(b"Me: \xff\xfe\n")

    result = run_render_chat_schedule(["--input-script-file", str(script_path)], repo_root)

    assert result.returncode != 0
    assert "chat_schedule.input.file_error" in result.stderr


def test_invalid_fps(tmp_path: Path) -> None:
    """Fail with a config error for a non-positive fps."""
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "chat.txt"
    write_text_file(script_path, "Me: Hi\n")

    result = run_render_chat_schedule(
        ["--input-script-file", str(script_path), "--fps", "0"], repo_root
    )

    assert result.returncode != 0
    assert "chat_schedule.input.invalid_config" in result.stderr


def test_speakerless_script(tmp_path: Path) -> None:
    """Fail with a script error when the first line has no speaker."""
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "chat.txt"
    write_text_file(script_path, "just some words\n")

    result = run_render_chat_schedule(["--input-script-file", str(script_path)], repo_root)

    assert result.returncode != 0
    assert "chat_schedule.input.invalid_script" in result.stderr
