import asyncio
import os
import re
import shutil
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Sequence


@dataclass
class ProcessError(Exception):
    """
    Typed external process failure (yt-dlp / ffmpeg).
    - message: sanitized/shortened text safe for job.error_message
    - stderr: full stderr for server logs/debugging
    - cmd: the command executed
    """
    message: str
    stderr: str = ""
    stdout: str = ""
    returncode: Optional[int] = None
    cmd: Optional[list[str]] = None

    def __str__(self) -> str:
        return self.message


# Signature of an injectable binary resolver: tool name -> executable path
BinaryResolver = Callable[[str], str]


def platform_binary_names(tool: str, platform: Optional[str] = None) -> list[str]:
    """
    Candidate executable names for a tool on the given host platform.

    yt-dlp ships per-OS builds (yt-dlp.exe, yt-dlp_macos, yt-dlp_linux);
    ffmpeg only differs by the Windows suffix.
    """
    platform = platform or sys.platform
    if platform.startswith("win"):
        return [f"{tool}.exe", tool]
    if tool == "yt-dlp":
        if platform == "darwin":
            return ["yt-dlp_macos", "yt-dlp"]
        return ["yt-dlp", "yt-dlp_linux"]
    return [tool]


def resolve_binary(
    tool: str,
    *,
    configured_path: str = "",
    bin_dir: str = "",
    platform: Optional[str] = None,
) -> str:
    """
    Locate an external tool at call time.

    Order: explicit configured path, project bin dir, PATH. Falls back to
    the bare platform name so the spawn error names the missing tool.
    """
    if configured_path:
        return configured_path

    names = platform_binary_names(tool, platform)
    if bin_dir:
        for name in names:
            candidate = os.path.join(bin_dir, name)
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate

    for name in names:
        found = shutil.which(name)
        if found:
            return found

    return names[0]


def default_binary_resolver() -> BinaryResolver:
    """Resolver backed by current settings; settings are read on every call."""
    from chaptergen.config import get_settings

    def resolve(tool: str) -> str:
        tools = get_settings().tools
        configured = {"yt-dlp": tools.ytdlp_path, "ffmpeg": tools.ffmpeg_path}.get(tool, "")
        return resolve_binary(tool, configured_path=configured, bin_dir=tools.bin_dir)

    return resolve


def sanitize_stderr(stderr: str, max_lines: int = 25, max_chars: int = 4000) -> str:
    """
    Keep the error understandable but short:
    - take the last N lines (tools usually print the real reason near the end)
    - trim overly long lines and total size
    - remove common ffmpeg banner noise
    """
    if not stderr:
        return "Process failed (no stderr)"

    s = stderr.replace("\r\n", "\n").replace("\r", "\n")
    lines = [ln for ln in s.split("\n") if ln.strip()]
    tail = lines[-max_lines:] if len(lines) > max_lines else lines

    cleaned: list[str] = []
    for ln in tail:
        ln = ln.strip()
        if re.match(r"^ffmpeg version\b", ln, re.IGNORECASE):
            continue
        if re.match(r"^built with\b", ln, re.IGNORECASE):
            continue
        if re.match(r"^configuration:", ln, re.IGNORECASE):
            continue
        if re.match(r"^(libav(util|codec|format|device|filter)|libswscale|libswresample|libpostproc)\b", ln, re.IGNORECASE):
            continue
        if re.match(r"^(Input|Output) #\d+", ln, re.IGNORECASE):
            continue
        if re.match(r"^Stream mapping:", ln, re.IGNORECASE):
            continue
        if len(ln) > 500:
            ln = ln[:500] + "…"
        cleaned.append(ln)

    out = "\n".join(cleaned).strip()
    if not out:
        out = "Process failed (no useful stderr)"

    if len(out) > max_chars:
        out = out[-max_chars:]
    return out


def error_lines(stderr: str) -> str:
    """Only the lines that mention an error (yt-dlp is chatty on stderr)."""
    if not stderr:
        return ""
    lines = stderr.replace("\r", "\n").split("\n")
    return "\n".join(ln.strip() for ln in lines if "error" in ln.lower()).strip()


def tail_text(s: str, *, max_lines: int = 25, max_chars: int = 4000) -> str:
    if not s:
        return ""
    t = s.replace("\r\n", "\n").replace("\r", "\n")
    lines = [ln for ln in t.split("\n") if ln.strip()]
    tail = lines[-max_lines:] if len(lines) > max_lines else lines
    out = "\n".join(tail).strip()
    if len(out) > max_chars:
        out = out[-max_chars:]
    return out


def inject_ffmpeg_defaults(cmd: Sequence[str], threads: int = 0) -> list[str]:
    """
    Insert -nostdin (prevents background hangs) and, when threads > 0,
    a -threads limit right after the ffmpeg executable.
    """
    cmd_list = list(cmd)
    if not cmd_list:
        raise ValueError("Empty ffmpeg command")

    if "-nostdin" not in cmd_list:
        cmd_list.insert(1, "-nostdin")

    if threads > 0 and "-threads" not in cmd_list:
        idx = cmd_list.index("-nostdin") + 1
        cmd_list[idx:idx] = ["-threads", str(threads)]
    return cmd_list


async def run_process(
    cmd: Sequence[str],
    *,
    timeout: Optional[float] = None,
    check: bool = False,
) -> tuple[int, str, str]:
    """
    Run a command, capturing stdout/stderr as text.

    On timeout the process is killed and asyncio.TimeoutError propagates.
    With check=True a non-zero exit raises ProcessError.
    """
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise

    out = stdout.decode("utf-8", errors="replace")
    err = stderr.decode("utf-8", errors="replace")
    if check and proc.returncode != 0:
        raise ProcessError(
            message=f"{os.path.basename(cmd[0])} failed with code {proc.returncode}: {sanitize_stderr(err, max_lines=5, max_chars=500)}",
            stderr=err,
            stdout=tail_text(out),
            returncode=proc.returncode,
            cmd=list(cmd),
        )
    return proc.returncode, out, err
