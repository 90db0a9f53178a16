import os
import re
import shutil
import subprocess
import uuid
from datetime import datetime, timezone
from typing import List, Optional


def make_job_id() -> str:
    return uuid.uuid4().hex

def make_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"

def safe_filename(filename: str) -> str:
    name = os.path.basename(filename or "upload")
    return re.sub(r"[^A-Za-z0-9._-]", "_", name) or "upload"

def video_save_path(uploads_dir: str, upload_id: str, filename: str) -> str:
    os.makedirs(uploads_dir, exist_ok=True)
    return os.path.join(uploads_dir, f"{upload_id}_{safe_filename(filename)}")

def job_out_dir(jobs_dir: str, job_id: str) -> str:
    out = os.path.join(jobs_dir, job_id)
    os.makedirs(out, exist_ok=True)
    return out

def remove_path(path: Optional[str]):
    """Delete a file or directory tree if it exists"""
    if not path or not os.path.exists(path):
        return
    if os.path.isdir(path):
        shutil.rmtree(path, ignore_errors=True)
    else:
        os.remove(path)

def isoformat(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")

def parse_bitrate(value: str) -> int:
    """'2500k' -> 2500000, '5M' -> 5000000, '128000' -> 128000"""
    value = value.strip().lower()
    if value.endswith("k"):
        return int(float(value[:-1]) * 1000)
    if value.endswith("m"):
        return int(float(value[:-1]) * 1000 * 1000)
    return int(value)

def run_tool(cmd: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run an external media tool, capturing its output as text"""
    return subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout)

def stderr_tail(stderr: Optional[str], lines: int = 10) -> str:
    if not stderr:
        return ""
    return "\n".join(stderr.strip().splitlines()[-lines:])
