import random
import shutil
import time
from pathlib import Path
from typing import Optional

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from core.config import settings


def _temp_name(original: str) -> str:
    # basename only, so a crafted filename cannot escape the temp directory
    safe = Path(original.replace("\\", "/")).name or "upload"
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}-{safe}"


def _write(upload: UploadFile, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    upload.file.seek(0)
    with open(target, "wb") as f:
        shutil.copyfileobj(upload.file, f)


async def save_temp_upload(upload: Optional[UploadFile], temp_dir: Optional[str] = None) -> Optional[str]:
    """Write a multipart file to the temp directory and return its path.

    Returns None when no file was sent, including the empty part browsers
    submit for an untouched file input.
    """
    if upload is None or not getattr(upload, "filename", None):
        return None
    target = Path(temp_dir or settings.TEMP_UPLOAD_DIR) / _temp_name(upload.filename)
    await run_in_threadpool(_write, upload, target)
    return str(target)


def discard_temp(*paths: Optional[str]) -> None:
    """Remove temp files the asset store did not consume."""
    for path in paths:
        if path:
            Path(path).unlink(missing_ok=True)
