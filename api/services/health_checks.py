import asyncio
import time
from typing import Dict, Tuple

import asyncpg

from config import get_settings

_settings = get_settings()


async def _check_postgres() -> Tuple[str, Dict]:
    if _settings.session_store_backend != "postgres":
        return "postgres", {"status": "up", "details": {"backend": _settings.session_store_backend}}
    start = time.perf_counter()
    try:
        conn = await asyncpg.connect(
            host=_settings.postgres_host,
            port=_settings.postgres_port,
            user=_settings.postgres_user,
            password=_settings.postgres_password,
            database=_settings.postgres_db,
            timeout=5.0,
        )
        await conn.execute("SELECT 1")
        await conn.close()
        latency_ms = int((time.perf_counter() - start) * 1000)
        return "postgres", {"status": "up", "latency_ms": latency_ms}
    except Exception as exc:  # noqa: BLE001
        return "postgres", {"status": "down", "details": {"error": str(exc)}}


async def _check_gemini() -> Tuple[str, Dict]:
    # Reports configuration only, no request is sent
    details = {
        "transcription_model": _settings.gemini_transcription_model,
        "summary_model": _settings.gemini_summary_model,
    }
    if not _settings.gemini_api_key:
        details["mode"] = "mock"
        return "gemini", {"status": "degraded", "details": details}
    return "gemini", {"status": "up", "details": details}


async def gather_health() -> Dict[str, Dict]:
    results = await asyncio.gather(_check_postgres(), _check_gemini())
    return {name: result for name, result in results}
