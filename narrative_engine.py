from __future__ import annotations

import json
import os
import platform
import sys
import time
import warnings
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Mapping

try:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=FutureWarning)
        import google.generativeai as genai  # type: ignore

    _GENAI_IMPORT_ERROR: Exception | None = None
except ImportError as _e:  # pragma: no cover
    genai = None  # type: ignore[assignment]
    _GENAI_IMPORT_ERROR = _e

from analytics_logging import get_logger


DEFAULT_MODEL = "gemini-2.5-flash"
DOTENV_FILENAME = ".env"
API_KEY_ENV_VAR = "GEMINI_API_KEY"
GENAI_TRANSPORT_ENV_VAR = "PROGRAMME_VARIANCE_GENAI_TRANSPORT"

REQUEST_TIMEOUT_S = 120
HARD_TIMEOUT_S = 150

SYSTEM_VARIANCE_GUIDELINES = """You are a Senior Planner administering an NEC4 contract, writing the programme review that accompanies a revised programme submission.
Use ONLY the provided JSON comparison of the baseline programme against the current revision.

Rules:
- Zero-Invention: quote only counts, day deltas and activity names present in the JSON.
- If a value is missing or empty, say "Not available in the provided data."
- programmeDifference.completionDateDelta is in calendar days; positive means the current programme finishes later.
- Treat totalFloat counts as numbers of activities, not days.

Required structure (use headings):

1) Completion & Key Dates
   - State programmeDifference.completionDateDelta and whether the planned Completion has moved.
   - Mention whether the programme name or version changed.

2) Scope Movement
   - Summarise activities.added, activities.removed, activities.modified and activities.unchanged.

3) Critical Path
   - Say whether criticalPath.changed is true; list criticalPath.newlyCritical and criticalPath.newlyNonCritical by name.

4) Float
   - Compare totalFloat.decreased against totalFloat.increased and state the overall trend.

5) Key Concerns & Recommended Actions
   - Restate each keyConcerns entry, then give 2-3 practical actions for the Project Manager (e.g., request a revised programme under clause 32, raise an early warning).
"""


def _select_genai_transport() -> str | None:
    """
    Choose a transport for google-generativeai.

    Override with PROGRAMME_VARIANCE_GENAI_TRANSPORT=grpc|rest|grpc_asyncio|auto.
    """
    raw = (os.getenv(GENAI_TRANSPORT_ENV_VAR) or "").strip().casefold()
    if raw in {"", "auto"}:
        return "rest" if platform.system() == "Windows" else None
    if raw in {"rest", "grpc", "grpc_asyncio"}:
        return raw
    return None


def _read_dotenv_key(dotenv_path: str, env_var: str = API_KEY_ENV_VAR) -> str | None:
    """
    Minimal .env reader. Supports KEY=value, KEY="value" and KEY='value'.
    """
    try:
        with open(dotenv_path, "r", encoding="utf-8") as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                k, v = line.split("=", 1)
                if k.strip() != env_var:
                    continue
                return v.strip().strip("'").strip('"').strip() or None
    except OSError:
        return None
    return None


def _candidate_dotenv_paths(dotenv_filename: str = DOTENV_FILENAME) -> list[str]:
    paths = [
        os.path.join(os.getcwd(), dotenv_filename),
        os.path.join(os.path.dirname(os.path.abspath(__file__)), dotenv_filename),
        os.path.join(os.path.dirname(os.path.abspath(sys.executable)), dotenv_filename),
    ]
    seen: set[str] = set()
    out: list[str] = []
    for p in paths:
        if p not in seen:
            out.append(p)
            seen.add(p)
    return out


def _normalize_key(value: str | None) -> str | None:
    v = (value or "").strip().strip("'").strip('"').strip()
    if not v or v in {"YOUR_REAL_KEY_HERE", "your_key_here"}:
        return None
    return v


def find_api_key() -> str | None:
    """
    Return the Gemini API key from the environment or a local .env, else None.
    """
    key = _normalize_key(os.getenv(API_KEY_ENV_VAR))
    if key:
        return key
    for p in _candidate_dotenv_paths():
        k = _normalize_key(_read_dotenv_key(p))
        if k:
            return k
    return None


def _get_api_key(api_key: str | None = None) -> str:
    key = _normalize_key(api_key) or find_api_key()
    if not key:
        raise RuntimeError(
            "Missing Gemini API key. Set environment variable GEMINI_API_KEY, or create a local .env file "
            "with GEMINI_API_KEY=..., or pass api_key=... to generate_variance_narrative()."
        )
    return key


def generate_variance_narrative(
    report: Mapping[str, Any],
    *,
    api_key: str | None = None,
    model: str = DEFAULT_MODEL,
) -> str:
    """
    Write a programme review narrative for a comparison report (the `to_dict()` form).
    """
    key = _get_api_key(api_key)

    if genai is None:  # pragma: no cover
        raise RuntimeError(
            "Missing dependency 'google-generativeai'. Install it with: pip install google-generativeai"
        ) from _GENAI_IMPORT_ERROR

    logger = get_logger()
    t0 = time.perf_counter()

    transport = _select_genai_transport()
    if transport:
        genai.configure(api_key=key, transport=transport)
    else:
        genai.configure(api_key=key)

    user_content = json.dumps(report, default=str)
    payload_bytes = len(user_content.encode("utf-8", errors="ignore"))
    logger.info("Gemini start model=%s transport=%s payload_bytes=%s", model, transport or "default", payload_bytes)

    model_obj = genai.GenerativeModel(model_name=model, system_instruction=SYSTEM_VARIANCE_GUIDELINES)
    try:
        # SDK-level timeouts are not honoured on every transport; bound the call here too.
        with ThreadPoolExecutor(max_workers=1) as ex:
            fut = ex.submit(model_obj.generate_content, user_content, request_options={"timeout": REQUEST_TIMEOUT_S})
            resp = fut.result(timeout=HARD_TIMEOUT_S)
        logger.info("Gemini ok model=%s total_s=%.3f", model, time.perf_counter() - t0)
    except FutureTimeoutError as e:
        logger.error("Gemini timeout model=%s transport=%s total_s=%.3f", model, transport or "default", time.perf_counter() - t0)
        raise RuntimeError(
            "Gemini call timed out. Try setting PROGRAMME_VARIANCE_GENAI_TRANSPORT=rest and retry."
        ) from e
    except Exception as e:
        msg = str(e)
        logger.error("Gemini error model=%s total_s=%.3f err=%s", model, time.perf_counter() - t0, msg)
        if "429" in msg or "quota" in msg.lower():
            raise RuntimeError("Gemini quota/rate-limit hit (HTTP 429). Try again later.") from e
        raise

    text = getattr(resp, "text", None)
    if not text:
        try:
            text = resp.candidates[0].content.parts[0].text  # type: ignore[attr-defined]
        except (AttributeError, IndexError):
            text = str(resp)
    return str(text).strip()
