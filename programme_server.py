from __future__ import annotations

import argparse
import hashlib
import os
import secrets
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from analytics_logging import get_logger
import narrative_engine as ne
import programme_analysis as pa
import programme_comparator as pc
import programme_store as ps


TOKEN_HASH_ENV = "NARRATIVE_TOKEN_HASHES"  # comma-separated SHA256 hex digests


def _sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _load_allowed_hashes() -> set[str]:
    raw = (os.getenv(TOKEN_HASH_ENV) or "").strip()
    return {part.strip().lower() for part in raw.split(",") if part.strip()}


def _require_auth(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header.")
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Authorization must be Bearer <token>.")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Empty Bearer token.")

    allowed = _load_allowed_hashes()
    if not allowed:
        raise HTTPException(
            status_code=500,
            detail=f"Server not configured: set {TOKEN_HASH_ENV} to allowed token hashes.",
        )

    token_hash = _sha256_hex(token)
    if token_hash not in allowed:
        raise HTTPException(status_code=403, detail="Invalid token.")
    return token_hash


def _store(request: Request) -> ps.ProgrammeStore:
    # Loaded on first use so importing the module never touches the filesystem.
    if request.app.state.store is None:
        request.app.state.store = ps.store_from_env()
    return request.app.state.store


def _compare(request: Request, payload: dict[str, Any]) -> pc.ComparisonReport:
    return pc.ProgrammeComparator(_store(request)).compare(
        payload.get("baselineProgrammeId"),
        payload.get("currentProgrammeId"),
    )


def _not_found_body(e: pc.ProgrammesNotFoundError) -> dict[str, Any]:
    return {
        "message": "One or both programmes not found",
        "baselineFound": e.baseline_found,
        "currentFound": e.current_found,
    }


def create_app(store: ps.ProgrammeStore | None = None) -> FastAPI:
    app = FastAPI(title="Programme Variance Service", version="1.0.0")
    app.state.store = store
    logger = get_logger()

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/ai-assistant/compare-programmes")
    def compare_programmes(request: Request, payload: dict[str, Any]) -> JSONResponse:
        try:
            report = _compare(request, payload)
        except pc.InvalidArgumentError as e:
            return JSONResponse({"message": str(e)}, status_code=400)
        except pc.ProgrammesNotFoundError as e:
            return JSONResponse(_not_found_body(e), status_code=404)
        except Exception as e:
            logger.exception("Compare failed payload=%s", payload)
            return JSONResponse({"message": str(e) or "An unexpected error occurred"}, status_code=500)
        return JSONResponse({"analysis": report.to_dict()})

    @app.get("/api/projects/{project_id}/programmes")
    def list_programmes(request: Request, project_id: str) -> JSONResponse:
        programmes = _store(request).get_programmes_by_project(project_id)
        return JSONResponse([p.to_dict() for p in programmes])

    @app.get("/api/programmes/{programme_id}/analysis")
    def programme_analysis(request: Request, programme_id: str) -> JSONResponse:
        try:
            result = pa.analyze_programme(_store(request), programme_id)
        except pc.InvalidArgumentError as e:
            return JSONResponse({"message": str(e)}, status_code=400)
        except pc.NotFoundError as e:
            return JSONResponse({"message": str(e)}, status_code=404)
        except Exception as e:
            logger.exception("Analysis failed programme=%s", programme_id)
            return JSONResponse({"message": str(e) or "An unexpected error occurred"}, status_code=500)
        return JSONResponse(result)

    @app.post("/v1/narrative")
    def narrative(
        request: Request,
        payload: dict[str, Any],
        authorization: str | None = Header(default=None),
    ) -> JSONResponse:
        _require_auth(authorization)

        try:
            report = _compare(request, payload)
        except pc.InvalidArgumentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except pc.ProgrammesNotFoundError as e:
            raise HTTPException(status_code=404, detail=_not_found_body(e)) from e

        model = str(payload.get("model") or ne.DEFAULT_MODEL)
        analysis = report.to_dict()
        try:
            text = ne.generate_variance_narrative(analysis, model=model)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e)) from e

        return JSONResponse({"text": text, "model": model, "analysis": analysis})

    return app


app = create_app()


def create_user_token() -> tuple[str, str]:
    token = secrets.token_urlsafe(32)
    return token, _sha256_hex(token)


def _main() -> int:
    p = argparse.ArgumentParser(description="Programme variance server utilities.")
    p.add_argument("--create-token", action="store_true", help="Create a new user token and print token + hash.")
    args = p.parse_args()

    if args.create_token:
        token, token_hash = create_user_token()
        print("USER_TOKEN=" + token)
        print("TOKEN_SHA256=" + token_hash)
        print(f"Add TOKEN_SHA256 to {TOKEN_HASH_ENV} on the server (comma-separated).")
        return 0

    print("This module provides a FastAPI app. Run with uvicorn, e.g.:")
    print(f"  {ps.STORE_PATH_ENV_VAR}=programmes.json uvicorn programme_server:app --host 0.0.0.0 --port 8080")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
