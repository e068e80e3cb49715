"""HTTP API for running assessments and fetching stored sessions."""

import asyncio
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from launchready.config import AppConfig
from launchready.engine import AssessmentEngine, ValidationError
from launchready.scanner import RepoUnreachable, validate_repo_url
from launchready.store import StorageError, session_to_dict


class LoadTestRequest(BaseModel):
    target_url: Optional[str] = None
    repo_url: Optional[str] = None


class GithubTestRequest(BaseModel):
    repo_url: str


def create_app(
    config: Optional[AppConfig] = None,
    engine: Optional[AssessmentEngine] = None,
) -> FastAPI:
    config = config or AppConfig()
    engine = engine or AssessmentEngine(config)
    app = FastAPI(title="Launch Readiness Engine")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/load-test")
    async def run_load_test(request: LoadTestRequest):
        try:
            result = await engine.run_assessment(request.target_url, request.repo_url)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        body = session_to_dict(result.session)
        body["stored"] = result.stored
        body["storage_error"] = result.storage_error
        return body

    @app.get("/api/load-test/{session_id}")
    async def get_load_test(session_id: str):
        try:
            session = await asyncio.to_thread(engine.store.get, session_id)
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        if session is None:
            raise HTTPException(status_code=404, detail="Report not found")
        return session_to_dict(session)

    @app.post("/api/github-test")
    async def github_test(request: GithubTestRequest):
        try:
            validate_repo_url(request.repo_url, config.scanner)
        except RepoUnreachable as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        try:
            signals = await engine.repo_scanner(request.repo_url)
        except RepoUnreachable as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        return {"success": True, "metrics": asdict(signals)}

    return app
