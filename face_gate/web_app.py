import logging
from dataclasses import asdict
from typing import List, Optional, Union

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .exceptions import CaptureError, EnrollError, PersistError, ValidationError
from .modes import Mode
from .runtime import GateRuntime

logger = logging.getLogger("face_gate.web_app")


class RegisterBody(BaseModel):
    descriptor: List[float]
    identity: Optional[Union[int, str]] = None


class ModeBody(BaseModel):
    mode: Optional[Mode] = None


def _internal_error() -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_web_app(runtime: GateRuntime, autostart: bool = False) -> FastAPI:
    app = FastAPI(title="Face Gate", version="1.0.0")

    @app.on_event("startup")
    def _startup() -> None:
        if not runtime.load_gallery() or not autostart:
            return
        try:
            runtime.scheduler.start()
        except CaptureError:
            logger.exception("Capture session failed to start")

    @app.on_event("shutdown")
    def _shutdown() -> None:
        runtime.close()

    @app.get("/api/health")
    def health():
        return {
            "ok": True,
            "status": runtime.scheduler.status.value,
            "identities": len(runtime.store.snapshot),
            "embeddings": runtime.store.snapshot.embedding_count,
        }

    @app.get("/api/register")
    def list_faces():
        try:
            faces = runtime.repository.list_faces()
        except PersistError:
            logger.exception("Listing faces failed")
            return _internal_error()
        return [asdict(face) for face in faces]

    @app.post("/api/register")
    def register(payload: RegisterBody):
        try:
            stored = runtime.store.enroll(payload.identity, payload.descriptor)
        except (EnrollError, ValidationError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except PersistError:
            logger.exception("Registration failed")
            return _internal_error()
        return {"face": asdict(stored)}

    @app.get("/api/session")
    def session_state():
        return runtime.scheduler.snapshot()

    @app.post("/api/session/start")
    def start_session(payload: Optional[ModeBody] = None):
        mode = payload.mode if payload is not None else None
        try:
            runtime.scheduler.start(mode)
        except CaptureError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return runtime.scheduler.snapshot()

    @app.post("/api/session/mode")
    def switch_mode(payload: ModeBody):
        if payload.mode is None:
            raise HTTPException(status_code=400, detail="mode is required.")
        try:
            transition = runtime.scheduler.switch_mode(payload.mode)
        except CaptureError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        body = runtime.scheduler.snapshot()
        body["transition"] = transition.value
        return body

    @app.post("/api/session/stop")
    def stop_session():
        runtime.scheduler.stop()
        return runtime.scheduler.snapshot()

    @app.get("/api/results")
    def results(limit: int = 50):
        events = runtime.sink.drain(limit=max(1, limit))
        return {"results": [event.to_dict() for event in events]}

    return app
