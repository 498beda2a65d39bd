# FILE: main.py
"""
Project Chat - FastAPI Application

Start with the port and the path of the project to be edited:

    python main.py 3000 ../my-project

Endpoints:
- POST /make-change   apply a natural-language change (versioned with git)
- GET  /start-project run the project's ntwk.json start command
- POST /stop-project  stop it
- GET  /project-status supervised process state and recent output
- GET  /get-info      ntwk.json contents plus the project path
- GET  /ping          health check

Every change is preceded by a git checkpoint commit of the project. Output
from the running project is echoed to the server log.
"""
import argparse
import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException
from dotenv import load_dotenv

# Load .env FIRST before reading any settings
load_dotenv()

from project_chat import __version__
from project_chat.changes.applier import ChangeApplier, ChangeLockRegistry, VersionControlGateway
from project_chat.changes.backend import AnthropicChangeBackend, ChangeBackend
from project_chat.changes.router import router as changes_router
from project_chat.config import MANIFEST_FILENAME, Settings, load_settings
from project_chat.errors import ManifestInvalid, ManifestMissing
from project_chat.git_utils import is_git_repo
from project_chat.manifest import project_info
from project_chat.supervisor.process import EventSink, log_process_event
from project_chat.supervisor.registry import SupervisorRegistry
from project_chat.supervisor.router import router as supervisor_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    backend: Optional[ChangeBackend] = None,
    gateway: Optional[VersionControlGateway] = None,
    sink: EventSink = log_process_event,
) -> FastAPI:
    """Build the application. Tests pass their own backend and gateway."""
    settings = settings or load_settings()
    project_root = Path(settings.project_path).resolve()

    app = FastAPI(
        title="Project Chat",
        version=__version__,
        description="Apply natural-language changes to a project and run it",
    )
    app.state.settings = settings
    app.state.project_root = project_root
    app.state.change_applier = ChangeApplier.from_settings(
        settings,
        backend or AnthropicChangeBackend.from_settings(settings),
        gateway=gateway,
        locks=ChangeLockRegistry(),
    )
    app.state.supervisors = SupervisorRegistry(
        project_root,
        sink=sink,
        bind_host=settings.bind_host,
    )

    # ====== STARTUP / SHUTDOWN ======

    @app.on_event("startup")
    async def on_startup():
        print(f"[startup] Project path: {project_root}")
        if (project_root / MANIFEST_FILENAME).is_file():
            print(f"[startup] {MANIFEST_FILENAME}: [OK] found")
        else:
            print(f"[startup] {MANIFEST_FILENAME}: [X] NOT FOUND - /start-project will fail")

        if is_git_repo(project_root):
            print("[startup] git repository: [OK]")
        elif settings.require_checkpoint:
            print("[startup] git repository: [X] NOT A REPOSITORY - /make-change will refuse to run")
            print("[startup]   Run `git init` in the project or set PROJECT_CHAT_REQUIRE_CHECKPOINT=false")
        else:
            print("[startup] git repository: [X] NOT A REPOSITORY - changes will not be versioned")

        if settings.anthropic_api_key or os.getenv("ANTHROPIC_API_KEY"):
            print(f"[startup] ANTHROPIC_API_KEY: [OK] set (model={settings.model})")
        else:
            print("[startup] ANTHROPIC_API_KEY: [X] NOT SET - /make-change will fail")

    @app.on_event("shutdown")
    async def on_shutdown():
        print("[shutdown] Stopping supervised processes...")
        results = await app.state.supervisors.shutdown(settings.shutdown_grace_seconds)
        for service_id, reaped in results.items():
            if not reaped:
                logger.error("[shutdown] %s may still be running", service_id)

    # ====== ROUTERS ======

    app.include_router(changes_router)
    app.include_router(supervisor_router)

    # ====== PUBLIC ENDPOINTS ======

    @app.get("/ping")
    def ping():
        """Health check."""
        return {
            "status": "ok",
            "change_in_progress": app.state.change_applier.busy,
        }

    @app.get("/get-info")
    def get_info():
        """Manifest contents plus the project path."""
        try:
            return project_info(project_root)
        except ManifestMissing as e:
            raise HTTPException(status_code=404, detail={"kind": e.kind, "message": str(e)})
        except ManifestInvalid as e:
            raise HTTPException(status_code=422, detail={"kind": e.kind, "message": str(e)})

    return app


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="project-chat")
    p.add_argument("port", nargs="?", type=int, help="Server port (default: PROJECT_CHAT_PORT or 3000)")
    p.add_argument("project_path", nargs="?", help="Project to edit (default: PROJECT_CHAT_PROJECT_PATH or ./)")
    return p.parse_args(argv)


def main(argv=None) -> None:
    import uvicorn

    args = _parse_args(argv)
    settings = load_settings(server_port=args.port, project_path=args.project_path)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print(f"[startup] Server running on port {settings.server_port}")
    # uvicorn turns SIGINT/SIGTERM into the shutdown event, which stops every child
    uvicorn.run(create_app(settings), host=settings.bind_host, port=settings.server_port)


if __name__ == "__main__":
    main()
