"""Browser surface for the pipeline controller.

This module provides a FastAPI app with JSON commands and a WebSocket that
streams controller events to the page, so stage progress is visible while a
run is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from ..images import ImageLoadError, image_from_base64, image_from_data_url
from .events import Event

if TYPE_CHECKING:
    from ..pipeline import PipelineController

logger = logging.getLogger(__name__)


class PipelineRequest(BaseModel):
    repo_url: str = ""
    objective: str = ""
    error_feedback: str = ""


class RefineRequest(BaseModel):
    feedback: str = ""


class ImageRequest(BaseModel):
    data: Optional[str] = None
    mime_type: Optional[str] = None
    data_url: Optional[str] = None


class ConnectionManager:
    """Manages WebSocket connections."""

    def __init__(self) -> None:
        self.active_connections: list[WebSocket] = []
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    async def connect(self, websocket: WebSocket, state: dict) -> None:
        """Accept a new WebSocket connection and send it the current state."""
        await websocket.accept()
        self.loop = asyncio.get_running_loop()
        self.active_connections.append(websocket)
        logger.info(f"Client connected. Total clients: {len(self.active_connections)}")
        await websocket.send_json({"type": "state_sync", "data": state, "timestamp": ""})

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info(f"Client disconnected. Total clients: {len(self.active_connections)}")

    async def broadcast(self, event: Event) -> None:
        """Broadcast an event to all connected clients."""
        message = event.to_json()
        disconnected = []

        for connection in list(self.active_connections):
            try:
                await connection.send_text(message)
            except Exception as e:
                logger.warning(f"Failed to send to client: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)

    def dispatch(self, event: Event) -> None:
        """Hand an event from any thread to the event loop for broadcasting."""
        if self.loop is None or self.loop.is_closed() or not self.active_connections:
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(event), self.loop)


def _log_run_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error(f"Background run failed: {exc}")


def create_app(controller: PipelineController) -> FastAPI:
    """Build the FastAPI app around one controller instance.

    Commands run on a single worker thread. A command is rejected with 409
    while the previous one is still running; the check looks at the worker's
    future, so nothing has to be released when a client goes away.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vibearchitect-run")

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        executor.shutdown(wait=False)

    app = FastAPI(title="Vibe Architect", lifespan=lifespan)
    manager = ConnectionManager()
    start_lock = threading.Lock()
    controller.emitter.subscribe(manager.dispatch)

    app.state.controller = controller
    app.state.connections = manager
    app.state.current_run = None

    def snapshot() -> dict:
        data = controller.state.to_dict()
        data["chunks"] = [c.to_dict() for c in controller.chunks()]
        data["images"] = len(controller.images)
        data["files"] = [f.path for f in controller.files]
        return data

    def is_busy() -> bool:
        current: Optional[Future] = app.state.current_run
        return controller.state.is_processing or (current is not None and not current.done())

    def start(command, *args) -> JSONResponse:
        with start_lock:
            if is_busy():
                raise HTTPException(status_code=409, detail="A run is already in progress")
            future = executor.submit(command, *args)
            future.add_done_callback(_log_run_failure)
            app.state.current_run = future
        return JSONResponse(status_code=202, content={"accepted": True, "state": snapshot()})

    @app.get("/", response_class=HTMLResponse)
    async def get_page() -> HTMLResponse:
        """Serve the single-page UI."""
        return HTMLResponse(content=PAGE_HTML)

    @app.get("/api/state")
    def get_state() -> dict:
        return snapshot()

    @app.get("/api/chunks")
    def get_chunks() -> list[dict]:
        return [c.to_dict() for c in controller.chunks()]

    @app.post("/api/pipeline")
    def post_pipeline(request: PipelineRequest):
        """Start a full run. Empty inputs are ignored without changing state."""
        if not request.repo_url.strip() or not request.objective.strip():
            return {"accepted": False, "state": snapshot()}
        return start(
            controller.execute_pipeline,
            request.repo_url,
            request.objective,
            request.error_feedback,
        )

    @app.post("/api/refine")
    def post_refine(request: RefineRequest):
        """Start a refinement of the current final prompt."""
        if controller.state.final_prompt is None or not request.feedback.strip():
            return {"accepted": False, "state": snapshot()}
        return start(controller.execute_refinement, request.feedback)

    @app.get("/api/images")
    def get_images() -> list[dict]:
        return [
            {"index": i, "mime_type": image.mime_type, "bytes": len(image.data) * 3 // 4}
            for i, image in enumerate(controller.images)
        ]

    @app.post("/api/images", status_code=201)
    def post_image(request: ImageRequest) -> dict:
        try:
            if request.data_url:
                image = image_from_data_url(request.data_url)
            elif request.data and request.mime_type:
                image = image_from_base64(request.data, request.mime_type)
            else:
                raise ImageLoadError("Provide either data_url or data and mime_type")
        except ImageLoadError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        controller.add_image(image)
        return {"index": len(controller.images) - 1, "count": len(controller.images)}

    @app.delete("/api/images/{index}")
    def delete_image(index: int) -> dict:
        removed = controller.remove_image(index)
        return {"removed": removed is not None, "count": len(controller.images)}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """WebSocket endpoint for real-time updates."""
        await manager.connect(websocket, snapshot())
        try:
            while True:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            manager.disconnect(websocket)
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            manager.disconnect(websocket)

    return app


def run_server(controller: PipelineController, host: str = "127.0.0.1", port: int = 8080) -> None:
    """Run the browser surface with uvicorn."""
    import uvicorn

    app = create_app(controller)
    logger.info(f"Serving on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")


# Inline page for simplicity (no build step needed)
PAGE_HTML = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Vibe Architect</title>
    <script src="https://cdn.tailwindcss.com?plugins=typography"></script>
    <script src="https://cdn.jsdelivr.net/npm/marked/marked.min.js"></script>
    <script src="https://cdn.jsdelivr.net/npm/dompurify/dist/purify.min.js"></script>
    <style>
        body { background: #0B1121; color: #e2e8f0; font-family: 'Inter', system-ui, sans-serif; }
        pre { white-space: pre-wrap; word-break: break-word; }
    </style>
</head>
<body class="min-h-screen flex flex-col md:flex-row">
    <div class="w-full md:w-1/3 border-r border-slate-800 p-6 space-y-4">
        <h1 class="text-2xl font-bold text-cyan-400">Vibe Architect</h1>
        <p class="text-slate-400 text-sm">Multi-Agent Staging Area for AI Coding</p>
        <input id="repo" class="w-full bg-slate-900 border border-slate-700 rounded p-2" placeholder="https://github.com/owner/repo">
        <textarea id="objective" rows="4" class="w-full bg-slate-900 border border-slate-700 rounded p-2" placeholder="Mission objective"></textarea>
        <textarea id="feedback" rows="2" class="w-full bg-slate-900 border border-slate-700 rounded p-2" placeholder="Error feedback (optional)"></textarea>
        <input id="image" type="file" accept="image/*" multiple class="text-sm text-slate-400">
        <div id="images" class="flex flex-wrap gap-2 text-xs"></div>
        <button id="run" class="w-full bg-cyan-600 hover:bg-cyan-500 rounded p-2 font-semibold">Initialize Agents</button>
        <div id="status" class="text-sm text-slate-400">Status: idle</div>
        <div id="error" class="text-sm text-red-400"></div>
        <div id="agents" class="space-y-2"></div>
        <ul id="activity" class="text-xs text-slate-500 space-y-1"></ul>
    </div>
    <div class="flex-1 p-6 space-y-6 overflow-y-auto">
        <section>
            <h2 class="text-lg font-semibold text-slate-300 mb-2">Mission Log</h2>
            <div id="mission-log" class="prose prose-invert prose-sm max-w-none bg-slate-900 border border-slate-800 rounded p-4"></div>
        </section>
        <section>
            <h2 class="text-lg font-semibold text-slate-300 mb-2">Prompt Sequence</h2>
            <div id="chunks" class="space-y-4"></div>
            <div class="mt-4 flex gap-2">
                <input id="refine" class="flex-1 bg-slate-900 border border-slate-700 rounded p-2" placeholder="Report an error or request a change">
                <button id="refine-btn" class="bg-purple-600 hover:bg-purple-500 rounded px-4 font-semibold">Refine</button>
            </div>
        </section>
    </div>
    <script>
        const $ = (id) => document.getElementById(id);
        const post = (url, body) => fetch(url, {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body)}).then(r => r.json());
        const markdown = (text) => DOMPurify.sanitize(marked.parse(text || ''));

        const AGENTS = [
            {key: 'scout', label: 'Scout', status: 'scout-working', role: 'Audits the repository'},
            {key: 'architect', label: 'Architect', status: 'architect-working', role: 'Plans logic and hazards'},
            {key: 'taskmaster', label: 'Taskmaster', status: 'taskmaster-working', role: 'Splits the mission into prompts'},
        ];
        const ORDER = ['idle', 'fetching', 'scout-working', 'architect-working', 'taskmaster-working', 'completed'];
        const PHASE_STYLE = {
            waiting: 'border-slate-800 text-slate-500',
            working: 'border-cyan-500 text-cyan-300 animate-pulse',
            done: 'border-emerald-600 text-emerald-300',
            failed: 'border-red-600 text-red-300',
        };
        let failedAt = null;
        let pendingRefinement = false;

        function agentPhase(agent, status) {
            const own = ORDER.indexOf(agent.status);
            if (status === 'error') {
                if (failedAt === 'refining') return 'done';
                const failed = ORDER.indexOf(failedAt);
                if (own === failed) return 'failed';
                return own < failed ? 'done' : 'waiting';
            }
            if (status === agent.status) return 'working';
            if (status === 'completed' || status === 'refining') return 'done';
            return ORDER.indexOf(status) > own ? 'done' : 'waiting';
        }

        function renderAgents(status) {
            $('agents').innerHTML = '';
            AGENTS.forEach(agent => {
                const phase = agentPhase(agent, status);
                const card = document.createElement('div');
                card.id = 'agent-' + agent.key;
                card.className = 'border rounded p-3 ' + PHASE_STYLE[phase];
                card.innerHTML = '<div class="font-semibold"></div><div class="text-xs"></div>';
                card.children[0].textContent = agent.label + ' (' + phase + ')';
                card.children[1].textContent = agent.role;
                $('agents').append(card);
            });
        }

        function renderChunks(chunks) {
            $('chunks').innerHTML = '';
            chunks.forEach(c => {
                const card = document.createElement('div');
                card.className = 'bg-slate-900 border border-slate-800 rounded p-4';
                const head = document.createElement('div');
                head.className = 'flex justify-between mb-2';
                head.innerHTML = '<span class="font-semibold text-cyan-300"></span><button class="text-xs text-slate-400">Copy</button>';
                head.querySelector('span').textContent = 'Prompt ' + c.id + ': ' + c.title;
                head.querySelector('button').onclick = () => navigator.clipboard.writeText(c.content);
                const body = document.createElement('div');
                body.className = 'prose prose-invert prose-sm max-w-none';
                body.innerHTML = markdown(c.content);
                card.append(head, body);
                $('chunks').append(card);
            });
        }

        function renderState(s) {
            $('status').textContent = 'Status: ' + s.status;
            $('mission-log').innerHTML = markdown(s.mission_log);
            $('error').textContent = s.error || '';
            $('run').disabled = s.is_processing;
            renderAgents(s.status);
            renderChunks(s.chunks || []);
        }

        function addActivity(data) {
            const item = document.createElement('li');
            item.className = data.level === 'warning' ? 'text-amber-400' : '';
            item.textContent = data.message;
            $('activity').prepend(item);
        }

        const refresh = () => fetch('/api/state').then(r => r.json()).then(renderState);

        async function refreshImages() {
            const images = await fetch('/api/images').then(r => r.json());
            $('images').innerHTML = '';
            images.forEach(img => {
                const tag = document.createElement('button');
                tag.className = 'bg-slate-800 rounded px-2 py-1';
                tag.textContent = img.mime_type + ' x';
                tag.onclick = () => fetch('/api/images/' + img.index, {method: 'DELETE'}).then(refreshImages);
                $('images').append(tag);
            });
        }

        $('image').onchange = async (e) => {
            for (const file of e.target.files) {
                const dataUrl = await new Promise(res => { const r = new FileReader(); r.onloadend = () => res(r.result); r.readAsDataURL(file); });
                await post('/api/images', {data_url: dataUrl});
            }
            e.target.value = '';
            refreshImages();
        };
        $('run').onclick = () => post('/api/pipeline', {repo_url: $('repo').value, objective: $('objective').value, error_feedback: $('feedback').value}).then(refresh);
        $('refine-btn').onclick = async () => {
            // Feedback stays in the box until the refiner finishes successfully
            pendingRefinement = true;
            const res = await post('/api/refine', {feedback: $('refine').value});
            if (!res.accepted) pendingRefinement = false;
            refresh();
        };

        function handleStatusChange(data) {
            if (data.status === 'error') failedAt = data.previous;
            if (pendingRefinement && data.previous === 'refining') {
                if (data.status === 'completed') $('refine').value = '';
                pendingRefinement = false;
            }
            renderAgents(data.status);
        }

        const ws = new WebSocket((location.protocol === 'https:' ? 'wss://' : 'ws://') + location.host + '/ws');
        ws.onmessage = (msg) => {
            const event = JSON.parse(msg.data);
            if (event.type === 'state_sync') return renderState(event.data);
            if (event.type === 'status_change') handleStatusChange(event.data);
            if (event.type === 'log') return addActivity(event.data);
            refresh();
        };
        refresh();
        refreshImages();
    </script>
</body>
</html>
"""
