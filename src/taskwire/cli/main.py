"""Taskwire CLI — run the processes, queue tasks, check on them.

Usage:
    taskwire serve                          # API server (uvicorn)
    taskwire worker                         # Task worker
    taskwire publish-cleanup                # Queue a CleanupExpiredToken task now
    taskwire avatar 42 me.png --follow      # Queue an avatar upload, poll until done
    taskwire task-status <task_id>          # Last cached progress snapshot
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
import time

import click
import httpx

from taskwire import __version__

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("TASKWIRE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


def _run(coro):
    """Run a coroutine from a synchronous click handler.

    Inside an already running loop (tests) the coroutine goes to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data) -> str:
    return json.dumps(data, indent=2, default=str)


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="taskwire")
def main():
    """Taskwire — background tasks with realtime progress."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: APP_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: APP_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: str | None, port: int | None, reload: bool):
    """Run the API server."""
    import uvicorn

    from taskwire.config import settings

    uvicorn.run(
        "taskwire.main:app",
        host=host or settings.app_host,
        port=port or settings.app_port,
        reload=reload,
    )


@main.command()
def worker():
    """Run the task worker until SIGINT/SIGTERM."""
    from taskwire.worker.main import main as worker_main

    worker_main()


@main.command("publish-cleanup")
def publish_cleanup():
    """Queue a CleanupExpiredToken task on the tasks destination."""
    from taskwire.config import settings

    config = settings.to_producer_config()
    if config is None:
        _fail("MESSAGE_BROKER is not configured")
    event_id = _run(_publish_cleanup(config))
    click.secho(f"Cleanup task queued: {event_id}", fg="green")


async def _publish_cleanup(config) -> str:
    from taskwire.config import MessageType
    from taskwire.messaging.factory import create_producer
    from taskwire.tasks import publish_task
    from taskwire.tasks.types import CleanupExpiredToken

    producer = await create_producer(config)
    try:
        event = await publish_task(producer, CleanupExpiredToken(), MessageType.TASKS.value)
    finally:
        await producer.close()
    return event.id


@main.command()
@click.argument("user_id", type=int)
@click.argument("file_name")
@click.option("--follow", "-f", is_flag=True, help="Poll the task status until it completes")
@click.option("--interval", default=0.5, help="Poll interval in seconds")
def avatar(user_id: int, file_name: str, follow: bool, interval: float):
    """Queue an avatar upload for USER_ID."""
    _run(_avatar_impl(user_id, file_name, follow, interval))


async def _avatar_impl(user_id: int, file_name: str, follow: bool, interval: float):
    async with _client() as c:
        r = await c.post(f"/api/v1/users/{user_id}/avatar", json={"file_name": file_name})
        if r.status_code != 202:
            _fail(f"{r.status_code} {r.text}")
        body = r.json()
        task_id = body["task_id"]
        click.secho(body["message"], fg="green")

        if not follow:
            return

        last = None
        started = time.monotonic()
        while True:
            await asyncio.sleep(interval)
            r = await c.get(f"/api/v1/tasks/{task_id}/status")
            if r.status_code == 404:
                continue
            r.raise_for_status()
            snapshot = r.json()
            if snapshot != last:
                click.echo(f"[{time.monotonic() - started:5.1f}s] {snapshot.get('progress')}% {snapshot.get('message')}")
                last = snapshot
            if snapshot.get("status") in ("completed", "failed"):
                break


@main.command("task-status")
@click.argument("task_id")
def task_status(task_id: str):
    """Show the last cached progress snapshot for TASK_ID."""
    data = _run(_task_status_impl(task_id))
    click.echo(_pretty_json(data))


async def _task_status_impl(task_id: str):
    async with _client() as c:
        r = await c.get(f"/api/v1/tasks/{task_id}/status")
        if r.status_code == 404:
            _fail(f"No status cached for task {task_id}")
        r.raise_for_status()
        return r.json()


if __name__ == "__main__":
    main()
