import argparse
import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("power-monitor.env")

from api.app import create_app
from device.supervisor import ConnectionSupervisor
from scheduler import Scheduler
from state import MonitorState
from storage.persistence import Persistence
from storage.readings import ReadingStore

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s %(levelname)s %(name)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_data_dir(path: str) -> Path:
    """Resolve the data directory with hard fail when it cannot be used"""
    data_dir = Path(path).expanduser()
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot use data directory {data_dir}: {e}")
        sys.exit(1)
    return data_dir


def build_app(data_dir: Path):
    """Wire state, supervisor, scheduler and HTTP routes together"""
    persistence = Persistence(data_dir)
    state = MonitorState(store=ReadingStore(persistence.load_readings()))
    supervisor = ConnectionSupervisor(state, persistence)
    scheduler = Scheduler(state, supervisor, persistence)

    @asynccontextmanager
    async def lifespan(app):
        config = persistence.load_config()
        if config is not None:
            await supervisor.restore(config)

        scheduler_task = asyncio.create_task(scheduler.run())
        try:
            yield
        finally:
            scheduler_task.cancel()
            await supervisor.close()
            persistence.flush(state.store.readings, state.config)
            logger.info("Data flushed, monitor stopped")

    return create_app(state, supervisor, lifespan=lifespan)


async def main(host: str, port: int, data_dir: Path):
    app = build_app(data_dir)
    config = uvicorn.Config(app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    logger.info(f"Server listening on port {port}")
    await server.serve()


if __name__ == "__main__":
    # Parse command line arguments
    parser = argparse.ArgumentParser(description="Smart plug power monitor")
    parser.add_argument(
        "--host",
        type=str,
        default=os.getenv("HOST", "0.0.0.0"),
        help="Interface to listen on (default: HOST or 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "3000")),
        help="HTTP port (default: PORT or 3000)"
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=os.getenv("DATA_DIR", "."),
        help="Directory for device_config.json and device_data.json (default: DATA_DIR or .)"
    )
    args = parser.parse_args()

    try:
        asyncio.run(main(args.host, args.port, get_data_dir(args.data_dir)))
    except KeyboardInterrupt:
        logger.info("Monitor stopped by user.")
