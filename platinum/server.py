"""The web server: one listening event loop per worker thread."""

from __future__ import annotations

import argparse
import logging
import os
import threading

from platinum.address import IPAddress
from platinum.affair import on_message
from platinum.config import DEFAULT_CONFIG_PATH, Config, get_config, load_config, set_config
from platinum.connection import EventLoop
from platinum.tcp_server import TcpServer

log = logging.getLogger(__name__)


class Server:
    """Runs a TcpServer on the configured port in each worker thread."""

    def __init__(self, config: Config | None = None, poll_interval: float = 0.1) -> None:
        self.config = config
        self.poll_interval = poll_interval
        self.thread_num = 1
        self.threads: list[threading.Thread] = []
        self.servers: list[TcpServer] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()

    def start(self) -> None:
        """Start the worker threads, no more than there are processors."""
        config = self.config if self.config is not None else get_config()
        cpus = os.cpu_count() or 1
        self.thread_num = min(config.thread_num, cpus)
        for _ in range(self.thread_num):
            thread = threading.Thread(target=self._run, args=(config,), daemon=True)
            self.threads.append(thread)
            thread.start()

    def _run(self, config: Config) -> None:
        loop = EventLoop(self.poll_interval)
        with TcpServer(loop, IPAddress(config.port)) as tcp:
            tcp.set_message_callback(on_message)
            tcp.listen()
            with self._lock:
                self.servers.append(tcp)
            while not self._stop.is_set():
                loop.run_once(self.poll_interval)

    def stop(self) -> None:
        """Ask every worker to finish."""
        self._stop.set()

    def exec(self) -> None:
        """Wait for every worker thread to finish."""
        for thread in self.threads:
            thread.join()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="platinum", description="Run the web server.")
    parser.add_argument("-c", "--config", default=str(DEFAULT_CONFIG_PATH),
                        help="path of the YAML configuration")
    args = parser.parse_args(argv)
    config = load_config(args.config)
    set_config(config)
    if config.log_enable:
        logging.basicConfig(level=logging.INFO)
    server = Server(config)
    server.start()
    try:
        server.exec()
    except KeyboardInterrupt:
        server.stop()
        server.exec()
    return 0