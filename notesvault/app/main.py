from __future__ import annotations

import argparse
import logging
import os
import socket
import sys
import threading
from pathlib import Path
from typing import Callable, Optional

import uvicorn

from notesvault.app import config
from notesvault.server import api as api_module
from notesvault.server.adapters.store import StoreWriteError
from notesvault.server.state import AppState, vault_state

logger = logging.getLogger(__name__)


# ============================================================================
# DEBUG CONFIGURATION - Environment Variables
# ============================================================================
# Set these environment variables to "1" or "true" to enable extra output.
#
# NOTESVAULT_DEBUG_API   - One line per API call (blue [API] prefix)
# NOTESVAULT_DEBUG_GIT   - Every git command line (tokens masked)
#
# Other knobs:
# NOTESVAULT_VAULT       - Vault directory used when none was saved yet
# NOTESVAULT_CONFIG      - Location of the user-level JSON config
# NOTESVAULT_HOST/PORT   - Defaults for --host and --port
#
# Examples:
#   NOTESVAULT_DEBUG_API=1 notesvault --vault ~/Notes
# ============================================================================

STREAK_CHECK_SECONDS = 60.0


class StreakChecker:
    """Background timer that resets expired routine streaks."""

    def __init__(
        self,
        get_state: Callable[[], AppState],
        interval: float = STREAK_CHECK_SECONDS,
    ) -> None:
        self._get_state = get_state
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> bool:
        try:
            state = self._get_state()
        except RuntimeError:
            return False
        with state.lock:
            try:
                return state.routines.check_streaks()
            except StoreWriteError as exc:
                # Memory is left as it was; the next tick retries.
                logger.error("Streak check could not save routines: %s", exc)
                return False

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="streak-check", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="NotesVault local API server.")
    parser.add_argument("--vault", help="Vault directory to open (remembered for the next start).")
    parser.add_argument(
        "--host", default=os.getenv("NOTESVAULT_HOST", "127.0.0.1"), help="Host/interface to bind the API server."
    )
    parser.add_argument(
        "--port", type=int, default=int(os.getenv("NOTESVAULT_PORT", "8765")), help="Preferred API port (0 = auto)."
    )
    parser.add_argument(
        "--check-interval",
        type=float,
        default=STREAK_CHECK_SECONDS,
        help="Seconds between routine streak checks.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG level.")
    return parser.parse_args(argv)


def _find_open_port(host: str, preferred: int) -> int:
    """Try preferred port, otherwise fall back to an ephemeral port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, preferred))
            return s.getsockname()[1]
        except OSError:
            pass
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def open_startup_vault(vault_arg: Optional[str]) -> AppState:
    vault_path = Path(vault_arg).expanduser() if vault_arg else config.load_vault_path()
    state = vault_state.open_vault(str(vault_path))
    config.save_vault_path(str(state.root))
    config.load_settings_from_vault(state.root)
    config.save_settings_to_vault(state.root)
    return state


def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose or config._debug_enabled("NOTESVAULT_DEBUG_GIT") else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        state = open_startup_vault(args.vault)
    except (OSError, ValueError) as exc:
        print(f"Error: could not open vault: {exc}", file=sys.stderr)
        sys.exit(1)

    checker = StreakChecker(vault_state.get, interval=args.check_interval)
    checker.start()

    port = _find_open_port(args.host, args.port)
    print("\nNotesVault API started")
    print(f"  Vault: {state.root}")
    print(f"  URL:   http://{args.host}:{port}/api/health\n")
    server_config = uvicorn.Config(
        api_module.get_app(),
        host=args.host,
        port=port,
        log_level=os.getenv("UVICORN_LOG_LEVEL", "info"),
    )
    try:
        uvicorn.Server(server_config).run()
    finally:
        checker.stop()


if __name__ == "__main__":  # pragma: no cover - manual entry point
    main()
