"""VLC media controller.

Drives a VLC instance through its HTTP interface
(``/requests/status.json?command=...``) and resolves playlist names to
``.m3u`` files in the playlist folder.
"""
import asyncio
import re
from pathlib import Path

import aiohttp
from loguru import logger

from ..config import settings
from ..scheduler.types import ActionType, MediaResult

logger = logger.bind(module="media_service")

_UNSAFE_CHARS = re.compile(r'[<>:"|?*]')


def playlist_candidates(event_name: str) -> list[str]:
    """Possible playlist file names for an event, most specific tithi first.

    ``"12 Sud Chaudas/Punam"`` yields ``"12 Sud Chaudas.m3u"``,
    ``"12 Sud Punam.m3u"`` and ``"12 Sud Chaudas/Punam.m3u"``.
    """
    if not event_name:
        return []

    clean = _UNSAFE_CHARS.sub("_", event_name)
    if "/" not in clean:
        return [f"{clean}.m3u"]

    before, after = clean.split("/", 1)
    space = before.rfind(" ")
    prefix = before[:space + 1] if space != -1 else ""
    first = before[space + 1:] if space != -1 else before

    return [
        f"{prefix}{first}.m3u",
        f"{prefix}{after.strip()}.m3u",
        f"{clean}.m3u",
    ]


class VlcController:
    """Media controller backed by VLC's HTTP interface."""

    def __init__(
        self,
        playlist_dir: str | Path | None = None,
        host: str | None = None,
        port: int | None = None,
        password: str | None = None,
        vlc_path: str | None = None,
        autostart: bool | None = None,
        request_timeout: float = 5.0,
    ):
        self.playlist_dir = Path(playlist_dir or settings.playlist_dir).expanduser()
        self.host = host or settings.vlc_http_host
        self.port = port or settings.vlc_http_port
        self.password = password if password is not None else settings.vlc_http_password
        self.vlc_path = vlc_path or settings.vlc_path
        self.autostart = settings.vlc_autostart if autostart is None else autostart
        self.request_timeout = request_timeout
        self._process: asyncio.subprocess.Process | None = None

    @property
    def status_url(self) -> str:
        return f"http://{self.host}:{self.port}/requests/status.json"

    async def control_media(self, action_type: ActionType, target: str | None) -> MediaResult:
        """Apply a play/pause/stop command."""
        if action_type == ActionType.PLAY:
            return await self.play_playlist(target or "")
        if action_type == ActionType.PAUSE:
            result = await self.send_command("pl_pause")
            return MediaResult(True, "Playback paused") if result.success else result
        if action_type == ActionType.STOP:
            result = await self.send_command("pl_stop")
            return MediaResult(True, "Playback stopped") if result.success else result
        return MediaResult(False, f"Unsupported action type: {action_type}")

    def find_playlist(self, playlist_name: str) -> Path | None:
        """Return the first existing playlist file for a name."""
        logger.debug(f"Looking for playlist files for \"{playlist_name}\"")
        for filename in playlist_candidates(playlist_name):
            path = self.playlist_dir / filename
            if path.is_file():
                logger.debug(f"Found playlist: {path}")
                return path
        return None

    async def play_playlist(self, playlist_name: str) -> MediaResult:
        if not playlist_name:
            return MediaResult(False, "Playlist name is required for play action")

        path = self.find_playlist(playlist_name)
        if path is None:
            tried = ", ".join(playlist_candidates(playlist_name))
            return MediaResult(
                False,
                f"No playlist file found for \"{playlist_name}\". Tried: {tried}",
            )

        if not await self.is_running():
            if not self.autostart:
                return MediaResult(False, f"VLC is not reachable at {self.status_url}")
            return await self._launch(path)

        result = await self.send_command("in_play", input=str(path))
        if not result.success:
            return result
        return MediaResult(True, f"Started playing playlist: {path.name}")

    async def is_running(self) -> bool:
        """Whether the VLC HTTP interface answers."""
        try:
            async with self._session() as session:
                async with session.get(self.status_url) as resp:
                    return resp.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    async def send_command(self, command: str, **params: str) -> MediaResult:
        """Send one command to the HTTP interface."""
        logger.info(f"Sending HTTP command to VLC: {command}")
        try:
            async with self._session() as session:
                async with session.get(
                    self.status_url, params={"command": command, **params}
                ) as resp:
                    if resp.status >= 400:
                        return MediaResult(
                            False, f"Failed to execute command: HTTP status {resp.status}"
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return MediaResult(False, f"Failed to execute command: {e or type(e).__name__}")

        return MediaResult(True, f"Command {command} executed successfully")

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            auth=aiohttp.BasicAuth("", self.password),
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        )

    async def _launch(self, path: Path) -> MediaResult:
        """Start VLC with the HTTP interface enabled, playing ``path``."""
        logger.info(f"Starting VLC with HTTP interface: {self.vlc_path}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.vlc_path,
                "--extraintf=http",
                f"--http-host={self.host}",
                f"--http-port={self.port}",
                f"--http-password={self.password}",
                str(path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            return MediaResult(False, f"Failed to start VLC: {e}")

        return MediaResult(True, f"Started playing playlist: {path.name}")

    async def close(self) -> None:
        """Stop a VLC process this controller launched, if it is still running."""
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return

        logger.info(f"Stopping VLC (pid {process.pid})")
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"VLC did not exit, killing pid {process.pid}")
            process.kill()
            await process.wait()
