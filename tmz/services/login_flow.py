"""Browser-driven sign-in through the external teams-auth.mjs script.

The script opens Chromium via Playwright, lets the user finish SSO/MFA
(or, headless, reuses the saved browser profile), and prints the page's
localStorage to stdout as a JSON object. It exits non-zero on failure.
This module runs it, enforces a timeout and picks the access tokens
out of the returned map.
"""

import asyncio
import json
import logging
import os
from pathlib import Path

from tmz.errors import RefreshError

logger = logging.getLogger(__name__)

SCRIPT_NAME = "teams-auth.mjs"
SCRIPT_ENV_VAR = "TMZ_AUTH_SCRIPT"

# Seconds allowed beyond the script's own --timeout before it is killed
GRACE_SECONDS = 15

# Bundle field -> resource name in the MSAL access-token cache key
TOKEN_RESOURCES = {
    "skype_token": "api.spaces.skype.com",
    "chat_token": "chatsvcagg.teams.microsoft.com",
    "graph_token": "graph.microsoft.com",
    "presence_token": "presence.teams.microsoft.com",
}


def find_auth_script(configured: str | None = None, data_dir: Path | None = None) -> Path:
    """Locate teams-auth.mjs.

    Search order: the configured path, $TMZ_AUTH_SCRIPT, the data
    directory, then ./scripts/ in the working directory.

    Raises:
        RefreshError: If no candidate exists.
    """
    candidates: list[Path] = []
    if configured:
        candidates.append(Path(configured).expanduser())
    env_path = os.environ.get(SCRIPT_ENV_VAR, "").strip()
    if env_path:
        candidates.append(Path(env_path).expanduser())
    if data_dir is not None:
        candidates.append(data_dir / SCRIPT_NAME)
    candidates.append(Path.cwd() / "scripts" / SCRIPT_NAME)

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    searched = ", ".join(str(c) for c in candidates)
    raise RefreshError(
        f"login script {SCRIPT_NAME} not found (searched: {searched})",
        remediation=f"Set auth.auth_script or ${SCRIPT_ENV_VAR}, or use 'tmz auth store'.",
    )


def _find_token(local_storage: dict[str, str], resource: str) -> str:
    """Return the access-token secret cached for one resource."""
    resource = resource.lower()
    for key, value in local_storage.items():
        lowered = key.lower()
        if "accesstoken" in lowered and "login.windows.net" in lowered and resource in lowered:
            try:
                entry = json.loads(value) if isinstance(value, str) else value
            except json.JSONDecodeError as e:
                raise RefreshError(f"cannot parse token entry for {resource}: {e}") from e
            secret = entry.get("secret") if isinstance(entry, dict) else None
            if not isinstance(secret, str) or not secret:
                raise RefreshError(f"token entry for {resource} has no secret")
            return secret
    raise RefreshError(f"no token found for resource: {resource}")


def extract_tokens(local_storage: dict[str, str]) -> dict[str, str]:
    """Pick the four scoped access tokens out of a localStorage dump.

    Returns:
        Mapping of bundle field name ("skype_token", ...) to token.

    Raises:
        RefreshError: If any resource's token is missing or unreadable.
    """
    return {
        field: _find_token(local_storage, resource)
        for field, resource in TOKEN_RESOURCES.items()
    }


class LoginFlow:
    """Runs the login script as a subprocess."""

    def __init__(
        self,
        script_path: str | None = None,
        data_dir: Path | None = None,
        node_binary: str = "node",
    ) -> None:
        self._script_path = script_path
        self._data_dir = data_dir
        self._node = node_binary

    async def run(self, timeout: int, headless: bool) -> dict[str, str]:
        """Run the script and return the localStorage map it prints.

        Args:
            timeout: Seconds the script may wait for sign-in.
            headless: Reuse the saved browser session without a window.

        Raises:
            RefreshError: If node or the script is missing, the script
                exits non-zero or overruns, or its output is not a JSON
                object.
        """
        script = find_auth_script(self._script_path, self._data_dir)
        args = [str(script), "--timeout", str(timeout)]
        if headless:
            args.append("--headless")

        logger.debug("Running login script %s (headless=%s)", script, headless)
        try:
            proc = await asyncio.create_subprocess_exec(
                self._node,
                *args,
                stdout=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RefreshError(
                f"{self._node} not found",
                remediation="Install Node.js to use browser login, or use 'tmz auth store'.",
            ) from e
        except OSError as e:
            raise RefreshError(
                f"cannot start {self._node}: {e}",
                remediation="Check the Node.js installation, or use 'tmz auth store'.",
            ) from e

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout + GRACE_SECONDS)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise RefreshError(f"login script timed out after {timeout}s") from None

        if proc.returncode != 0:
            raise RefreshError(f"login script failed with exit code {proc.returncode}")

        try:
            local_storage = json.loads(stdout.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RefreshError(f"login script printed invalid JSON: {e}") from e
        if not isinstance(local_storage, dict):
            raise RefreshError("login script output is not a JSON object")
        return local_storage
