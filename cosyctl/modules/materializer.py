"""Configuration artifact materialization.

Artifacts are fetched from their source locator, filled in by literal
placeholder replacement and written to their destination. Three kinds of
locator are understood:

- ``http://`` / ``https://`` URLs, fetched with requests
- ``template:<name>`` for templates bundled in ``cosyctl/templates``
- anything else is read as a local file path
"""

import logging
import os
import re
from pathlib import Path
from typing import Dict, Iterable, List

import requests

from ..config import Config
from ..errors import ArtifactFetchFailed, DestinationUnwritable, UnresolvedPlaceholder
from ..models import ConfigArtifact

logger = logging.getLogger("cosyctl.materializer")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
TEMPLATE_SCHEME = "template:"

PLACEHOLDER_PATTERN = re.compile(r"__COSY_[A-Z0-9_]+__")


def token(name: str) -> str:
    """Sentinel token for a placeholder name, e.g. ``DOMAIN`` -> ``__COSY_DOMAIN__``."""
    return f"__COSY_{name.upper()}__"


def substitute(text: str, placeholder_map: Dict[str, str]) -> str:
    """Replace every token in ``placeholder_map`` with its value."""
    for placeholder, value in placeholder_map.items():
        text = text.replace(placeholder, str(value))
    return text


def find_unresolved(text: str) -> List[str]:
    """Return the distinct sentinel tokens left in ``text``, sorted."""
    return sorted(set(PLACEHOLDER_PATTERN.findall(text)))


def fetch(locator: str) -> str:
    """Return the raw content behind a source locator.

    Raises:
        ArtifactFetchFailed: If the source cannot be read
    """
    if locator.startswith(("http://", "https://")):
        logger.debug(f"🌐 Fetching {locator}")
        try:
            response = requests.get(locator, timeout=Config.FETCH_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ArtifactFetchFailed(
                f"Could not download {locator}: {e}",
                "Check your internet connection and COSY_SOURCE_URL / COSY_SOURCE_REF.",
            ) from e
        return response.text

    if locator.startswith(TEMPLATE_SCHEME):
        path = TEMPLATE_DIR / locator[len(TEMPLATE_SCHEME):]
    else:
        path = Path(os.path.expanduser(locator))

    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ArtifactFetchFailed(f"Could not read {path}: {e}") from e


def render(artifact: ConfigArtifact, placeholder_map: Dict[str, str]) -> str:
    """Fetch and fill in one artifact without writing it."""
    merged = dict(placeholder_map)
    merged.update(artifact.placeholder_map)
    content = substitute(fetch(artifact.source_locator), merged)

    unresolved = find_unresolved(content)
    if unresolved:
        msg = f"{artifact.logical_name} still contains unresolved placeholders: {', '.join(unresolved)}"
        if Config.STRICT_PLACEHOLDERS:
            raise UnresolvedPlaceholder(
                msg,
                "The source templates do not match this cosyctl version; pin COSY_SOURCE_REF to a compatible release.",
            )
        logger.warning(f"⚠️  {msg}")
    return content


def write_file(path: Path, content: str, mode: int = 0o644) -> Path:
    """Write ``content`` to ``path`` (creating parents) and set its mode.

    Raises:
        DestinationUnwritable: On any permission or space problem
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(path, mode)
    except OSError as e:
        raise DestinationUnwritable(
            f"Could not write {path}: {e}",
            "Make sure you have write permissions, or choose a different path.",
        ) from e
    return path


def materialize(artifacts: Iterable[ConfigArtifact], placeholder_map: Dict[str, str]) -> List[Path]:
    """Fetch, fill in and write every artifact.

    Re-running overwrites the destinations; there is no merge with what is
    already on disk.

    Args:
        artifacts: Artifacts to produce
        placeholder_map: Tokens shared by all artifacts; an artifact's own map wins

    Returns:
        The written paths, in artifact order
    """
    written = []
    for artifact in artifacts:
        content = render(artifact, placeholder_map)
        written.append(write_file(artifact.destination_path, content, artifact.mode))
        logger.info(f"📝 {artifact.logical_name} → {artifact.destination_path}")
    return written
