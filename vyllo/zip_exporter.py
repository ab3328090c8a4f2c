"""
zip_exporter.py: Save designs to disk and bundle a session into a ZIP.

Creates organized ZIP with:
  designs/       stickers and prints (transparent PNG)
  mockups/       virtual try-on composites
  manifest.json  metadata for every file (no image bytes)
"""

from __future__ import annotations

import json
import logging
import re
import zipfile
from pathlib import Path
from typing import Iterable

from .types import Design, DesignKind

logger = logging.getLogger(__name__)

_EXT_BY_MIME = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp"}


def design_filename(design: Design) -> str:
    return f"vyllo-{design.id[:8]}{_EXT_BY_MIME.get(design.mime_type, '.png')}"


def save_design(design: Design, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / design_filename(design)
    path.write_bytes(design.image)
    return path


def create_session_zip(name: str, designs: Iterable[Design], output_dir: Path) -> Path:
    """
    Bundle designs into <name>_vyllo.zip inside output_dir.

    Args:
        name:        Used for the ZIP filename (slugified)
        designs:     Designs and mockups to include, in display order
        output_dir:  Directory to write the ZIP file

    Returns:
        Path to the created ZIP file.
    """
    safe_name = re.sub(r"[^a-zA-Z0-9_-]", "_", name.lower().strip())[:30] or "session"
    output_dir.mkdir(parents=True, exist_ok=True)
    zip_path = output_dir / f"{safe_name}_vyllo.zip"

    manifest = []
    with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zf:
        for design in designs:
            folder = "mockups" if design.kind is DesignKind.MOCKUP else "designs"
            arcname = f"{folder}/{design_filename(design)}"
            zf.writestr(arcname, design.image)
            entry = design.model_dump(mode="json", exclude={"image"})
            entry["file"] = arcname
            manifest.append(entry)
        zf.writestr("manifest.json", json.dumps(manifest, indent=2, ensure_ascii=False))

    logger.info("ZIP created: %s (%d file(s))", zip_path, len(manifest))
    return zip_path
