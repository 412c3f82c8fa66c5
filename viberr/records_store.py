# viberr/records_store.py
import json
import logging
import os
import time
from datetime import datetime, timezone

from viberr.utils import Utils

logger = logging.getLogger("viberr_backend")

META_SUFFIX = ".meta.json"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _write_new_file(directory: str, make_name, data: bytes) -> str:
    """
    Writes `data` to a file that did not exist before and returns its name.
    `make_name(ms)` builds the candidate name; on a clash the timestamp is bumped.
    """
    ms = _now_ms()
    while True:
        name = make_name(ms)
        try:
            with open(os.path.join(directory, name), "xb") as f:
                f.write(data)
            return name
        except FileExistsError:
            ms += 1


class SubmissionStore(Utils):
    """
    One immutable JSON document per submission: <slug>-<epoch ms>.json
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def save(self, slug: str, steps, notes: str = "", ip: str = "unknown", user_agent: str = "unknown") -> str:
        os.makedirs(self.base_dir, exist_ok=True)
        submission = {
            "slug": slug,
            "steps": steps,
            "notes": notes or "",
            "submittedAt": datetime.now(timezone.utc).isoformat(),
            "ip": ip or "unknown",
            "userAgent": user_agent or "unknown",
        }
        safe_slug = self._sanitize_for_filename(slug) or "submission"
        data = json.dumps(submission, indent=2).encode("utf-8")
        filename = _write_new_file(self.base_dir, lambda ms: f"{safe_slug}-{ms}.json", data)
        logger.info("Stored submission %s", filename)
        return filename

    def list_all(self) -> list[dict]:
        """
        All readable submissions, newest first.
        """
        if not os.path.isdir(self.base_dir):
            return []
        submissions = []
        for file in os.listdir(self.base_dir):
            if not file.endswith(".json"):
                continue
            try:
                with open(os.path.join(self.base_dir, file), "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Error reading submission {file}: {e}")
                continue
            if isinstance(data, dict):
                submissions.append({"id": file, **data})
        submissions.sort(key=lambda s: (str(s.get("submittedAt") or ""), s["id"]), reverse=True)
        return submissions


class UploadStore(Utils):
    """
    Stored blobs under <base_dir>/<slug>/<epoch ms>-<name>, each with an
    adjacent <stored name>.meta.json record. Never overwrites.
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def _project_dir(self, slug: str) -> str:
        safe_slug = self._sanitize_for_filename(slug) or "_"
        return os.path.join(self.base_dir, safe_slug)

    def save(self, slug: str, original_name: str, content_type: str, data: bytes, step_label: str | None = None) -> dict:
        project_dir = self._project_dir(slug)
        os.makedirs(project_dir, exist_ok=True)

        safe_name = self._sanitize_for_filename(original_name or "") or "file"
        stored_as = _write_new_file(project_dir, lambda ms: f"{ms}-{safe_name}", data)

        meta = {
            "originalName": original_name,
            "storedAs": stored_as,
            "size": len(data),
            "type": content_type or "",
            "slug": slug,
            "stepLabel": step_label or "unknown",
            "uploadedAt": datetime.now(timezone.utc).isoformat(),
        }
        with open(os.path.join(project_dir, f"{stored_as}{META_SUFFIX}"), "x", encoding="utf-8") as f:
            json.dump(meta, f, indent=2)

        logger.info("Stored upload %s for %s (%d bytes)", stored_as, slug, len(data))
        return meta

    def list_for(self, slug: str) -> list[dict]:
        project_dir = self._project_dir(slug)
        if not os.path.isdir(project_dir):
            return []
        uploads = []
        for file in sorted(os.listdir(project_dir)):
            if not file.endswith(META_SUFFIX):
                continue
            # an uploaded blob may itself be named *.meta.json
            if not os.path.isfile(os.path.join(project_dir, file[: -len(META_SUFFIX)])):
                continue
            try:
                with open(os.path.join(project_dir, file), "r", encoding="utf-8") as f:
                    uploads.append(json.load(f))
            except (OSError, ValueError) as e:
                logger.warning(f"Error reading upload metadata {file}: {e}")
        return uploads
