"""
File: wa_relay/services/session_sync.py

Project: WhatsApp Notification Relay

Purpose:
Keep the transport's session credential files in a local directory and,
optionally, mirror them into the database so a fresh host can resume the
same WhatsApp session without re-pairing.

Layout:
- local:  <session_path>/<file_name>
- remote: session_files rows keyed by (session_key, file_name)

Design rules:
- Best effort: every operation logs and returns a falsy value on failure,
  it never raises into the relay server
- The relay server decides WHEN to sync (connected -> upload,
  logged out -> clear); this module only knows HOW
"""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from wa_relay.models import SessionFile

logger = logging.getLogger("session_sync")


class SessionSync:
    def __init__(
        self,
        local_path: str | Path,
        session_factory: Optional[sessionmaker] = None,
        session_key: str = "whatsappSessions/main",
    ) -> None:
        self._local_path = Path(local_path)
        self._session_factory = session_factory
        self._session_key = session_key

    @property
    def local_path(self) -> Path:
        return self._local_path

    @property
    def mirror_enabled(self) -> bool:
        return self._session_factory is not None

    # -------------------------------------------------
    # Local
    # -------------------------------------------------

    def has_local_session(self) -> bool:
        return self._local_path.is_dir() and any(p.is_file() for p in self._local_path.iterdir())

    def clear_local(self) -> bool:
        if not self._local_path.exists():
            return True
        try:
            shutil.rmtree(self._local_path)
            logger.info("Cleared local session at %s", self._local_path)
            return True
        except OSError as e:
            logger.error("Failed to clear local session: %s", e)
            return False

    # -------------------------------------------------
    # Remote mirror
    # -------------------------------------------------

    def upload(self) -> int:
        """
        Mirror every local session file. Returns the number of files uploaded.
        """
        if not self.mirror_enabled:
            return 0
        if not self._local_path.is_dir():
            logger.warning("No local session folder found, skipping upload")
            return 0

        files = [p for p in sorted(self._local_path.iterdir()) if p.is_file()]
        if not files:
            logger.warning("Session folder is empty, skipping upload")
            return 0

        db = self._session_factory()
        try:
            existing = {
                row.file_name: row
                for row in db.query(SessionFile).filter(SessionFile.session_key == self._session_key).all()
            }
            now = datetime.now(timezone.utc)
            uploaded = 0
            for path in files:
                try:
                    content = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    logger.error("Failed to read %s: %s", path.name, e)
                    continue

                row = existing.get(path.name)
                if row is None:
                    row = SessionFile(session_key=self._session_key, file_name=path.name)
                    db.add(row)
                row.content = content
                row.size = len(content.encode("utf-8"))
                row.uploaded_at = now
                uploaded += 1

            db.commit()
            logger.info("Uploaded %d session file(s) to %s", uploaded, self._session_key)
            return uploaded
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Session upload failed: %s", e)
            return 0
        finally:
            db.close()

    def download(self) -> int:
        """
        Restore mirrored files into the local folder. Returns files written.
        """
        if not self.mirror_enabled:
            return 0

        db = self._session_factory()
        try:
            rows = db.query(SessionFile).filter(SessionFile.session_key == self._session_key).all()
            if not rows:
                logger.warning("No session files found for %s", self._session_key)
                return 0

            self._local_path.mkdir(parents=True, exist_ok=True)
            written = 0
            for row in rows:
                # file names come from our own uploads; refuse anything path-like
                if Path(row.file_name).name != row.file_name:
                    logger.error("Refusing suspicious session file name %r", row.file_name)
                    continue
                try:
                    (self._local_path / row.file_name).write_text(row.content, encoding="utf-8")
                    written += 1
                except OSError as e:
                    logger.error("Failed to write %s: %s", row.file_name, e)

            logger.info("Downloaded %d session file(s) from %s", written, self._session_key)
            return written
        except SQLAlchemyError as e:
            logger.error("Session download failed: %s", e)
            return 0
        finally:
            db.close()

    def has_remote_session(self) -> bool:
        if not self.mirror_enabled:
            return False
        db = self._session_factory()
        try:
            return (
                db.query(SessionFile.id)
                .filter(SessionFile.session_key == self._session_key)
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            logger.error("Failed to check remote session: %s", e)
            return False
        finally:
            db.close()

    def clear_remote(self) -> bool:
        if not self.mirror_enabled:
            return True
        db = self._session_factory()
        try:
            n = (
                db.query(SessionFile)
                .filter(SessionFile.session_key == self._session_key)
                .delete(synchronize_session=False)
            )
            db.commit()
            logger.info("Cleared %d remote session file(s)", n)
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to clear remote session: %s", e)
            return False
        finally:
            db.close()

    def metadata(self) -> Optional[Dict[str, Any]]:
        if not self.mirror_enabled:
            return None
        db = self._session_factory()
        try:
            rows = db.query(SessionFile).filter(SessionFile.session_key == self._session_key).all()
            if not rows:
                return None
            return {
                "file_count": len(rows),
                "total_size": sum(r.size or 0 for r in rows),
                "last_upload": max((r.uploaded_at for r in rows if r.uploaded_at), default=None),
                "files": [{"name": r.file_name, "size": r.size} for r in rows],
            }
        except SQLAlchemyError as e:
            logger.error("Failed to read session metadata: %s", e)
            return None
        finally:
            db.close()

    def invalidate(self) -> bool:
        """
        Logged out: both copies of the session are useless now.
        """
        local_ok = self.clear_local()
        remote_ok = self.clear_remote()
        return local_ok and remote_ok
