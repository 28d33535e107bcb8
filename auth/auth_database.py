"""
Authentication Database Module
자격증명(Credential)의 영속 저장소 - get / set_from_exchange / clear 만 제공
"""

import json
import logging
import os
import sqlite3
from datetime import datetime
from typing import Optional

from .credential import Credential
from .time_utils import parse_iso_to_utc

logger = logging.getLogger(__name__)


class AuthDatabase:
    """인증 데이터베이스 - 단일 계정의 토큰 정보 저장 (TokenStoreProtocol 구현)"""

    def __init__(self, db_path: str):
        """
        데이터베이스 초기화

        Args:
            db_path: 데이터베이스 파일 경로
        """
        self.db_path = db_path
        self.ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_tables(self):
        """필요한 테이블 생성 및 파일 권한 제한"""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        conn = self._connect()
        try:
            conn.executescript("""
                -- 현재 자격증명 (항상 최대 1행)
                CREATE TABLE IF NOT EXISTS outlook_credential (
                    slot INTEGER PRIMARY KEY CHECK (slot = 1),
                    account_id TEXT NOT NULL,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT NOT NULL,
                    access_token_expires_at TIMESTAMP NOT NULL,
                    scopes TEXT NOT NULL DEFAULT '[]',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"❌ Failed to create tables: {e}")
            raise
        finally:
            conn.close()

        # 토큰이 담긴 파일이므로 소유자만 읽기/쓰기
        try:
            os.chmod(self.db_path, 0o600)
        except OSError as e:
            logger.warning(f"⚠️ Could not restrict permissions on {self.db_path}: {e}")

    def get(self) -> Optional[Credential]:
        """
        저장된 자격증명 조회

        Returns:
            Credential 또는 None
        """
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM outlook_credential WHERE slot = 1").fetchone()
        finally:
            conn.close()

        if not row:
            return None

        expires_at = row["access_token_expires_at"]
        if not isinstance(expires_at, datetime):
            expires_at = parse_iso_to_utc(str(expires_at))

        return Credential(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=expires_at,
            scopes=json.loads(row["scopes"] or "[]"),
            account_id=row["account_id"],
        )

    def set_from_exchange(self, credential: Credential) -> None:
        """
        토큰 교환/갱신 결과 저장 (기존 행을 통째로 교체)

        Args:
            credential: 새 자격증명
        """
        conn = self._connect()
        try:
            conn.execute("""
                INSERT INTO outlook_credential (
                    slot,
                    account_id,
                    access_token,
                    refresh_token,
                    access_token_expires_at,
                    scopes,
                    updated_at
                ) VALUES (1, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(slot) DO UPDATE SET
                    account_id = excluded.account_id,
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    access_token_expires_at = excluded.access_token_expires_at,
                    scopes = excluded.scopes,
                    updated_at = CURRENT_TIMESTAMP
            """, (
                credential.account_id,
                credential.access_token,
                credential.refresh_token,
                credential.expires_at.isoformat(),
                json.dumps(list(credential.scopes)),
            ))
            conn.commit()
            logger.info(f"✅ Credential saved for: {credential.account_id or '(unknown account)'}")
        except sqlite3.Error as e:
            logger.error(f"❌ Failed to save credential: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def clear(self) -> None:
        """저장된 자격증명 삭제 (없어도 에러 없음)"""
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM outlook_credential")
            conn.commit()
            if cursor.rowcount:
                logger.info("✅ Stored credential cleared")
        except sqlite3.Error as e:
            logger.error(f"❌ Failed to clear credential: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()
