"""SQLite database for prompt templates, reference data and the validation audit log."""

from __future__ import annotations

import json
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable

import platformdirs


def _now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class UsageLogUnavailableError(RuntimeError):
    """The llm_usage_logs table does not exist yet."""


_SCHEMA = """
CREATE TABLE IF NOT EXISTS prompt_templates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    content_template TEXT NOT NULL,
    word_limit INTEGER,
    active INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_prompt_templates_active ON prompt_templates(active);

CREATE TABLE IF NOT EXISTS icd10_codes (
    code TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    clinical_notes TEXT
);

CREATE TABLE IF NOT EXISTS cpt_codes (
    code TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    modality TEXT,
    body_part TEXT
);

CREATE TABLE IF NOT EXISTS cpt_icd10_mappings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    icd10_code TEXT NOT NULL,
    cpt_code TEXT NOT NULL,
    appropriateness INTEGER,
    evidence_source TEXT,
    refined_justification TEXT,
    UNIQUE (icd10_code, cpt_code)
);
CREATE INDEX IF NOT EXISTS idx_mappings_icd10 ON cpt_icd10_mappings(icd10_code);
CREATE INDEX IF NOT EXISTS idx_mappings_cpt ON cpt_icd10_mappings(cpt_code);

CREATE TABLE IF NOT EXISTS validation_attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id INTEGER,
    attempt_number INTEGER NOT NULL,
    validation_input_text TEXT NOT NULL,
    validation_outcome TEXT NOT NULL,
    generated_icd10_codes TEXT NOT NULL DEFAULT '[]',
    generated_cpt_codes TEXT NOT NULL DEFAULT '[]',
    generated_feedback_text TEXT,
    generated_compliance_score REAL,
    user_id INTEGER,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_validation_attempts_order ON validation_attempts(order_id);
"""

# Provisioned on first use by the attempt logger, not at startup.
_LLM_USAGE_SCHEMA = """
CREATE TABLE IF NOT EXISTS llm_usage_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    prompt_tokens INTEGER NOT NULL DEFAULT 0,
    completion_tokens INTEGER NOT NULL DEFAULT 0,
    total_tokens INTEGER NOT NULL DEFAULT 0,
    latency_ms INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_llm_usage_created_at ON llm_usage_logs(created_at);
"""

# Keywords shorter than this only match codes, not descriptions.
_MIN_DESCRIPTION_TERM = 3


def _get_db_path() -> str:
    """Return OS-appropriate path for cds.db."""
    data_dir = platformdirs.user_data_dir("OrderValidation")
    os.makedirs(data_dir, exist_ok=True)
    return os.path.join(data_dir, "cds.db")


def _keyword_conditions(
    keywords: Iterable[str], columns: tuple[str, ...]
) -> tuple[str, list[Any]]:
    """Build an OR-ed LIKE clause matching codes by prefix and text by substring."""
    conditions: list[str] = []
    params: list[Any] = []
    for kw in keywords:
        kw = kw.strip().lower()
        if not kw:
            continue
        conditions.append("LOWER(code) LIKE ?")
        params.append(f"{kw}%")
        if len(kw) >= _MIN_DESCRIPTION_TERM:
            for col in columns:
                conditions.append(f"LOWER({col}) LIKE ?")
                params.append(f"%{kw}%")
    return " OR ".join(conditions), params


def _decode_attempt(row: sqlite3.Row) -> dict[str, Any]:
    result = dict(row)
    for key in ("generated_icd10_codes", "generated_cpt_codes"):
        try:
            result[key] = json.loads(result[key] or "[]")
        except (json.JSONDecodeError, TypeError):
            result[key] = []
    return result


class Database:
    """SQLite-backed storage for templates, reference data and attempts."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or _get_db_path()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    # --- Prompt templates ---

    def get_active_prompt_template(self) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM prompt_templates WHERE active = 1 "
                "ORDER BY updated_at DESC, id DESC LIMIT 1"
            ).fetchone()
            if not row:
                return None
            result = dict(row)
            result["active"] = bool(result["active"])
            return result
        finally:
            conn.close()

    def create_prompt_template(
        self,
        name: str,
        content_template: str,
        word_limit: int | None = None,
        active: bool = False,
    ) -> dict[str, Any]:
        conn = self._get_conn()
        try:
            now = _now()
            if active:
                conn.execute("UPDATE prompt_templates SET active = 0, updated_at = ?", (now,))
            cursor = conn.execute(
                """INSERT INTO prompt_templates (name, content_template, word_limit, active, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (name, content_template, word_limit, 1 if active else 0, now, now),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM prompt_templates WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            result = dict(row)
            result["active"] = bool(result["active"])
            return result
        finally:
            conn.close()

    def activate_prompt_template(self, template_id: int) -> bool:
        """Make one template the only active template."""
        conn = self._get_conn()
        try:
            exists = conn.execute(
                "SELECT 1 FROM prompt_templates WHERE id = ?", (template_id,)
            ).fetchone()
            if not exists:
                return False
            now = _now()
            conn.execute("UPDATE prompt_templates SET active = 0, updated_at = ? WHERE active = 1", (now,))
            conn.execute(
                "UPDATE prompt_templates SET active = 1, updated_at = ? WHERE id = ?",
                (now, template_id),
            )
            conn.commit()
            return True
        finally:
            conn.close()

    def seed_prompt_template_if_empty(
        self, name: str, content_template: str, word_limit: int | None = None
    ) -> bool:
        """Insert an active template when the table has none. Returns True if seeded."""
        conn = self._get_conn()
        try:
            count = conn.execute("SELECT COUNT(*) FROM prompt_templates").fetchone()[0]
        finally:
            conn.close()
        if count:
            return False
        self.create_prompt_template(name, content_template, word_limit, active=True)
        return True

    # --- Reference data ---

    def load_icd10_codes(self, rows: Iterable[dict[str, Any]]) -> int:
        conn = self._get_conn()
        try:
            count = 0
            for row in rows:
                conn.execute(
                    """INSERT OR REPLACE INTO icd10_codes (code, description, clinical_notes)
                       VALUES (?, ?, ?)""",
                    (row["code"], row["description"], row.get("clinical_notes")),
                )
                count += 1
            conn.commit()
            return count
        finally:
            conn.close()

    def load_cpt_codes(self, rows: Iterable[dict[str, Any]]) -> int:
        conn = self._get_conn()
        try:
            count = 0
            for row in rows:
                conn.execute(
                    """INSERT OR REPLACE INTO cpt_codes (code, description, modality, body_part)
                       VALUES (?, ?, ?, ?)""",
                    (row["code"], row["description"], row.get("modality"), row.get("body_part")),
                )
                count += 1
            conn.commit()
            return count
        finally:
            conn.close()

    def load_mappings(self, rows: Iterable[dict[str, Any]]) -> int:
        conn = self._get_conn()
        try:
            count = 0
            for row in rows:
                conn.execute(
                    """INSERT OR REPLACE INTO cpt_icd10_mappings
                       (icd10_code, cpt_code, appropriateness, evidence_source, refined_justification)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        row["icd10_code"],
                        row["cpt_code"],
                        row.get("appropriateness"),
                        row.get("evidence_source"),
                        row.get("refined_justification"),
                    ),
                )
                count += 1
            conn.commit()
            return count
        finally:
            conn.close()

    def search_icd10_codes(self, keywords: list[str], limit: int = 10) -> list[dict[str, Any]]:
        where, params = _keyword_conditions(keywords, ("description", "clinical_notes"))
        if not where:
            return []
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT code, description FROM icd10_codes WHERE {where} ORDER BY code LIMIT ?",
                [*params, limit],
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def search_cpt_codes(self, keywords: list[str], limit: int = 10) -> list[dict[str, Any]]:
        where, params = _keyword_conditions(keywords, ("description", "modality", "body_part"))
        if not where:
            return []
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT code, description, modality FROM cpt_codes WHERE {where} ORDER BY code LIMIT ?",
                [*params, limit],
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def search_mappings(self, codes: list[str], limit: int = 10) -> list[dict[str, Any]]:
        codes = [c.upper() for c in codes if c]
        if not codes:
            return []
        placeholders = ", ".join("?" for _ in codes)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""SELECT icd10_code, cpt_code, appropriateness, evidence_source
                    FROM cpt_icd10_mappings
                    WHERE UPPER(icd10_code) IN ({placeholders}) OR UPPER(cpt_code) IN ({placeholders})
                    ORDER BY appropriateness DESC, icd10_code, cpt_code
                    LIMIT ?""",
                [*codes, *codes, limit],
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    # --- Validation audit log ---

    def get_max_attempt_number(self, order_id: int) -> int:
        """Highest attempt number recorded for an order, 0 when none."""
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT MAX(attempt_number) FROM validation_attempts WHERE order_id = ?",
                (order_id,),
            ).fetchone()
            return row[0] or 0
        finally:
            conn.close()

    def insert_validation_attempt(
        self,
        order_id: int | None,
        attempt_number: int,
        validation_input_text: str,
        validation_outcome: str,
        generated_icd10_codes: list[dict[str, str]],
        generated_cpt_codes: list[dict[str, str]],
        generated_feedback_text: str,
        generated_compliance_score: float,
        user_id: int | None,
    ) -> int:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """INSERT INTO validation_attempts
                   (order_id, attempt_number, validation_input_text, validation_outcome,
                    generated_icd10_codes, generated_cpt_codes, generated_feedback_text,
                    generated_compliance_score, user_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    order_id,
                    attempt_number,
                    validation_input_text,
                    validation_outcome,
                    json.dumps(generated_icd10_codes),
                    json.dumps(generated_cpt_codes),
                    generated_feedback_text,
                    generated_compliance_score,
                    user_id,
                    _now(),
                ),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def list_validation_attempts(
        self, order_id: int | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        conn = self._get_conn()
        try:
            if order_id is not None:
                rows = conn.execute(
                    "SELECT * FROM validation_attempts WHERE order_id = ? "
                    "ORDER BY attempt_number LIMIT ?",
                    (order_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM validation_attempts ORDER BY id DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            return [_decode_attempt(r) for r in rows]
        finally:
            conn.close()

    # --- LLM usage ---

    def ensure_llm_usage_table(self) -> None:
        conn = self._get_conn()
        try:
            conn.executescript(_LLM_USAGE_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def insert_llm_usage(
        self,
        provider: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
        latency_ms: int,
    ) -> int:
        conn = self._get_conn()
        try:
            try:
                cursor = conn.execute(
                    """INSERT INTO llm_usage_logs
                       (provider, model, prompt_tokens, completion_tokens, total_tokens, latency_ms, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (provider, model, prompt_tokens, completion_tokens, total_tokens, latency_ms, _now()),
                )
            except sqlite3.OperationalError as e:
                if "no such table" in str(e):
                    raise UsageLogUnavailableError(str(e)) from e
                raise
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def list_llm_usage(self, limit: int = 50) -> list[dict[str, Any]]:
        conn = self._get_conn()
        try:
            try:
                rows = conn.execute(
                    "SELECT * FROM llm_usage_logs ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            except sqlite3.OperationalError as e:
                if "no such table" in str(e):
                    return []
                raise
            return [dict(r) for r in rows]
        finally:
            conn.close()


_db_instance: Database | None = None


def get_db() -> Database:
    """Return the module-level Database singleton."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
    return _db_instance
