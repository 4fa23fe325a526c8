"""Read access to merchants, tool templates, credentials and AI configurations."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import text

from toolbridge.infra.database import get_db_session
from toolbridge.models.template import AIConfig, Credential, Merchant, ToolTemplate

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _validate_rows(model: Type[M], rows: Iterable[Dict[str, Any]], kind: str) -> List[M]:
    """Validate store rows, skipping (and logging) the ones that do not fit the model."""
    records: List[M] = []
    for row in rows:
        try:
            records.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning(
                "Skipping invalid store record",
                extra={"kind": kind, "record_id": str(row.get("id", "")), "error": str(e)},
            )
    return records


def _validate_one(model: Type[M], row: Optional[Dict[str, Any]], kind: str) -> Optional[M]:
    if row is None:
        return None
    records = _validate_rows(model, [row], kind)
    return records[0] if records else None


class TemplateStore(ABC):
    """Read interface the engine depends on. Writes belong to the onboarding surface."""

    @abstractmethod
    def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        ...

    @abstractmethod
    def list_merchants(self) -> List[Merchant]:
        ...

    @abstractmethod
    def get_templates_for_merchant(self, merchant_id: str) -> List[ToolTemplate]:
        ...

    @abstractmethod
    def get_credential(self, credential_id: str) -> Optional[Credential]:
        ...

    @abstractmethod
    def get_ai_config(self, merchant_id: str) -> Optional[AIConfig]:
        ...

    def ping(self) -> None:
        """Raise if the backing storage is unreachable."""


class SqlTemplateStore(TemplateStore):
    """Template store backed by the tables of the initial Alembic revision."""

    def ping(self) -> None:
        with get_db_session() as session:
            session.execute(text("SELECT 1"))

    def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        with get_db_session() as session:
            row = session.execute(
                text("""
                    SELECT id, name, slug, display_name, currency_symbol
                    FROM merchants
                    WHERE id = :merchant_id
                """),
                {"merchant_id": merchant_id}
            ).mappings().fetchone()
        return _validate_one(Merchant, dict(row) if row else None, "merchant")

    def list_merchants(self) -> List[Merchant]:
        with get_db_session() as session:
            rows = session.execute(
                text("""
                    SELECT id, name, slug, display_name, currency_symbol
                    FROM merchants
                    ORDER BY name
                """)
            ).mappings().fetchall()
        return _validate_rows(Merchant, [dict(r) for r in rows], "merchant")

    def get_templates_for_merchant(self, merchant_id: str) -> List[ToolTemplate]:
        with get_db_session() as session:
            rows = session.execute(
                text("""
                    SELECT id, merchant_id, tool_type, name, description, method, url,
                           headers, query_params, body, operator_mcp_config,
                           credential_id, timeout_seconds
                    FROM tool_templates
                    WHERE merchant_id = :merchant_id AND is_active = TRUE
                    ORDER BY created_at, id
                """),
                {"merchant_id": merchant_id}
            ).mappings().fetchall()
        return _validate_rows(ToolTemplate, [dict(r) for r in rows], "tool_template")

    def get_credential(self, credential_id: str) -> Optional[Credential]:
        with get_db_session() as session:
            row = session.execute(
                text("""
                    SELECT id, merchant_id, auth_type, secret, username, password
                    FROM credentials
                    WHERE id = :credential_id
                """),
                {"credential_id": credential_id}
            ).mappings().fetchone()
        return _validate_one(Credential, dict(row) if row else None, "credential")

    def get_ai_config(self, merchant_id: str) -> Optional[AIConfig]:
        with get_db_session() as session:
            row = session.execute(
                text("""
                    SELECT merchant_id, provider, api_key, model, temperature,
                           max_output_tokens, is_active
                    FROM ai_configurations
                    WHERE merchant_id = :merchant_id AND is_active = TRUE
                """),
                {"merchant_id": merchant_id}
            ).mappings().fetchone()
        return _validate_one(AIConfig, dict(row) if row else None, "ai_configuration")


class InMemoryTemplateStore(TemplateStore):
    """Dictionary-backed store for tests and local fixtures.

    Accepts either model instances or raw dicts (camelCase or snake_case);
    raw dicts go through the same validation as database rows.
    """

    def __init__(
        self,
        merchants: Optional[Iterable[Any]] = None,
        templates: Optional[Iterable[Any]] = None,
        credentials: Optional[Iterable[Any]] = None,
        ai_configs: Optional[Iterable[Any]] = None,
    ):
        self._merchants: Dict[str, Merchant] = {
            m.id: m for m in self._coerce(Merchant, merchants, "merchant")
        }
        self._templates: List[ToolTemplate] = self._coerce(ToolTemplate, templates, "tool_template")
        self._credentials: Dict[str, Credential] = {
            c.id: c for c in self._coerce(Credential, credentials, "credential")
        }
        self._ai_configs: Dict[str, AIConfig] = {
            a.merchant_id: a for a in self._coerce(AIConfig, ai_configs, "ai_configuration")
        }

    @staticmethod
    def _coerce(model: Type[M], items: Optional[Iterable[Any]], kind: str) -> List[M]:
        records: List[M] = []
        for item in items or []:
            if isinstance(item, model):
                records.append(item)
            else:
                records.extend(_validate_rows(model, [item], kind))
        return records

    def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        return self._merchants.get(merchant_id)

    def list_merchants(self) -> List[Merchant]:
        return sorted(self._merchants.values(), key=lambda m: m.name)

    def get_templates_for_merchant(self, merchant_id: str) -> List[ToolTemplate]:
        return [t for t in self._templates if t.merchant_id == merchant_id]

    def get_credential(self, credential_id: str) -> Optional[Credential]:
        return self._credentials.get(credential_id)

    def get_ai_config(self, merchant_id: str) -> Optional[AIConfig]:
        ai_config = self._ai_configs.get(merchant_id)
        if ai_config is None or not ai_config.is_active:
            return None
        return ai_config

    def set_ai_config(self, ai_config: AIConfig) -> None:
        """Replace a merchant's AI configuration (callers must invalidate the client cache)."""
        self._ai_configs[ai_config.merchant_id] = ai_config
