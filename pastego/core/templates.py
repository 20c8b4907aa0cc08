"""Persisted prompt templates."""

import logging
from typing import Any, Dict, List, Optional

import pyarrow as pa

from pastego.models.schemas import Template
from .errors import NotFound, ValidationError
from .prompt import MATERIALS_MARKER
from .storage import LanceTable, _optional_str, quote

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES = [
    Template(
        id="tpl-translate",
        name="Translate",
        prompt=(
            "Translate the following content into English "
            "(if it is already English, translate it into Chinese):\n\n"
            f"{MATERIALS_MARKER}"
        ),
        category="general",
        shortcut="CmdOrCtrl+Shift+T",
    ),
]


class TemplateStore(LanceTable):
    """Template set keyed by id, listed by category then name."""

    table_name = "templates"
    schema = pa.schema(
        [
            pa.field("id", pa.string()),
            pa.field("name", pa.string()),
            pa.field("prompt", pa.string()),
            pa.field("category", pa.string()),
            pa.field("shortcut", pa.string()),
        ]
    )

    async def _seed(self):
        self.table.add([self._to_row(t) for t in DEFAULT_TEMPLATES])
        logger.info(f"Seeded {len(DEFAULT_TEMPLATES)} default templates")

    @staticmethod
    def _to_row(template: Template) -> Dict[str, Any]:
        return template.model_dump()

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> Template:
        return Template(
            id=row["id"],
            name=row["name"],
            prompt=row["prompt"],
            category=row.get("category") or "general",
            shortcut=_optional_str(row.get("shortcut")),
        )

    async def list(self) -> List[Template]:
        await self._ensure_initialized()
        df = self._frame()
        if df.empty:
            return []
        df = df.sort_values(["category", "name"], kind="mergesort")
        return [self._from_row(row) for row in df.to_dict("records")]

    async def get(self, template_id: str) -> Optional[Template]:
        await self._ensure_initialized()
        rows = self._rows("id", template_id)
        return self._from_row(rows[0]) if rows else None

    async def require(self, template_id: str) -> Template:
        template = await self.get(template_id)
        if template is None:
            raise NotFound(f"Template not found: {template_id}")
        return template

    async def save(self, template: Template) -> Template:
        """Upsert by id after validating name and prompt."""
        if not template.name.strip():
            raise ValidationError("Template name must not be empty")
        if not template.prompt.strip():
            raise ValidationError("Template prompt must not be empty")
        if template.prompt.count(MATERIALS_MARKER) > 1:
            logger.warning(
                f"Template {template.id} has several {MATERIALS_MARKER} markers; "
                "only the first is substituted"
            )

        await self._ensure_initialized()
        async with self._lock:
            self.table.delete(f"id = {quote(template.id)}")
            self.table.add([self._to_row(template)])
        return template

    async def delete(self, template_id: str) -> None:
        await self._ensure_initialized()
        async with self._lock:
            self.table.delete(f"id = {quote(template_id)}")
