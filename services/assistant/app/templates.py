"""Named phase-instruction templates persisted in the key-value store."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping, Optional

from word_pilot_schemas import PromptTemplate, ResearchPhase

from .prompts import DEFAULT_PHASE_PROMPTS
from .stores.base import KeyValueStore

logger = logging.getLogger(__name__)

TEMPLATES_KEY = "prompt-templates"
SELECTED_TEMPLATE_KEY = "selected-prompt-template"
DEFAULT_TEMPLATE_ID = "default"
DEFAULT_TEMPLATE_NAME = "Default"

TemplateMap = dict[str, PromptTemplate]


def default_template() -> PromptTemplate:
    return PromptTemplate(
        name=DEFAULT_TEMPLATE_NAME,
        phase1=DEFAULT_PHASE_PROMPTS[1],
        phase2=DEFAULT_PHASE_PROMPTS[2],
        phase3=DEFAULT_PHASE_PROMPTS[3],
    )


def default_templates() -> TemplateMap:
    return {DEFAULT_TEMPLATE_ID: default_template()}


def _heal_entry(raw: Any, fallback: PromptTemplate) -> Optional[PromptTemplate]:
    """Complete a stored entry from ``fallback`` without overwriting present fields."""

    if not isinstance(raw, Mapping):
        return None
    merged = fallback.model_dump()
    for field in merged:
        value = raw.get(field)
        if isinstance(value, str) and value.strip():
            merged[field] = value
    return PromptTemplate.model_validate(merged)


def get_phase_prompt_from_template(
    phase: ResearchPhase | int,
    templates: Mapping[str, PromptTemplate],
    selected_id: Optional[str],
) -> str:
    """Resolve the system instruction for ``phase``.

    Falls back from the selected template to ``default`` and finally to the
    built-in text, so the result is never empty.
    """

    phase = ResearchPhase(phase)
    for template_id in (selected_id, DEFAULT_TEMPLATE_ID):
        template = templates.get(template_id) if template_id else None
        if template is None:
            continue
        prompt = template.prompt_for(phase)
        if prompt and prompt.strip():
            return prompt
    return DEFAULT_PHASE_PROMPTS[phase.value]


class PromptTemplateStore:
    """Loads, heals and persists the template map and the selected template id."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def load_templates(self) -> TemplateMap:
        raw = await self._kv.get(TEMPLATES_KEY)
        if raw is None:
            templates = default_templates()
            await self.save_templates(templates)
            return templates

        try:
            stored = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored prompt templates are corrupt; resetting to defaults")
            templates = default_templates()
            await self.save_templates(templates)
            return templates

        if not isinstance(stored, dict):
            logger.warning("Stored prompt templates have an unexpected shape; resetting to defaults")
            templates = default_templates()
            await self.save_templates(templates)
            return templates

        base = default_template()
        templates: TemplateMap = {}
        healed = False
        for template_id, entry in stored.items():
            template = _heal_entry(entry, base)
            if template is None:
                healed = True
                logger.warning("Dropping unreadable prompt template", extra={"template_id": template_id})
                continue
            if template.model_dump() != entry:
                healed = True
            templates[str(template_id)] = template

        if DEFAULT_TEMPLATE_ID not in templates:
            templates = {DEFAULT_TEMPLATE_ID: base, **templates}
            healed = True

        if healed:
            logger.info("Prompt templates repaired", extra={"template_count": len(templates)})
            await self.save_templates(templates)
        return templates

    async def save_templates(self, templates: Mapping[str, PromptTemplate]) -> None:
        payload = {template_id: template.model_dump() for template_id, template in templates.items()}
        await self._kv.set(TEMPLATES_KEY, json.dumps(payload))

    async def get_selected_template_id(self) -> str:
        selected = await self._kv.get(SELECTED_TEMPLATE_KEY)
        return selected or DEFAULT_TEMPLATE_ID

    async def set_selected_template_id(self, template_id: str) -> None:
        await self._kv.set(SELECTED_TEMPLATE_KEY, template_id)

    async def add_custom_template(
        self,
        templates: Mapping[str, PromptTemplate],
        name: str,
        phase1: str,
        phase2: str,
        phase3: str,
    ) -> tuple[TemplateMap, str]:
        """Add a template under a fresh time-based id and persist the map."""

        new_id = f"custom-{int(time.time() * 1000)}"
        suffix = 1
        while new_id in templates:
            new_id = f"custom-{int(time.time() * 1000)}-{suffix}"
            suffix += 1

        updated = dict(templates)
        updated[new_id] = PromptTemplate(name=name, phase1=phase1, phase2=phase2, phase3=phase3)
        await self.save_templates(updated)
        return updated, new_id

    async def update_custom_template(
        self,
        templates: Mapping[str, PromptTemplate],
        template_id: str,
        name: str,
        phase1: str,
        phase2: str,
        phase3: str,
    ) -> TemplateMap:
        if template_id not in templates:
            return dict(templates)
        updated = dict(templates)
        updated[template_id] = PromptTemplate(name=name, phase1=phase1, phase2=phase2, phase3=phase3)
        await self.save_templates(updated)
        return updated

    async def delete_custom_template(
        self, templates: Mapping[str, PromptTemplate], template_id: str
    ) -> TemplateMap:
        """Remove a custom template; the built-in default is never removed."""

        if template_id == DEFAULT_TEMPLATE_ID or template_id not in templates:
            return dict(templates)
        updated = {key: value for key, value in templates.items() if key != template_id}
        await self.save_templates(updated)
        if await self.get_selected_template_id() == template_id:
            await self.set_selected_template_id(DEFAULT_TEMPLATE_ID)
        return updated

    async def active_phase_prompt(self, phase: ResearchPhase | int) -> str:
        templates = await self.load_templates()
        selected_id = await self.get_selected_template_id()
        return get_phase_prompt_from_template(phase, templates, selected_id)
