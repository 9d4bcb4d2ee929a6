"""
AI structured-text generation and video insights.
"""

import json
import logging
from typing import Any, Dict, Optional, Protocol

import google.generativeai as genai

from config import GEMINI_API_KEY, GEMINI_MODEL
from models import AiInsights

logger = logging.getLogger(__name__)

INSIGHTS_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING"},
        "tags": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["summary", "tags"],
}

PLAYLIST_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "id": {"type": "STRING"},
            "title": {"type": "STRING"},
        },
        "required": ["id", "title"],
    },
}


class StructuredGenerator(Protocol):
    """Anything that turns a prompt plus a response schema into JSON text."""

    async def generate(self, prompt: str, schema: Dict[str, Any]) -> str:
        ...


class GeminiGenerator:
    """Gemini-backed structured generator."""

    def __init__(self, api_key: str = GEMINI_API_KEY, model_name: str = GEMINI_MODEL):
        self.api_key = api_key
        self.model_name = model_name
        self._model: Optional[genai.GenerativeModel] = None

    def _get_model(self) -> genai.GenerativeModel:
        if not self.api_key:
            raise RuntimeError("GEMINI_API_KEY not configured")
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    async def generate(self, prompt: str, schema: Dict[str, Any]) -> str:
        model = self._get_model()
        response = await model.generate_content_async(
            prompt,
            generation_config=genai.GenerationConfig(
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )
        return response.text


def build_insights_prompt(title: str) -> str:
    return (
        "Phân tích tiêu đề video sau và trả về tóm tắt ngắn gọn bằng tiếng Việt (1 câu) "
        "và 3-5 hashtags liên quan nhất.\n"
        f'Tiêu đề: "{title}"'
    )


def build_playlist_prompt(data: str) -> str:
    return (
        "Nhiệm vụ: Trích xuất danh sách video (ID và Title) từ dữ liệu Playlist YouTube sau.\n"
        f"Dữ liệu: {data}\n"
        'Trả về JSON Array: [{"id": "...", "title": "..."}]. Chỉ trả về JSON.'
    )


class InsightGenerator:
    """One-sentence summary plus tags for a video title."""

    def __init__(self, generator: StructuredGenerator):
        self.generator = generator

    async def get_ai_insights(self, title: str) -> Optional[AiInsights]:
        try:
            text = await self.generator.generate(build_insights_prompt(title), INSIGHTS_SCHEMA)
            data = json.loads(text)
            summary = data["summary"]
            tags = data["tags"]
            if not isinstance(summary, str) or not isinstance(tags, list):
                raise ValueError("unexpected insights shape")
            return AiInsights(summary=summary, tags=[str(tag) for tag in tags])
        except Exception as error:
            logger.warning("AI insights unavailable for %r: %s", title, error)
            return None
