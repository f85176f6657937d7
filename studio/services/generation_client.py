"""
Generation Client for Layer Studio
==================================

HTTP client for the synchronous image endpoints of the generation service:
- text-to-image (``/v1/images/generations``)
- compose, mask edit and background removal through the vision model
  (``/v1beta/models/{model}:generateContent``)
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from ..models.config_models import API_BASE_URL

logger = logging.getLogger(__name__)

COMPOSE_TEMPLATE = (
    "Act as a professional photo compositor. Composite the object from the second image "
    "(foreground) into the first image (background). Instruction: {instruction} "
    "IMPORTANT: The output image MUST strictly maintain the exact aspect ratio and dimensions "
    "of the first image (background). Do not crop, resize, or change the aspect ratio of the background."
)
DEFAULT_COMPOSE_INSTRUCTION = (
    "Place the object naturally into the scene, matching lighting, shadows, and perspective."
)

INPAINT_TEMPLATE = (
    "INPAINTING TASK. Image 1 is Source, Image 2 is Mask (White=Edit, Black=Keep). "
    "Instruction: {instruction} Constraint: Only edit white mask area."
)

REMOVE_BACKGROUND_PROMPT = (
    "Remove the background from this image and return the main subject on a "
    "transparent background. Keep the subject intact."
)


class GenerationResponse(BaseModel):
    """Response from an image operation."""
    success: bool
    image_url: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


def _inline_png(data: str) -> Dict[str, Any]:
    return {"inlineData": {"mimeType": "image/png", "data": data}}


def _error_message(body: Any, default: str) -> str:
    """Pull ``error.message`` (or a bare ``error`` string) out of a response body."""
    if not isinstance(body, dict):
        return default
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or default
    if isinstance(error, str) and error:
        return error
    return default


class GenerationClient:
    """
    Client for the image operations of the generation service.

    Usage:
        client = GenerationClient(api_key="sk-...")
        response = await client.generate_image("A misty forest", aspect_ratio="16:9")
        if response.success:
            url = response.image_url
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: str = "",
        image_model: str = "nano-banana",
        vision_model: str = "gemini-2.5-flash-image-preview",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or API_BASE_URL).rstrip("/")
        self.api_key = api_key
        self.image_model = image_model
        self.vision_model = vision_model
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        logger.info(f"[GEN-CLIENT] Initialized with base URL: {self.base_url}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _post(self, path: str, payload: Dict[str, Any], operation: str) -> GenerationResponse:
        """POST and decode JSON. Non-2xx and transport errors become failed responses."""
        url = f"{self.base_url}{path}"
        try:
            client = await self._get_client()
            response = await client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException:
            logger.error(f"[GEN-CLIENT] {operation}: timeout calling {path}")
            return GenerationResponse(success=False, error="Generation service timeout - please try again")
        except httpx.RequestError as e:
            logger.error(f"[GEN-CLIENT] {operation}: network error: {e}")
            return GenerationResponse(success=False, error=f"Network error: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            error_msg = _error_message(body, f"Generation service error: HTTP {response.status_code}")
            logger.error(f"[GEN-CLIENT] {operation}: {error_msg}")
            return GenerationResponse(success=False, error=error_msg, status_code=response.status_code)

        if not isinstance(body, dict):
            logger.error(f"[GEN-CLIENT] {operation}: undecodable response body")
            return GenerationResponse(
                success=False, error="Invalid response from generation service",
                status_code=response.status_code,
            )

        if body.get("error"):
            error_msg = _error_message(body, f"{operation} failed")
            logger.error(f"[GEN-CLIENT] {operation}: {error_msg}")
            return GenerationResponse(success=False, error=error_msg, status_code=response.status_code)

        return self._parse(body, operation, response.status_code)

    def _parse(self, body: Dict[str, Any], operation: str, status_code: int) -> GenerationResponse:
        if "candidates" in body:
            image_url = self._extract_inline_image(body)
        else:
            data = body.get("data") or []
            image_url = data[0].get("url") if data and isinstance(data[0], dict) else None

        if not image_url:
            logger.error(f"[GEN-CLIENT] {operation}: response contained no image")
            return GenerationResponse(
                success=False, error=f"{operation}: no image returned", status_code=status_code
            )

        logger.info(f"[GEN-CLIENT] {operation}: image received")
        return GenerationResponse(success=True, image_url=image_url, status_code=status_code)

    @staticmethod
    def _extract_inline_image(body: Dict[str, Any]) -> Optional[str]:
        candidates = body.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        for part in parts:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return f"data:{mime};base64,{inline['data']}"
        return None

    async def generate_image(self, prompt: str, aspect_ratio: str) -> GenerationResponse:
        """Text-to-image. The result is a hosted URL."""
        payload = {
            "model": self.image_model,
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "response_format": "url",
        }
        logger.info(f"[GEN-CLIENT] Generating image: {prompt[:50]}... (ratio={aspect_ratio})")
        return await self._post("/v1/images/generations", payload, "generate")

    async def _generate_content(self, parts: List[Dict[str, Any]], operation: str) -> GenerationResponse:
        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {"responseModalities": ["IMAGE"]},
        }
        path = f"/v1beta/models/{self.vision_model}:generateContent"
        return await self._post(path, payload, operation)

    async def compose(self, background_b64: str, foreground_b64: str, instruction: str = "") -> GenerationResponse:
        """Blend a foreground raster into a background scene."""
        text = COMPOSE_TEMPLATE.format(instruction=instruction or DEFAULT_COMPOSE_INSTRUCTION)
        logger.info("[GEN-CLIENT] Composing foreground into background")
        return await self._generate_content(
            [{"text": text}, _inline_png(background_b64), _inline_png(foreground_b64)],
            "compose",
        )

    async def inpaint(self, visual_b64: str, mask_b64: str, instruction: str) -> GenerationResponse:
        """Edit only the white area of the mask."""
        logger.info(f"[GEN-CLIENT] Mask edit: {instruction[:50]}...")
        return await self._generate_content(
            [{"text": INPAINT_TEMPLATE.format(instruction=instruction)},
             _inline_png(visual_b64), _inline_png(mask_b64)],
            "mask_edit",
        )

    async def remove_background(self, image_b64: str) -> GenerationResponse:
        logger.info("[GEN-CLIENT] Removing background")
        return await self._generate_content(
            [{"text": REMOVE_BACKGROUND_PROMPT}, _inline_png(image_b64)],
            "remove_background",
        )
