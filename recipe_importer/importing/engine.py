from __future__ import annotations

import json
import logging
import re
from fractions import Fraction
from io import BytesIO
from typing import Any, List, Optional

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pypdf import PdfReader

from .config import ImporterConfig
from .errors import ExtractionFailure, ParseFailure
from .models import ParsedIngredient, ParsedInstruction, ParsedRecipe

logger = logging.getLogger(__name__)


class ExtractionGateway:
    """
    Abstract boundary to the external text- and AI-extraction services.
    Implementations should be stateless and reusable across jobs.
    """

    def extract_text(self, document_bytes: bytes) -> str:
        raise NotImplementedError

    def parse_recipes(self, text: str) -> List[ParsedRecipe]:
        raise NotImplementedError


class TextExtractor:
    def extract_text(self, document_bytes: bytes) -> str:
        raise NotImplementedError


class RecipeParser:
    def parse_recipes(self, text: str) -> List[ParsedRecipe]:
        raise NotImplementedError


class PdfRecipeGateway(ExtractionGateway):
    """
    Composes a text extractor and a recipe parser into one gateway.
    """

    def __init__(self, text_extractor: TextExtractor, recipe_parser: RecipeParser):
        self.text_extractor = text_extractor
        self.recipe_parser = recipe_parser

    def extract_text(self, document_bytes: bytes) -> str:
        return self.text_extractor.extract_text(document_bytes)

    def parse_recipes(self, text: str) -> List[ParsedRecipe]:
        return self.recipe_parser.parse_recipes(text)


class PypdfTextExtractor(TextExtractor):
    """
    Plain text extraction from the PDF text layer. Fast, but scanned pages
    without a text layer come back empty.
    """

    def extract_text(self, document_bytes: bytes) -> str:
        if not document_bytes:
            raise ExtractionFailure("The uploaded document is empty.")
        logger.info("Extracting text from PDF buffer (%s bytes)", len(document_bytes))
        try:
            reader = PdfReader(BytesIO(document_bytes))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to extract text from PDF: %s", exc)
            raise ExtractionFailure("Could not parse the PDF file.") from exc
        text = "\n\n".join(page.strip() for page in pages if page.strip())
        if not text:
            raise ExtractionFailure("No text could be extracted from the PDF file.")
        logger.info("Text extraction from PDF successful (%s pages)", len(pages))
        return text


class DoclingTextExtractor(TextExtractor):
    """
    Docling-based extractor (with configurable OCR via Docling's PDF pipeline).

    Requires the `docling` package. Converts the document and exports it as
    markdown, which keeps headings and list structure for the AI step.
    """

    def __init__(self, perform_ocr: bool = True):
        from docling.datamodel.base_models import InputFormat
        from docling.datamodel.pipeline_options import PdfPipelineOptions, RapidOcrOptions
        from docling.document_converter import DocumentConverter, PdfFormatOption

        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_ocr = perform_ocr
        pipeline_options.do_table_structure = True
        if perform_ocr:
            pipeline_options.ocr_options = RapidOcrOptions()

        self.converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            }
        )

    def extract_text(self, document_bytes: bytes) -> str:
        from docling.datamodel.base_models import DocumentStream

        if not document_bytes:
            raise ExtractionFailure("The uploaded document is empty.")
        try:
            result = self.converter.convert(DocumentStream(name="upload.pdf", stream=BytesIO(document_bytes)))
            text = result.document.export_to_markdown()
        except Exception as exc:  # noqa: BLE001
            logger.error("Docling conversion failed: %s", exc)
            raise ExtractionFailure("Could not parse the PDF file.") from exc
        if not text or not text.strip():
            raise ExtractionFailure("No text could be extracted from the PDF file.")
        return text.strip()


RECIPE_PROMPT = """Given the following meal-plan text, extract every recipe it contains into a JSON object of the form {{"recipes": [...]}}. Each recipe must match this interface. If a field is not found, omit it. For ingredients, separate name, quantity and unit. Number instructions from 1.

interface Recipe {{
  name: string;
  description?: string;
  prepTime?: number; // in minutes
  cookTime?: number; // in minutes
  servings?: number;
  ingredients: {{ name: string; quantity?: number; unit?: string }}[];
  instructions: {{ step: number; content: string }}[];
}}

Text:
{text}

JSON Output:
"""

_CODE_FENCE = re.compile(r"```(?:json)?\s*|\s*```")


def _coerce_quantity(value: Any) -> Any:
    if value is None or isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            return float(sum(Fraction(part) for part in raw.split()))
        except (ValueError, ZeroDivisionError):
            return None
    return value


class _IngredientPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    quantity: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("ingredient name must not be blank")
        return value

    @field_validator("quantity", mode="before")
    @classmethod
    def _parse_quantity(cls, value: Any) -> Any:
        return _coerce_quantity(value)

    @field_validator("unit")
    @classmethod
    def _strip_unit(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class _InstructionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    step: int = Field(ge=1)
    content: str = Field(min_length=1)


class _RecipePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    prep_time: Optional[int] = Field(default=None, ge=0, alias="prepTime")
    cook_time: Optional[int] = Field(default=None, ge=0, alias="cookTime")
    servings: Optional[int] = Field(default=None, ge=1)
    ingredients: List[_IngredientPayload] = Field(default_factory=list)
    instructions: List[_InstructionPayload] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _number_plain_instructions(cls, data: Any) -> Any:
        # Models sometimes answer with a list of strings instead of step objects.
        if isinstance(data, dict) and isinstance(data.get("instructions"), list):
            steps = []
            for index, item in enumerate(data["instructions"], start=1):
                steps.append({"step": index, "content": item} if isinstance(item, str) else item)
            data = {**data, "instructions": steps}
        return data

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("recipe name must not be blank")
        return value

    def to_parsed(self) -> ParsedRecipe:
        return ParsedRecipe(
            name=self.name,
            description=self.description,
            prep_time=self.prep_time,
            cook_time=self.cook_time,
            servings=self.servings,
            ingredients=[ParsedIngredient(name=i.name, quantity=i.quantity, unit=i.unit) for i in self.ingredients],
            instructions=[ParsedInstruction(step=s.step, content=s.content) for s in self.instructions],
        )


_RECIPE_LIST = TypeAdapter(List[_RecipePayload])


def parse_recipes_payload(raw: str) -> List[ParsedRecipe]:
    """
    Validate a model response and convert it into parsed recipes.

    Accepts `{"recipes": [...]}` or a bare JSON list, optionally wrapped in a
    markdown code fence. Anything else, including an empty list, is a ParseFailure.
    """
    cleaned = _CODE_FENCE.sub("", raw or "").strip()
    if not cleaned:
        raise ParseFailure("AI model returned an empty response.")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ParseFailure("AI model returned malformed JSON.") from exc

    if isinstance(data, dict) and "recipes" in data:
        data = data["recipes"]
    if not isinstance(data, list):
        raise ParseFailure("AI response is not a list of recipes.")
    if not data:
        raise ParseFailure("AI response did not contain any recipes.")

    try:
        payloads = _RECIPE_LIST.validate_python(data)
    except ValidationError as exc:
        raise ParseFailure(f"AI response is not a well-formed recipe list ({exc.error_count()} errors).") from exc
    return [payload.to_parsed() for payload in payloads]


class OpenAIRecipeParser(RecipeParser):
    """
    Structures extracted text into recipes with an OpenAI chat completion in
    JSON mode. The client is created lazily so a missing key only fails jobs.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        client: Optional[OpenAI] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self._client_instance = client

    def _client(self) -> OpenAI:
        if self._client_instance is None:
            if not self.api_key:
                raise ParseFailure("OPENAI_API_KEY is not configured.")
            self._client_instance = OpenAI(api_key=self.api_key)
        return self._client_instance

    def parse_recipes(self, text: str) -> List[ParsedRecipe]:
        if not text or not text.strip():
            raise ParseFailure("There is no text to process.")
        client = self._client()
        logger.info("Sending %s characters to %s for recipe extraction", len(text), self.model)
        try:
            chat = client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[{"role": "user", "content": RECIPE_PROMPT.format(text=text)}],
                response_format={"type": "json_object"},
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Recipe extraction request failed")
            raise ParseFailure("Failed to process recipe text with AI model.") from exc

        content = chat.choices[0].message.content if chat and chat.choices else ""
        recipes = parse_recipes_payload(content or "")
        logger.info("AI response parsed into %s recipe(s)", len(recipes))
        return recipes


def build_extraction_gateway(config: ImporterConfig) -> PdfRecipeGateway:
    if config.text_extractor == "docling":
        extractor: TextExtractor = DoclingTextExtractor(perform_ocr=config.perform_ocr)
    elif config.text_extractor == "pypdf":
        extractor = PypdfTextExtractor()
    else:
        raise ValueError(f"Unknown text extractor: {config.text_extractor}")
    parser = OpenAIRecipeParser(
        api_key=config.openai_api_key,
        model=config.openai_model,
        temperature=config.openai_temperature,
    )
    return PdfRecipeGateway(extractor, parser)
