"""
Route registry - the table of paid generation endpoints.

Routes are data, not code: each entry in the endpoints YAML file becomes an
immutable RouteDefinition, and one generic handler serves all of them.
Loading and validation happen once at startup; any problem raises
ConfigError and the app refuses to start.

Example endpoints.yaml entry:

    endpoints:
      - route: /fox
        quality: low
        default: true
        model: fal-ai/flux/schnell
        cost: "10"
        description: Generate a fox picture
        response_url_path: images.0.url
        default_prompt: a red fox
        media_type: image
        output_extension: png
        request_params:
          num_inference_steps: 4
        post_process: null
"""
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.errors import ConfigError
from app.providers.pricing import PriceError, to_minor_units

logger = logging.getLogger(__name__)


class TranscodeStep(BaseModel):
    """Post-process provider output with the external transcoder (ffmpeg)."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    input_extension: str
    args: list[str] = Field(default_factory=list)


class RouteDefinition(BaseModel):
    """One quality variant of a logical route."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    route: str
    quality: str
    path: str = ""  # resource path for cache/object keys; defaults to route
    model: str
    cost: str
    description: str
    response_url_path: str
    default_prompt: str
    media_type: str
    output_extension: str
    request_params: dict[str, Any] = Field(default_factory=dict)
    post_process: Optional[TranscodeStep] = None
    default: bool = False

    @model_validator(mode="before")
    @classmethod
    def _fill_path(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("path"):
            data = {**data, "path": data.get("route", "")}
        return data

    @field_validator("cost", mode="before")
    @classmethod
    def _cost_as_text(cls, value: Any) -> Any:
        # YAML reads `cost: 10` as an int
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def _check_paths(self) -> "RouteDefinition":
        if not self.route.startswith("/") or not self.path.startswith("/"):
            raise ValueError(f"route and path must start with '/': {self.route!r}, {self.path!r}")
        return self

    def price_minor_units(self, decimals: int) -> int:
        """Cost in raw token units."""
        return to_minor_units(self.cost, decimals)


QualityMap = dict[str, RouteDefinition]


def load_routes(source) -> list[RouteDefinition]:
    """Parse the endpoints file into route definitions.

    Raises:
        ConfigError: If the file is unreadable or malformed
    """
    path = Path(source)
    try:
        content = path.read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read endpoints config '{path}': {e}")

    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse endpoints config '{path}': {e}")

    if not isinstance(document, dict) or not isinstance(document.get("endpoints"), list):
        raise ConfigError(f"Endpoints config '{path}' must contain an 'endpoints' list")

    definitions = []
    for index, entry in enumerate(document["endpoints"]):
        try:
            definitions.append(RouteDefinition.model_validate(entry))
        except ValidationError as e:
            raise ConfigError(f"Invalid endpoint #{index} in '{path}': {e}")
    return definitions


def validate_routes(definitions: list[RouteDefinition], decimals: int) -> None:
    """Check prices, default variants, and route+quality uniqueness.

    Raises:
        ConfigError: On the first problem found
    """
    if not definitions:
        raise ConfigError("No endpoints configured")

    for definition in definitions:
        try:
            definition.price_minor_units(decimals)
        except PriceError as e:
            raise ConfigError(f"Bad cost in endpoint {definition.route} ({definition.quality}): {e}")

    pairs = Counter((d.route, d.quality) for d in definitions)
    duplicates = [pair for pair, count in pairs.items() if count > 1]
    if duplicates:
        route, quality = duplicates[0]
        raise ConfigError(f"Duplicate quality '{quality}' for route {route}")

    for route, qualities in group_by_route(definitions).items():
        if not any(d.default for d in qualities.values()):
            raise ConfigError(f"Route {route} has no default quality")


def group_by_route(definitions: list[RouteDefinition]) -> dict[str, QualityMap]:
    """Group a flat endpoint list into route -> quality -> definition."""
    grouped: dict[str, QualityMap] = {}
    for definition in definitions:
        grouped.setdefault(definition.route, {})[definition.quality] = definition
    return grouped


def default_variant(qualities: QualityMap) -> RouteDefinition:
    """The first variant marked default, in declaration order."""
    for definition in qualities.values():
        if definition.default:
            return definition
    raise ConfigError("Route has no default quality")


class RouteRegistry:
    """Validated, grouped route table built once at startup."""

    def __init__(self, definitions: list[RouteDefinition], decimals: int):
        validate_routes(definitions, decimals)
        self.definitions = list(definitions)
        self.routes = group_by_route(self.definitions)

    @classmethod
    def from_file(cls, source, decimals: int) -> "RouteRegistry":
        registry = cls(load_routes(source), decimals)
        logger.info(
            f"Loaded {len(registry.definitions)} endpoint variants across "
            f"{len(registry.routes)} routes from {source}"
        )
        return registry

    def resolve(self, route: str, quality: Optional[str] = None) -> Optional[RouteDefinition]:
        """Find the variant for a route; None quality picks the default.

        Returns None for an unknown route. Raises KeyError for an unknown quality.
        """
        qualities = self.routes.get(route)
        if qualities is None:
            return None
        if quality is None:
            return default_variant(qualities)
        return qualities[quality]

    def qualities(self, route: str) -> list[str]:
        return list(self.routes.get(route, {}))

    def __len__(self) -> int:
        return len(self.routes)
