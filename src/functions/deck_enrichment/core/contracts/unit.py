"""Data contracts for slides flowing through the enrichment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class UnitStage(str, Enum):
    """Lifecycle states of a single slide."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    GENERATING_IMAGE = "generating_image"
    GENERATING_ASSETS = "generating_assets"
    GENERATING_VIDEO = "generating_video"
    EDITING_AREA = "editing_area"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_in_progress(self) -> bool:
        return self in IN_PROGRESS_STAGES

    @property
    def is_auto_eligible(self) -> bool:
        return self in AUTO_ELIGIBLE_STAGES


IN_PROGRESS_STAGES = frozenset({
    UnitStage.ANALYZING,
    UnitStage.GENERATING_IMAGE,
    UnitStage.GENERATING_ASSETS,
    UnitStage.GENERATING_VIDEO,
    UnitStage.EDITING_AREA,
})

# Stages with an automatic next step; everything else waits for a user action
AUTO_ELIGIBLE_STAGES = frozenset({UnitStage.PENDING, UnitStage.ANALYZED})


class VideoPlacement(str, Enum):
    BACKGROUND = "background"
    INTRO = "intro"


KNOWN_LAYOUTS = (
    "editorial-left",
    "editorial-right",
    "minimal-centered",
    "mckinsey-insight",
    "data-evidence",
    "strategic-pillars",
)
TRANSITION_TYPES = ("fade", "slide", "zoom", "cinematic")


@dataclass(frozen=True)
class SelectionRect:
    """Region of a slide, expressed in percent of the page size."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        for name in ("x", "y", "width", "height"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ValueError(f"SelectionRect.{name} must be numeric")
            if value < 0 or value > 100:
                raise ValueError(f"SelectionRect.{name} must be within 0 and 100")

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SelectionRect":
        try:
            return cls(
                x=float(payload["x"]),
                y=float(payload["y"]),
                width=float(payload.get("width", 0)),
                height=float(payload.get("height", 0)),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Invalid selection rect: {payload!r}") from exc


@dataclass(frozen=True)
class GroundingSource:
    """A web citation attached to a search-grounded analysis."""

    title: Optional[str] = None
    uri: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"title": self.title, "uri": self.uri}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GroundingSource":
        return cls(title=payload.get("title"), uri=payload.get("uri"))


@dataclass(frozen=True)
class GeneratedAsset:
    """A standalone illustration rendered from one of the slide's asset prompts."""

    id: str
    prompt: str
    image_ref: str
    position: Optional[SelectionRect] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "prompt": self.prompt, "imageUrl": self.image_ref}
        if self.position is not None:
            payload["position"] = self.position.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GeneratedAsset":
        position = payload.get("position")
        return cls(
            id=str(payload["id"]),
            prompt=str(payload.get("prompt", "")),
            image_ref=str(payload.get("imageUrl") or payload.get("image_ref") or ""),
            position=SelectionRect.from_dict(position) if isinstance(position, Mapping) else None,
        )


# Python field name -> wire (camelCase) key used by the model and persisted decks
_CONTENT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("action_title", "actionTitle"),
    ("subtitle", "subtitle"),
    ("key_takeaways", "keyTakeaways"),
    ("script", "script"),
    ("visual_prompt", "visualPrompt"),
    ("asset_prompts", "assetPrompts"),
    ("keywords", "keywords"),
    ("consulting_layout", "consultingLayout"),
    ("suggested_motion", "suggestedMotion"),
    ("color_palette", "colorPalette"),
    ("mood", "mood"),
)
CONTENT_LIST_FIELDS = ("key_takeaways", "asset_prompts", "keywords", "color_palette")
_WIRE_TO_FIELD = {wire: name for name, wire in _CONTENT_KEYS}
_WIRE_TO_FIELD.update({name: name for name, _ in _CONTENT_KEYS})


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _as_optional_text(value: Any) -> Optional[str]:
    text = _as_text(value)
    return text or None


def _as_text_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [_as_text(item) for item in value if _as_text(item)]


@dataclass(frozen=True)
class SlideContent:
    """Structured narrative produced by the analysis stage.

    List fields are always lists, never ``None``, whatever the model returned.
    Keys the model returned that are not modelled here are kept in ``extras``
    so partial updates and persistence do not lose them.
    """

    action_title: str = ""
    subtitle: str = ""
    key_takeaways: List[str] = field(default_factory=list)
    script: str = ""
    visual_prompt: str = ""
    asset_prompts: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    consulting_layout: str = "data-evidence"
    suggested_motion: Optional[str] = None
    color_palette: List[str] = field(default_factory=list)
    mood: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        default_layout: str = "data-evidence",
    ) -> "SlideContent":
        """Build content from a model or persisted payload (camelCase or snake_case)."""
        values: Dict[str, Any] = {}
        extras: Dict[str, Any] = {}
        for key, value in payload.items():
            name = _WIRE_TO_FIELD.get(key)
            if name is None:
                if key != "extras":
                    extras[key] = value
                continue
            values[name] = value
        if isinstance(payload.get("extras"), Mapping):
            extras = {**payload["extras"], **extras}

        return cls(
            action_title=_as_text(values.get("action_title")),
            subtitle=_as_text(values.get("subtitle")),
            key_takeaways=_as_text_list(values.get("key_takeaways")),
            script=_as_text(values.get("script")),
            visual_prompt=_as_text(values.get("visual_prompt")),
            asset_prompts=_as_text_list(values.get("asset_prompts")),
            keywords=_as_text_list(values.get("keywords")),
            consulting_layout=_as_text(values.get("consulting_layout")) or default_layout,
            suggested_motion=_as_optional_text(values.get("suggested_motion")),
            color_palette=_as_text_list(values.get("color_palette")),
            mood=_as_optional_text(values.get("mood")),
            extras=extras,
        )

    def merged(self, updates: Mapping[str, Any]) -> "SlideContent":
        """Return new content with only the keys present in *updates* replaced."""
        if not updates:
            return self
        payload = self.to_dict()
        for key, value in updates.items():
            name = _WIRE_TO_FIELD.get(key)
            wire = dict(_CONTENT_KEYS).get(name, key) if name else key
            payload[wire] = value
        return SlideContent.from_payload(payload, default_layout=self.consulting_layout)

    def filled_fields(self) -> Dict[str, Any]:
        """Wire payload without empty values, for merging a fresh pass over older content."""
        return {key: value for key, value in self.to_dict().items() if value not in (None, "", [], {})}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extras)
        for name, wire in _CONTENT_KEYS:
            value = getattr(self, name)
            payload[wire] = list(value) if isinstance(value, list) else value
        return payload


@dataclass(frozen=True)
class Unit:
    """One page of the ingested document and everything derived from it."""

    id: str
    sequence_index: int
    source_image: str
    stage: UnitStage = UnitStage.PENDING
    content: Optional[SlideContent] = None
    enriched_image: Optional[str] = None
    generated_assets: List[GeneratedAsset] = field(default_factory=list)
    background_media_ref: Optional[str] = None
    intro_media_ref: Optional[str] = None
    video_placement: Optional[VideoPlacement] = None
    transition_type: Optional[str] = None
    grounding_sources: List[GroundingSource] = field(default_factory=list)
    last_error: Optional[str] = None

    def with_updates(self, **changes: Any) -> "Unit":
        """Return a copy with *changes* applied; ``id``, ``sequence_index`` and ``source_image`` are fixed."""
        for frozen_name in ("id", "sequence_index", "source_image"):
            if frozen_name in changes and changes[frozen_name] != getattr(self, frozen_name):
                raise ValueError(f"Unit.{frozen_name} is immutable")
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ValueError(f"Unknown unit fields: {sorted(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise using the persisted deck format."""
        return {
            "id": self.id,
            "pageIndex": self.sequence_index,
            "originalImage": self.source_image,
            "status": self.stage.value,
            "analysis": self.content.to_dict() if self.content is not None else None,
            "enhancedImage": self.enriched_image,
            "generatedAssets": [asset.to_dict() for asset in self.generated_assets],
            "videoUrl": self.background_media_ref,
            "transitionVideoUrl": self.intro_media_ref,
            "videoPosition": self.video_placement.value if self.video_placement else None,
            "transitionType": self.transition_type,
            "groundingSources": [source.to_dict() for source in self.grounding_sources],
            "error": self.last_error,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Unit":
        analysis = payload.get("analysis")
        placement = payload.get("videoPosition")
        try:
            stage = UnitStage(payload.get("status", UnitStage.PENDING.value))
        except ValueError as exc:
            raise ValueError(f"Unknown unit status: {payload.get('status')!r}") from exc

        return cls(
            id=str(payload["id"]),
            sequence_index=int(payload.get("pageIndex", 0)),
            source_image=str(payload.get("originalImage", "")),
            stage=stage,
            content=SlideContent.from_payload(analysis) if isinstance(analysis, Mapping) else None,
            enriched_image=payload.get("enhancedImage"),
            generated_assets=[
                GeneratedAsset.from_dict(item)
                for item in payload.get("generatedAssets") or []
                if isinstance(item, Mapping)
            ],
            background_media_ref=payload.get("videoUrl"),
            intro_media_ref=payload.get("transitionVideoUrl"),
            video_placement=VideoPlacement(placement) if placement else None,
            transition_type=payload.get("transitionType"),
            grounding_sources=[
                GroundingSource.from_dict(item)
                for item in payload.get("groundingSources") or []
                if isinstance(item, Mapping)
            ],
            last_error=payload.get("error"),
        )
