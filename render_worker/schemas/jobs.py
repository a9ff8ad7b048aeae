"""Queue payload schemas.

Every payload carries a ``kind`` tag; :func:`parse_job_payload` validates the
raw queue message into exactly one of the payload models. Field names accept
both snake_case and the camelCase used by the upstream producer.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from render_worker.exceptions import InvalidJobPayloadError
from render_worker.render.pacing import PacingStyle


class JobModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CaptionOptions(JobModel):
    enabled: bool = True
    preset: str = "karaoke-card"
    position: Literal["top", "center", "bottom"] = "bottom"
    language: str | None = None

    @field_validator("position", mode="before")
    @classmethod
    def default_position(cls, v: Any) -> str:
        value = str(v or "bottom").lower()
        return value if value in ("top", "center", "bottom") else "bottom"

    @field_validator("preset", mode="before")
    @classmethod
    def default_preset(cls, v: Any) -> str:
        return str(v) if v else "karaoke-card"


class RenderingHints(JobModel):
    width: int = Field(default=720, gt=0)
    height: int = Field(default=1280, gt=0)
    language: str | None = None
    captions: CaptionOptions = Field(default_factory=CaptionOptions)
    music_volume: float = Field(default=0.2, ge=0.0, le=1.0)
    motion_preset: str | None = None
    motion_presets: list[str] | None = None
    motion_emotion: str | None = None
    pacing_style: PacingStyle = PacingStyle.SMOOTH

    @field_validator("pacing_style", mode="before")
    @classmethod
    def coerce_pacing_style(cls, v: Any) -> PacingStyle:
        return PacingStyle.parse(v)

    @property
    def caption_language(self) -> str | None:
        return self.captions.language or self.language


class RenderOptions(JobModel):
    preset: str | None = None
    rendering_hints: RenderingHints = Field(default_factory=RenderingHints)


class WatermarkDirective(JobModel):
    enabled: bool = False
    type: Literal["text", "image"] = "text"
    value: str | None = None

    @property
    def text_enabled(self) -> bool:
        return bool(self.enabled and self.type == "text" and self.value)


class MonetizationDirective(JobModel):
    watermark: WatermarkDirective = Field(default_factory=WatermarkDirective)


class ReelAssets(JobModel):
    audio: str
    caption: str | None = None
    images: list[str] = Field(default_factory=list)
    music: str | None = None


class StockVideoAssets(JobModel):
    audio: str
    caption: str | None = None
    stock_videos: list[str] = Field(min_length=1)
    # Parallel to stock_videos; missing entries default to stock_video
    stock_video_types: list[Literal["stock_video", "image"]] = Field(default_factory=list)
    music: str | None = None

    def clip_type(self, index: int) -> str:
        if index < len(self.stock_video_types):
            return self.stock_video_types[index]
        return "stock_video"


class MediaJobPayload(JobModel):
    """Fields shared by jobs that finalize a media step."""

    job_id: str | None = None
    media_id: str
    step_id: str
    user_id: str
    duration_bucket: str = "30-60"
    options: RenderOptions = Field(default_factory=RenderOptions)
    monetization: MonetizationDirective = Field(default_factory=MonetizationDirective)

    @property
    def hints(self) -> RenderingHints:
        return self.options.rendering_hints


class ReelJobPayload(MediaJobPayload):
    kind: Literal["reel"]
    assets: ReelAssets


class StockVideoJobPayload(MediaJobPayload):
    kind: Literal["stock_video"]
    assets: StockVideoAssets


class KineticInputProps(JobModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    timeline: list[dict[str, Any]] | None = None
    graphic_motion_timeline: dict[str, Any] | None = None
    width: int = 1080
    height: int = 1920
    fps: int = 30
    font_family: str | None = None

    @property
    def graphic_scenes(self) -> list[Any]:
        if not self.graphic_motion_timeline:
            return []
        scenes = self.graphic_motion_timeline.get("scenes")
        return scenes if isinstance(scenes, list) else []


class KineticJobPayload(JobModel):
    kind: Literal["kinetic"]
    job_id: str | None = None
    project_id: str
    user_id: str
    composition_id: str | None = None
    input_props: KineticInputProps
    monetization: MonetizationDirective = Field(default_factory=MonetizationDirective)
    music_blob_id: str | None = None
    music_volume: float | None = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def require_timeline(self) -> "KineticJobPayload":
        if not self.input_props.graphic_scenes and not self.input_props.timeline:
            raise ValueError(
                "Kinetic job has no valid timeline: need graphicMotionTimeline.scenes or timeline"
            )
        return self


class VideoToolOptions(JobModel):
    width: int | None = None
    height: int | None = None
    fit: Literal["fill", "contain", "cover"] = "contain"
    crf: int | None = None
    preset_label: str | None = None

    @field_validator("fit", mode="before")
    @classmethod
    def default_fit(cls, v: Any) -> str:
        return str(v).lower() if v else "contain"


class VideoToolsJobPayload(JobModel):
    """Resize or recompress one uploaded video for a project."""

    kind: Literal["video_tools"]
    job_id: str | None = None
    project_id: str
    user_id: str
    input_blob_id: str
    tool_type: Literal["video-resize", "video-compress"]
    options: VideoToolOptions = Field(default_factory=VideoToolOptions)
    output_file_name: str = "output.mp4"

    @model_validator(mode="after")
    def require_resize_size(self) -> "VideoToolsJobPayload":
        if self.tool_type == "video-resize" and not (self.options.width and self.options.height):
            raise ValueError("video-resize needs options.width and options.height")
        return self

    @field_validator("output_file_name")
    @classmethod
    def plain_file_name(cls, v: str) -> str:
        if not v or "/" in v or v in (".", ".."):
            raise ValueError("outputFileName must be a plain file name")
        return v


RenderJobPayload = Annotated[
    Union[ReelJobPayload, StockVideoJobPayload, KineticJobPayload, VideoToolsJobPayload],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[RenderJobPayload] = TypeAdapter(RenderJobPayload)


def parse_job_payload(data: Any) -> RenderJobPayload:
    """Validate a raw queue message.

    Raises:
        InvalidJobPayloadError: If the message matches no payload kind.
    """
    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidJobPayloadError(f"Invalid job payload: {e}") from e
