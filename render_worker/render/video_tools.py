"""FFmpeg commands for the video resize and compress tools."""

from render_worker.render.filter_graph import EncoderCommand, EncoderInput, Expr, Filter, FilterGraph
from render_worker.schemas.jobs import VideoToolOptions, VideoToolsJobPayload

MAX_INPUT_BYTES = 100 * 1024 * 1024
MAX_DIMENSION = 4096
MIN_CRF = 18
MAX_CRF = 28
DEFAULT_CRF = 23
VIDEO_TOOLS_PRESET = "fast"


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def video_tools_result_key(user_id: str, project_id: str, output_file_name: str) -> str:
    return f"users/{user_id}/media/{project_id}/video/{output_file_name}"


def resize_filters(width: int, height: int, fit: str) -> list[Filter]:
    """Scale into a ``width`` x ``height`` frame.

    ``fill`` stretches, ``contain`` letterboxes without upscaling, and
    ``cover`` scales up and crops the overflow.
    """
    if fit == "fill":
        return [Filter("scale", [(None, width), (None, height)])]
    if fit == "cover":
        return [
            Filter("scale", [(None, width), (None, height), ("force_original_aspect_ratio", "increase")]),
            Filter("crop", [(None, width), (None, height)]),
        ]
    return [
        Filter(
            "scale",
            [
                (None, Expr(f"min(iw,{width})")),
                (None, Expr(f"min(ih,{height})")),
                ("force_original_aspect_ratio", "decrease"),
            ],
        ),
        Filter("pad", [(None, width), (None, height), (None, Expr("(ow-iw)/2")), (None, Expr("(oh-ih)/2"))]),
    ]


def compress_filters(options: VideoToolOptions) -> list[Filter]:
    # Only downscale when both bounds are given
    if not (options.width and options.height):
        return [Filter("null")]
    width = _clamp(options.width, 1, MAX_DIMENSION)
    height = _clamp(options.height, 1, MAX_DIMENSION)
    return [Filter("scale", [(None, width), (None, height), ("force_original_aspect_ratio", "decrease")])]


def build_video_tools_command(job: VideoToolsJobPayload, input_path: str, output_path: str) -> EncoderCommand:
    options = job.options
    if job.tool_type == "video-resize":
        width = _clamp(options.width, 1, MAX_DIMENSION)
        height = _clamp(options.height, 1, MAX_DIMENSION)
        filters = resize_filters(width, height, options.fit)
        crf = DEFAULT_CRF
    else:
        filters = compress_filters(options)
        crf = _clamp(options.crf if options.crf is not None else DEFAULT_CRF, MIN_CRF, MAX_CRF)

    graph = FilterGraph()
    graph.chain("0:v", filters, "vout")
    command = EncoderCommand(
        inputs=[EncoderInput(input_path)],
        graph=graph,
        # Source audio is carried over when present
        maps=["vout", "0:a?"],
        output_options=[
            "-c:v", "libx264",
            "-preset", VIDEO_TOOLS_PRESET,
            "-crf", str(crf),
            "-c:a", "aac",
            "-movflags", "+faststart",
        ],
        output_path=output_path,
    )
    command.validate()
    return command
